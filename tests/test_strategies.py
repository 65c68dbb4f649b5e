# tests/test_strategies.py

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

from grounding.application.strategies import (
    LexicalSearchStrategy,
    RecencySearchStrategy,
    VectorSearchStrategy,
    extract_terms,
)
from grounding.domain.models import Fragment, ScoredFragment, Strategy


NOW = datetime(2025, 9, 1, tzinfo=timezone.utc)


def _make_fragment(fid, scope="alice", embedding=np.ones(3), age_days=0):
    return Fragment(
        fragment_id=fid,
        scope_id=scope,
        title=f"Title {fid}",
        body=f"Body {fid}",
        updated_at=NOW - timedelta(days=age_days),
        embedding=embedding,
    )


def test_extract_terms_drops_short_words_and_repeats():
    assert extract_terms("Is the GOX 110 in it? gox again!") == ["the", "gox", "110", "again"]


def test_extract_terms_of_blank_text_is_empty():
    assert extract_terms("  a an ") == []


def test_vector_strategy_reenforces_store_guarantees():
    store = MagicMock()
    store.vector_search.return_value = [
        ScoredFragment(_make_fragment("low"), 0.2, Strategy.VECTOR),
        ScoredFragment(_make_fragment("foreign", scope="bob"), 0.95, Strategy.VECTOR),
        ScoredFragment(_make_fragment("unembedded", embedding=None), 0.9, Strategy.VECTOR),
        ScoredFragment(_make_fragment("old", age_days=3), 0.7, Strategy.VECTOR),
        ScoredFragment(_make_fragment("new", age_days=1), 0.7, Strategy.VECTOR),
        ScoredFragment(_make_fragment("best"), 0.8, Strategy.VECTOR),
    ]

    results = VectorSearchStrategy(store).search("alice", np.ones(3), threshold=0.3, limit=2)

    assert [r.fragment_id for r in results] == ["best", "new"]
    store.vector_search.assert_called_once()


def test_lexical_strategy_assigns_fixed_score():
    store = MagicMock()
    store.keyword_search.return_value = [_make_fragment("f0"), _make_fragment("f1")]

    results = LexicalSearchStrategy(store).search("alice", "quarterly budget", limit=5, similarity=0.6)

    assert [r.similarity for r in results] == [0.6, 0.6]
    assert all(r.strategy is Strategy.LEXICAL for r in results)
    store.keyword_search.assert_called_once_with(
        scope_id="alice", terms=["quarterly", "budget"], limit=5
    )


def test_lexical_strategy_without_terms_skips_the_store():
    store = MagicMock()

    assert LexicalSearchStrategy(store).search("alice", "is it ok", limit=5, similarity=0.6) == []
    store.keyword_search.assert_not_called()


def test_recency_strategy_assigns_lowest_tier_score():
    store = MagicMock()
    store.recent_fragments.return_value = [_make_fragment("f0"), _make_fragment("f1", embedding=None)]

    results = RecencySearchStrategy(store).search("alice", limit=3, similarity=0.4)

    assert [r.fragment_id for r in results] == ["f0"]
    assert results[0].similarity == pytest.approx(0.4)
    assert results[0].strategy is Strategy.RECENCY
