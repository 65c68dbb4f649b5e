# tests/test_coordinator.py

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

from grounding.application.config import RetrievalConfig, RetrievalQuery
from grounding.application.coordinator import (
    RetrievalCoordinator,
    merge_candidates,
    rank_candidates,
)
from grounding.domain.errors import EmbeddingUnavailable, StoreUnavailable
from grounding.domain.models import Fragment, ScoredFragment, Strategy
from grounding.infrastructure.memory_store import InMemoryCorpusStore


NOW = datetime(2025, 9, 1, tzinfo=timezone.utc)
QUERY = np.array([1.0, 0.0, 0.0], dtype=np.float32)
ORTHOGONAL = np.array([0.0, 0.0, 1.0], dtype=np.float32)


def _embedding_with_similarity(similarity: float) -> np.ndarray:
    return np.array([similarity, np.sqrt(1.0 - similarity ** 2), 0.0], dtype=np.float32)


def _make_fragment(fid, title="Note", body="nothing relevant", embedding=None, age_days=0, scope="alice"):
    return Fragment(
        fragment_id=fid,
        scope_id=scope,
        title=title,
        body=body,
        updated_at=NOW - timedelta(days=age_days),
        embedding=embedding,
    )


def _scored(fid, similarity, strategy=Strategy.VECTOR):
    return ScoredFragment(_make_fragment(fid), similarity, strategy)


def _config(**overrides) -> RetrievalConfig:
    values = dict(threshold=0.3, per_strategy_limit=5, context_budget=2000, max_sources=5)
    values.update(overrides)
    return RetrievalConfig(**values)


def _engine(embedding=QUERY) -> MagicMock:
    engine = MagicMock()
    engine.encode_single.return_value = embedding
    return engine


def _query(text="zanzibar trip", **config_overrides) -> RetrievalQuery:
    return RetrievalQuery(text=text, scope_id="alice", config=_config(**config_overrides))


# ── Pure merge / rank ─────────────────────────────────────────────────────────

def test_merge_keeps_primary_order_and_appends_new_secondary_ids():
    primary = [_scored("a", 0.9), _scored("b", 0.5)]
    secondary = [_scored("c", 0.6, Strategy.LEXICAL), _scored("a", 0.6, Strategy.LEXICAL)]

    merged = merge_candidates(primary, secondary)

    assert [c.fragment_id for c in merged] == ["a", "b", "c"]
    assert merged[0].similarity == 0.9
    assert merged[0].strategy is Strategy.VECTOR


def test_merge_does_not_downgrade_first_seen_score():
    merged = merge_candidates([_scored("a", 0.95)], [_scored("a", 0.6, Strategy.LEXICAL)])

    assert len(merged) == 1
    assert merged[0].similarity == 0.95


def test_merge_of_empty_lists_is_empty():
    assert merge_candidates([], []) == []


def test_rank_is_stable_for_equal_scores():
    ranked = rank_candidates([
        _scored("l1", 0.6, Strategy.LEXICAL),
        _scored("v1", 0.85),
        _scored("l2", 0.6, Strategy.LEXICAL),
        _scored("v2", 0.4),
    ])

    assert [c.fragment_id for c in ranked] == ["v1", "l1", "l2", "v2"]


# ── Cascade ───────────────────────────────────────────────────────────────────

def test_fragment_found_by_both_tiers_appears_once_with_vector_score():
    store = InMemoryCorpusStore()
    store.upsert_fragments([
        _make_fragment("both", title="Zanzibar", embedding=_embedding_with_similarity(0.9)),
    ])

    pool = RetrievalCoordinator(_engine(), store).collect(_query())

    assert len(pool) == 1
    assert pool[0].strategy is Strategy.VECTOR
    assert pool[0].similarity == pytest.approx(0.9, abs=1e-4)


def test_recency_fills_pool_when_vector_and_keyword_are_empty():
    store = InMemoryCorpusStore()
    store.upsert_fragments([
        _make_fragment(f"r{i}", embedding=ORTHOGONAL, age_days=i) for i in range(3)
    ])

    pool = RetrievalCoordinator(_engine(), store).collect(_query())

    assert [c.fragment_id for c in pool] == ["r0", "r1", "r2"]
    assert all(c.similarity == pytest.approx(0.4) for c in pool)
    assert all(c.strategy is Strategy.RECENCY for c in pool)


def test_recency_not_invoked_when_keyword_tier_found_something():
    store = MagicMock(wraps=InMemoryCorpusStore())
    store.upsert_fragments([_make_fragment("kw", body="Zanzibar ferry times", embedding=ORTHOGONAL)])

    pool = RetrievalCoordinator(_engine(), store).collect(_query())

    assert [c.fragment_id for c in pool] == ["kw"]
    store.recent_fragments.assert_not_called()


def test_recency_can_be_disabled():
    store = InMemoryCorpusStore()
    store.upsert_fragments([_make_fragment("r0", embedding=ORTHOGONAL)])

    assert RetrievalCoordinator(_engine(), store).collect(_query(use_recency=False)) == []


def test_empty_corpus_yields_empty_pool():
    assert RetrievalCoordinator(_engine(), InMemoryCorpusStore()).collect(_query()) == []


def test_blank_query_skips_embedding_and_uses_recency():
    engine = _engine()
    store = InMemoryCorpusStore()
    store.upsert_fragments([_make_fragment("r0", embedding=ORTHOGONAL)])

    pool = RetrievalCoordinator(engine, store).collect(_query(text="   "))

    assert [c.strategy for c in pool] == [Strategy.RECENCY]
    engine.encode_single.assert_not_called()


# ── Degradation and failures ─────────────────────────────────────────────────

def test_embedding_failure_degrades_to_keyword_results():
    engine = MagicMock()
    engine.encode_single.side_effect = EmbeddingUnavailable("provider down")
    store = InMemoryCorpusStore()
    store.upsert_fragments([
        _make_fragment("semantic", embedding=_embedding_with_similarity(0.95)),
        _make_fragment("kw", body="Zanzibar ferry times", embedding=ORTHOGONAL),
    ])

    pool = RetrievalCoordinator(engine, store).collect(_query())

    assert [c.fragment_id for c in pool] == ["kw"]


def test_embedding_failure_raises_when_no_other_tier_is_enabled():
    engine = MagicMock()
    engine.encode_single.side_effect = EmbeddingUnavailable("provider down")

    with pytest.raises(EmbeddingUnavailable):
        RetrievalCoordinator(engine, InMemoryCorpusStore()).collect(
            _query(use_lexical=False, use_recency=False)
        )


def test_embedding_timeout_degrades_to_keyword_results():
    engine = MagicMock()
    engine.encode_single.side_effect = lambda text: time.sleep(0.5) or QUERY
    store = InMemoryCorpusStore()
    store.upsert_fragments([_make_fragment("kw", body="Zanzibar ferry times", embedding=QUERY)])

    pool = RetrievalCoordinator(engine, store).collect(_query(embedding_timeout=0.05))

    assert [(c.fragment_id, c.strategy) for c in pool] == [("kw", Strategy.LEXICAL)]


def test_store_failure_aborts_retrieval():
    store = MagicMock()
    store.vector_search.return_value = []
    store.keyword_search.side_effect = StoreUnavailable("connection refused")

    with pytest.raises(StoreUnavailable, match="connection refused"):
        RetrievalCoordinator(_engine(), store).collect(_query())


def test_store_timeout_is_a_hard_failure():
    store = MagicMock()
    store.vector_search.return_value = []
    store.keyword_search.side_effect = lambda **kwargs: time.sleep(0.5) or []

    with pytest.raises(StoreUnavailable, match="keyword|lexical"):
        RetrievalCoordinator(_engine(), store).collect(_query(store_timeout=0.05))


def test_vector_tier_error_contributes_nothing():
    store = InMemoryCorpusStore()
    store.upsert_fragments([_make_fragment("kw", body="Zanzibar ferry times", embedding=QUERY)])
    two_dimensional = np.array([1.0, 0.0], dtype=np.float32)

    pool = RetrievalCoordinator(_engine(two_dimensional), store).collect(_query())

    assert [(c.fragment_id, c.strategy) for c in pool] == [("kw", Strategy.LEXICAL)]


def test_foreign_scope_results_are_dropped():
    store = MagicMock()
    store.vector_search.return_value = [
        ScoredFragment(_make_fragment("leak", scope="bob", embedding=QUERY), 0.99, Strategy.VECTOR),
    ]
    store.keyword_search.return_value = []
    store.recent_fragments.return_value = []

    assert RetrievalCoordinator(_engine(), store).collect(_query()) == []
