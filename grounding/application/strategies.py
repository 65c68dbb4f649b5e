# grounding/application/strategies.py

import logging
import re
from typing import List

import numpy as np

from grounding.domain.interfaces import CorpusStorePort
from grounding.domain.models import Fragment, ScoredFragment, Strategy


logger = logging.getLogger(__name__)

# Words shorter than this carry no signal for substring matching ("a", "of", "is").
MIN_TERM_LENGTH = 3

_WORD_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)


def extract_terms(text: str) -> List[str]:
    """
    Significant lowercase terms of a query, first occurrence order, no repeats.

    >>> extract_terms("Who is Ada? ADA wrote notes on the engine")
    ['who', 'ada', 'wrote', 'notes', 'the', 'engine']
    """
    seen = set()
    terms = []
    for word in _WORD_PATTERN.findall(text.lower()):
        if len(word) >= MIN_TERM_LENGTH and word not in seen:
            seen.add(word)
            terms.append(word)
    return terms


def _recency_key(fragment: Fragment) -> float:
    return fragment.updated_at.timestamp()


class VectorSearchStrategy:
    """
    Semantic tier: cosine similarity between the query embedding and every
    embedded fragment in scope.

    The store does the heavy lifting; this class re-checks the guarantees
    callers depend on (scope, threshold, limit, ordering) on whatever the
    store returns.
    """

    def __init__(self, store: CorpusStorePort):
        self._store = store

    def search(
        self,
        scope_id: str,
        query_embedding: np.ndarray,
        threshold: float,
        limit: int,
    ) -> List[ScoredFragment]:
        raw_results = self._store.vector_search(
            scope_id=scope_id,
            query_embedding=query_embedding,
            threshold=threshold,
            limit=limit,
        )

        results = [
            ScoredFragment(
                fragment=r.fragment,
                similarity=float(min(1.0, max(0.0, r.similarity))),
                strategy=Strategy.VECTOR,
            )
            for r in raw_results
            if r.fragment.scope_id == scope_id
            and r.fragment.has_embedding
            and r.similarity >= threshold
        ]

        # Best similarity first; equal scores go to the most recently updated.
        results.sort(
            key=lambda r: (r.similarity, _recency_key(r.fragment)),
            reverse=True,
        )
        return results[:limit]


class LexicalSearchStrategy:
    """
    Keyword tier: catches exact names and numbers that embeddings under-weight.
    Every match gets the same fixed score.
    """

    def __init__(self, store: CorpusStorePort):
        self._store = store

    def search(
        self,
        scope_id: str,
        query_text: str,
        limit: int,
        similarity: float,
    ) -> List[ScoredFragment]:
        terms = extract_terms(query_text)
        if not terms:
            logger.debug("No significant terms in query; keyword tier skipped.")
            return []

        fragments = self._store.keyword_search(scope_id=scope_id, terms=terms, limit=limit)
        return [
            ScoredFragment(fragment=f, similarity=similarity, strategy=Strategy.LEXICAL)
            for f in fragments[:limit]
            if f.scope_id == scope_id
        ]


class RecencySearchStrategy:
    """
    Last-resort tier: the scope's most recently updated embedded fragments.
    """

    def __init__(self, store: CorpusStorePort):
        self._store = store

    def search(self, scope_id: str, limit: int, similarity: float) -> List[ScoredFragment]:
        fragments = self._store.recent_fragments(scope_id=scope_id, limit=limit)
        return [
            ScoredFragment(fragment=f, similarity=similarity, strategy=Strategy.RECENCY)
            for f in fragments[:limit]
            if f.scope_id == scope_id and f.has_embedding
        ]
