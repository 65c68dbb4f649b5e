# grounding/infrastructure/memory_store.py

import logging
import threading
import numpy as np
from typing import Dict, List, Tuple

from grounding.domain.errors import SearchTierError
from grounding.domain.interfaces import CorpusStorePort
from grounding.domain.models import Fragment, ScoredFragment, Strategy
from grounding.infrastructure.keyword_ranking import keyword_search


logger = logging.getLogger(__name__)


class InMemoryCorpusStore(CorpusStorePort):
    """
    Process-local corpus store keyed by (scope_id, fragment_id).
    Cosine similarity is computed with numpy over the scope's embedded
    fragments on every query.
    """

    def __init__(self):
        self._fragments: Dict[Tuple[str, str], Fragment] = {}
        self._lock = threading.Lock()

    # ─── Writes ──────────────────────────────────────────────────────────────

    def upsert_fragments(self, fragments: List[Fragment]) -> None:
        with self._lock:
            for fragment in fragments:
                self._fragments[(fragment.scope_id, fragment.fragment_id)] = fragment
        logger.info("Upserted %d fragments in memory.", len(fragments))

    def delete_fragment(self, scope_id: str, fragment_id: str) -> None:
        with self._lock:
            self._fragments.pop((scope_id, fragment_id), None)

    # ─── Reads ───────────────────────────────────────────────────────────────

    def count(self, scope_id: str) -> int:
        return len(self._scope(scope_id))

    def vector_search(
        self,
        scope_id: str,
        query_embedding: np.ndarray,
        threshold: float,
        limit: int,
    ) -> List[ScoredFragment]:
        embedded = [f for f in self._scope(scope_id) if f.has_embedding]
        if not embedded or limit < 1:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        matrix = np.stack([np.asarray(f.embedding, dtype=np.float32) for f in embedded])
        if matrix.shape[1] != query.shape[0]:
            raise SearchTierError(
                f"Query embedding has {query.shape[0]} dimensions, "
                f"stored embeddings have {matrix.shape[1]}."
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, (matrix @ query) / norms, 0.0)

        results = [
            ScoredFragment(fragment=f, similarity=float(np.clip(s, 0.0, 1.0)), strategy=Strategy.VECTOR)
            for f, s in zip(embedded, scores)
            if s >= threshold
        ]
        results.sort(
            key=lambda r: (r.similarity, r.fragment.updated_at.timestamp()),
            reverse=True,
        )
        return results[:limit]

    def keyword_search(self, scope_id: str, terms: List[str], limit: int) -> List[Fragment]:
        return keyword_search(self._scope(scope_id), terms, limit)

    def recent_fragments(self, scope_id: str, limit: int) -> List[Fragment]:
        embedded = [f for f in self._scope(scope_id) if f.has_embedding]
        embedded.sort(key=lambda f: f.updated_at.timestamp(), reverse=True)
        return embedded[:limit]

    # ─── Private ─────────────────────────────────────────────────────────────

    def _scope(self, scope_id: str) -> List[Fragment]:
        with self._lock:
            return [f for (scope, _), f in self._fragments.items() if scope == scope_id]
