# grounding/application/coordinator.py

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Iterable, List, Optional

import numpy as np

from grounding.application.config import RetrievalQuery
from grounding.application.strategies import (
    LexicalSearchStrategy,
    RecencySearchStrategy,
    VectorSearchStrategy,
)
from grounding.domain.errors import EmbeddingUnavailable, SearchTierError, StoreUnavailable
from grounding.domain.interfaces import CorpusStorePort, EmbeddingPort
from grounding.domain.models import ScoredFragment, Strategy


logger = logging.getLogger(__name__)


# ─── Pure merge / rank ────────────────────────────────────────────────────────

def merge_candidates(
    primary: Iterable[ScoredFragment],
    secondary: Iterable[ScoredFragment],
) -> List[ScoredFragment]:
    """
    Merge two ranked candidate lists into one, deduplicated by fragment id.

    `primary` keeps its order; entries of `secondary` are appended in their
    own order only when their id is new. The first-seen entry is kept as-is,
    so a vector score is never replaced by a later tier's fixed score.
    """
    merged: List[ScoredFragment] = []
    seen = set()

    for candidate in (*primary, *secondary):
        if candidate.fragment_id in seen:
            continue
        seen.add(candidate.fragment_id)
        merged.append(candidate)

    return merged


def rank_candidates(candidates: Iterable[ScoredFragment]) -> List[ScoredFragment]:
    """Similarity descending. Stable: equal scores keep their merge order."""
    return sorted(candidates, key=lambda c: c.similarity, reverse=True)


# ─── Coordinator ─────────────────────────────────────────────────────────────

class RetrievalCoordinator:
    """
    Runs the search tiers for one query and returns the full ranked pool.

    Cascade:
        1. embed query            ┐ issued together
        2. keyword tier           ┘
        3. vector tier            ← waits on the embedding
        4. merge vector + keyword
        5. recency tier           ← only when the merge is empty
        6. stable rank by similarity

    Embedding failures and SearchTierError degrade a tier to "no results".
    StoreUnavailable (including store timeouts) aborts the whole call.
    Nothing is cached; the worker pool lives only for the duration of a call.
    """

    def __init__(self, embedding_engine: EmbeddingPort, store: CorpusStorePort):
        self._embedding_engine = embedding_engine
        self._vector  = VectorSearchStrategy(store)
        self._lexical = LexicalSearchStrategy(store)
        self._recency = RecencySearchStrategy(store)

    def collect(self, query: RetrievalQuery) -> List[ScoredFragment]:
        config = query.config
        has_text = bool(query.text.strip())
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="retrieval")

        try:
            embedding_future: Optional[Future] = None
            lexical_future:   Optional[Future] = None

            if has_text:
                embedding_future = pool.submit(self._embedding_engine.encode_single, query.text)
            if has_text and config.use_lexical:
                lexical_future = pool.submit(
                    self._lexical.search,
                    query.scope_id,
                    query.text,
                    config.per_strategy_limit,
                    config.lexical_similarity,
                )

            vector_results: List[ScoredFragment] = []
            query_embedding = self._await_embedding(query, embedding_future)
            if query_embedding is not None:
                vector_results = self._await_tier(
                    Strategy.VECTOR,
                    pool.submit(
                        self._vector.search,
                        query.scope_id,
                        query_embedding,
                        config.threshold,
                        config.per_strategy_limit,
                    ),
                    config.store_timeout,
                )

            lexical_results: List[ScoredFragment] = []
            if lexical_future is not None:
                lexical_results = self._await_tier(
                    Strategy.LEXICAL, lexical_future, config.store_timeout
                )

            candidates = merge_candidates(vector_results, lexical_results)

            if not candidates and config.use_recency:
                logger.info(
                    "No vector or keyword matches in scope '%s'; falling back to recent documents.",
                    query.scope_id,
                )
                candidates = self._await_tier(
                    Strategy.RECENCY,
                    pool.submit(
                        self._recency.search,
                        query.scope_id,
                        config.per_strategy_limit,
                        config.recency_similarity,
                    ),
                    config.store_timeout,
                )

            ranked = rank_candidates(self._within_scope(candidates, query.scope_id))
            logger.debug(
                "Scope '%s': %d vector, %d keyword, %d ranked candidates.",
                query.scope_id, len(vector_results), len(lexical_results), len(ranked),
            )
            return ranked

        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    # ─── Private ─────────────────────────────────────────────────────────────

    def _await_embedding(
        self,
        query: RetrievalQuery,
        future: Optional[Future],
    ) -> Optional[np.ndarray]:
        """
        Query embedding, or None when the vector tier must sit this call out.
        Raises only when no other tier could answer instead.
        """
        if future is None:
            return None

        config = query.config
        try:
            try:
                return future.result(timeout=config.embedding_timeout)
            except FuturesTimeoutError:
                future.cancel()
                raise EmbeddingUnavailable(
                    f"Embedding provider did not answer within {config.embedding_timeout}s"
                ) from None
        except EmbeddingUnavailable as error:
            if not (config.use_lexical or config.use_recency):
                raise
            logger.warning("Vector search skipped, embedding unavailable: %s", error)
            return None

    @staticmethod
    def _await_tier(strategy: Strategy, future: Future, timeout: float) -> List[ScoredFragment]:
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise StoreUnavailable(
                f"Corpus store did not answer the {strategy.value} query within {timeout}s"
            ) from None
        except SearchTierError as error:
            logger.warning("%s search contributed nothing: %s", strategy.value.capitalize(), error)
            return []

    @staticmethod
    def _within_scope(candidates: List[ScoredFragment], scope_id: str) -> List[ScoredFragment]:
        kept = [c for c in candidates if c.fragment.scope_id == scope_id]
        if len(kept) != len(candidates):
            logger.warning(
                "Dropped %d candidate(s) outside scope '%s'.",
                len(candidates) - len(kept), scope_id,
            )
        return kept
