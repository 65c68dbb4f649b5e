# grounding/application/retrieval_service.py

import logging
from typing import Optional

from grounding.application.config import RetrievalConfig, RetrievalQuery
from grounding.application.context_packer import ContextPacker
from grounding.application.coordinator import RetrievalCoordinator
from grounding.domain.errors import InvalidConfig, InvalidScope
from grounding.domain.interfaces import CorpusStorePort, EmbeddingPort
from grounding.domain.models import EmptyResult, RetrievalResult


logger = logging.getLogger(__name__)


class RetrievalService:
    """
    Core use case: ground a piece of user text in that user's own documents.

    Pipeline per call:  embed → search tiers → merge → rank → pack

    Every AI feature is a thin caller of `retrieve()` that passes its own
    RetrievalConfig (see `RetrievalConfig.preset`). The service holds no
    per-query state, so one instance can serve concurrent calls.

    Raises:
        InvalidScope:         missing scope, before any external call.
        InvalidConfig:        knobs out of range, before any external call.
        StoreUnavailable:     the corpus store failed or timed out.
        EmbeddingUnavailable: only when the vector tier is the sole tier enabled.

    "Nothing found" is an EmptyResult, never an exception.
    """

    def __init__(
        self,
        embedding_engine: EmbeddingPort,
        store: CorpusStorePort,
        default_config: Optional[RetrievalConfig] = None,
    ):
        self._coordinator = RetrievalCoordinator(embedding_engine, store)
        self._default_config = default_config.validate() if default_config else None

    def retrieve(
        self,
        query_text: str,
        scope_id: str,
        config: Optional[RetrievalConfig] = None,
    ) -> RetrievalResult:
        if not scope_id or not str(scope_id).strip():
            raise InvalidScope("A scope id is required for every retrieval.")

        config = config or self._default_config
        if config is None:
            raise InvalidConfig(
                "No retrieval config given and the service has no default. "
                "Pass one explicitly, e.g. RetrievalConfig.preset('chat')."
            )
        config.validate()

        query = RetrievalQuery(text=query_text or "", scope_id=scope_id, config=config)
        candidates = self._coordinator.collect(query)

        if not candidates:
            logger.info("No grounding available for scope '%s'.", scope_id)
            return EmptyResult()

        packed = ContextPacker(config.per_fragment_cap).pack(candidates, config.context_budget)

        return RetrievalResult(
            sources=candidates[: config.max_sources],
            context=packed.text,
            packed=packed.packed,
            candidate_count=len(candidates),
        )
