# grounding/application/indexing_service.py

import logging
from typing import List

from grounding.domain.errors import EmbeddingUnavailable
from grounding.domain.interfaces import CorpusStorePort, EmbeddingPort
from grounding.domain.models import Fragment


logger = logging.getLogger(__name__)

# Unsaved editor drafts carry client-side ids with this prefix.
TEMPORARY_ID_PREFIX = "temp-"


class IndexingService:
    """
    Write side of the corpus: attach embeddings to fragments and store them.

    If the embedding provider is down, fragments are stored anyway without
    an embedding. They stay reachable through keyword search and pick up an
    embedding the next time they are indexed.
    """

    def __init__(self, embedding_engine: EmbeddingPort, store: CorpusStorePort):
        self._embedding_engine = embedding_engine
        self._store = store

    def index_fragments(self, fragments: List[Fragment]) -> List[Fragment]:
        """Encode all fragments and persist them. Returns what was stored."""
        if not fragments:
            raise ValueError("Fragment list is empty — nothing to index.")

        indexable = [f for f in fragments if not f.fragment_id.startswith(TEMPORARY_ID_PREFIX)]
        skipped = len(fragments) - len(indexable)
        if skipped:
            logger.info("Skipping %d unsaved draft fragment(s).", skipped)
        if not indexable:
            return []

        logger.info("Encoding %d fragments...", len(indexable))
        try:
            embeddings = self._embedding_engine.encode([f.body for f in indexable])
        except EmbeddingUnavailable as error:
            logger.warning(
                "Storing %d fragments without embeddings: %s", len(indexable), error
            )
        else:
            for fragment, embedding in zip(indexable, embeddings):
                fragment.embedding = embedding

        self._store.upsert_fragments(indexable)
        logger.info("Indexed %d fragments.", len(indexable))
        return indexable

    def remove_fragment(self, scope_id: str, fragment_id: str) -> None:
        self._store.delete_fragment(scope_id, fragment_id)
