# main.py

import sys

from grounding.application.config import PRESETS, RetrievalConfig
from grounding.application.indexing_service import IndexingService
from grounding.application.retrieval_service import RetrievalService
from grounding.domain.errors import EmbeddingUnavailable, InvalidConfig, StoreUnavailable
from grounding.infrastructure.chroma_store import ChromaCorpusStore
from grounding.infrastructure.document_loader import DocumentLoader
from grounding.infrastructure.embedding_engine import SentenceTransformerEngine
from grounding.interface.cli import (
    ask_continue,
    configure_logging,
    display_error,
    display_indexing_status,
    display_result,
    display_welcome_banner,
    prompt_for_preset,
    prompt_for_query,
)


DATA_DIRECTORY = "data"
CHROMA_PERSIST_DIRECTORY = "./data/chroma_db"
LOCAL_SCOPE = "local"
DEFAULT_PRESET = "chat"


def main() -> None:
    configure_logging()
    display_welcome_banner()

    # ── 1. Initialize infrastructure ─────────────────────────────────────────
    try:
        embedding_engine = SentenceTransformerEngine()
        store = ChromaCorpusStore(persist_directory=CHROMA_PERSIST_DIRECTORY)
    except (EmbeddingUnavailable, StoreUnavailable) as error:
        display_error(str(error))
        sys.exit(1)

    indexing_service = IndexingService(embedding_engine, store)
    retrieval_service = RetrievalService(embedding_engine, store)

    # ── 2. Load the local document directory into the local scope ────────────
    try:
        fragments = DocumentLoader(LOCAL_SCOPE).load_directory(DATA_DIRECTORY)
    except FileNotFoundError as error:
        display_error(str(error))
        sys.exit(1)

    if fragments:
        indexing_service.index_fragments(fragments)
    display_indexing_status(store.count(LOCAL_SCOPE))

    # ── 3. Interactive retrieval loop ────────────────────────────────────────
    while True:
        query = prompt_for_query()
        preset = prompt_for_preset(sorted(PRESETS), DEFAULT_PRESET)
        try:
            result = retrieval_service.retrieve(
                query, LOCAL_SCOPE, RetrievalConfig.preset(preset)
            )
            display_result(query, result)
        except (InvalidConfig, StoreUnavailable, EmbeddingUnavailable) as error:
            display_error(str(error))

        if not ask_continue():
            break


if __name__ == "__main__":
    main()
