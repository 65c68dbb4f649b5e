from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from grounding.application.config import RetrievalConfig
from grounding.application.context_packer import format_relevance, render_grounding
from grounding.application.indexing_service import IndexingService
from grounding.application.retrieval_service import RetrievalService
from grounding.domain.errors import (
    EmbeddingUnavailable,
    InvalidConfig,
    InvalidScope,
    StoreUnavailable,
)
from grounding.domain.interfaces import CorpusStorePort
from grounding.domain.models import Fragment
from grounding.infrastructure.chroma_store import ChromaCorpusStore
from grounding.infrastructure.embedding_engine import SentenceTransformerEngine
from grounding.interface.cli import configure_logging

# ── Configuration ────────────────────────────────────────────────────────────
CHROMA_PERSIST_DIRECTORY = "./data/chroma_db"
DEFAULT_PRESET = "chat"
API_HOST = "0.0.0.0"
API_PORT = 8000


# ── Helpers ──────────────────────────────────────────────────────────────────
def get_directory_size_mb(directory: str) -> float:
    """Total size of a directory in megabytes; 0.0 if it does not exist yet."""
    path = Path(directory)
    if not path.exists():
        return 0.0
    total_size = sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
    return round(total_size / (1024 * 1024), 2)


# ── API Models ───────────────────────────────────────────────────────────────
class RetrieveRequest(BaseModel):
    query: str
    scope_id: str
    preset: str = DEFAULT_PRESET
    threshold: Optional[float] = None
    per_strategy_limit: Optional[int] = None
    context_budget: Optional[int] = None
    max_sources: Optional[int] = None


class SourceSchema(BaseModel):
    id: str
    title: str
    similarity: float
    relevance: str
    strategy: str


class RetrieveResponse(BaseModel):
    query: str
    grounded: bool
    context: str
    grounding: str
    sources: List[SourceSchema]
    packed_count: int
    candidate_count: int


class DocumentRequest(BaseModel):
    fragment_id: str
    title: str
    body: str
    updated_at: Optional[datetime] = None


# ── Dependencies ─────────────────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_embedding_engine() -> SentenceTransformerEngine:
    return SentenceTransformerEngine()


@lru_cache(maxsize=1)
def get_store() -> CorpusStorePort:
    return ChromaCorpusStore(persist_directory=CHROMA_PERSIST_DIRECTORY)


def get_retrieval_service() -> RetrievalService:
    return RetrievalService(get_embedding_engine(), get_store())


def get_indexing_service() -> IndexingService:
    return IndexingService(get_embedding_engine(), get_store())


# ── App Initialization ───────────────────────────────────────────────────────
app = FastAPI(
    title="Grounding API",
    description="Retrieval and context assembly over a user's private documents.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:8080", "http://127.0.0.1:8080"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ────────────────────────────────────────────────────────────
@app.exception_handler(InvalidScope)
@app.exception_handler(InvalidConfig)
async def invalid_request_handler(request: Request, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(error)})


@app.exception_handler(StoreUnavailable)
@app.exception_handler(EmbeddingUnavailable)
async def unavailable_handler(request: Request, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(error)})


# ── Endpoints ────────────────────────────────────────────────────────────────
@app.get("/")
def read_root():
    return {"message": "Grounding API is running."}


@app.get("/status")
def get_status(
    engine: SentenceTransformerEngine = Depends(get_embedding_engine),
    store: CorpusStorePort = Depends(get_store),
):
    """Readiness of the embedding model and corpus store; 503 if either failed to start."""
    return {
        "is_ready": True,
        "embedding_model": engine.model_name,
        "store": type(store).__name__,
        "storage_used_mb": get_directory_size_mb(CHROMA_PERSIST_DIRECTORY),
    }


@app.get("/scopes/{scope_id}/count")
def get_scope_count(scope_id: str, store: CorpusStorePort = Depends(get_store)):
    """Number of documents stored for one scope."""
    return {"scope_id": scope_id, "documents": store.count(scope_id)}


@app.post("/retrieve", response_model=RetrieveResponse)
def retrieve(
    request: RetrieveRequest,
    service: RetrievalService = Depends(get_retrieval_service),
):
    overrides = {
        name: value
        for name, value in (
            ("threshold", request.threshold),
            ("per_strategy_limit", request.per_strategy_limit),
            ("context_budget", request.context_budget),
            ("max_sources", request.max_sources),
        )
        if value is not None
    }
    config = RetrievalConfig.preset(request.preset, **overrides)

    result = service.retrieve(request.query, request.scope_id, config)

    return RetrieveResponse(
        query=request.query,
        grounded=result.is_grounded,
        context=result.context,
        grounding=render_grounding(result),
        sources=[
            SourceSchema(
                id=s.fragment.fragment_id,
                title=s.fragment.title,
                similarity=round(s.similarity, 4),
                relevance=format_relevance(s.similarity),
                strategy=s.strategy.value,
            )
            for s in result.sources
        ],
        packed_count=len(result.packed),
        candidate_count=result.candidate_count,
    )


@app.put("/scopes/{scope_id}/documents")
def index_document(
    scope_id: str,
    request: DocumentRequest,
    service: IndexingService = Depends(get_indexing_service),
):
    """Embed and store (or refresh) one document of a scope."""
    if not scope_id.strip():
        raise InvalidScope("A scope id is required to index a document.")

    fragment = Fragment(
        fragment_id=request.fragment_id,
        scope_id=scope_id,
        title=request.title,
        body=request.body,
        updated_at=request.updated_at or datetime.now(timezone.utc),
    )
    stored = service.index_fragments([fragment])
    return {
        "indexed": [f.fragment_id for f in stored],
        "embedded": [f.fragment_id for f in stored if f.has_embedding],
    }


@app.delete("/scopes/{scope_id}/documents/{fragment_id}")
def delete_document(
    scope_id: str,
    fragment_id: str,
    service: IndexingService = Depends(get_indexing_service),
):
    service.remove_fragment(scope_id, fragment_id)
    return {"message": f"Removed document '{fragment_id}' from scope '{scope_id}'."}


if __name__ == "__main__":
    configure_logging()
    uvicorn.run(app, host=API_HOST, port=API_PORT)
