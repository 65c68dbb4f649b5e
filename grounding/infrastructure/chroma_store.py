# grounding/infrastructure/chroma_store.py

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import chromadb
import numpy as np
from chromadb.config import Settings

from grounding.domain.errors import SearchTierError, StoreUnavailable
from grounding.domain.interfaces import CorpusStorePort
from grounding.domain.models import Fragment, ScoredFragment, Strategy
from grounding.infrastructure.keyword_ranking import keyword_search


logger = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

EMBEDDED_COLLECTION   = "document_fragments"
UNEMBEDDED_COLLECTION = "unembedded_fragments"

# Chroma requires a vector per record. Fragments that were never embedded
# live in their own collection under this placeholder and are never
# queried by vector.
PLACEHOLDER_EMBEDDING = [1.0]

# Fetch this many nearest neighbours per requested result, so that the
# threshold filter and the recency tie-break see more than the bare top-k.
CANDIDATE_MULTIPLIER = 5


class ChromaCorpusStore(CorpusStorePort):
    """
    Persistent corpus store on ChromaDB.

    ┌───────────────────────────────────────────────────────────┐
    │  document_fragments    →  embedded, HNSW cosine search     │
    │  unembedded_fragments  →  keyword search only              │
    └───────────────────────────────────────────────────────────┘

    Records are keyed "<scope_id>:<fragment_id>" since fragment ids are
    only unique within a scope. Every read filters on the `scope_id`
    metadata field. A query vector of the wrong size is a SearchTierError;
    any chromadb failure is raised as StoreUnavailable.
    """

    def __init__(self, persist_directory: str):
        self._persist_directory = persist_directory

        path = Path(persist_directory)
        if path.exists() and not path.is_dir():
            raise StoreUnavailable(f"Failed to initialize ChromaDB: path '{persist_directory}' is a file.")
        path.mkdir(parents=True, exist_ok=True)

        try:
            self._client = chromadb.PersistentClient(
                path=persist_directory,
                settings=Settings(anonymized_telemetry=False),
            )
            self._embedded = self._client.get_or_create_collection(
                name=EMBEDDED_COLLECTION,
                metadata={"hnsw:space": "cosine"},
            )
            self._unembedded = self._client.get_or_create_collection(
                name=UNEMBEDDED_COLLECTION,
            )
        except Exception as error:
            raise StoreUnavailable(
                f"Failed to initialize ChromaDB at '{persist_directory}'.\n"
                f"The database may be locked by another process or corrupted.\n"
                f"Original error: {error}"
            ) from error

        logger.info(
            "Connected to '%s': %d embedded, %d unembedded fragments.",
            persist_directory, self._embedded.count(), self._unembedded.count(),
        )

    # ─── Writes ──────────────────────────────────────────────────────────────

    def upsert_fragments(self, fragments: List[Fragment]) -> None:
        """
        Idempotent upsert. A fragment moves between the two collections when
        it gains or loses its embedding.
        """
        embedded   = [f for f in fragments if f.has_embedding]
        unembedded = [f for f in fragments if not f.has_embedding]

        with self._store_call("upsert"):
            # Batch upsert — Python slicing handles non-divisible sizes gracefully
            batch_size = 500
            for start in range(0, len(embedded), batch_size):
                batch = embedded[start : start + batch_size]
                self._embedded.upsert(
                    ids        = [_record_id(f) for f in batch],
                    embeddings = [np.asarray(f.embedding, dtype=np.float32).tolist() for f in batch],
                    documents  = [f.body for f in batch],
                    metadatas  = [_metadata(f) for f in batch],
                )
            for start in range(0, len(unembedded), batch_size):
                batch = unembedded[start : start + batch_size]
                self._unembedded.upsert(
                    ids        = [_record_id(f) for f in batch],
                    embeddings = [PLACEHOLDER_EMBEDDING for _ in batch],
                    documents  = [f.body for f in batch],
                    metadatas  = [_metadata(f) for f in batch],
                )

            if embedded:
                self._unembedded.delete(ids=[_record_id(f) for f in embedded])
            if unembedded:
                self._embedded.delete(ids=[_record_id(f) for f in unembedded])

        logger.info(
            "Upserted %d fragments (%d without embedding).", len(fragments), len(unembedded)
        )

    def delete_fragment(self, scope_id: str, fragment_id: str) -> None:
        record_id = f"{scope_id}:{fragment_id}"
        with self._store_call("delete"):
            self._embedded.delete(ids=[record_id])
            self._unembedded.delete(ids=[record_id])

    # ─── Reads ───────────────────────────────────────────────────────────────

    def count(self, scope_id: str) -> int:
        with self._store_call("count"):
            embedded = self._embedded.get(where={"scope_id": scope_id}, include=["metadatas"])
            unembedded = self._unembedded.get(where={"scope_id": scope_id}, include=["metadatas"])
        return len(embedded["ids"]) + len(unembedded["ids"])

    def vector_search(
        self,
        scope_id: str,
        query_embedding: np.ndarray,
        threshold: float,
        limit: int,
    ) -> List[ScoredFragment]:
        if limit < 1:
            return []

        query = np.asarray(query_embedding, dtype=np.float32).tolist()

        with self._store_call("vector query"):
            sample = self._embedded.get(
                where={"scope_id": scope_id}, include=["embeddings"], limit=1
            )
            if len(sample["ids"]) == 0:
                return []
            stored_dimensions = len(sample["embeddings"][0])
            if stored_dimensions != len(query):
                raise SearchTierError(
                    f"Query embedding has {len(query)} dimensions, "
                    f"stored embeddings have {stored_dimensions}."
                )

            scope_total = len(
                self._embedded.get(where={"scope_id": scope_id}, include=["metadatas"])["ids"]
            )
            n_results = min(limit * CANDIDATE_MULTIPLIER, scope_total)
            results = self._query_candidates(scope_id, query, n_results, threshold)

            # A full pool whose last hit ties the cutoff may hide more recent
            # ties beyond it; widen to the whole scope.
            if (
                n_results < scope_total
                and len(results) == n_results
                and results[-1].similarity == results[min(limit, n_results) - 1].similarity
            ):
                results = self._query_candidates(scope_id, query, scope_total, threshold)

        results.sort(
            key=lambda r: (r.similarity, r.fragment.updated_at.timestamp()),
            reverse=True,
        )
        return results[:limit]

    def keyword_search(self, scope_id: str, terms: List[str], limit: int) -> List[Fragment]:
        if not terms:
            return []
        # Chroma's $contains is case-sensitive and ignores titles, so the
        # terms are matched in Python against title and body.
        with self._store_call("keyword query"):
            fragments = (
                self._load_scope(self._embedded, scope_id, with_embeddings=False)
                + self._load_scope(self._unembedded, scope_id, with_embeddings=False)
            )
        return keyword_search(fragments, terms, limit)

    def recent_fragments(self, scope_id: str, limit: int) -> List[Fragment]:
        with self._store_call("recency query"):
            fragments = self._load_scope(self._embedded, scope_id, with_embeddings=True)
        fragments.sort(key=lambda f: f.updated_at.timestamp(), reverse=True)
        return fragments[:limit]

    # ─── Private: ChromaDB Helpers ────────────────────────────────────────────

    def _query_candidates(
        self, scope_id: str, query: List[float], n_results: int, threshold: float
    ) -> List[ScoredFragment]:
        raw = self._embedded.query(
            query_embeddings = [query],
            n_results        = n_results,
            where            = {"scope_id": scope_id},
            include          = ["documents", "metadatas", "distances", "embeddings"],
        )

        results = []
        for text, metadata, distance, embedding in zip(
            raw["documents"][0],
            raw["metadatas"][0],
            raw["distances"][0],
            raw["embeddings"][0],
        ):
            # Chroma cosine distance = 1 - cosine similarity
            similarity = float(min(1.0, max(0.0, 1.0 - distance)))
            if similarity < threshold:
                continue
            results.append(ScoredFragment(
                fragment   = _to_fragment(text, metadata, embedding),
                similarity = similarity,
                strategy   = Strategy.VECTOR,
            ))
        # Chroma returns nearest first; order ties as the caller will.
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    @staticmethod
    def _load_scope(collection, scope_id: str, with_embeddings: bool) -> List[Fragment]:
        include = ["documents", "metadatas"] + (["embeddings"] if with_embeddings else [])
        results = collection.get(where={"scope_id": scope_id}, include=include)

        embeddings = results.get("embeddings") if with_embeddings else None
        if embeddings is None:
            embeddings = [None] * len(results["ids"])

        return [
            _to_fragment(text, metadata, embedding)
            for text, metadata, embedding in zip(
                results["documents"], results["metadatas"], embeddings
            )
        ]

    @contextmanager
    def _store_call(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (StoreUnavailable, SearchTierError):
            raise
        except Exception as error:
            raise StoreUnavailable(
                f"ChromaDB {operation} failed at '{self._persist_directory}': {error}"
            ) from error


def _record_id(fragment: Fragment) -> str:
    return f"{fragment.scope_id}:{fragment.fragment_id}"


def _metadata(fragment: Fragment) -> dict:
    return {
        "scope_id":    fragment.scope_id,
        "fragment_id": fragment.fragment_id,
        "title":       fragment.title,
        "updated_at":  fragment.updated_at.timestamp(),
    }


def _to_fragment(text: str, metadata: dict, embedding: Optional[object]) -> Fragment:
    return Fragment(
        fragment_id = metadata["fragment_id"],
        scope_id    = metadata["scope_id"],
        title       = metadata.get("title", ""),
        body        = text or "",
        updated_at  = datetime.fromtimestamp(float(metadata["updated_at"]), tz=timezone.utc),
        embedding   = np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
    )
