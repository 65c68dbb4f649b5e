# grounding/domain/interfaces.py

from abc import ABC, abstractmethod
from typing import List
import numpy as np

from .models import Fragment, ScoredFragment


class EmbeddingPort(ABC):
    """
    Port for any embedding provider.
    Implementations raise EmbeddingUnavailable on provider failure and
    truncate over-long input themselves.
    """

    @abstractmethod
    def encode(self, texts: List[str]) -> np.ndarray: ...

    @abstractmethod
    def encode_single(self, text: str) -> np.ndarray: ...


class CorpusStorePort(ABC):
    """
    Read-mostly access to the user's document corpus.
    Every query is scoped by owning user; transport failures are raised
    as StoreUnavailable.
    """

    @abstractmethod
    def vector_search(
        self,
        scope_id: str,
        query_embedding: np.ndarray,
        threshold: float,
        limit: int,
    ) -> List[ScoredFragment]:
        """
        Cosine similarity against embedded fragments of the scope.
        Returns at most `limit` results with similarity >= threshold,
        best first, ties broken by most recent update.
        """
        ...

    @abstractmethod
    def keyword_search(
        self,
        scope_id: str,
        terms: List[str],
        limit: int,
    ) -> List[Fragment]:
        """Fragments whose title or body contains any of the terms."""
        ...

    @abstractmethod
    def recent_fragments(self, scope_id: str, limit: int) -> List[Fragment]:
        """Most recently updated fragments of the scope that carry an embedding."""
        ...

    @abstractmethod
    def upsert_fragments(self, fragments: List[Fragment]) -> None: ...

    @abstractmethod
    def delete_fragment(self, scope_id: str, fragment_id: str) -> None: ...

    @abstractmethod
    def count(self, scope_id: str) -> int: ...
