# grounding/domain/models.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
import numpy as np


class Strategy(str, Enum):
    """Search strategy that produced a scored fragment."""
    VECTOR = "vector"
    LEXICAL = "lexical"
    RECENCY = "recency"


@dataclass
class Fragment:
    """
    A single retrievable unit of a user's document corpus.
    Owned by the corpus store; the engine only reads it for one query.
    """
    fragment_id: str
    scope_id: str
    title: str
    body: str
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    embedding: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


@dataclass
class ScoredFragment:
    """
    A fragment ranked by one of the search strategies.
    """
    fragment: Fragment
    similarity: float
    strategy: Strategy

    @property
    def fragment_id(self) -> str:
        return self.fragment.fragment_id

    def __repr__(self) -> str:
        preview = self.fragment.body[:80].replace("\n", " ")
        return (
            f"ScoredFragment(score={self.similarity:.4f}, "
            f"strategy='{self.strategy.value}', "
            f"title='{self.fragment.title}', "
            f"preview='{preview}...')"
        )


@dataclass
class RetrievalResult:
    """
    Output of one retrieval call.

    - sources: first N candidates of the ranked pool, for citation/display
    - context: packed text handed to the generation prompt
    - packed:  candidates whose content actually made it into `context`
    """
    sources: List[ScoredFragment]
    context: str
    packed: List[ScoredFragment] = field(default_factory=list)
    candidate_count: int = 0

    @property
    def is_grounded(self) -> bool:
        return True


@dataclass
class EmptyResult(RetrievalResult):
    """
    Successful retrieval that found nothing to ground on.
    Not an error — callers proceed without grounding.
    """
    sources: List[ScoredFragment] = field(default_factory=list)
    context: str = ""

    @property
    def is_grounded(self) -> bool:
        return False
