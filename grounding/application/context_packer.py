# grounding/application/context_packer.py

from dataclasses import dataclass, field
from typing import List

from grounding.domain.models import RetrievalResult, ScoredFragment


BLOCK_SEPARATOR = "\n"
ELLIPSIS        = "...\n"

NO_GROUNDING_MESSAGE = "No specific documents found relevant to this query."


@dataclass
class PackedContext:
    text: str
    packed: List[ScoredFragment] = field(default_factory=list)
    truncated: bool = False


def format_relevance(similarity: float) -> str:
    return f"{similarity * 100:.1f}%"


def _block_header(candidate: ScoredFragment) -> str:
    return (
        f'Document: "{candidate.fragment.title}" '
        f"(relevance: {format_relevance(candidate.similarity)})\n"
        f"Content: "
    )


class ContextPacker:
    """
    Packs ranked candidates into one bounded context string.

    Each candidate becomes a labelled block:

        Document: "<title>" (relevance: 85.0%)
        Content: <body prefix>...

    Blocks are joined by a newline in ranked order. The label, separator and
    ellipsis count against the budget as well as the body prefix, so the
    whole string never exceeds `budget` characters.
    """

    def __init__(self, per_fragment_cap: int):
        if per_fragment_cap < 1:
            raise ValueError("per_fragment_cap must be at least 1.")
        self._per_fragment_cap = per_fragment_cap

    def pack(self, candidates: List[ScoredFragment], budget: int) -> PackedContext:
        blocks: List[str] = []
        packed: List[ScoredFragment] = []
        remaining = max(0, budget)
        truncated = False

        for candidate in candidates:
            if remaining <= 0:
                truncated = True
                break

            separator = BLOCK_SEPARATOR if blocks else ""
            header = _block_header(candidate)
            overhead = len(separator) + len(header) + len(ELLIPSIS)
            body = candidate.fragment.body

            prefix_length = min(remaining - overhead, self._per_fragment_cap, len(body))

            if prefix_length < 0 or (prefix_length == 0 and body):
                if not blocks:
                    # Budget smaller than one label: keep what fits of the first block.
                    blocks.append((header + body[: self._per_fragment_cap] + ELLIPSIS)[:remaining])
                    packed.append(candidate)
                truncated = True
                break

            if prefix_length < min(self._per_fragment_cap, len(body)):
                truncated = True

            blocks.append(separator + header + body[:prefix_length] + ELLIPSIS)
            packed.append(candidate)
            remaining -= overhead + prefix_length

        return PackedContext(text="".join(blocks), packed=packed, truncated=truncated)


def render_grounding(result: RetrievalResult) -> str:
    """
    Grounding section for a generation prompt.
    An ungrounded result yields an explicit "nothing found" line.
    """
    if not result.is_grounded or not result.context:
        return NO_GROUNDING_MESSAGE
    return f"Context from user's documents:\n{result.context}"
