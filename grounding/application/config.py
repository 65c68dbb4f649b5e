# grounding/application/config.py

from dataclasses import dataclass, replace
from typing import Dict

from grounding.domain.errors import InvalidConfig


# ── Documented tunables ───────────────────────────────────────────────────────
# Fixed scores for non-vector tiers. Lexical sits below strong vector matches
# but above weak ones; recency is the last resort.
DEFAULT_LEXICAL_SIMILARITY  = 0.6
DEFAULT_RECENCY_SIMILARITY  = 0.4
DEFAULT_PER_FRAGMENT_CAP    = 1500
DEFAULT_EMBEDDING_TIMEOUT_S = 10.0
DEFAULT_STORE_TIMEOUT_S     = 10.0


@dataclass(frozen=True)
class RetrievalConfig:
    """
    Per-call retrieval knobs.

    The first four fields have no defaults on purpose: every call site
    states its own threshold, limit and budget. Use `preset()` for the
    documented call-site values.

    Args:
        threshold:          Minimum cosine similarity for vector matches.
        per_strategy_limit: Maximum results taken from each strategy.
        context_budget:     Maximum length (characters) of the packed context.
        max_sources:        Number of ranked candidates returned as sources.
        per_fragment_cap:   Maximum body prefix packed for one fragment.
        lexical_similarity: Score assigned to keyword matches.
        recency_similarity: Score assigned to recency fallback results.
        use_lexical:        Run the keyword tier.
        use_recency:        Run the recency fallback when nothing else matched.
        embedding_timeout:  Seconds to wait for the embedding provider.
        store_timeout:      Seconds to wait for each corpus query.
    """
    threshold:          float
    per_strategy_limit: int
    context_budget:     int
    max_sources:        int
    per_fragment_cap:   int   = DEFAULT_PER_FRAGMENT_CAP
    lexical_similarity: float = DEFAULT_LEXICAL_SIMILARITY
    recency_similarity: float = DEFAULT_RECENCY_SIMILARITY
    use_lexical:        bool  = True
    use_recency:        bool  = True
    embedding_timeout:  float = DEFAULT_EMBEDDING_TIMEOUT_S
    store_timeout:      float = DEFAULT_STORE_TIMEOUT_S

    def validate(self) -> "RetrievalConfig":
        for name in ("threshold", "lexical_similarity", "recency_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidConfig(f"{name} must be within [0, 1], got {value}")

        for name in ("per_strategy_limit", "max_sources", "per_fragment_cap"):
            value = getattr(self, name)
            if value < 1:
                raise InvalidConfig(f"{name} must be at least 1, got {value}")

        if self.context_budget < 0:
            raise InvalidConfig(f"context_budget cannot be negative, got {self.context_budget}")

        for name in ("embedding_timeout", "store_timeout"):
            value = getattr(self, name)
            if value <= 0:
                raise InvalidConfig(f"{name} must be positive, got {value}")

        return self

    @classmethod
    def preset(cls, name: str, **overrides) -> "RetrievalConfig":
        """Named call-site configuration, optionally with individual overrides."""
        try:
            base = PRESETS[name]
        except KeyError:
            known = ", ".join(sorted(PRESETS))
            raise InvalidConfig(f"Unknown retrieval preset '{name}'. Known: {known}") from None
        return replace(base, **overrides) if overrides else base


@dataclass(frozen=True)
class RetrievalQuery:
    """Raw query text, the scope it runs in, and the knobs for this call."""
    text:     str
    scope_id: str
    config:   RetrievalConfig


# ── Call-site presets ─────────────────────────────────────────────────────────
# chat          broad grounding for conversational answers
# fact_check    stricter matches, short excerpts per reference document
# continuation  style matching: only very close passages
# synthesis     wide net across the library for merge/compare work
# library       search box over the user's own documents

PRESETS: Dict[str, RetrievalConfig] = {
    "chat": RetrievalConfig(
        threshold=0.5, per_strategy_limit=5, context_budget=12000,
        max_sources=5, per_fragment_cap=800,
    ),
    "fact_check": RetrievalConfig(
        threshold=0.6, per_strategy_limit=5, context_budget=6000,
        max_sources=5, per_fragment_cap=500,
    ),
    "continuation": RetrievalConfig(
        threshold=0.7, per_strategy_limit=3, context_budget=3000,
        max_sources=3, per_fragment_cap=500,
    ),
    "synthesis": RetrievalConfig(
        threshold=0.3, per_strategy_limit=10, context_budget=12000,
        max_sources=5, per_fragment_cap=1500,
    ),
    "library": RetrievalConfig(
        threshold=0.1, per_strategy_limit=10, context_budget=12000,
        max_sources=5, per_fragment_cap=1500,
    ),
}
