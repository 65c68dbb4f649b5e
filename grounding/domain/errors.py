# grounding/domain/errors.py


class RetrievalError(Exception):
    """Base class for every failure raised by the retrieval engine."""


class EmbeddingUnavailable(RetrievalError, RuntimeError):
    """
    Embedding provider failed or timed out.
    Recovered by the coordinator: the vector tier contributes nothing.
    """


# Name used by the embedding client contract.
EmbeddingError = EmbeddingUnavailable


class StoreUnavailable(RetrievalError, RuntimeError):
    """
    Corpus store failed at the transport level.
    Every tier reads the same store, so there is no fallback.
    """


class SearchTierError(RetrievalError):
    """A single search tier could not produce results for this query."""


class InvalidScope(RetrievalError, ValueError):
    """Missing or empty scope identifier."""


class InvalidConfig(RetrievalError, ValueError):
    """Retrieval knobs out of range, or an unknown preset name."""
