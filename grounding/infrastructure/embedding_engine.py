# grounding/infrastructure/embedding_engine.py

import logging
import numpy as np
from typing import List
from sentence_transformers import SentenceTransformer

from grounding.domain.errors import EmbeddingUnavailable
from grounding.domain.interfaces import EmbeddingPort


logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "all-MiniLM-L6-v2"

# Longest input sent to the model; anything after is cut off.
DEFAULT_MAX_INPUT_CHARS = 30000


class SentenceTransformerEngine(EmbeddingPort):
    """
    Embedding provider adapter. No retry, no cache.
    Input is truncated from the start of the string; any model failure is
    surfaced as EmbeddingUnavailable.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ):
        logger.info("Loading embedding model: %s ...", model_name)
        self._model_name = model_name
        self._max_input_chars = max_input_chars
        try:
            self._model = SentenceTransformer(model_name)
        except Exception as error:
            raise EmbeddingUnavailable(
                f"Failed to load embedding model '{model_name}': {error}"
            ) from error
        logger.info("Embedding model ready.")

    @property
    def model_name(self) -> str:
        """Name of the loaded model, reported by the status endpoint."""
        return self._model_name

    def truncate(self, text: str) -> str:
        return text[: self._max_input_chars]

    def encode(self, texts: List[str]) -> np.ndarray:
        try:
            return self._model.encode(
                [self.truncate(t) for t in texts],
                convert_to_numpy=True,
                show_progress_bar=False,
                batch_size=32,
                normalize_embeddings=True,
            )
        except Exception as error:
            raise EmbeddingUnavailable(f"Batch embedding failed: {error}") from error

    def encode_single(self, text: str) -> np.ndarray:
        try:
            return self._model.encode(
                self.truncate(text),
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        except Exception as error:
            raise EmbeddingUnavailable(f"Query embedding failed: {error}") from error
