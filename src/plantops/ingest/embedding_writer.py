"""Embedding writer — one LiteLLM embedding per staged chunk.

Each vector is checked against the configured dimensionality and encoded into
the chunk's ``embedding`` column in the wire format of
``plantops.db.vectors.encode_embedding``. Nothing is written to the database
here; the ingestion pipeline persists staged chunks in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from plantops.db.models import DocumentChunk
from plantops.db.vectors import encode_embedding
from plantops.rag.llm_client import embed_many, validate_api_key

logger = logging.getLogger(__name__)


class DimensionMismatchError(ValueError):
    """Raised when the provider returns a vector of the wrong length."""


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


class EmbeddingWriter:
    """Embed staged chunks with LiteLLM.

    Args:
        config: Embedding configuration (model, dimensions).
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    def embed(self, chunks: list[DocumentChunk]) -> list[list[float]]:
        """Embed *chunks* in order; fill ``embedding`` + ``embedding_model`` on each.

        Returns the raw vectors (same order) for the vec table.

        Raises:
            EnvironmentError: If no API key is set for the embedding provider.
            DimensionMismatchError: If any vector's length differs from the
                configured dimensionality.
        """
        if not chunks:
            return []
        validate_api_key(self._config.model)

        vectors = embed_many(self._config.model, [c.text for c in chunks])
        for chunk, vector in zip(chunks, vectors):
            if len(vector) != self._config.dimensions:
                raise DimensionMismatchError(
                    f"Embedding for chunk {chunk.chunk_index} of '{chunk.source_label}' "
                    f"has {len(vector)} dimensions; model '{self._config.model}' is "
                    f"configured for {self._config.dimensions}."
                )
            chunk.embedding = encode_embedding(vector)
            chunk.embedding_model = self._config.model
        logger.debug("Embedded %d chunks with %s", len(chunks), self._config.model)
        return vectors
