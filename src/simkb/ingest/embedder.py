"""Embedding adapter — turns ordered chunk texts into fixed-size vectors.

The provider is remote and fallible. Whatever it returns is reshaped so
storage only ever sees ``dimensions``-long float vectors:
- elements that are not finite numbers become 0.0
- short vectors are zero-padded, long ones truncated
- entries the provider dropped become zero vectors and are reported as gaps
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from simkb.db.vectors import coerce_float
from simkb.errors import UpstreamError
from simkb.rag import llm_client

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that maps texts to vectors of (nominally) one fixed dimension.

    Implementations may return short, long, or missing (None) vectors;
    callers normalise with align_embeddings().
    """

    dimensions: int

    def embed(self, texts: list[str]) -> list[list[float] | None]: ...


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64
    num_retries: int = 3


class LiteLLMEmbedder:
    """Batching embedder backed by ``litellm.embedding()``.

    Args:
        config: Embedding configuration (model, dimensions, batch size).
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self.dimensions = self._config.dimensions

    @property
    def model(self) -> str:
        return self._config.model

    def embed(self, texts: list[str]) -> list[list[float] | None]:
        """Embed *texts* in order. Entries the provider left out are None.

        Results are not yet normalised; pass them through align_embeddings().

        Raises:
            EnvironmentError: No API key for the configured provider.
            UpstreamError: The provider call failed after retries.
        """
        if not texts:
            return []
        llm_client.validate_api_key(self._config.model)

        raw: list[list | None] = []
        size = max(1, self._config.batch_size)
        for start in range(0, len(texts), size):
            batch = [str(t) for t in texts[start : start + size]]
            try:
                raw.extend(
                    llm_client.embed_many(
                        self._config.model, batch, num_retries=self._config.num_retries
                    )
                )
            except Exception as exc:
                raise UpstreamError(
                    self._config.model,
                    f"embedding request failed: {exc}",
                    status=getattr(exc, "status_code", None),
                ) from exc

        return raw


def normalize_vector(values: object, dimensions: int) -> list[float]:
    """Coerce *values* to exactly *dimensions* finite floats."""
    items = list(values) if isinstance(values, (list, tuple)) else []
    out = [coerce_float(v) for v in items[:dimensions]]
    if len(out) < dimensions:
        out.extend([0.0] * (dimensions - len(out)))
    return out


def align_embeddings(
    texts: list[str],
    vectors: list[object],
    dimensions: int,
) -> tuple[list[list[float]], list[int]]:
    """Return one normalised vector per text plus the positions that were missing.

    A missing entry (absent, None, or empty) is replaced by a zero vector.
    """
    if len(vectors) != len(texts):
        logger.warning(
            "Embedding cardinality mismatch: inputs=%d outputs=%d", len(texts), len(vectors)
        )
    aligned: list[list[float]] = []
    gaps: list[int] = []
    for i in range(len(texts)):
        vec = vectors[i] if i < len(vectors) else None
        if not vec:
            gaps.append(i)
            aligned.append([0.0] * dimensions)
        else:
            aligned.append(normalize_vector(vec, dimensions))
    if gaps:
        logger.warning("Provider returned no embedding for %d of %d texts", len(gaps), len(texts))
    return aligned, gaps
