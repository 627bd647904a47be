"""Tenant-scoped cosine similarity search over stored chunk embeddings.

Two interchangeable strategies with one contract:
  - exact: brute-force vec_distance_cosine() scan in SQL (always available)
  - index: KNN through the vec0 virtual table (see simkb.db.vectors.ensure_vec_index)

score = cosine distance, lower is better. Ties keep insertion order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from simkb.db.models import Category, Chunk
from simkb.db.repository import Repository
from simkb.db.vectors import vec_index_exists
from simkb.errors import UpstreamError, ValidationError
from simkb.ingest.embedder import Embedder, align_embeddings

DEFAULT_TOP_K = 8


@dataclass
class ScoredChunk:
    """A retrieved chunk with its owning source title and cosine distance.

    Attributes:
        chunk: The Chunk instance from the database (embedding not loaded).
        source_title: Title of the source the chunk belongs to.
        score: Cosine distance to the query; None for zero vectors.
    """

    chunk: Chunk
    source_title: str
    score: float | None


class SearchStrategy(Protocol):
    def search(
        self,
        repo: Repository,
        tenant_id: str,
        query_vector: list[float],
        category: Category | None,
        top_k: int,
    ) -> list[ScoredChunk]: ...


class ExactCosineSearch:
    """Full scan; exact ranking."""

    name = "exact"

    def search(
        self,
        repo: Repository,
        tenant_id: str,
        query_vector: list[float],
        category: Category | None,
        top_k: int,
    ) -> list[ScoredChunk]:
        rows = repo.search_exact(tenant_id, query_vector, category=category, limit=top_k)
        return [ScoredChunk(chunk=c, source_title=t, score=d) for c, t, d in rows]


class VecIndexSearch:
    """KNN through the vec0 index; falls back to the exact scan if it is missing."""

    name = "index"

    def search(
        self,
        repo: Repository,
        tenant_id: str,
        query_vector: list[float],
        category: Category | None,
        top_k: int,
    ) -> list[ScoredChunk]:
        if not vec_index_exists(repo.conn):
            return ExactCosineSearch().search(repo, tenant_id, query_vector, category, top_k)
        rows = repo.search_index(tenant_id, query_vector, category=category, limit=top_k)
        return [ScoredChunk(chunk=c, source_title=t, score=d) for c, t, d in rows]


_STRATEGIES: dict[str, type] = {
    ExactCosineSearch.name: ExactCosineSearch,
    VecIndexSearch.name: VecIndexSearch,
}


def get_strategy(name: str) -> SearchStrategy:
    """Look up a strategy by config name ('exact' or 'index')."""
    try:
        return _STRATEGIES[name]()
    except KeyError:
        raise ValidationError(
            "invalid_strategy",
            f"Unknown search strategy {name!r}; allowed: {', '.join(sorted(_STRATEGIES))}",
        ) from None


def search(
    repo: Repository,
    tenant_id: str,
    query_vector: list[float],
    *,
    category: Category | str | None = None,
    top_k: int = DEFAULT_TOP_K,
    strategy: SearchStrategy | None = None,
) -> list[ScoredChunk]:
    """Return the *top_k* chunks of *tenant_id* closest to *query_vector*.

    Chunks without an embedding are never returned. Only embeddings with the
    query's dimension are compared. An empty tenant yields [].

    Raises:
        ValidationError: ``invalid_top_k`` / ``invalid_category`` /
            ``dimension_mismatch`` (the query is never padded or truncated).
    """
    if top_k < 1:
        raise ValidationError("invalid_top_k", f"top_k must be >= 1, got {top_k}")
    cat = Category.parse(category) if category is not None else None

    stored = repo.embedding_dimensions(tenant_id)
    if not stored:
        return []
    if len(query_vector) not in stored:
        raise ValidationError(
            "dimension_mismatch",
            f"Query vector has {len(query_vector)} dimensions; stored embeddings have "
            f"{', '.join(str(d) for d in stored)}",
        )

    return (strategy or ExactCosineSearch()).search(repo, tenant_id, query_vector, cat, top_k)


def search_text(
    repo: Repository,
    embedder: Embedder,
    tenant_id: str,
    query: str,
    *,
    category: Category | str | None = None,
    top_k: int = DEFAULT_TOP_K,
    strategy: SearchStrategy | None = None,
) -> list[ScoredChunk]:
    """Embed *query* with *embedder*, then search().

    Raises:
        ValidationError: ``missing_text`` for a blank query.
        UpstreamError: The embedding provider failed or returned no vector
            for the query.
    """
    if not query or not query.strip():
        raise ValidationError("missing_text", "Search query is required")
    if top_k < 1:
        raise ValidationError("invalid_top_k", f"top_k must be >= 1, got {top_k}")
    vectors, gaps = align_embeddings([query], embedder.embed([query]), embedder.dimensions)
    if gaps:
        raise UpstreamError(
            getattr(embedder, "model", type(embedder).__name__),
            "no embedding returned for query",
        )
    return search(
        repo, tenant_id, vectors[0], category=category, top_k=top_k, strategy=strategy
    )
