"""KnowledgeBase — the single entry point for tenant-scoped knowledge operations.

Every call takes the tenant id explicitly; input is validated before any
storage access, and each successful mutation is reported to the audit sink.

Ingestion order: normalise → segment → embed (remote, before any write) →
store source + chunks atomically. A provider failure therefore leaves no rows.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from simkb.audit import AuditEvent, AuditSink, LoggingAuditSink, notify
from simkb.config import SimkbConfig
from simkb.db.graph import GraphRepository, GraphView
from simkb.db.models import SOURCE_KINDS, Category, Chunk, ProjectionPoint, Source
from simkb.db.repository import Repository
from simkb.db.vectors import ensure_vec_index
from simkb.errors import ValidationError
from simkb.graph.extractor import (
    ExtractionResult,
    GraphProposer,
    LiteLLMGraphProposer,
    extract_graph,
)
from simkb.ingest.embedder import Embedder, align_embeddings
from simkb.ingest.sentence import SentenceChunker
from simkb.rag.retriever import ScoredChunk, get_strategy, search_text

logger = logging.getLogger(__name__)

GUIDELINE_TITLE_PREFIX = "Guidelines: "


def _identity(text: str) -> str:
    return text


@dataclass
class IngestResult:
    """Outcome of one ingestion.

    Attributes:
        source_id: Id of the created source.
        title: Stored title.
        chunks: Number of chunks stored.
        embedding_gaps: 0-based chunk positions the provider returned no
            vector for (stored as zero vectors).
    """

    source_id: str
    title: str
    chunks: int
    embedding_gaps: list[int] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "source_id": self.source_id,
            "title": self.title,
            "chunks": self.chunks,
            "embedding_gaps": list(self.embedding_gaps),
        }


class KnowledgeBase:
    """Facade over the repositories, segmenter, embedder and graph extractor.

    Args:
        conn: Open connection with the schema initialised.
        embedder: Embedding adapter used for ingestion and queries.
        config: Loaded configuration (defaults when None).
        proposer: Graph proposer; built from ``config.graph.model`` on first use.
        audit: Audit sink; LoggingAuditSink when None.
        normalizer: Text cleaner applied before segmentation (identity by default).
        anonymizer: Applied to text sent to the graph proposer, to graph read
            payloads and to projection previews (identity by default).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        embedder: Embedder,
        *,
        config: SimkbConfig | None = None,
        proposer: GraphProposer | None = None,
        audit: AuditSink | None = None,
        normalizer: Callable[[str], str] | None = None,
        anonymizer: Callable[[str], str] | None = None,
    ) -> None:
        self.config = config or SimkbConfig()
        self.repo = Repository(conn)
        self.graph = GraphRepository(conn)
        self.embedder = embedder
        self._proposer = proposer
        self._audit = audit if audit is not None else LoggingAuditSink()
        self._normalize = normalizer or _identity
        self._anonymize = anonymizer or _identity
        self._strategy = get_strategy(self.config.search.strategy)
        if self.config.search.strategy == "index":
            ensure_vec_index(conn, embedder.dimensions)

    @property
    def proposer(self) -> GraphProposer:
        if self._proposer is None:
            self._proposer = LiteLLMGraphProposer(model=self.config.graph.model)
        return self._proposer

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_text(
        self,
        tenant_id: str,
        category: Category | str,
        title: str,
        text: str,
        *,
        kind: str = "free_text",
        filename: str | None = None,
        mime_type: str | None = None,
        size_bytes: int | None = None,
        created_by: str | None = None,
        chunk_tokens: int | None = None,
        overlap_tokens: int | None = None,
    ) -> IngestResult:
        """Segment, embed and store *text* as a new source.

        Raises:
            ValidationError: Bad category/kind/title, or no text to store.
            UpstreamError: The embedding provider failed (nothing is stored).
        """
        cat = Category.parse(category)
        if kind not in SOURCE_KINDS:
            raise ValidationError(
                "invalid_kind", f"Invalid source kind {kind!r}; allowed: document, free_text"
            )
        title = (title or "").strip()
        if not title:
            raise ValidationError("missing_title", "Source title is required")

        chunker = SentenceChunker(
            chunk_tokens=(
                chunk_tokens if chunk_tokens is not None else self.config.chunking.chunk_tokens
            ),
            overlap_tokens=(
                overlap_tokens if overlap_tokens is not None else self.config.chunking.overlap_tokens
            ),
        )
        segments = chunker.chunk(self._normalize(text or ""))
        if not segments:
            raise ValidationError("missing_text", "No text to ingest after normalisation")

        texts = [s.content for s in segments]
        vectors, gaps = align_embeddings(texts, self.embedder.embed(texts), self.embedder.dimensions)

        source = Source(
            tenant_id=tenant_id,
            category=cat,
            kind=kind,
            title=title,
            original_filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
            created_by=created_by,
        )
        chunks = [
            Chunk(source_id="", seq=i + 1, content=s.content, tokens=s.tokens, embedding=v)
            for i, (s, v) in enumerate(zip(segments, vectors))
        ]
        self.repo.create_source_with_chunks(source, chunks)
        logger.info(
            "Ingested source %s (tenant=%s, %d chunks, %d embedding gaps)",
            source.id,
            tenant_id,
            len(chunks),
            len(gaps),
        )
        self._record(
            "kb.source.create",
            tenant_id,
            "source",
            source.id,
            created_by,
            {"category": cat.value, "kind": kind, "chunks": len(chunks)},
        )
        return IngestResult(source_id=source.id, title=title, chunks=len(chunks), embedding_gaps=gaps)

    def ingest_guideline(
        self,
        tenant_id: str,
        topic: str,
        guidelines: list[str],
        *,
        category: Category | str = Category.OPERATOR_FACING,
        created_by: str | None = None,
    ) -> IngestResult:
        """Store synthesised guidelines (one bullet per item) as a document source."""
        items = [g.strip() for g in guidelines if g and g.strip()]
        text = "\n".join(f"- {g}" if g.endswith((".", "!", "?", ";")) else f"- {g}." for g in items)
        return self.ingest_text(
            tenant_id,
            category,
            f"{GUIDELINE_TITLE_PREFIX}{(topic or '').strip()}",
            text,
            kind="document",
            created_by=created_by,
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def list_sources(
        self,
        tenant_id: str,
        category: Category | str | None = None,
        status: str | None = "active",
    ) -> list[Source]:
        cat = Category.parse(category) if category is not None else None
        return self.repo.list_sources(tenant_id, cat, status)

    def source_content(self, tenant_id: str, source_id: str) -> str:
        return self.repo.source_content(tenant_id, source_id)

    def archive_source(self, tenant_id: str, source_id: str, actor: str | None = None) -> None:
        self.repo.set_source_status(tenant_id, source_id, "archived")
        self._record("kb.source.archive", tenant_id, "source", source_id, actor)

    def restore_source(self, tenant_id: str, source_id: str, actor: str | None = None) -> None:
        self.repo.set_source_status(tenant_id, source_id, "active")
        self._record("kb.source.restore", tenant_id, "source", source_id, actor)

    def delete_source(self, tenant_id: str, source_id: str, actor: str | None = None) -> Source:
        deleted = self.repo.delete_source(tenant_id, source_id)
        self._record(
            "kb.source.delete", tenant_id, "source", source_id, actor, {"title": deleted.title}
        )
        return deleted

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        tenant_id: str,
        query: str,
        *,
        category: Category | str | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk]:
        return search_text(
            self.repo,
            self.embedder,
            tenant_id,
            query,
            category=category,
            top_k=top_k if top_k is not None else self.config.search.top_k,
            strategy=self._strategy,
        )

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def extract_graph(
        self,
        tenant_id: str,
        category: Category | str,
        *,
        source_id: str | None = None,
        limit_chunks: int | None = None,
        actor: str | None = None,
    ) -> ExtractionResult:
        result = extract_graph(
            self.repo,
            self.graph,
            self.proposer,
            tenant_id,
            category,
            source_id=source_id,
            limit_chunks=limit_chunks if limit_chunks is not None else self.config.graph.limit_chunks,
            anonymizer=self._anonymize,
        )
        self._record(
            "kb.graph.extract",
            tenant_id,
            "graph",
            source_id,
            actor,
            {"category": Category.parse(category).value, **result.to_payload()},
        )
        return result

    def list_graph(
        self,
        tenant_id: str,
        *,
        category: Category | str | None = None,
        source_id: str | None = None,
        limit_nodes: int | None = None,
        limit_edges: int | None = None,
        raw: bool = False,
    ) -> GraphView:
        """Graph payload for a tenant; labels and properties pass through the
        anonymizer unless *raw* is set."""
        cat = Category.parse(category) if category is not None else None
        view = self.graph.list_graph(
            tenant_id,
            category=cat,
            source_id=source_id,
            limit_nodes=limit_nodes if limit_nodes is not None else self.config.graph.limit_nodes,
            limit_edges=limit_edges if limit_edges is not None else self.config.graph.limit_edges,
        )
        return self._mask(view, raw)

    def neighbors(
        self,
        tenant_id: str,
        node_id: int,
        *,
        category: Category | str | None = None,
        source_id: str | None = None,
        limit: int | None = None,
        raw: bool = False,
    ) -> GraphView:
        cat = Category.parse(category) if category is not None else None
        view = self.graph.neighbors(
            tenant_id,
            node_id,
            category=cat,
            source_id=source_id,
            limit=limit if limit is not None else self.config.graph.neighbor_limit,
        )
        return self._mask(view, raw)

    def export_graph(
        self,
        tenant_id: str,
        source_id: str,
        *,
        category: Category | str | None = None,
        raw: bool = False,
    ) -> GraphView:
        cat = Category.parse(category) if category is not None else None
        self.repo.require_source(tenant_id, source_id)
        return self._mask(self.graph.export_source_graph(tenant_id, source_id, category=cat), raw)

    def _mask(self, view: GraphView, raw: bool) -> GraphView:
        return view if raw else view.anonymized(self._anonymize)

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def upsert_projection(
        self,
        tenant_id: str,
        chunk_id: int,
        x: float,
        y: float,
        *,
        algorithm: str | None = None,
        actor: str | None = None,
    ) -> None:
        algo = algorithm or self.config.projections.algorithm
        self.repo.upsert_projection(tenant_id, chunk_id, algo, x, y)
        self._record(
            "kb.projection.upsert", tenant_id, "projection", str(chunk_id), actor, {"algorithm": algo}
        )

    def replace_projections(
        self,
        tenant_id: str,
        points: list[tuple[int, float, float]],
        *,
        algorithm: str | None = None,
        actor: str | None = None,
    ) -> int:
        algo = algorithm or self.config.projections.algorithm
        written = self.repo.replace_projections(tenant_id, algo, points)
        self._record(
            "kb.projection.replace",
            tenant_id,
            "projection",
            None,
            actor,
            {"algorithm": algo, "points": written},
        )
        return written

    def list_projections(
        self,
        tenant_id: str,
        *,
        algorithm: str | None = None,
        category: Category | str | None = None,
        limit: int | None = None,
    ) -> list[ProjectionPoint]:
        cat = Category.parse(category) if category is not None else None
        cfg = self.config.projections
        limit = limit if limit is not None else cfg.limit
        if limit < 1:
            raise ValidationError("invalid_limit", f"limit must be >= 1, got {limit}")
        return self.repo.list_projections(
            tenant_id,
            algorithm=algorithm or cfg.algorithm,
            category=cat,
            limit=limit,
            preview_chars=cfg.preview_chars,
            anonymizer=self._anonymize,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _record(
        self,
        action: str,
        tenant_id: str,
        entity: str,
        entity_id: str | None,
        actor: str | None = None,
        details: dict | None = None,
    ) -> None:
        notify(
            self._audit,
            AuditEvent(
                action=action,
                tenant_id=tenant_id,
                entity=entity,
                entity_id=entity_id,
                actor=actor,
                details=details or {},
            ),
        )
