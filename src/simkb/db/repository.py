"""Repository for sources, chunks, vector search, and chunk projections.

Every read and write takes an explicit tenant id; no query here runs
without a tenant filter. Chunk writes pass through a scope interceptor that
runs inside the same transaction as the row mutation.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable, Iterable

from simkb.db.connection import transaction
from simkb.db.models import (
    SOURCE_KINDS,
    SOURCE_STATUSES,
    Category,
    Chunk,
    ProjectionPoint,
    Source,
)
from simkb.db.vectors import (
    VEC_INDEX_TABLE,
    deserialize_vector,
    serialize_vector,
    vec_index_exists,
)
from simkb.errors import ConsistencyError, NotFoundError, ValidationError

_SOURCE_COLUMNS = (
    "id, tenant_id, category, kind, title, original_filename, mime_type, "
    "size_bytes, status, created_by, created_at, updated_at"
)
_CHUNK_COLUMNS = (
    "c.id, c.source_id, c.tenant_id, c.category, c.seq, c.content, c.tokens, "
    "c.created_at, c.updated_at"
)


class Repository:
    """Data access layer for sources, chunks, and projections.

    Wraps an open sqlite3.Connection (autocommit mode, see
    simkb.db.connection.Database). The connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def create_source(self, source: Source) -> str:
        """Insert a new source record and return its id."""
        _validate_source(source)
        if source.id is None:
            source.id = str(uuid.uuid4())
        with transaction(self._conn):
            self._conn.execute(
                """
                INSERT INTO sources (id, tenant_id, category, kind, title, original_filename,
                                     mime_type, size_bytes, status, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.id,
                    source.tenant_id,
                    source.category.code,
                    source.kind,
                    source.title,
                    source.original_filename,
                    source.mime_type,
                    source.size_bytes,
                    source.status,
                    source.created_by,
                ),
            )
        return source.id

    def create_source_with_chunks(self, source: Source, chunks: list[Chunk]) -> list[int]:
        """Insert *source* and all *chunks* as one all-or-nothing unit.

        Returns:
            Chunk ids in input order.
        """
        with transaction(self._conn):
            source_id = self.create_source(source)
            return self.append_chunks(source_id, source.tenant_id, source.category, chunks)

    def get_source(self, tenant_id: str, source_id: str) -> Source | None:
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ? AND tenant_id = ?",
            (source_id, tenant_id),
        ).fetchone()
        return _row_to_source(row) if row else None

    def require_source(self, tenant_id: str, source_id: str) -> Source:
        """Like get_source() but raises NotFoundError when missing in this tenant."""
        source = self.get_source(tenant_id, source_id)
        if source is None:
            raise NotFoundError("source", source_id)
        return source

    def list_sources(
        self,
        tenant_id: str,
        category: Category | None = None,
        status: str | None = "active",
    ) -> list[Source]:
        """Return the tenant's sources, newest first.

        Args:
            category: Restrict to one category (both when None).
            status: 'active', 'archived', or None for all.
        """
        sql = f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE tenant_id = ?"
        params: list[object] = [tenant_id]
        if category is not None:
            sql += " AND category = ?"
            params.append(category.code)
        if status is not None:
            _check_status(status)
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, rowid DESC"
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def set_source_status(self, tenant_id: str, source_id: str, status: str) -> Source:
        """Archive or re-activate a source. Returns the source as it was before."""
        _check_status(status)
        with transaction(self._conn):
            before = self.require_source(tenant_id, source_id)
            self._conn.execute(
                "UPDATE sources SET status = ?, updated_at = datetime('now') "
                "WHERE id = ? AND tenant_id = ?",
                (status, source_id, tenant_id),
            )
        return before

    def delete_source(self, tenant_id: str, source_id: str) -> Source:
        """Delete a source; its chunks and their projections cascade.

        Nodes extracted from the source keep existing with ``source_id`` NULL.
        Returns the deleted source.
        """
        with transaction(self._conn):
            before = self.require_source(tenant_id, source_id)
            if vec_index_exists(self._conn):
                self._conn.execute(
                    f"DELETE FROM {VEC_INDEX_TABLE} WHERE rowid IN "
                    "(SELECT id FROM chunks WHERE source_id = ?)",
                    (source_id,),
                )
            self._conn.execute(
                "DELETE FROM sources WHERE id = ? AND tenant_id = ?", (source_id, tenant_id)
            )
        return before

    def source_content(self, tenant_id: str, source_id: str) -> str:
        """Reassemble a free-text source from its chunks (in seq order)."""
        source = self.require_source(tenant_id, source_id)
        if source.kind != "free_text":
            raise ValidationError(
                "only_free_text", "Content view is only available for free_text sources"
            )
        return "\n\n".join(c.content for c in self.list_chunks(tenant_id, source_id))

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def append_chunks(
        self,
        source_id: str,
        tenant_id: str | None,
        category: Category | None,
        chunks: list[Chunk],
    ) -> list[int]:
        """Insert *chunks* under *source_id* in one transaction.

        *tenant_id* / *category* are the scope the caller claims; chunks that
        carry their own values keep them. Either way the interceptor checks
        them against the source. Sequence numbers are stored as given.
        """
        index = vec_index_exists(self._conn)
        ids: list[int] = []
        with transaction(self._conn):
            for chunk in chunks:
                chunk.source_id = source_id
                if chunk.tenant_id is None:
                    chunk.tenant_id = tenant_id
                if chunk.category is None:
                    chunk.category = category
                ids.append(self._insert_chunk(chunk, index))
        return ids

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert one chunk (scope inherited or validated). Returns its id."""
        with transaction(self._conn):
            return self._insert_chunk(chunk, vec_index_exists(self._conn))

    def _insert_chunk(self, chunk: Chunk, index: bool) -> int:
        self._resolve_chunk_scope(chunk)
        blob = serialize_vector(chunk.embedding) if chunk.embedding is not None else None
        cur = self._conn.execute(
            """
            INSERT INTO chunks (source_id, tenant_id, category, seq, content, tokens, embedding)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.source_id,
                chunk.tenant_id,
                chunk.category.code,
                chunk.seq,
                chunk.content,
                chunk.tokens,
                blob,
            ),
        )
        chunk.id = cur.lastrowid
        if index and blob is not None:
            self._index_chunk(chunk.id, chunk.tenant_id, chunk.category, blob)
        return chunk.id

    def _resolve_chunk_scope(self, chunk: Chunk) -> None:
        """Fill or verify the chunk's tenant/category against its source.

        Must be called inside the transaction that writes the chunk row.
        """
        row = self._conn.execute(
            "SELECT tenant_id, category FROM sources WHERE id = ?", (chunk.source_id,)
        ).fetchone()
        if row is None:
            raise ConsistencyError(
                f"source '{chunk.source_id}' not found while validating chunk scope"
            )
        src_tenant = row["tenant_id"]
        src_category = Category.from_code(row["category"])

        if chunk.tenant_id is None:
            chunk.tenant_id = src_tenant
        elif chunk.tenant_id != src_tenant:
            raise ConsistencyError(
                f"chunk tenant '{chunk.tenant_id}' must match source tenant "
                f"'{src_tenant}' for source '{chunk.source_id}'"
            )

        if chunk.category is None:
            chunk.category = src_category
        else:
            category = Category.parse(chunk.category)
            if category is not src_category:
                raise ConsistencyError(
                    f"chunk category '{category.value}' must match source category "
                    f"'{src_category.value}' for source '{chunk.source_id}'"
                )
            chunk.category = category

    def get_chunk(self, tenant_id: str, chunk_id: int) -> Chunk | None:
        """Return a chunk (with its embedding) or None if not in this tenant."""
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS}, c.embedding FROM chunks c "
            "WHERE c.id = ? AND c.tenant_id = ?",
            (chunk_id, tenant_id),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def require_chunk(self, tenant_id: str, chunk_id: int) -> Chunk:
        chunk = self.get_chunk(tenant_id, chunk_id)
        if chunk is None:
            raise NotFoundError("chunk", chunk_id)
        return chunk

    def list_chunks(self, tenant_id: str, source_id: str) -> list[Chunk]:
        """Return a source's chunks in sequence order (without embeddings)."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c "
            "WHERE c.source_id = ? AND c.tenant_id = ? ORDER BY c.seq",
            (source_id, tenant_id),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, tenant_id: str, source_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM chunks WHERE tenant_id = ?"
        params: list[object] = [tenant_id]
        if source_id is not None:
            sql += " AND source_id = ?"
            params.append(source_id)
        return self._conn.execute(sql, params).fetchone()[0]

    def extraction_candidates(
        self,
        tenant_id: str,
        category: Category,
        source_id: str | None = None,
        limit: int = 200,
    ) -> list[Chunk]:
        """Chunks of active sources in scope, newest first, at most *limit*."""
        sql = (
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c JOIN sources s ON s.id = c.source_id "
            "WHERE c.tenant_id = ? AND c.category = ? AND s.status = 'active'"
        )
        params: list[object] = [tenant_id, category.code]
        if source_id is not None:
            sql += " AND c.source_id = ?"
            params.append(source_id)
        sql += " ORDER BY c.created_at DESC, c.id DESC LIMIT ?"
        params.append(limit)
        return [_row_to_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def update_chunk_scope(
        self,
        tenant_id: str,
        chunk_id: int,
        *,
        source_id: str | None = None,
        tenant: str | None = None,
        category: Category | str | None = None,
    ) -> Chunk:
        """Correct a chunk's source/tenant/category fields.

        Unspecified fields keep their stored value, except that moving the
        chunk to another source re-inherits whatever the caller left unset.
        The interceptor runs before the UPDATE; a mismatch aborts it.
        """
        if tenant is not None and tenant != tenant_id:
            raise ConsistencyError(
                f"chunk tenant '{tenant}' must match caller tenant '{tenant_id}'"
            )
        with transaction(self._conn):
            chunk = self.require_chunk(tenant_id, chunk_id)
            if source_id is not None:
                self.require_source(tenant_id, source_id)
            if source_id is not None and source_id != chunk.source_id:
                chunk.source_id = source_id
                chunk.tenant_id = tenant
                chunk.category = Category.parse(category) if category is not None else None
            else:
                if tenant is not None:
                    chunk.tenant_id = tenant
                if category is not None:
                    chunk.category = Category.parse(category)
            self._resolve_chunk_scope(chunk)
            self._conn.execute(
                """
                UPDATE chunks SET source_id = ?, tenant_id = ?, category = ?,
                                  updated_at = datetime('now')
                WHERE id = ?
                """,
                (chunk.source_id, chunk.tenant_id, chunk.category.code, chunk_id),
            )
            if chunk.embedding is not None and vec_index_exists(self._conn):
                self._conn.execute(f"DELETE FROM {VEC_INDEX_TABLE} WHERE rowid = ?", (chunk_id,))
                self._index_chunk(
                    chunk_id, chunk.tenant_id, chunk.category, serialize_vector(chunk.embedding)
                )
        return chunk

    def set_chunk_embedding(self, tenant_id: str, chunk_id: int, embedding: list[float]) -> None:
        """Replace a chunk's embedding; its stale projections are dropped."""
        blob = serialize_vector(embedding)
        with transaction(self._conn):
            chunk = self.require_chunk(tenant_id, chunk_id)
            self._conn.execute(
                "UPDATE chunks SET embedding = ?, updated_at = datetime('now') WHERE id = ?",
                (blob, chunk_id),
            )
            self._conn.execute("DELETE FROM chunk_projections WHERE chunk_id = ?", (chunk_id,))
            if vec_index_exists(self._conn):
                self._conn.execute(f"DELETE FROM {VEC_INDEX_TABLE} WHERE rowid = ?", (chunk_id,))
                self._index_chunk(chunk_id, chunk.tenant_id, chunk.category, blob)

    def delete_chunk(self, tenant_id: str, chunk_id: int) -> None:
        """Delete one chunk. The owning source is untouched."""
        with transaction(self._conn):
            self.require_chunk(tenant_id, chunk_id)
            if vec_index_exists(self._conn):
                self._conn.execute(f"DELETE FROM {VEC_INDEX_TABLE} WHERE rowid = ?", (chunk_id,))
            self._conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))

    def _index_chunk(self, chunk_id: int, tenant_id: str, category: Category, blob: bytes) -> None:
        self._conn.execute(
            f"INSERT INTO {VEC_INDEX_TABLE}(rowid, tenant_id, category, embedding) "
            "VALUES (?, ?, ?, ?)",
            (chunk_id, tenant_id, category.code, blob),
        )

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def embedding_dimensions(self, tenant_id: str) -> list[int]:
        """Distinct dimensions of the tenant's stored embeddings, ascending.

        More than one value means the embedding model changed between ingestions.
        """
        rows = self._conn.execute(
            "SELECT DISTINCT vec_length(embedding) FROM chunks "
            "WHERE tenant_id = ? AND embedding IS NOT NULL ORDER BY 1",
            (tenant_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def search_exact(
        self,
        tenant_id: str,
        embedding: list[float],
        category: Category | None = None,
        limit: int = 8,
    ) -> list[tuple[Chunk, str, float | None]]:
        """Brute-force cosine scan. Returns (chunk, source_title, distance).

        Ties keep insertion order; zero vectors have no defined distance
        (NULL) and sort last.
        """
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, s.title AS source_title, "
            "vec_distance_cosine(c.embedding, ?) AS distance "
            "FROM chunks c JOIN sources s ON s.id = c.source_id "
            "WHERE c.tenant_id = ? AND c.embedding IS NOT NULL "
            "AND vec_length(c.embedding) = ?"
        )
        params: list[object] = [serialize_vector(embedding), tenant_id, len(embedding)]
        if category is not None:
            sql += " AND c.category = ?"
            params.append(category.code)
        sql += " ORDER BY distance IS NULL, distance, c.id LIMIT ?"
        params.append(limit)
        rows = self._conn.execute(sql, params).fetchall()
        return [(_row_to_chunk(r), r["source_title"], r["distance"]) for r in rows]

    def search_index(
        self,
        tenant_id: str,
        embedding: list[float],
        category: Category | None = None,
        limit: int = 8,
    ) -> list[tuple[Chunk, str, float | None]]:
        """KNN lookup through the vec0 index (see ensure_vec_index)."""
        sql = (
            f"SELECT rowid, distance FROM {VEC_INDEX_TABLE} "
            "WHERE embedding MATCH ? AND k = ? AND tenant_id = ?"
        )
        params: list[object] = [serialize_vector(embedding), limit, tenant_id]
        if category is not None:
            sql += " AND category = ?"
            params.append(category.code)
        sql += " ORDER BY distance"
        hits = self._conn.execute(sql, params).fetchall()

        results: list[tuple[Chunk, str, float | None]] = []
        for hit in hits:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS}, s.title AS source_title "
                "FROM chunks c JOIN sources s ON s.id = c.source_id "
                "WHERE c.id = ? AND c.tenant_id = ?",
                (hit["rowid"], tenant_id),
            ).fetchone()
            if row is not None:
                results.append((_row_to_chunk(row), row["source_title"], hit["distance"]))
        results.sort(key=lambda r: (r[2] is None, r[2] or 0.0, r[0].id))
        return results

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def upsert_projection(
        self, tenant_id: str, chunk_id: int, algorithm: str, x: float, y: float
    ) -> None:
        """Store the 2D point for (chunk, algorithm), overwriting any previous one."""
        with transaction(self._conn):
            self.require_chunk(tenant_id, chunk_id)
            self._upsert_projection(chunk_id, algorithm, x, y)

    def replace_projections(
        self,
        tenant_id: str,
        algorithm: str,
        points: Iterable[tuple[int, float, float]],
    ) -> int:
        """Swap in a freshly computed point set for the tenant and *algorithm*.

        Args:
            points: (chunk_id, x, y) triples.

        Returns:
            Number of points written.
        """
        written = 0
        with transaction(self._conn):
            self._conn.execute(
                "DELETE FROM chunk_projections WHERE algorithm = ? AND chunk_id IN "
                "(SELECT id FROM chunks WHERE tenant_id = ?)",
                (algorithm, tenant_id),
            )
            for chunk_id, x, y in points:
                self.require_chunk(tenant_id, chunk_id)
                self._upsert_projection(chunk_id, algorithm, x, y)
                written += 1
        return written

    def _upsert_projection(self, chunk_id: int, algorithm: str, x: float, y: float) -> None:
        self._conn.execute(
            """
            INSERT INTO chunk_projections (chunk_id, algorithm, x, y)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(chunk_id, algorithm) DO UPDATE SET
                x = excluded.x,
                y = excluded.y,
                created_at = datetime('now')
            """,
            (chunk_id, algorithm, float(x), float(y)),
        )

    def list_projections(
        self,
        tenant_id: str,
        algorithm: str = "pca",
        category: Category | None = None,
        limit: int = 2000,
        preview_chars: int = 300,
        anonymizer: Callable[[str], str] | None = None,
    ) -> list[ProjectionPoint]:
        """Return projection points with minimal chunk/source metadata.

        Content is cut to *preview_chars* before *anonymizer* sees it.
        """
        sql = (
            "SELECT p.chunk_id, p.algorithm, p.x, p.y, c.category, c.content, "
            "c.source_id, s.title AS source_title "
            "FROM chunk_projections p "
            "JOIN chunks c ON c.id = p.chunk_id "
            "JOIN sources s ON s.id = c.source_id "
            "WHERE c.tenant_id = ? AND p.algorithm = ?"
        )
        params: list[object] = [tenant_id, algorithm]
        if category is not None:
            sql += " AND c.category = ?"
            params.append(category.code)
        sql += " ORDER BY p.chunk_id LIMIT ?"
        params.append(limit)

        scrub = anonymizer or (lambda text: text)
        points: list[ProjectionPoint] = []
        for row in self._conn.execute(sql, params).fetchall():
            points.append(
                ProjectionPoint(
                    chunk_id=row["chunk_id"],
                    algorithm=row["algorithm"],
                    x=row["x"],
                    y=row["y"],
                    category=Category.from_code(row["category"]),
                    source_id=row["source_id"],
                    source_title=scrub(row["source_title"]),
                    content_snippet=scrub(row["content"][:preview_chars]),
                )
            )
        return points


# ------------------------------------------------------------------
# Validation + row → model helpers
# ------------------------------------------------------------------


def _check_status(status: str) -> None:
    if status not in SOURCE_STATUSES:
        raise ValidationError(
            "invalid_status", f"Invalid status {status!r}; allowed: active, archived"
        )


def _validate_source(source: Source) -> None:
    source.category = Category.parse(source.category)
    if source.kind not in SOURCE_KINDS:
        raise ValidationError(
            "invalid_kind", f"Invalid source kind {source.kind!r}; allowed: document, free_text"
        )
    if not source.title or not source.title.strip():
        raise ValidationError("missing_title", "Source title is required")
    _check_status(source.status)


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        tenant_id=row["tenant_id"],
        category=Category.from_code(row["category"]),
        kind=row["kind"],
        title=row["title"],
        original_filename=row["original_filename"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        status=row["status"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    embedding = deserialize_vector(row["embedding"]) if "embedding" in row.keys() else None
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        tenant_id=row["tenant_id"],
        category=Category.from_code(row["category"]),
        seq=row["seq"],
        content=row["content"],
        tokens=row["tokens"],
        embedding=embedding,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
