"""Embedding encoding and the optional sqlite-vec nearest-neighbour index."""

from __future__ import annotations

import math
import sqlite3
import struct
from collections.abc import Iterable

from sqlite_vec import serialize_float32

VEC_INDEX_TABLE = "vec_chunks"


def coerce_float(value: object) -> float:
    """Return *value* as a finite float; anything else becomes 0.0."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def serialize_vector(values: Iterable[object]) -> bytes:
    """Encode a vector as the float32 blob sqlite-vec expects."""
    return serialize_float32([coerce_float(v) for v in values])


def deserialize_vector(blob: bytes | None) -> list[float] | None:
    """Decode a float32 blob written by serialize_vector()."""
    if blob is None:
        return None
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def to_vector_literal(values: Iterable[object]) -> str:
    """Render ``[v1,v2,...]``; elements that are not numbers render as 0.

    Examples:
        [0.5, "x", None] -> "[0.5,0,0]"
    """
    parts = []
    for v in values:
        number = coerce_float(v)
        parts.append("0" if number == 0.0 else repr(number))
    return "[" + ",".join(parts) + "]"


def vec_index_exists(conn: sqlite3.Connection) -> bool:
    """True if ensure_vec_index() has created the index table."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (VEC_INDEX_TABLE,),
    ).fetchone()
    return row is not None


def ensure_vec_index(conn: sqlite3.Connection, dimensions: int) -> str:
    """Create the vec0 index table if it doesn't already exist.

    Rows are keyed by chunk id. ``tenant_id`` is a partition key so every
    KNN query is tenant-scoped; ``category`` is a filterable metadata column.
    Existing chunk embeddings are backfilled when the table is created.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The index table name.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    if not vec_index_exists(conn):
        conn.execute(
            f"CREATE VIRTUAL TABLE {VEC_INDEX_TABLE} USING vec0("
            f"tenant_id text partition key, "
            f"category text, "
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.execute(
            f"""
            INSERT INTO {VEC_INDEX_TABLE}(rowid, tenant_id, category, embedding)
            SELECT id, tenant_id, category, embedding FROM chunks
            WHERE embedding IS NOT NULL AND vec_length(embedding) = ?
            """,
            (dimensions,),
        )

    return VEC_INDEX_TABLE
