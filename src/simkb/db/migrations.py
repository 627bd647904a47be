"""Forward-only migration runner for the knowledge-base schema.

The vector index table (vec_chunks) is NOT migration-managed — use
ensure_vec_index().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id                TEXT PRIMARY KEY,
    tenant_id         TEXT NOT NULL,
    category          TEXT NOT NULL CHECK (category IN ('cliente', 'operador')),
    kind              TEXT NOT NULL CHECK (kind IN ('document', 'free_text')),
    title             TEXT NOT NULL,
    original_filename TEXT NULL,
    mime_type         TEXT NULL,
    size_bytes        INTEGER NULL,
    status            TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'archived')),
    created_by        TEXT NULL,
    created_at        DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at        DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sources_tenant_category ON sources (tenant_id, category);
CREATE INDEX IF NOT EXISTS idx_sources_status ON sources (status);

CREATE TABLE IF NOT EXISTS chunks (
    id          INTEGER PRIMARY KEY,
    source_id   TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    tenant_id   TEXT NOT NULL,
    category    TEXT NOT NULL CHECK (category IN ('cliente', 'operador')),
    seq         INTEGER NOT NULL,
    content     TEXT NOT NULL,
    tokens      INTEGER NULL,
    embedding   BLOB NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_source_seq ON chunks (source_id, seq);
CREATE INDEX IF NOT EXISTS idx_chunks_tenant_category ON chunks (tenant_id, category);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS nodes (
    id          INTEGER PRIMARY KEY,
    tenant_id   TEXT NOT NULL,
    category    TEXT NOT NULL CHECK (category IN ('cliente', 'operador')),
    label       TEXT NOT NULL,
    node_type   TEXT NULL,
    source_id   TEXT NULL REFERENCES sources(id) ON DELETE SET NULL,
    properties  TEXT NOT NULL DEFAULT '{}',
    created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_nodes_scope_label ON nodes (tenant_id, category, label);
CREATE INDEX IF NOT EXISTS idx_nodes_source ON nodes (source_id);

CREATE TABLE IF NOT EXISTS edges (
    id           INTEGER PRIMARY KEY,
    tenant_id    TEXT NOT NULL,
    category     TEXT NOT NULL CHECK (category IN ('cliente', 'operador')),
    src_node_id  INTEGER NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    dst_node_id  INTEGER NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    relation     TEXT NOT NULL,
    properties   TEXT NOT NULL DEFAULT '{}',
    created_at   DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (tenant_id, category, src_node_id, dst_node_id, relation)
);

CREATE INDEX IF NOT EXISTS idx_edges_src ON edges (src_node_id);
CREATE INDEX IF NOT EXISTS idx_edges_dst ON edges (dst_node_id);

CREATE TABLE IF NOT EXISTS chunk_projections (
    chunk_id    INTEGER NOT NULL REFERENCES chunks(id) ON DELETE CASCADE,
    algorithm   TEXT NOT NULL DEFAULT 'pca',
    x           REAL NOT NULL,
    y           REAL NOT NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (chunk_id, algorithm)
);
"""

# Append-only. Each entry: (version: int, sql: str).
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    The vector index is NOT managed here — use ensure_vec_index() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
