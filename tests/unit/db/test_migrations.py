"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from simkb.db.connection import Database
from simkb.db.migrations import MIGRATIONS, run_migrations
from simkb.db.schema import CURRENT_VERSION, initialize, schema_version


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert schema_version(conn) == MIGRATIONS[-1][0] == CURRENT_VERSION
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    initialize(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


@pytest.mark.parametrize("table", ["sources", "chunks", "nodes", "edges", "chunk_projections"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_vec_index_not_created_by_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert not _table_exists(conn, "vec_chunks")
    conn.close()


def test_category_check_constraint(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO sources (id, tenant_id, category, kind, title) "
            "VALUES ('s1', 't1', 'client-facing', 'document', 'x')"
        )
    conn.close()


def test_fresh_db_version_zero(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute("CREATE TABLE schema_version (version INTEGER NOT NULL)")
    assert schema_version(conn) == 0
    conn.close()
