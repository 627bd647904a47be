"""Shared pytest fixtures."""

from __future__ import annotations

import zlib

import pytest

from simkb.db.connection import Database
from simkb.db.graph import GraphRepository
from simkb.db.repository import Repository
from simkb.db.schema import initialize

DIMS = 8


class HashEmbedder:
    """Deterministic bag-of-words embedder: each word bumps one of DIMS buckets."""

    def __init__(self, dimensions: int = DIMS) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vec = [0.0] * self.dimensions
            for word in text.lower().split():
                word = word.strip(".,!?;:")
                if word:
                    vec[zlib.crc32(word.encode()) % self.dimensions] += 1.0
            vectors.append(vec)
        return vectors


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".simkb.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db) -> Repository:
    return Repository(tmp_db)


@pytest.fixture
def graph_repo(tmp_db) -> GraphRepository:
    return GraphRepository(tmp_db)


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def cli_embedder(embedder, monkeypatch) -> HashEmbedder:
    """Route every CLI-built KnowledgeBase through the offline HashEmbedder."""
    monkeypatch.setattr("simkb.cli.common.make_embedder", lambda cfg: embedder)
    return embedder
