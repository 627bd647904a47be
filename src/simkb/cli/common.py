"""Shared CLI plumbing: default paths, database opening, KnowledgeBase wiring."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from simkb.cli.errors import err_no_db
from simkb.config import SimkbConfig, load_config
from simkb.db.connection import Database
from simkb.db.schema import initialize
from simkb.ingest.embedder import EmbeddingConfig, LiteLLMEmbedder
from simkb.service import KnowledgeBase

console = Console()

DEFAULT_DB = Path(".simkb.db")


def open_db(db_path: Path, *, create: bool = False) -> sqlite3.Connection:
    """Open *db_path* with the schema initialised.

    Exits with code 1 if the file is missing and *create* is False.
    """
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def build_kb(conn: sqlite3.Connection, db_path: Path) -> KnowledgeBase:
    """KnowledgeBase configured from simkb.yaml next to the database."""
    cfg = load_config(db_path.resolve().parent)
    return KnowledgeBase(conn, make_embedder(cfg), config=cfg)


def make_embedder(cfg: SimkbConfig) -> LiteLLMEmbedder:
    return LiteLLMEmbedder(
        EmbeddingConfig(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            batch_size=cfg.embedding.batch_size,
        )
    )
