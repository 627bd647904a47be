"""simkb database layer."""

from simkb.db.connection import Database, transaction
from simkb.db.graph import GraphRepository, GraphView
from simkb.db.migrations import MIGRATIONS, run_migrations
from simkb.db.repository import Repository
from simkb.db.schema import initialize
from simkb.db.vectors import ensure_vec_index, to_vector_literal, vec_index_exists

__all__ = [
    "Database",
    "transaction",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "GraphRepository",
    "GraphView",
    "ensure_vec_index",
    "to_vector_literal",
    "vec_index_exists",
]
