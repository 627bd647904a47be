"""simkb — multi-tenant knowledge ingestion, retrieval, and graph store."""

__version__ = "0.4.0"
