"""simkb configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (SIMKB_EMBEDDING_MODEL, SIMKB_EMBEDDING_DIMENSIONS,
     SIMKB_CHUNK_TOKENS, SIMKB_CHUNK_OVERLAP, SIMKB_TOP_K, SIMKB_GRAPH_MODEL)
  3. Per-project simkb.yaml  (next to the database)
  4. Hardcoded defaults

Config files must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PROJECT_CONFIG_NAME: str = "simkb.yaml"

# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate keys like chunk_tokens, overlap_tokens, max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "search", "graph", "projections"]
)
_SEARCH_STRATEGIES: frozenset[str] = frozenset(["exact", "index"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (simkb.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64


@dataclass
class ChunkingCfg:
    """Segmenter sizes in whitespace words (simkb.yaml: chunking:)."""

    chunk_tokens: int = 800
    overlap_tokens: int = 200


@dataclass
class SearchCfg:
    """Similarity search configuration (simkb.yaml: search:)."""

    top_k: int = 8
    strategy: str = "exact"  # exact | index


@dataclass
class GraphCfg:
    """Graph extraction and read limits (simkb.yaml: graph:)."""

    model: str = "openai/gpt-4o-mini"
    limit_chunks: int = 200
    limit_nodes: int = 1000
    limit_edges: int = 2000
    neighbor_limit: int = 500


@dataclass
class ProjectionsCfg:
    """Projection read defaults (simkb.yaml: projections:)."""

    algorithm: str = "pca"
    limit: int = 2000
    preview_chars: int = 300


@dataclass
class SimkbConfig:
    """Root configuration object, built by load_config() from YAML + env."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    graph: GraphCfg = field(default_factory=GraphCfg)
    projections: ProjectionsCfg = field(default_factory=ProjectionsCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _to_int(value: Any, name: str, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def _validate(cfg: SimkbConfig) -> None:
    if cfg.search.strategy not in _SEARCH_STRATEGIES:
        raise ConfigError(
            f"search.strategy must be one of {sorted(_SEARCH_STRATEGIES)}, "
            f"got '{cfg.search.strategy}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> SimkbConfig:
    """Build a *SimkbConfig* from a merged raw YAML dict."""
    cfg = SimkbConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=_to_int(
                e.get("dimensions", cfg.embedding.dimensions), "embedding.dimensions", 1
            ),
            batch_size=_to_int(
                e.get("batch_size", cfg.embedding.batch_size), "embedding.batch_size", 1
            ),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_tokens=_to_int(
                c.get("chunk_tokens", cfg.chunking.chunk_tokens), "chunking.chunk_tokens", 1
            ),
            overlap_tokens=_to_int(
                c.get("overlap_tokens", cfg.chunking.overlap_tokens), "chunking.overlap_tokens", 0
            ),
        )

    if "search" in data:
        s = data["search"] or {}
        cfg.search = SearchCfg(
            top_k=_to_int(s.get("top_k", cfg.search.top_k), "search.top_k", 1),
            strategy=str(s.get("strategy", cfg.search.strategy)),
        )

    if "graph" in data:
        g = data["graph"] or {}
        cfg.graph = GraphCfg(
            model=str(g.get("model", cfg.graph.model)),
            limit_chunks=_to_int(
                g.get("limit_chunks", cfg.graph.limit_chunks), "graph.limit_chunks", 1
            ),
            limit_nodes=_to_int(
                g.get("limit_nodes", cfg.graph.limit_nodes), "graph.limit_nodes", 1
            ),
            limit_edges=_to_int(
                g.get("limit_edges", cfg.graph.limit_edges), "graph.limit_edges", 1
            ),
            neighbor_limit=_to_int(
                g.get("neighbor_limit", cfg.graph.neighbor_limit), "graph.neighbor_limit", 1
            ),
        )

    if "projections" in data:
        p = data["projections"] or {}
        cfg.projections = ProjectionsCfg(
            algorithm=str(p.get("algorithm", cfg.projections.algorithm)),
            limit=_to_int(p.get("limit", cfg.projections.limit), "projections.limit", 1),
            preview_chars=_to_int(
                p.get("preview_chars", cfg.projections.preview_chars),
                "projections.preview_chars",
                0,
            ),
        )

    return cfg


def _apply_env_overrides(cfg: SimkbConfig) -> SimkbConfig:
    """Apply SIMKB_* environment variable overrides."""
    if model := os.environ.get("SIMKB_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if dims := os.environ.get("SIMKB_EMBEDDING_DIMENSIONS"):
        cfg.embedding.dimensions = _to_int(dims, "SIMKB_EMBEDDING_DIMENSIONS", 1)
    if size := os.environ.get("SIMKB_CHUNK_TOKENS"):
        cfg.chunking.chunk_tokens = _to_int(size, "SIMKB_CHUNK_TOKENS", 1)
    if overlap := os.environ.get("SIMKB_CHUNK_OVERLAP"):
        cfg.chunking.overlap_tokens = _to_int(overlap, "SIMKB_CHUNK_OVERLAP", 0)
    if top_k := os.environ.get("SIMKB_TOP_K"):
        cfg.search.top_k = _to_int(top_k, "SIMKB_TOP_K", 1)
    if model := os.environ.get("SIMKB_GRAPH_MODEL"):
        cfg.graph.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(project_dir: Path | None = None) -> SimkbConfig:
    """Load and return a merged *SimkbConfig*.

    Applies layers in order: defaults → simkb.yaml → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *simkb.yaml*. Defaults to CWD.

    Raises:
        ConfigError: If the config contains API-key-like fields or an
            invalid value.
    """
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw_project, dict):
            raise ConfigError(f"'{project_cfg_path}' must contain a YAML mapping")
        _check_no_api_keys(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg
