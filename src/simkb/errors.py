"""Exception taxonomy shared by every simkb layer.

  ValidationError   bad caller input, raised before any storage access
  ConsistencyError  chunk/edge scope disagrees with its parent row
  NotFoundError     id unknown in the caller's tenant
  UpstreamError     embedding or extraction provider failure
"""

from __future__ import annotations


class SimkbError(Exception):
    """Base class for all simkb errors."""


class ValidationError(SimkbError, ValueError):
    """Caller input rejected before touching storage.

    Attributes:
        code: Machine-readable reason (e.g. ``invalid_category``).
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ConsistencyError(SimkbError):
    """A write would leave a row whose tenant/category disagrees with its parent."""


class NotFoundError(SimkbError):
    """Referenced entity does not exist in the caller's tenant."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class UpstreamError(SimkbError):
    """An external provider (embeddings, LLM extraction) failed."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status
