"""Domain models for the simkb database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

from simkb.errors import ValidationError


class Category(str, Enum):
    """Knowledge audience. Stored as the short internal code."""

    CLIENT_FACING = "client-facing"
    OPERATOR_FACING = "operator-facing"

    @property
    def code(self) -> str:
        return _CATEGORY_CODES[self]

    @classmethod
    def parse(cls, raw: object) -> "Category":
        """Accept a public value, an internal code, or a Category.

        Raises:
            ValidationError: ``invalid_category`` for anything else.
        """
        if isinstance(raw, Category):
            return raw
        text = str(raw or "").strip().lower()
        for member, code in _CATEGORY_CODES.items():
            if text in (member.value, code):
                return member
        raise ValidationError(
            "invalid_category",
            f"Invalid category {raw!r}; allowed: client-facing, operator-facing",
        )

    @classmethod
    def from_code(cls, code: str) -> "Category":
        return _CODE_CATEGORIES[code]


_CATEGORY_CODES: dict[Category, str] = {
    Category.CLIENT_FACING: "cliente",
    Category.OPERATOR_FACING: "operador",
}
_CODE_CATEGORIES: dict[str, Category] = {v: k for k, v in _CATEGORY_CODES.items()}

SOURCE_KINDS = ("document", "free_text")
SOURCE_STATUSES = ("active", "archived")


@dataclass
class Source:
    tenant_id: str
    category: Category
    kind: str
    title: str
    id: str | None = None  # uuid4 assigned on insert when None
    original_filename: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    status: str = "active"
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Chunk:
    """One ordered fragment of a source.

    ``tenant_id`` and ``category`` may be left as None; the repository
    fills them from the owning source inside the write transaction.
    """

    source_id: str
    seq: int
    content: str
    tokens: int | None = None
    tenant_id: str | None = None
    category: Category | None = None
    embedding: list[float] | None = None
    id: int | None = None  # set after insert
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Node:
    tenant_id: str
    category: Category
    label: str
    node_type: str | None = None
    source_id: str | None = None
    properties: str = field(default_factory=lambda: "{}")
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def properties_dict(self) -> dict:
        return json.loads(self.properties)

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "node_type": self.node_type,
            "source_id": self.source_id,
            "category": self.category.value,
            "properties": self.properties_dict,
        }


@dataclass
class Edge:
    src_node_id: int
    dst_node_id: int
    relation: str
    tenant_id: str | None = None
    category: Category | None = None
    properties: str = field(default_factory=lambda: "{}")
    id: int | None = None
    created_at: str | None = None

    @property
    def properties_dict(self) -> dict:
        return json.loads(self.properties)

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "src_node_id": self.src_node_id,
            "dst_node_id": self.dst_node_id,
            "relation": self.relation,
            "category": self.category.value if self.category else None,
            "properties": self.properties_dict,
        }


@dataclass
class ProjectionPoint:
    """A chunk's 2D coordinate joined with display metadata."""

    chunk_id: int
    algorithm: str
    x: float
    y: float
    category: Category
    source_id: str
    source_title: str
    content_snippet: str = ""
