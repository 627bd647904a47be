"""Knowledge-graph store: nodes, edges, and scoped graph reads.

Edge writes go through an interceptor that inherits unset scope fields
from the call and refuses endpoints outside the edge's tenant/category.
Reads never return an edge whose endpoints fail the requested filters.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from simkb.db.connection import transaction
from simkb.db.models import Category, Edge, Node
from simkb.errors import ConsistencyError, NotFoundError, ValidationError

_NODE_COLUMNS = (
    "n.id, n.tenant_id, n.category, n.label, n.node_type, n.source_id, "
    "n.properties, n.created_at, n.updated_at"
)
_EDGE_COLUMNS = (
    "e.id, e.tenant_id, e.category, e.src_node_id, e.dst_node_id, e.relation, "
    "e.properties, e.created_at"
)


@dataclass
class GraphView:
    """Nodes plus the edges among them, ready for the visualization payload."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    center_node_id: int | None = None

    def to_payload(self) -> dict:
        payload: dict = {
            "nodes": [n.to_payload() for n in self.nodes],
            "edges": [e.to_payload() for e in self.edges],
            "counts": {"nodes": len(self.nodes), "edges": len(self.edges)},
        }
        if self.center_node_id is not None:
            payload["center_node_id"] = self.center_node_id
        return payload

    def anonymized(self, anonymizer: Callable[[str], str]) -> GraphView:
        """Copy with node labels and every string inside node/edge properties masked."""
        nodes = [
            replace(
                n,
                label=anonymizer(n.label),
                properties=json.dumps(anonymize_value(n.properties_dict, anonymizer)),
            )
            for n in self.nodes
        ]
        edges = [
            replace(e, properties=json.dumps(anonymize_value(e.properties_dict, anonymizer)))
            for e in self.edges
        ]
        return GraphView(nodes=nodes, edges=edges, center_node_id=self.center_node_id)


def anonymize_value(value: object, anonymizer: Callable[[str], str]) -> object:
    """Apply *anonymizer* to every string in *value*, descending into lists and dicts."""
    if isinstance(value, str):
        return anonymizer(value)
    if isinstance(value, list):
        return [anonymize_value(v, anonymizer) for v in value]
    if isinstance(value, dict):
        return {k: anonymize_value(v, anonymizer) for k, v in value.items()}
    return value


class GraphRepository:
    """Data access for the derived knowledge graph of each tenant."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def find_node(self, tenant_id: str, category: Category, label: str) -> Node | None:
        row = self._conn.execute(
            f"SELECT {_NODE_COLUMNS} FROM nodes n "
            "WHERE n.tenant_id = ? AND n.category = ? AND n.label = ?",
            (tenant_id, category.code, label),
        ).fetchone()
        return _row_to_node(row) if row else None

    def upsert_node(
        self,
        tenant_id: str,
        category: Category,
        label: str,
        node_type: str | None = None,
        source_id: str | None = None,
        properties: dict | None = None,
    ) -> tuple[int, bool]:
        """Insert a node, or merge into the existing one with the same label.

        Scope comes from the caller, never from the node proposal. An existing
        node keeps its source back-reference; ``node_type`` is only filled in
        when given and properties are merged key by key.

        Returns:
            (node_id, created)
        """
        label = label.strip()
        if not label:
            raise ValidationError("missing_label", "Node label is required")
        with transaction(self._conn):
            existing = self.find_node(tenant_id, category, label)
            if existing is not None:
                merged = existing.properties_dict
                merged.update(properties or {})
                self._conn.execute(
                    """
                    UPDATE nodes SET node_type = COALESCE(?, node_type), properties = ?,
                                     updated_at = datetime('now')
                    WHERE id = ?
                    """,
                    (node_type or None, json.dumps(merged), existing.id),
                )
                return existing.id, False

            cur = self._conn.execute(
                """
                INSERT INTO nodes (tenant_id, category, label, node_type, source_id, properties)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    tenant_id,
                    category.code,
                    label,
                    node_type or None,
                    source_id,
                    json.dumps(properties or {}),
                ),
            )
            return cur.lastrowid, True

    def get_node(self, tenant_id: str, node_id: int) -> Node | None:
        row = self._conn.execute(
            f"SELECT {_NODE_COLUMNS} FROM nodes n WHERE n.id = ? AND n.tenant_id = ?",
            (node_id, tenant_id),
        ).fetchone()
        return _row_to_node(row) if row else None

    def require_node(self, tenant_id: str, node_id: int) -> Node:
        node = self.get_node(tenant_id, node_id)
        if node is None:
            raise NotFoundError("node", node_id)
        return node

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def insert_edge(
        self, edge: Edge, tenant_id: str | None = None, category: Category | None = None
    ) -> int | None:
        """Insert *edge* unless an identical relation already exists.

        Unset ``edge.tenant_id`` / ``edge.category`` inherit *tenant_id* /
        *category* (the call scope).

        Returns:
            The new edge id, or None when the relation was already present.

        Raises:
            ConsistencyError: An endpoint is missing or lies outside the
                edge's tenant/category.
        """
        with transaction(self._conn):
            self._resolve_edge_scope(edge, tenant_id, category)
            cur = self._conn.execute(
                """
                INSERT INTO edges (tenant_id, category, src_node_id, dst_node_id, relation, properties)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (tenant_id, category, src_node_id, dst_node_id, relation) DO NOTHING
                """,
                (
                    edge.tenant_id,
                    edge.category.code,
                    edge.src_node_id,
                    edge.dst_node_id,
                    edge.relation,
                    edge.properties,
                ),
            )
            if cur.rowcount == 0:
                return None
            edge.id = cur.lastrowid
            return edge.id

    def _resolve_edge_scope(
        self, edge: Edge, tenant_id: str | None, category: Category | None
    ) -> None:
        if edge.tenant_id is None:
            edge.tenant_id = tenant_id
        if edge.category is None:
            edge.category = category
        if edge.tenant_id is None or edge.category is None:
            raise ConsistencyError("edge scope (tenant and category) could not be determined")
        edge.category = Category.parse(edge.category)
        if not edge.relation or not edge.relation.strip():
            raise ValidationError("missing_relation", "Edge relation is required")

        for end, node_id in (("source", edge.src_node_id), ("destination", edge.dst_node_id)):
            row = self._conn.execute(
                "SELECT tenant_id, category FROM nodes WHERE id = ?", (node_id,)
            ).fetchone()
            if row is None:
                raise ConsistencyError(f"edge {end} node '{node_id}' does not exist")
            if row["tenant_id"] != edge.tenant_id:
                raise ConsistencyError(
                    f"edge tenant '{edge.tenant_id}' must match {end} node tenant "
                    f"'{row['tenant_id']}' for node '{node_id}'"
                )
            node_category = Category.from_code(row["category"])
            if node_category is not edge.category:
                raise ConsistencyError(
                    f"edge category '{edge.category.value}' must match {end} node category "
                    f"'{node_category.value}' for node '{node_id}'"
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_graph(
        self,
        tenant_id: str,
        category: Category | None = None,
        source_id: str | None = None,
        limit_nodes: int = 1000,
        limit_edges: int = 2000,
    ) -> GraphView:
        """Nodes in scope plus edges whose both endpoints are in scope."""
        _check_limit("limit_nodes", limit_nodes)
        _check_limit("limit_edges", limit_edges)

        node_sql = f"SELECT {_NODE_COLUMNS} FROM nodes n WHERE n.tenant_id = ?"
        node_params: list[object] = [tenant_id]
        if category is not None:
            node_sql += " AND n.category = ?"
            node_params.append(category.code)
        if source_id is not None:
            node_sql += " AND n.source_id = ?"
            node_params.append(source_id)
        node_sql += " ORDER BY n.id LIMIT ?"
        node_params.append(limit_nodes)
        nodes = [_row_to_node(r) for r in self._conn.execute(node_sql, node_params).fetchall()]

        edge_sql, edge_params = _scoped_edge_query(tenant_id, category, source_id)
        edge_sql += " ORDER BY e.id LIMIT ?"
        edge_params.append(limit_edges)
        edges = [_row_to_edge(r) for r in self._conn.execute(edge_sql, edge_params).fetchall()]
        return GraphView(nodes=nodes, edges=edges)

    def neighbors(
        self,
        tenant_id: str,
        node_id: int,
        category: Category | None = None,
        source_id: str | None = None,
        limit: int = 500,
    ) -> GraphView:
        """Edges touching *node_id* in either direction, plus the nodes they touch."""
        _check_limit("limit", limit)
        self.require_node(tenant_id, node_id)

        edge_sql, edge_params = _scoped_edge_query(tenant_id, category, source_id)
        edge_sql += " AND (e.src_node_id = ? OR e.dst_node_id = ?) ORDER BY e.id LIMIT ?"
        edge_params.extend([node_id, node_id, limit])
        edges = [_row_to_edge(r) for r in self._conn.execute(edge_sql, edge_params).fetchall()]

        node_ids = {node_id}
        for e in edges:
            node_ids.update((e.src_node_id, e.dst_node_id))
        placeholders = ",".join("?" * len(node_ids))
        node_sql = (
            f"SELECT {_NODE_COLUMNS} FROM nodes n "
            f"WHERE n.tenant_id = ? AND n.id IN ({placeholders})"
        )
        node_params: list[object] = [tenant_id, *sorted(node_ids)]
        if category is not None:
            node_sql += " AND n.category = ?"
            node_params.append(category.code)
        if source_id is not None:
            node_sql += " AND n.source_id = ?"
            node_params.append(source_id)
        node_sql += " ORDER BY n.id"
        nodes = [_row_to_node(r) for r in self._conn.execute(node_sql, node_params).fetchall()]
        return GraphView(nodes=nodes, edges=edges, center_node_id=node_id)

    def export_source_graph(
        self, tenant_id: str, source_id: str, category: Category | None = None
    ) -> GraphView:
        """Everything extracted from one source (no row limits)."""
        node_sql = f"SELECT {_NODE_COLUMNS} FROM nodes n WHERE n.tenant_id = ? AND n.source_id = ?"
        node_params: list[object] = [tenant_id, source_id]
        if category is not None:
            node_sql += " AND n.category = ?"
            node_params.append(category.code)
        node_sql += " ORDER BY n.id"
        nodes = [_row_to_node(r) for r in self._conn.execute(node_sql, node_params).fetchall()]

        edge_sql, edge_params = _scoped_edge_query(tenant_id, category, source_id)
        edge_sql += " ORDER BY e.id"
        edges = [_row_to_edge(r) for r in self._conn.execute(edge_sql, edge_params).fetchall()]
        return GraphView(nodes=nodes, edges=edges)

    def count_nodes(self, tenant_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM nodes WHERE tenant_id = ?", (tenant_id,)
        ).fetchone()[0]

    def count_edges(self, tenant_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM edges WHERE tenant_id = ?", (tenant_id,)
        ).fetchone()[0]


# ------------------------------------------------------------------
# Query + row helpers
# ------------------------------------------------------------------


def _scoped_edge_query(
    tenant_id: str, category: Category | None, source_id: str | None
) -> tuple[str, list[object]]:
    """Edge SELECT joined to both endpoints, each endpoint filtered like the edge."""
    sql = (
        f"SELECT {_EDGE_COLUMNS} FROM edges e "
        "JOIN nodes sn ON sn.id = e.src_node_id "
        "JOIN nodes dn ON dn.id = e.dst_node_id "
        "WHERE e.tenant_id = ? AND sn.tenant_id = ? AND dn.tenant_id = ?"
    )
    params: list[object] = [tenant_id, tenant_id, tenant_id]
    if category is not None:
        sql += " AND e.category = ? AND sn.category = ? AND dn.category = ?"
        params.extend([category.code] * 3)
    if source_id is not None:
        sql += " AND sn.source_id = ? AND dn.source_id = ?"
        params.extend([source_id, source_id])
    return sql, params


def _check_limit(name: str, value: int) -> None:
    if value < 1:
        raise ValidationError("invalid_limit", f"{name} must be >= 1, got {value}")


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        tenant_id=row["tenant_id"],
        category=Category.from_code(row["category"]),
        label=row["label"],
        node_type=row["node_type"],
        source_id=row["source_id"],
        properties=row["properties"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_edge(row: sqlite3.Row) -> Edge:
    return Edge(
        id=row["id"],
        tenant_id=row["tenant_id"],
        category=Category.from_code(row["category"]),
        src_node_id=row["src_node_id"],
        dst_node_id=row["dst_node_id"],
        relation=row["relation"],
        properties=row["properties"],
        created_at=row["created_at"],
    )
