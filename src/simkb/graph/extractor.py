"""Knowledge-graph extraction from stored chunks (entities + relations).

Pipeline per run:
  1. Select chunks of active sources in (tenant, category[, source]), newest first.
  2. For each chunk: anonymize (optional) → propose nodes/edges → upsert.
  3. The run is one transaction; each chunk gets its own savepoint so a
     proposer failure drops only that chunk and is counted in ``failed``.

Re-running over the same chunks is safe: nodes merge by label and duplicate
edges are ignored (and not counted).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from simkb.db.connection import transaction
from simkb.db.graph import GraphRepository
from simkb.db.models import Category, Chunk, Edge
from simkb.db.repository import Repository
from simkb.errors import UpstreamError, ValidationError
from simkb.rag import llm_client

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_CHUNKS = 200

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

_SYSTEM_PROMPT = """You are a knowledge extractor. Given a text, identify the relevant entities/topics and the relations between them.

Output STRICT JSON (no extra text) in this format:
{
  "nodes": [
    {"label": "required string", "node_type": "optional category (person, company, rule, process, product, ...)", "properties": {"key": "value"}}
  ],
  "edges": [
    {"src_label": "source node label", "dst_label": "destination node label", "relation": "relation name", "properties": {"key": "value"}}
  ]
}

Rules:
- Do not repeat nodes with the same label.
- Use short, descriptive labels.
- Use a short, clear "relation" (e.g. "regulates", "belongs_to", "uses", "depends_on", "contains").
- If there are no relations, return "edges" as an empty list.
"""


# ------------------------------------------------------------------
# Proposal model
# ------------------------------------------------------------------


@dataclass
class ProposedNode:
    label: str
    node_type: str | None = None
    properties: dict = field(default_factory=dict)


@dataclass
class ProposedEdge:
    src_label: str
    dst_label: str
    relation: str
    properties: dict = field(default_factory=dict)


@dataclass
class GraphProposal:
    nodes: list[ProposedNode] = field(default_factory=list)
    edges: list[ProposedEdge] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """Counts reported back to the caller of extract_graph().

    Attributes:
        processed: Chunks selected for the run.
        nodes_created: Nodes inserted (merges into existing nodes are not counted).
        edges_created: Edges inserted (duplicates are not counted).
        failed: Chunks skipped because the proposer failed.
    """

    processed: int = 0
    nodes_created: int = 0
    edges_created: int = 0
    failed: int = 0

    def to_payload(self) -> dict:
        return {
            "processed": self.processed,
            "nodes_created": self.nodes_created,
            "edges_created": self.edges_created,
            "failed": self.failed,
        }


class GraphProposer(Protocol):
    """Turns one chunk of text into proposed nodes and edges.

    Implementations raise UpstreamError when the provider fails.
    """

    def propose(self, text: str) -> GraphProposal: ...


# ------------------------------------------------------------------
# LLM-backed proposer
# ------------------------------------------------------------------


class LiteLLMGraphProposer:
    """Ask an LLM (via litellm) for a strict-JSON graph of one chunk."""

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        max_tokens: int = 2048,
        num_retries: int = 3,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.num_retries = num_retries

    def propose(self, text: str) -> GraphProposal:
        try:
            content = llm_client.complete(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": f'Text:\n"""\n{text}\n"""'},
                ],
                max_tokens=self.max_tokens,
                temperature=0.0,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise UpstreamError(
                self.model,
                f"graph extraction request failed: {exc}",
                status=getattr(exc, "status_code", None),
            ) from exc
        return parse_proposal(content)


def parse_proposal(content: str | None) -> GraphProposal:
    """Parse LLM output into a sanitised GraphProposal.

    The first ``{...}`` block is taken as the JSON document. Output that does
    not parse yields an empty proposal.
    """
    text = content or ""
    match = _JSON_BLOCK_RE.search(text)
    try:
        data = json.loads(match.group(0) if match else text)
    except json.JSONDecodeError:
        logger.warning("Graph extractor returned unparseable output; using empty proposal")
        return GraphProposal()
    if not isinstance(data, dict):
        return GraphProposal()

    raw_nodes = data.get("nodes") if isinstance(data.get("nodes"), list) else []
    raw_edges = data.get("edges") if isinstance(data.get("edges"), list) else []

    nodes: list[ProposedNode] = []
    for n in raw_nodes:
        if not isinstance(n, dict):
            continue
        label = str(n.get("label") or "").strip()
        if not label:
            continue
        node_type = str(n["node_type"]).strip() if n.get("node_type") else None
        nodes.append(ProposedNode(label, node_type or None, _as_properties(n.get("properties"))))

    edges: list[ProposedEdge] = []
    for e in raw_edges:
        if not isinstance(e, dict):
            continue
        src = str(e.get("src_label") or "").strip()
        dst = str(e.get("dst_label") or "").strip()
        relation = str(e.get("relation") or "").strip()
        if src and dst and relation:
            edges.append(ProposedEdge(src, dst, relation, _as_properties(e.get("properties"))))

    return GraphProposal(nodes=nodes, edges=edges)


def _as_properties(value: object) -> dict:
    return value if isinstance(value, dict) else {}


# ------------------------------------------------------------------
# Extraction run
# ------------------------------------------------------------------


def extract_graph(
    repo: Repository,
    graph_repo: GraphRepository,
    proposer: GraphProposer,
    tenant_id: str,
    category: Category | str,
    *,
    source_id: str | None = None,
    limit_chunks: int = DEFAULT_LIMIT_CHUNKS,
    anonymizer: Callable[[str], str] | None = None,
) -> ExtractionResult:
    """Extract entities and relations from up to *limit_chunks* chunks.

    Node and edge scope always comes from (*tenant_id*, *category*), never
    from the proposal.

    Raises:
        ValidationError: ``invalid_category`` / ``invalid_limit``.
        NotFoundError: *source_id* given but unknown in this tenant.
    """
    cat = Category.parse(category)
    if limit_chunks < 1:
        raise ValidationError("invalid_limit", f"limit_chunks must be >= 1, got {limit_chunks}")
    if source_id is not None:
        repo.require_source(tenant_id, source_id)

    chunks = repo.extraction_candidates(tenant_id, cat, source_id=source_id, limit=limit_chunks)
    result = ExtractionResult(processed=len(chunks))
    if not chunks:
        return result

    scrub = anonymizer or (lambda text: text)
    with transaction(repo.conn):
        for chunk in chunks:
            try:
                proposal = proposer.propose(scrub(chunk.content))
            except UpstreamError as exc:
                logger.warning("Graph extraction failed for chunk %s, continuing: %s", chunk.id, exc)
                result.failed += 1
                continue
            with transaction(repo.conn):
                _apply_proposal(graph_repo, tenant_id, cat, chunk, proposal, result)

    logger.info(
        "Graph extraction tenant=%s category=%s processed=%d nodes=%d edges=%d failed=%d",
        tenant_id,
        cat.value,
        result.processed,
        result.nodes_created,
        result.edges_created,
        result.failed,
    )
    return result


def _apply_proposal(
    graph_repo: GraphRepository,
    tenant_id: str,
    category: Category,
    chunk: Chunk,
    proposal: GraphProposal,
    result: ExtractionResult,
) -> None:
    node_ids: dict[str, int] = {}  # lowercased label → node id

    for node in proposal.nodes:
        key = node.label.lower()
        if key in node_ids:
            continue
        node_id, created = graph_repo.upsert_node(
            tenant_id,
            category,
            node.label,
            node_type=node.node_type,
            source_id=chunk.source_id,
            properties=node.properties,
        )
        node_ids[key] = node_id
        result.nodes_created += int(created)

    def ensure_node(label: str) -> int:
        key = label.lower()
        if key not in node_ids:
            existing = graph_repo.find_node(tenant_id, category, label)
            if existing is not None:
                node_ids[key] = existing.id
            else:
                node_id, created = graph_repo.upsert_node(
                    tenant_id, category, label, source_id=chunk.source_id
                )
                node_ids[key] = node_id
                result.nodes_created += int(created)
        return node_ids[key]

    for proposed in proposal.edges:
        edge = Edge(
            src_node_id=ensure_node(proposed.src_label),
            dst_node_id=ensure_node(proposed.dst_label),
            relation=proposed.relation,
            properties=json.dumps(proposed.properties),
        )
        if graph_repo.insert_edge(edge, tenant_id=tenant_id, category=category) is not None:
            result.edges_created += 1
