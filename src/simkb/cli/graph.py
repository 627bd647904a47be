"""simkb graph commands.

Commands:
  simkb graph extract    — run LLM extraction over a tenant's chunks
  simkb graph show       — print the graph payload (nodes, edges, counts) as JSON
  simkb graph neighbors  — print one node's neighbourhood as JSON
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer

from simkb.cli.common import DEFAULT_DB, build_kb, console, open_db
from simkb.cli.errors import handle_errors

graph_app = typer.Typer(
    name="graph",
    help="Extract and inspect the knowledge graph.",
    add_completion=False,
)

TenantOpt = Annotated[str, typer.Option("--tenant", "-t", help="Tenant id (required).")]
DbOpt = Annotated[Path, typer.Option("--db", help="Path to the simkb database.")]


@graph_app.command("extract")
def extract_cmd(
    tenant: TenantOpt,
    category: Annotated[
        str, typer.Option("--category", "-c", help="client-facing | operator-facing")
    ],
    source: Annotated[
        str | None, typer.Option("--source", "-s", help="Only chunks of this source.")
    ] = None,
    limit_chunks: Annotated[
        int | None, typer.Option("--limit-chunks", help="Max chunks per run (default from config).")
    ] = None,
    db: DbOpt = DEFAULT_DB,
) -> None:
    """Extract entities and relations from active sources."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            result = build_kb(conn, db).extract_graph(
                tenant, category, source_id=source, limit_chunks=limit_chunks
            )
    finally:
        conn.close()

    console.print(
        f"[green]✓[/] Processed {result.processed} chunk(s): "
        f"{result.nodes_created} node(s), {result.edges_created} edge(s) created"
    )
    if result.failed:
        console.print(
            f"  [yellow]⚠[/] {result.failed} chunk(s) failed and were skipped; "
            "re-run the command to retry them."
        )


@graph_app.command("show")
def show_cmd(
    tenant: TenantOpt,
    category: Annotated[
        str | None, typer.Option("--category", "-c", help="Restrict to one category.")
    ] = None,
    source: Annotated[
        str | None, typer.Option("--source", "-s", help="Only nodes extracted from this source.")
    ] = None,
    limit_nodes: Annotated[int | None, typer.Option("--limit-nodes")] = None,
    limit_edges: Annotated[int | None, typer.Option("--limit-edges")] = None,
    db: DbOpt = DEFAULT_DB,
) -> None:
    """Print the tenant's graph as JSON."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            view = build_kb(conn, db).list_graph(
                tenant,
                category=category,
                source_id=source,
                limit_nodes=limit_nodes,
                limit_edges=limit_edges,
            )
    finally:
        conn.close()
    typer.echo(json.dumps(view.to_payload(), indent=2, ensure_ascii=False))


@graph_app.command("neighbors")
def neighbors_cmd(
    tenant: TenantOpt,
    node: Annotated[int, typer.Option("--node", "-n", help="Centre node id.")],
    category: Annotated[
        str | None, typer.Option("--category", "-c", help="Restrict to one category.")
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit")] = None,
    db: DbOpt = DEFAULT_DB,
) -> None:
    """Print the edges touching NODE and the nodes they connect, as JSON."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            view = build_kb(conn, db).neighbors(tenant, node, category=category, limit=limit)
    finally:
        conn.close()
    typer.echo(json.dumps(view.to_payload(), indent=2, ensure_ascii=False))
