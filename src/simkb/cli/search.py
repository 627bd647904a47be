"""simkb search — cosine similarity search within one tenant."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from simkb.cli.common import DEFAULT_DB, build_kb, console, open_db
from simkb.cli.errors import handle_errors

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id (required).")],
    category: Annotated[
        str | None, typer.Option("--category", "-c", help="Restrict to one category.")
    ] = None,
    top_k: Annotated[
        int | None, typer.Option("--top-k", "-k", help="Number of results (default from config).")
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to the simkb database.")] = DEFAULT_DB,
) -> None:
    """Return the chunks closest to QUERY (lower distance = closer)."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            results = build_kb(conn, db).search(tenant, query, category=category, top_k=top_k)
    finally:
        conn.close()

    if not results:
        console.print("[yellow]No results.[/]")
        raise typer.Exit(0)

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Distance", justify="right")
    table.add_column("Source")
    table.add_column("Chunk")
    for i, hit in enumerate(results, start=1):
        preview = hit.chunk.content.replace("\n", " ")
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        score = f"{hit.score:.4f}" if hit.score is not None else "—"
        table.add_row(str(i), score, hit.source_title, preview)
    console.print(table)
