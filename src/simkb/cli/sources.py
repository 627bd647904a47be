"""simkb source lifecycle commands: ingest, sources, show, archive, restore, remove.

Usage:
  simkb ingest --tenant acme --category client-facing --title "Refunds" --file refunds.txt
  simkb sources --tenant acme --status all
  simkb remove --tenant acme --source <id> --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from simkb.cli.common import DEFAULT_DB, build_kb, console, open_db
from simkb.cli.errors import handle_errors
from simkb.ingest.base import normalize_text

TenantOpt = Annotated[str, typer.Option("--tenant", "-t", help="Tenant id (required).")]
DbOpt = Annotated[Path, typer.Option("--db", help="Path to the simkb database.")]
SourceOpt = Annotated[str, typer.Option("--source", "-s", help="Source id.")]


def ingest_cmd(
    tenant: TenantOpt,
    category: Annotated[
        str, typer.Option("--category", "-c", help="client-facing | operator-facing")
    ],
    title: Annotated[str, typer.Option("--title", help="Source title.")],
    file: Annotated[
        Path | None, typer.Option("--file", "-f", help="UTF-8 text file to ingest (document).")
    ] = None,
    text: Annotated[
        str | None, typer.Option("--text", help="Free text to ingest.")
    ] = None,
    db: DbOpt = DEFAULT_DB,
) -> None:
    """Chunk, embed and store one text source."""
    if (file is None) == (text is None):
        console.print("[red]Error:[/] Pass exactly one of --file PATH or --text TEXT.")
        raise typer.Exit(1)

    kind = "free_text"
    filename = mime_type = None
    size_bytes = None
    if file is not None:
        if not file.is_file():
            console.print(f"[red]Error:[/] File not found: '{file}'")
            raise typer.Exit(1)
        raw = file.read_bytes()
        text = raw.decode("utf-8", errors="replace")
        kind, filename, mime_type, size_bytes = "document", file.name, "text/plain", len(raw)

    conn = open_db(db, create=True)
    try:
        with handle_errors(console):
            kb = build_kb(conn, db)
            result = kb.ingest_text(
                tenant,
                category,
                title,
                normalize_text(text),
                kind=kind,
                filename=filename,
                mime_type=mime_type,
                size_bytes=size_bytes,
            )
    finally:
        conn.close()

    console.print(f"[green]✓[/] Ingested [bold]{result.title}[/]  ({result.chunks} chunks)")
    console.print(f"  source id: {result.source_id}")
    if result.embedding_gaps:
        console.print(
            f"  [yellow]⚠[/] {len(result.embedding_gaps)} chunk(s) got no embedding "
            f"(positions {result.embedding_gaps}); they will rank last in search."
        )


def sources_cmd(
    tenant: TenantOpt,
    category: Annotated[
        str | None, typer.Option("--category", "-c", help="Filter by category.")
    ] = None,
    status: Annotated[
        str, typer.Option("--status", help="active | archived | all")
    ] = "active",
    db: DbOpt = DEFAULT_DB,
) -> None:
    """List a tenant's sources, newest first."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            kb = build_kb(conn, db)
            sources = kb.list_sources(tenant, category, None if status == "all" else status)
            counts = {s.id: kb.repo.count_chunks(tenant, s.id) for s in sources}
    finally:
        conn.close()

    if not sources:
        console.print("[yellow]No sources found.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Sources — {tenant}", show_header=True, header_style="bold")
    table.add_column("Id", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Category")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Created")
    for s in sources:
        status_str = "[green]active[/]" if s.status == "active" else "[yellow]archived[/]"
        table.add_row(
            s.id,
            s.title,
            s.category.value,
            s.kind,
            status_str,
            str(counts[s.id]),
            s.created_at or "",
        )
    console.print(table)


def show_cmd(tenant: TenantOpt, source: SourceOpt, db: DbOpt = DEFAULT_DB) -> None:
    """Print the reassembled content of a free-text source."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            content = build_kb(conn, db).source_content(tenant, source)
    finally:
        conn.close()
    console.print(content, markup=False, highlight=False)


def archive_cmd(tenant: TenantOpt, source: SourceOpt, db: DbOpt = DEFAULT_DB) -> None:
    """Archive a source (excluded from graph extraction, kept for search)."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            build_kb(conn, db).archive_source(tenant, source)
    finally:
        conn.close()
    console.print(f"[green]✓[/] Archived: {source}")


def restore_cmd(tenant: TenantOpt, source: SourceOpt, db: DbOpt = DEFAULT_DB) -> None:
    """Re-activate an archived source."""
    conn = open_db(db)
    try:
        with handle_errors(console):
            build_kb(conn, db).restore_source(tenant, source)
    finally:
        conn.close()
    console.print(f"[green]✓[/] Restored: {source}")


def remove_cmd(
    tenant: TenantOpt,
    source: SourceOpt,
    db: DbOpt = DEFAULT_DB,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete a source with its chunks and projections.

    Graph nodes extracted from it are kept but lose their source reference.
    """
    conn = open_db(db)
    try:
        with handle_errors(console):
            kb = build_kb(conn, db)
            existing = kb.repo.require_source(tenant, source)
            chunk_count = kb.repo.count_chunks(tenant, source)

            console.print(f"\nRemove source: [bold]{existing.title}[/] ({source})")
            console.print(f"  Chunks: {chunk_count}  |  Status: {existing.status}")
            if not yes and not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

            kb.delete_source(tenant, source)
    finally:
        conn.close()

    console.print(f"\n[green]✓[/] Removed: {existing.title}")
    console.print(f"  {chunk_count} chunks deleted")
