"""simkb CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from simkb.cli.graph import graph_app
from simkb.cli.search import search_cmd
from simkb.cli.sources import (
    archive_cmd,
    ingest_cmd,
    remove_cmd,
    restore_cmd,
    show_cmd,
    sources_cmd,
)


def _installed_version() -> str:
    try:
        return importlib.metadata.version("simkb")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"simkb {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="simkb",
    help=(
        "simkb — multi-tenant knowledge base CLI.\n\n"
        "  simkb ingest   Chunk + embed a text source into a tenant's knowledge base.\n"
        "  simkb search   Cosine similarity search within one tenant.\n"
        "  simkb graph    Extract and inspect the knowledge graph."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress to stderr."),
    ] = False,
) -> None:
    """simkb — multi-tenant knowledge base CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


app.command("ingest")(ingest_cmd)
app.command("sources")(sources_cmd)
app.command("show")(show_cmd)
app.command("archive")(archive_cmd)
app.command("restore")(restore_cmd)
app.command("remove")(remove_cmd)
app.command("search")(search_cmd)
app.add_typer(graph_app, name="graph")


@app.command("version")
def version_cmd() -> None:
    """Show the installed simkb version."""
    typer.echo(f"simkb {_installed_version()}")


if __name__ == "__main__":
    app()
