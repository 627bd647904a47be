"""simkb rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from simkb.cli.errors import handle_errors
    with handle_errors(console):
        kb.ingest_text(...)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from simkb.config import ConfigError
from simkb.errors import ConsistencyError, NotFoundError, UpstreamError, ValidationError

EXIT_INVALID = 1
EXIT_UPSTREAM = 2
EXIT_CONSISTENCY = 3


def err_no_api_key(detail: str) -> str:
    """No API key for the configured provider.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    return (
        f"[red]Error:[/] {detail}\n"
        "  API keys are read from the environment only, never from simkb.yaml."
    )


def err_no_db(db_path: str = ".simkb.db") -> str:
    """No database file at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  simkb ingest --tenant <id> ...  to create it, or pass --db PATH."
    )


def err_validation(exc: ValidationError) -> str:
    return f"[red]Error:[/] {exc}\n  ({exc.code})  Fix the input and retry."


def err_not_found(exc: NotFoundError) -> str:
    hint = {
        "source": "simkb sources --tenant <id> --status all",
        "node": "simkb graph show --tenant <id>",
    }.get(exc.entity, "simkb sources --tenant <id>")
    return (
        f"[yellow]Not found:[/] {exc.entity} '{exc.entity_id}' is not in this tenant.\n"
        f"  Run:  {hint}  to list what exists."
    )


def err_upstream(exc: UpstreamError) -> str:
    status = f" (HTTP {exc.status})" if exc.status else ""
    return (
        f"[red]Error:[/] Provider '{exc.provider}' failed{status}.\n"
        f"  {exc}\n"
        "  Nothing was stored. Retry later or check the model name in simkb.yaml."
    )


def err_consistency(exc: ConsistencyError) -> str:
    return (
        f"[red]Error:[/] Scope mismatch: {exc}\n"
        "  The write was rolled back; check the tenant and category you passed."
    )


def err_config(exc: ConfigError) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {exc}"


@contextmanager
def handle_errors(console: Console) -> Iterator[None]:
    """Translate simkb exceptions into a message plus a typer exit code."""
    try:
        yield
    except ValidationError as exc:
        console.print(err_validation(exc))
        raise typer.Exit(EXIT_INVALID) from exc
    except NotFoundError as exc:
        console.print(err_not_found(exc))
        raise typer.Exit(EXIT_INVALID) from exc
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(EXIT_INVALID) from exc
    except UpstreamError as exc:
        console.print(err_upstream(exc))
        raise typer.Exit(EXIT_UPSTREAM) from exc
    except ConsistencyError as exc:
        console.print(err_consistency(exc))
        raise typer.Exit(EXIT_CONSISTENCY) from exc
    except EnvironmentError as exc:
        console.print(err_no_api_key(str(exc)))
        raise typer.Exit(EXIT_UPSTREAM) from exc
