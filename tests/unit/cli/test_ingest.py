"""Tests for the source lifecycle commands: ingest, sources, show, archive, restore, remove."""

from __future__ import annotations

import re
from pathlib import Path

from typer.testing import CliRunner

from simkb.cli.main import app
from simkb.db.connection import Database
from simkb.db.repository import Repository

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ingest(db: Path, text: str = "Refunds take five days.", title: str = "Refunds", tenant: str = "acme") -> str:
    result = runner.invoke(
        app,
        [
            "ingest",
            "--tenant", tenant,
            "--category", "client-facing",
            "--title", title,
            "--text", text,
            "--db", str(db),
        ],
    )
    assert result.exit_code == 0, result.output
    match = re.search(r"source id: (\S+)", result.output)
    assert match is not None
    return match.group(1)


def _repo(db: Path) -> Repository:
    return Repository(Database(db).connect())


# ---------------------------------------------------------------------------
# simkb ingest
# ---------------------------------------------------------------------------


def test_ingest_text_creates_db_and_source(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db)

    assert db.exists()
    source = _repo(db).get_source("acme", source_id)
    assert source.title == "Refunds"
    assert source.kind == "free_text"
    assert cli_embedder.calls == [["Refunds take five days."]]


def test_ingest_file_is_document(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    doc = tmp_path / "policy.txt"
    doc.write_text("Line one.\r\n\r\nLine   two.\n", encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "ingest", "-t", "acme", "-c", "operator-facing", "--title", "Policy",
            "--file", str(doc), "--db", str(db),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Ingested" in result.output
    assert "(1 chunks)" in result.output

    source = _repo(db).list_sources("acme")[0]
    assert source.kind == "document"
    assert source.original_filename == "policy.txt"
    assert source.mime_type == "text/plain"
    assert source.size_bytes == len(doc.read_bytes())


def test_ingest_requires_exactly_one_input(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    result = runner.invoke(
        app, ["ingest", "-t", "acme", "-c", "client-facing", "--title", "X", "--db", str(db)]
    )
    assert result.exit_code == 1
    assert "exactly one" in result.output
    assert not db.exists()


def test_ingest_missing_file_exits_1(tmp_path: Path, cli_embedder) -> None:
    result = runner.invoke(
        app,
        [
            "ingest", "-t", "acme", "-c", "client-facing", "--title", "X",
            "--file", str(tmp_path / "nope.txt"), "--db", str(tmp_path / ".simkb.db"),
        ],
    )
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_ingest_invalid_category_exits_1(tmp_path: Path, cli_embedder) -> None:
    result = runner.invoke(
        app,
        [
            "ingest", "-t", "acme", "-c", "staff", "--title", "X",
            "--text", "Hello.", "--db", str(tmp_path / ".simkb.db"),
        ],
    )
    assert result.exit_code == 1
    assert "invalid_category" in result.output
    assert cli_embedder.calls == []


def test_ingest_missing_api_key_exits_2(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(
        app,
        [
            "ingest", "-t", "acme", "-c", "client-facing", "--title", "X",
            "--text", "Hello.", "--db", str(tmp_path / ".simkb.db"),
        ],
    )
    assert result.exit_code == 2
    assert "OPENAI_API_KEY" in result.output


def test_ingest_credential_in_config_exits_1(tmp_path: Path, cli_embedder) -> None:
    (tmp_path / "simkb.yaml").write_text("embedding:\n  api_key: sk-123\n", encoding="utf-8")
    result = runner.invoke(
        app,
        [
            "ingest", "-t", "acme", "-c", "client-facing", "--title", "X",
            "--text", "Hello.", "--db", str(tmp_path / ".simkb.db"),
        ],
    )
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# simkb sources / show / archive / restore
# ---------------------------------------------------------------------------


def test_sources_no_db_exits_1(tmp_path: Path) -> None:
    result = runner.invoke(app, ["sources", "-t", "acme", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "No database" in result.output


def test_sources_lists_tenant_only(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    _ingest(db, title="Mine")
    _ingest(db, title="Theirs", tenant="other")

    result = runner.invoke(app, ["sources", "-t", "acme", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Mine" in result.output
    assert "Theirs" not in result.output


def test_sources_empty(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    _ingest(db)
    result = runner.invoke(app, ["sources", "-t", "nobody", "--db", str(db)])
    assert result.exit_code == 0
    assert "No sources found" in result.output


def test_show_prints_content(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db, text="Refunds take [five] days.")
    result = runner.invoke(app, ["show", "-t", "acme", "-s", source_id, "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Refunds take [five] days." in result.output


def test_show_unknown_source_exits_1(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    _ingest(db)
    result = runner.invoke(app, ["show", "-t", "acme", "-s", "ghost", "--db", str(db)])
    assert result.exit_code == 1
    assert "Not found" in result.output


def test_archive_and_restore(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db)

    result = runner.invoke(app, ["archive", "-t", "acme", "-s", source_id, "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Archived" in result.output
    assert _repo(db).get_source("acme", source_id).status == "archived"

    listed = runner.invoke(app, ["sources", "-t", "acme", "--status", "archived", "--db", str(db)])
    assert "Refunds" in listed.output

    result = runner.invoke(app, ["restore", "-t", "acme", "-s", source_id, "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert _repo(db).get_source("acme", source_id).status == "active"


# ---------------------------------------------------------------------------
# simkb remove
# ---------------------------------------------------------------------------


def test_remove_with_yes(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db)

    result = runner.invoke(app, ["remove", "-t", "acme", "-s", source_id, "--db", str(db), "--yes"])
    assert result.exit_code == 0, result.output
    assert "Removed: Refunds" in result.output
    repo = _repo(db)
    assert repo.get_source("acme", source_id) is None
    assert repo.count_chunks("acme") == 0


def test_remove_cancelled(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db)

    result = runner.invoke(
        app, ["remove", "-t", "acme", "-s", source_id, "--db", str(db)], input="n\n"
    )
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert _repo(db).get_source("acme", source_id) is not None


def test_remove_other_tenant_exits_1(tmp_path: Path, cli_embedder) -> None:
    db = tmp_path / ".simkb.db"
    source_id = _ingest(db)
    result = runner.invoke(app, ["remove", "-t", "other", "-s", source_id, "--db", str(db), "--yes"])
    assert result.exit_code == 1
    assert _repo(db).get_source("acme", source_id) is not None
