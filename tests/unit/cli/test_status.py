"""Tests for the plantops status command."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from plantops.cli.main import app
from plantops.db.connection import Database
from plantops.db.models import DocumentChunk, File
from plantops.db.repository import Repository

runner = CliRunner()


@pytest.fixture(autouse=True)
def _cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def test_status_without_db(tmp_path):
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 0
    assert "No database found" in result.output
    assert "Configuration" in result.output


def test_status_shows_counts_and_not_ingested(tmp_path):
    db_path = tmp_path / ".plantops.db"
    with Database(db_path) as conn:
        repo = Repository(conn)
        repo.add_file(File(id="f1", name="a.pdf", media_type="application/pdf"))
        repo.add_file(File(id="f2", name="pending.txt", media_type="text/plain"))
        repo.add_chunk(DocumentChunk(file_id="f1", chunk_index=0, text="x", source_label="a.pdf"))

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Files: 2" in result.output
    assert "Chunks: 1" in result.output
    assert "Not ingested (1)" in result.output
    assert "pending.txt" in result.output


def test_status_reports_orphans(tmp_path):
    db_path = tmp_path / ".plantops.db"
    with Database(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = OFF")
        Repository(conn).add_chunk(
            DocumentChunk(file_id="gone", chunk_index=0, text="x", source_label="gone")
        )

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert "1 orphan chunks" in result.output
    assert "plantops repair" in result.output


def test_status_shows_resource_from_project_config(tmp_path):
    (tmp_path / "plantops.yaml").write_text(
        "resource:\n  base_url: https://erp.example.com/odata\n  odata_version: v2\n",
        encoding="utf-8",
    )
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "none.db")])
    assert "https://erp.example.com/odata" in result.output
    assert "v2" in result.output
