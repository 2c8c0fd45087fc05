"""Tests for the plantops repair command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from plantops.cli.main import app
from plantops.db.connection import Database
from plantops.db.models import DocumentChunk, File
from plantops.db.repository import Repository

runner = CliRunner()


def _seed(path: Path) -> None:
    with Database(path) as conn:
        repo = Repository(conn)
        repo.add_file(File(id="f1", name="a.pdf", media_type="application/pdf"))
        repo.add_chunk(DocumentChunk(file_id=None, chunk_index=0, text="x", source_label="a.pdf"))
        conn.execute("PRAGMA foreign_keys = OFF")
        repo.add_chunk(DocumentChunk(file_id="gone", chunk_index=0, text="y", source_label="gone"))


def test_repair_without_db_exits(tmp_path):
    result = runner.invoke(app, ["repair", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 1


def test_repair_single_pass(tmp_path):
    db_path = tmp_path / ".plantops.db"
    _seed(db_path)

    result = runner.invoke(app, ["repair", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "1 chunks deleted" in result.output
    assert "1 chunks fixed" in result.output
    with Database(db_path) as conn:
        repo = Repository(conn)
        assert repo.count_chunks() == 1
        assert repo.count_chunks_by_file("f1") == 1


def test_repair_rejects_non_positive_interval(tmp_path):
    db_path = tmp_path / ".plantops.db"
    _seed(db_path)
    result = runner.invoke(app, ["repair", "--every", "0", "--db", str(db_path)])
    assert result.exit_code == 1


def test_repair_every_stops_on_interrupt(tmp_path):
    db_path = tmp_path / ".plantops.db"
    _seed(db_path)
    with patch(
        "plantops.cli.repair.ConsistencyManager.run_scheduled", side_effect=KeyboardInterrupt
    ) as mock_run:
        result = runner.invoke(app, ["repair", "--every", "300", "--db", str(db_path)])
    assert result.exit_code == 0
    assert "Stopped" in result.output
    mock_run.assert_called_once_with(300.0)
