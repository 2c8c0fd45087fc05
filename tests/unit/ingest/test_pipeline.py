"""Tests for the ingestion pipeline and two-phase file registration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from plantops.config import ChunkingCfg, PlantOpsConfig
from plantops.db.models import File
from plantops.db.repository import Repository
from plantops.db.vectors import encode_embedding, model_to_slug, vec_table_name
from plantops.ingest.embedding_writer import EmbeddingConfig
from plantops.ingest.pdf import PdfChunker
from plantops.ingest.pipeline import (
    IngestionError,
    IngestionPipeline,
    chunker_for,
    guess_media_type,
    register_file,
)
from plantops.ingest.plaintext import PlainTextChunker

_MODEL = "openai/text-embedding-3-small"
_TABLE = vec_table_name(model_to_slug(_MODEL))


class _FakeWriter:
    """Deterministic 4-dimensional embeddings; optionally fails."""

    def __init__(self, fail: bool = False) -> None:
        self.config = EmbeddingConfig(model=_MODEL, dimensions=4)
        self.fail = fail

    def embed(self, chunks):
        if self.fail:
            raise RuntimeError("rate limited")
        vectors = [[float(i + 1), 1.0, 0.0, 0.0] for i in range(len(chunks))]
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = encode_embedding(vector)
            chunk.embedding_model = _MODEL
        return vectors


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _config() -> PlantOpsConfig:
    cfg = PlantOpsConfig()
    cfg.chunking = ChunkingCfg(chunk_size=40, overlap=5)
    return cfg


def _pipeline(repo, fail: bool = False) -> IngestionPipeline:
    return IngestionPipeline(repo, _config(), writer=_FakeWriter(fail=fail))


def _vec_count(repo) -> int:
    return repo.conn.execute(f"SELECT COUNT(*) FROM {_TABLE}").fetchone()[0]


# ------------------------------------------------------------------
# Media types
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Manual.PDF", "application/pdf"),
        ("notes.md", "text/markdown"),
        ("data.json", "application/json"),
        ("image.png", None),
        ("README", None),
    ],
)
def test_guess_media_type(name, expected):
    assert guess_media_type(name) == expected


def test_chunker_for_dispatch():
    assert isinstance(chunker_for("application/pdf"), PdfChunker)
    assert isinstance(chunker_for("text/plain; charset=utf-8"), PlainTextChunker)
    assert isinstance(chunker_for("application/json"), PlainTextChunker)
    with pytest.raises(IngestionError, match="Unsupported media type"):
        chunker_for("image/png")


# ------------------------------------------------------------------
# register_file
# ------------------------------------------------------------------


def test_register_file_two_phases(repo):
    file = register_file(repo, "notes.txt", "text/plain", b"hello")
    stored = repo.get_file(file.id)
    assert stored.content == b"hello"
    assert stored.size == 5


def test_register_file_phase_two_failure_removes_row(repo):
    with patch.object(repo, "attach_content", side_effect=OSError("disk full")):
        with pytest.raises(OSError, match="disk full"):
            register_file(repo, "notes.txt", "text/plain", b"hello")
    assert repo.list_files() == []


# ------------------------------------------------------------------
# ingest
# ------------------------------------------------------------------


def test_ingest_writes_chunks_and_vectors(repo):
    file = register_file(repo, "notes.txt", "text/plain", ("pump valve " * 20).encode())

    report = _pipeline(repo).ingest(file.id)

    assert report.chunks_written > 1
    assert report.chunks_replaced == 0
    assert report.embedding_model == _MODEL
    assert repo.count_chunks_by_file(file.id) == report.chunks_written
    assert _vec_count(repo) == report.chunks_written


def test_reingest_replaces_previous_chunks(repo):
    file = register_file(repo, "notes.txt", "text/plain", ("pump valve " * 20).encode())
    first = _pipeline(repo).ingest(file.id)

    second = _pipeline(repo).ingest(file.id)

    assert second.chunks_replaced == first.chunks_written
    assert repo.count_chunks() == second.chunks_written
    assert _vec_count(repo) == second.chunks_written
    assert [c.chunk_index for c in repo.list_chunks_by_file(file.id)] == list(
        range(second.chunks_written)
    )


def test_embedding_failure_leaves_old_chunks(repo):
    file = register_file(repo, "notes.txt", "text/plain", ("pump valve " * 20).encode())
    first = _pipeline(repo).ingest(file.id)
    before = [c.text for c in repo.list_chunks_by_file(file.id)]

    with pytest.raises(IngestionError, match="Embedding"):
        _pipeline(repo, fail=True).ingest(file.id)

    assert [c.text for c in repo.list_chunks_by_file(file.id)] == before
    assert _vec_count(repo) == first.chunks_written


def test_storage_failure_rolls_back_swap(repo):
    file = register_file(repo, "notes.txt", "text/plain", ("pump valve " * 20).encode())
    first = _pipeline(repo).ingest(file.id)

    with patch.object(repo, "delete_chunks", side_effect=RuntimeError("locked")):
        with pytest.raises(IngestionError, match="Storing chunks"):
            _pipeline(repo).ingest(file.id)

    assert repo.count_chunks() == first.chunks_written
    assert _vec_count(repo) == first.chunks_written


def test_ingest_missing_file_raises(repo):
    with pytest.raises(IngestionError, match="not found"):
        _pipeline(repo).ingest("nope")


def test_ingest_without_content_raises(repo):
    repo.add_file(File(id="f1", name="notes.txt", media_type="text/plain"))
    with pytest.raises(IngestionError, match="no content"):
        _pipeline(repo).ingest("f1")


def test_ingest_undecodable_content_raises(repo):
    file = register_file(repo, "notes.txt", "text/plain", b"\xff\xfe\xc3")
    with pytest.raises(IngestionError, match="Cannot decode"):
        _pipeline(repo).ingest(file.id)
    assert repo.count_chunks() == 0


def test_ingest_empty_text_raises(repo):
    file = register_file(repo, "blank.txt", "text/plain", b"   \n ")
    with pytest.raises(IngestionError, match="no extractable text"):
        _pipeline(repo).ingest(file.id)
