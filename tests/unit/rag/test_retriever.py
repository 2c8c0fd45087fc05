"""Tests for the dense retriever."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from plantops.db.models import DocumentChunk, File
from plantops.db.repository import Repository
from plantops.db.vectors import ensure_vec_table, model_to_slug
from plantops.rag.retriever import RetrieverConfig, retrieve

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_MODEL = "openai/text-embedding-3-small"
_DIMS = 4


def _populate(conn, vectors: list[list[float]]) -> Repository:
    repo = Repository(conn)
    vec_table = ensure_vec_table(conn, model_to_slug(_MODEL), _DIMS)
    repo.add_file(File(id="f1", name="manual.pdf", media_type="application/pdf"))
    for i, vector in enumerate(vectors):
        rowid = repo.add_chunk(
            DocumentChunk(
                file_id="f1",
                chunk_index=i,
                text=f"chunk {i}",
                source_label="manual.pdf",
                page=i + 1,
                embedding_model=_MODEL,
            )
        )
        repo.add_embedding(vec_table, rowid, vector)
    return repo


# ------------------------------------------------------------------
# Tests
# ------------------------------------------------------------------


def test_retrieve_missing_index_returns_empty_without_embedding(tmp_db):
    with patch("plantops.rag.retriever.embed") as mock_embed:
        results = retrieve("anything", Repository(tmp_db), RetrieverConfig(embedding_model=_MODEL))
    assert results == []
    mock_embed.assert_not_called()


def test_retrieve_empty_index_returns_empty(tmp_db):
    repo = _populate(tmp_db, [])
    with patch("plantops.rag.retriever.embed", return_value=[1.0, 0.0, 0.0, 0.0]):
        assert retrieve("pump", repo, RetrieverConfig(embedding_model=_MODEL)) == []


def test_retrieve_orders_best_first_with_similarity_scores(tmp_db):
    repo = _populate(
        tmp_db,
        [[0.0, 1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0], [0.7, 0.7, 0.0, 0.0]],
    )
    with patch("plantops.rag.retriever.embed", return_value=[1.0, 0.0, 0.0, 0.0]):
        results = retrieve("pump", repo, RetrieverConfig(embedding_model=_MODEL, top_k=3))

    assert [r.chunk.text for r in results] == ["chunk 1", "chunk 2", "chunk 0"]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert results[-1].score == pytest.approx(0.0, abs=1e-5)
    assert results[0].chunk.page == 2


def test_retrieve_respects_top_k(tmp_db):
    repo = _populate(tmp_db, [[1.0, 0.0, 0.0, 0.0]] * 4)
    with patch("plantops.rag.retriever.embed", return_value=[1.0, 0.0, 0.0, 0.0]):
        results = retrieve("pump", repo, RetrieverConfig(embedding_model=_MODEL, top_k=2))
    assert len(results) == 2


def test_retrieve_embeds_with_configured_model(tmp_db):
    repo = _populate(tmp_db, [[1.0, 0.0, 0.0, 0.0]])
    with patch("plantops.rag.retriever.embed", return_value=[1.0, 0.0, 0.0, 0.0]) as mock_embed:
        retrieve("pump", repo, RetrieverConfig(embedding_model=_MODEL))
    mock_embed.assert_called_once_with(_MODEL, "pump")
