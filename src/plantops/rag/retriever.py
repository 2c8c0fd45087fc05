"""Dense retriever over the sqlite-vec index.

The query is embedded with the same embedding model used at ingest and
matched against that model's vec table (cosine distance). Scores are
similarities: score = 1 - distance.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from plantops.db.models import DocumentChunk
from plantops.db.repository import Repository
from plantops.db.vectors import model_to_slug, vec_table_name
from plantops.rag.llm_client import embed

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for the retriever.

    Attributes:
        embedding_model: LiteLLM embedding model string (provider/model format).
        top_k: Maximum number of chunks to return.
    """

    embedding_model: str = "openai/text-embedding-3-small"
    top_k: int = 5


@dataclass
class RetrievedChunk:
    """A retrieved chunk with its cosine similarity to the query."""

    chunk: DocumentChunk
    score: float


def retrieve(query: str, repo: Repository, config: RetrieverConfig) -> list[RetrievedChunk]:
    """Return the top-k chunks nearest to *query*, best-first.

    Returns an empty list, without embedding the query, when nothing has been
    ingested for the configured embedding model yet.
    """
    vec_table = vec_table_name(model_to_slug(config.embedding_model))
    if not _vec_table_exists(repo.conn, vec_table):
        logger.warning(
            "No embeddings found for model '%s'; answering without document context",
            config.embedding_model,
        )
        return []

    query_embedding = embed(config.embedding_model, query)
    results = repo.search_vec(vec_table, query_embedding, limit=config.top_k)
    return [RetrievedChunk(chunk=chunk, score=1.0 - distance) for chunk, distance in results]


def _vec_table_exists(conn: sqlite3.Connection, vec_table: str) -> bool:
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (vec_table,),
    ).fetchone()
    return exists is not None
