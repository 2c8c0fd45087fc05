"""Per-model sqlite-vec virtual tables and the embedding wire format.

Wire format (no version header — the reader must know the model's
dimensionality out of band):

    uint32 little-endian   dimension count N
    N × float32 little-endian  vector components
"""

from __future__ import annotations

import re
import sqlite3
import struct
from collections.abc import Sequence

_DIM_HEADER = struct.Struct("<I")
_FLOAT_SIZE = 4


class EmbeddingFormatError(ValueError):
    """Raised when an encoded embedding is truncated or inconsistent."""


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "azure/text-embedding-ada-002"  -> "azure_text_embedding_ada_002"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} virtual table if it doesn't already exist.

    The table uses cosine distance so that ``1 - distance`` is a similarity score.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING "
            f"vec0(embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()

    return table


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the names of all vec_chunks_* virtual tables (shadow tables excluded)."""
    return [
        r[0]
        for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_chunks_%'"
            " AND sql LIKE 'CREATE VIRTUAL TABLE%'"
        ).fetchall()
    ]


# ------------------------------------------------------------------
# Wire codec
# ------------------------------------------------------------------


def encode_embedding(vector: Sequence[float]) -> bytes:
    """Encode *vector* as ``uint32 LE count`` followed by ``count`` float32 LE."""
    n = len(vector)
    return _DIM_HEADER.pack(n) + struct.pack(f"<{n}f", *vector)


def decode_embedding(data: bytes) -> list[float]:
    """Decode bytes produced by encode_embedding().

    Raises:
        EmbeddingFormatError: If the buffer is shorter than its header claims
            or carries trailing bytes.
    """
    if len(data) < _DIM_HEADER.size:
        raise EmbeddingFormatError(
            f"Embedding buffer too short for header: {len(data)} bytes"
        )
    (n,) = _DIM_HEADER.unpack_from(data, 0)
    expected = _DIM_HEADER.size + n * _FLOAT_SIZE
    if len(data) != expected:
        raise EmbeddingFormatError(
            f"Embedding buffer length {len(data)} does not match "
            f"dimension count {n} (expected {expected} bytes)"
        )
    return list(struct.unpack_from(f"<{n}f", data, _DIM_HEADER.size))
