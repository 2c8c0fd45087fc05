"""Tests for per-model sqlite-vec tables and the embedding wire format."""

from __future__ import annotations

import struct

import pytest

from plantops.db.vectors import (
    EmbeddingFormatError,
    decode_embedding,
    encode_embedding,
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    vec_table_name,
)


# --- model_to_slug ---

@pytest.mark.parametrize("model,expected", [
    ("openai/text-embedding-3-small", "openai_text_embedding_3_small"),
    ("azure/text-embedding-ada-002", "azure_text_embedding_ada_002"),
    ("cohere/embed-english-v3.0", "cohere_embed_english_v3_0"),
])
def test_model_to_slug(model, expected):
    assert model_to_slug(model) == expected


def test_vec_table_name():
    slug = model_to_slug("openai/text-embedding-3-small")
    assert vec_table_name(slug) == "vec_chunks_openai_text_embedding_3_small"


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(tmp_db):
    table = ensure_vec_table(tmp_db, "test_model", dimensions=4)
    assert table == "vec_chunks_test_model"
    assert list_vec_tables(tmp_db) == ["vec_chunks_test_model"]


def test_ensure_vec_table_idempotent(tmp_db):
    ensure_vec_table(tmp_db, "test_model", dimensions=4)
    ensure_vec_table(tmp_db, "test_model", dimensions=4)
    assert list_vec_tables(tmp_db) == ["vec_chunks_test_model"]


def test_list_vec_tables_excludes_shadow_tables(tmp_db):
    ensure_vec_table(tmp_db, "model_a", dimensions=4)
    ensure_vec_table(tmp_db, "model_b", dimensions=8)
    assert sorted(list_vec_tables(tmp_db)) == ["vec_chunks_model_a", "vec_chunks_model_b"]


def test_ensure_vec_table_rejects_unsanitized_slug(tmp_db):
    with pytest.raises(ValueError, match="model_to_slug"):
        ensure_vec_table(tmp_db, "openai/text-embedding", dimensions=4)


def test_ensure_vec_table_rejects_zero_dimensions(tmp_db):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(tmp_db, "test_model", dimensions=0)


# --- wire format ---

def test_encode_layout_is_count_then_little_endian_floats():
    data = encode_embedding([1.0, -2.5])
    assert data[:4] == struct.pack("<I", 2)
    assert data[4:] == struct.pack("<2f", 1.0, -2.5)
    assert len(data) == 4 + 2 * 4


def test_round_trip_is_bit_exact():
    # values exactly representable in float32
    vector = [0.5, -0.25, 3.0, 0.0, 1e-3]
    encoded = encode_embedding(vector)
    decoded = decode_embedding(encoded)
    assert len(decoded) == len(vector)
    assert encode_embedding(decoded) == encoded


def test_empty_vector_round_trip():
    assert decode_embedding(encode_embedding([])) == []


def test_decode_rejects_truncated_buffer():
    data = encode_embedding([1.0, 2.0, 3.0])
    with pytest.raises(EmbeddingFormatError, match="does not match"):
        decode_embedding(data[:-1])


def test_decode_rejects_trailing_bytes():
    with pytest.raises(EmbeddingFormatError):
        decode_embedding(encode_embedding([1.0]) + b"\x00")


def test_decode_rejects_missing_header():
    with pytest.raises(EmbeddingFormatError, match="header"):
        decode_embedding(b"\x01\x00")
