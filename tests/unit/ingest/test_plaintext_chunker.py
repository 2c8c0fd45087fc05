"""Tests for PlainTextChunker."""

from __future__ import annotations

import pytest

from plantops.ingest.plaintext import PlainTextChunker


def test_plaintext_single_chunk_without_page():
    chunks = PlainTextChunker().chunk("f1", "notes.txt", b"Pump 7 vents via V3.")
    assert len(chunks) == 1
    assert chunks[0].text == "Pump 7 vents via V3."
    assert chunks[0].page is None


def test_plaintext_strips_bom():
    chunks = PlainTextChunker().chunk("f1", "notes.txt", "\ufeffHallo Welt".encode("utf-8"))
    assert chunks[0].text == "Hallo Welt"


def test_plaintext_long_text_overlaps():
    text = "".join(chr(ord("a") + i % 26) for i in range(3000))
    chunks = PlainTextChunker(chunk_size=1500, overlap=150).chunk("f1", "long.txt", text.encode())
    assert len(chunks) == 3
    assert chunks[0].text[-150:] == chunks[1].text[:150]
    assert all(c.page is None for c in chunks)


def test_plaintext_invalid_utf8_raises():
    with pytest.raises(ValueError, match="UTF-8"):
        PlainTextChunker().chunk("f1", "bin.txt", b"\xff\xfe\x00garbage\xc3")


def test_plaintext_whitespace_only_gives_no_chunks():
    assert PlainTextChunker().chunk("f1", "blank.txt", b" \n\t ") == []
