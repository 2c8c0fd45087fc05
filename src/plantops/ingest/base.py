"""Base chunker interface for all PlantOps document types."""

from __future__ import annotations

import bisect
import re
from abc import ABC, abstractmethod

from plantops.db.models import DocumentChunk

_PAGE_SEPARATOR = "\n\n"
# Characters of a chunk used to locate it in the page texts.
_LEAD_CHARS = 50
_WS = re.compile(r"\s+")


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses decode the stored binary into page texts (``extract_pages``);
    the base class joins them and splits the result into fixed-size character
    windows with overlap, tagging each window with the page it starts on.

    Unpaged formats return a single page and set ``paged = False`` so that
    their chunks carry no page number.
    """

    paged: bool = True

    def __init__(self, chunk_size: int = 1500, overlap: int = 150) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def extract_pages(self, content: bytes) -> list[str]:
        """Decode *content* into page texts, in page order.

        Raises:
            ValueError: If *content* cannot be decoded as this chunker's format.
        """

    def chunk(self, file_id: str, source_label: str, content: bytes) -> list[DocumentChunk]:
        """Split *content* into staged DocumentChunks for *file_id*.

        Args:
            file_id: ID of the owning File row.
            source_label: Label stored on every chunk (the file name).
            content: Raw file bytes.

        Returns:
            Ordered list of DocumentChunks with sequential ``chunk_index``.
        """
        return self.chunk_pages(file_id, source_label, self.extract_pages(content))

    def chunk_pages(
        self, file_id: str, source_label: str, pages: list[str]
    ) -> list[DocumentChunk]:
        text, starts = _join_pages(pages)
        if not text.strip():
            return []

        chunks: list[DocumentChunk] = []
        for start, segment in self._split_fixed_window(text):
            page = None
            if self.paged and starts:
                page = bisect.bisect_right(starts, start)
            chunks.append(
                DocumentChunk(
                    file_id=file_id,
                    chunk_index=len(chunks),
                    text=segment,
                    source_label=source_label,
                    page=page,
                )
            )
        if self.paged:
            assign_pages(chunks, pages)
        return chunks

    def _split_fixed_window(self, text: str) -> list[tuple[int, str]]:
        """Split *text* into ``(start_offset, segment)`` windows with overlap.

        Window size = ``self.chunk_size`` characters, step = size - overlap.
        Segments are stripped (the offset points at the first kept character);
        empty segments are omitted.
        """
        step = max(1, self.chunk_size - self.overlap)
        segments: list[tuple[int, str]] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + self.chunk_size, length)
            raw = text[pos:end]
            segment = raw.strip()
            if segment:
                segments.append((pos + (len(raw) - len(raw.lstrip())), segment))
            if end >= length:
                break
            pos += step

        return segments


def _join_pages(pages: list[str]) -> tuple[str, list[int]]:
    """Join non-empty pages; return the text and each page's start offset.

    Empty pages keep their slot in the offsets list so numbering stays 1-based
    by physical page.
    """
    parts: list[str] = []
    starts: list[int] = []
    pos = 0
    for page in pages:
        stripped = page.strip()
        starts.append(pos)
        if stripped:
            parts.append(stripped)
            pos += len(stripped) + len(_PAGE_SEPARATOR)
    return _PAGE_SEPARATOR.join(parts), starts


def _normalise(text: str) -> str:
    return _WS.sub(" ", text).strip()


def assign_pages(chunks: list[DocumentChunk], page_texts: list[str]) -> list[DocumentChunk]:
    """Fill in missing page numbers by matching each chunk against *page_texts*.

    A chunk whose ``page`` is None gets the 1-based number of the first page
    that contains the chunk's leading text (whitespace-normalised). Chunks that
    already have a page, or match no page, are left as they are.
    """
    normalised = [_normalise(p) for p in page_texts]
    for chunk in chunks:
        if chunk.page is not None:
            continue
        lead = _normalise(chunk.text)[:_LEAD_CHARS]
        if not lead:
            continue
        for number, page in enumerate(normalised, start=1):
            if lead in page:
                chunk.page = number
                break
    return chunks
