"""PDF chunker — page-based extraction via pypdf."""

from __future__ import annotations

import io

import pypdf
from pypdf.errors import PdfReadError

from plantops.ingest.base import BaseChunker


class PdfChunker(BaseChunker):
    """Split a PDF document into chunks using pypdf.

    Strategy:
    - Read the stored bytes through an in-memory buffer (closed on every path).
    - Extract text page-by-page via ``pypdf.PdfReader``; pages that yield no
      text (scanned images, etc.) keep their page number but contribute nothing.
    - Apply the fixed-window splitter to the joined text; each chunk is tagged
      with the page it starts on.
    """

    def extract_pages(self, content: bytes) -> list[str]:
        buffer = io.BytesIO(content)
        try:
            reader = pypdf.PdfReader(buffer)
            return [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise ValueError(f"Unreadable PDF: {exc}") from exc
        finally:
            buffer.close()
