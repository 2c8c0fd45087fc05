"""Plain text chunker — fixed window with overlap."""

from __future__ import annotations

from plantops.ingest.base import BaseChunker


class PlainTextChunker(BaseChunker):
    """Split UTF-8 text (plain, markdown, JSON) into fixed-size windows.

    Text has no pages, so chunks carry ``page = None``.
    """

    paged = False

    def extract_pages(self, content: bytes) -> list[str]:
        try:
            return [content.decode("utf-8-sig")]
        except UnicodeDecodeError as exc:
            raise ValueError(f"Content is not valid UTF-8: {exc}") from exc
