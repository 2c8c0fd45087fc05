"""PlantOps ingest pipeline — chunkers, embedding writer, ingestion swap."""

from plantops.ingest.base import BaseChunker, assign_pages
from plantops.ingest.pdf import PdfChunker
from plantops.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "PdfChunker",
    "PlainTextChunker",
    "assign_pages",
]
