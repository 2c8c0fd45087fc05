"""Document ingestion: stored File → chunks + embeddings, swapped in atomically.

Steps for ``IngestionPipeline.ingest(file_id)``:
  1. Load the File; it must exist and have content attached.
  2. Decode + chunk with the chunker for its media type.
  3. Embed every chunk (dimensionality checked) and encode the vectors.
  4. In one transaction: insert the staged chunks and vec rows, then delete
     the previous chunks carrying the same source label. Any failure rolls
     the whole swap back and the old chunks stay in place.

Uploads use ``register_file()``: metadata insert first, content attach second;
if the second phase fails the metadata row is removed again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from plantops.config import ChunkingCfg, PlantOpsConfig
from plantops.db.models import File
from plantops.db.repository import Repository
from plantops.db.vectors import ensure_vec_table, model_to_slug
from plantops.ingest.base import BaseChunker
from plantops.ingest.embedding_writer import EmbeddingConfig, EmbeddingWriter
from plantops.ingest.pdf import PdfChunker
from plantops.ingest.plaintext import PlainTextChunker

logger = logging.getLogger(__name__)

_PDF_TYPES = frozenset(["application/pdf"])
_TEXT_TYPES = frozenset(
    [
        "application/json",
        "application/x-markdown",
        "application/xml",
    ]
)

# File extension → media type for uploads without an explicit type.
_EXTENSION_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
    ".json": "application/json",
    ".xml": "application/xml",
}


class IngestionError(RuntimeError):
    """Raised when a file cannot be ingested; nothing was committed."""


@dataclass
class IngestReport:
    file_id: str
    source_label: str
    chunks_written: int
    chunks_replaced: int
    embedding_model: str


def guess_media_type(filename: str) -> str | None:
    """Return the media type for *filename*'s extension, or None if unsupported."""
    dot = filename.rfind(".")
    if dot == -1:
        return None
    return _EXTENSION_TYPES.get(filename[dot:].lower())


def chunker_for(media_type: str, chunking: ChunkingCfg | None = None) -> BaseChunker:
    """Return a chunker instance for *media_type*.

    Raises:
        IngestionError: If the media type is not supported.
    """
    chunking = chunking or ChunkingCfg()
    mt = media_type.split(";", 1)[0].strip().lower()
    if mt in _PDF_TYPES:
        return PdfChunker(chunk_size=chunking.chunk_size, overlap=chunking.overlap)
    if mt.startswith("text/") or mt in _TEXT_TYPES:
        return PlainTextChunker(chunk_size=chunking.chunk_size, overlap=chunking.overlap)
    raise IngestionError(f"Unsupported media type '{media_type}'")


def register_file(repo: Repository, name: str, media_type: str, content: bytes) -> File:
    """Create a File in two phases and return it (without content).

    Phase one inserts the metadata row; phase two attaches the binary. If
    phase two fails, the phase-one row is deleted and the error re-raised.
    """
    file = File(id=str(uuid.uuid4()), name=name, media_type=media_type, size=len(content))
    repo.add_file(file)
    try:
        repo.attach_content(file.id, content)
    except Exception:
        logger.error("Attaching content to '%s' failed; removing metadata row", name)
        repo.delete_files([file.id])
        raise
    logger.info("Registered file %s (%s, %d bytes)", file.id, name, len(content))
    return file


class IngestionPipeline:
    """Turn a stored File into searchable chunks.

    Args:
        repo: Open Repository.
        config: Loaded PlantOps configuration (chunking + embedding sections).
        writer: Embedding writer; built from ``config.embedding`` when omitted.
    """

    def __init__(
        self,
        repo: Repository,
        config: PlantOpsConfig | None = None,
        writer: EmbeddingWriter | None = None,
    ) -> None:
        self._repo = repo
        self._config = config or PlantOpsConfig()
        self._writer = writer or EmbeddingWriter(
            EmbeddingConfig(
                model=self._config.embedding.model,
                dimensions=self._config.embedding.dimensions,
            )
        )

    def ingest(self, file_id: str) -> IngestReport:
        """Ingest (or re-ingest) *file_id*.

        Raises:
            IngestionError: On a missing file, missing content, unsupported or
                undecodable content, or any embedding / storage failure.
        """
        file = self._repo.get_file(file_id)
        if file is None:
            raise IngestionError(f"File '{file_id}' not found")
        if file.content is None:
            raise IngestionError(
                f"File '{file.name}' ({file_id}) has no content attached; upload it again."
            )

        chunker = chunker_for(file.media_type, self._config.chunking)
        try:
            chunks = chunker.chunk(file.id, file.name, file.content)
        except ValueError as exc:
            raise IngestionError(f"Cannot decode '{file.name}': {exc}") from exc
        finally:
            file.content = None
        if not chunks:
            raise IngestionError(f"'{file.name}' contains no extractable text")

        try:
            vectors = self._writer.embed(chunks)
        except Exception as exc:
            raise IngestionError(f"Embedding '{file.name}' failed: {exc}") from exc

        model = self._writer.config.model
        try:
            vec_table = ensure_vec_table(
                self._repo.conn, model_to_slug(model), self._writer.config.dimensions
            )
            previous = self._repo.chunk_rowids_by_label(file.name)
            with self._repo.transaction():
                for chunk, vector in zip(chunks, vectors):
                    rowid = self._repo.add_chunk(chunk)
                    chunk.rowid = rowid
                    self._repo.add_embedding(vec_table, rowid, vector)
                self._repo.delete_chunks(previous)
        except Exception as exc:
            raise IngestionError(f"Storing chunks for '{file.name}' failed: {exc}") from exc

        logger.info(
            "Ingested %s: %d chunks written, %d replaced", file.name, len(chunks), len(previous)
        )
        return IngestReport(
            file_id=file.id,
            source_label=file.name,
            chunks_written=len(chunks),
            chunks_replaced=len(previous),
            embedding_model=model,
        )
