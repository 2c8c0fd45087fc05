"""Vector-store consistency: cascade deletes, orphan sweeps, parent repair.

Invariant maintained: every chunk's ``file_id`` is NULL or names an existing
File, and every vec row belongs to an existing chunk.

Two enforcement paths run side by side:
- event hook: ``delete_files()`` cascades to chunks and vec rows before the
  File rows go (best-effort; the FK cascade remains as a backstop);
- scheduled sweep: ``run_scheduled()`` periodically removes orphans and
  backfills NULL parents that can be resolved unambiguously.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from plantops.db.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    before: int
    after: int
    deleted: int
    dangling_vectors: int = 0


@dataclass
class RepairReport:
    fixed: int = 0
    unfixable: int = 0
    # source labels that matched zero or several files
    unresolved_labels: list[str] = field(default_factory=list)


class ConsistencyManager:
    """Keep chunks and vec rows consistent with the files table.

    Args:
        repo: Open Repository.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    # ------------------------------------------------------------------
    # Event hook
    # ------------------------------------------------------------------

    def cascade_delete(self, file_ids: Sequence[str]) -> int:
        """Delete the chunks (and vec rows) of *file_ids*. Never raises.

        Returns the number of chunks deleted (0 on failure).
        """
        try:
            rowids = self._repo.chunk_rowids_by_files(list(file_ids))
            deleted = self._repo.delete_chunks(rowids)
        except Exception:
            logger.exception("Cascade delete failed for files %s", list(file_ids))
            return 0
        if deleted:
            logger.info("Cascade-deleted %d chunks for %d files", deleted, len(file_ids))
        return deleted

    def cascade_delete_where(
        self, name: str | None = None, media_type: str | None = None
    ) -> int:
        """Cascade for every file matching the given name / media type. Never raises.

        With no filter every file is matched.
        """
        try:
            ids = [f.id for f in self._repo.find_files(name=name, media_type=media_type)]
        except Exception:
            logger.exception(
                "Cascade delete could not resolve files (name=%r, media_type=%r)",
                name,
                media_type,
            )
            return 0
        return self.cascade_delete(ids)

    def delete_files(self, file_ids: Sequence[str]) -> int:
        """Cascade, then delete the File rows. Returns the number of files deleted."""
        ids = list(file_ids)
        self.cascade_delete(ids)
        return self._repo.delete_files(ids)

    def delete_files_where(
        self, name: str | None = None, media_type: str | None = None
    ) -> int:
        """Delete every file matching the filter. At least one filter is required."""
        if name is None and media_type is None:
            raise ValueError("delete_files_where() needs a name or media_type filter")
        ids = [f.id for f in self._repo.find_files(name=name, media_type=media_type)]
        return self.delete_files(ids)

    def delete_all_files(self) -> tuple[int, int]:
        """Delete every file and every chunk, parentless ones included.

        Returns ``(files_deleted, chunks_deleted)``.
        """
        chunks = self.cascade_delete_where()
        chunks += self._repo.delete_chunks(rowid for rowid, _ in self._repo.chunk_parents())
        files = self._repo.delete_files(sorted(self._repo.file_ids()))
        logger.info("Removed all documents: %d files, %d chunks", files, chunks)
        return files, chunks

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def count_orphans(self) -> int:
        live = self._repo.file_ids()
        return sum(
            1
            for _, file_id in self._repo.chunk_parents()
            if file_id is not None and file_id not in live
        )

    def sweep_orphans(self) -> SweepReport:
        """Delete chunks whose parent file no longer exists, and dangling vec rows."""
        live = self._repo.file_ids()
        orphans = [
            rowid
            for rowid, file_id in self._repo.chunk_parents()
            if file_id is not None and file_id not in live
        ]
        deleted = self._repo.delete_chunks(orphans)

        dangling = 0
        for table, rowids in self._repo.dangling_embedding_rowids().items():
            dangling += self._repo.delete_embeddings_from(table, rowids)

        after = self.count_orphans()
        if orphans or dangling:
            logger.info(
                "Orphan sweep removed %d chunks and %d dangling vectors", deleted, dangling
            )
        return SweepReport(
            before=len(orphans), after=after, deleted=deleted, dangling_vectors=dangling
        )

    def repair_null_references(self) -> RepairReport:
        """Backfill NULL parents from the source label when exactly one file matches."""
        report = RepairReport()
        for label, rowids in self._repo.null_parent_chunks_by_label().items():
            matches = self._repo.find_files(name=label)
            if len(matches) == 1:
                report.fixed += self._repo.set_chunk_parent(rowids, matches[0].id)
            else:
                report.unfixable += len(rowids)
                report.unresolved_labels.append(label)
                logger.warning(
                    "Cannot repair %d chunks labelled '%s': %d matching files",
                    len(rowids),
                    label,
                    len(matches),
                )
        return report

    def run_scheduled(
        self,
        interval_s: float,
        iterations: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> list[tuple[SweepReport, RepairReport]]:
        """Run sweep + repair every *interval_s* seconds.

        Runs forever when *iterations* is None, keeping no reports. Errors in
        one pass are logged and the loop continues.
        """
        results: list[tuple[SweepReport, RepairReport]] = []
        done = 0
        while iterations is None or done < iterations:
            try:
                outcome = (self.sweep_orphans(), self.repair_null_references())
                if iterations is not None:
                    results.append(outcome)
            except Exception:
                logger.exception("Scheduled consistency pass failed")
            done += 1
            if iterations is None or done < iterations:
                sleep(interval_s)
        return results
