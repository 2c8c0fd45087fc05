"""Repository pattern for all PlantOps database operations.

Single interface for: files, document chunks, vec embeddings, conversations,
messages. Vec tables are model-managed (ensure_vec_table); the repository
handles read + write.

Every write commits immediately unless it runs inside ``transaction()``, in
which case the whole block commits or rolls back as one unit.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager

from plantops.db.models import Conversation, DocumentChunk, File, Message
from plantops.db.vectors import list_vec_tables

_FILE_META_COLUMNS = "id, name, media_type, size, created_at"
_CHUNK_COLUMNS = (
    "rowid, file_id, chunk_index, text, source_label, page, embedding, "
    "embedding_model, created_at"
)


class Repository:
    """Data access layer for all PlantOps database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller and
    must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                migrated (see plantops.db.connection.Database).
        """
        self._conn = conn
        self._tx_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Repository]:
        """Group writes into one commit; roll everything back on any exception."""
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._conn.commit()

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def add_file(self, file: File) -> None:
        """Insert file metadata (phase one). Content is attached separately."""
        self._conn.execute(
            "INSERT INTO files (id, name, media_type, size) VALUES (?, ?, ?, ?)",
            (file.id, file.name, file.media_type, file.size),
        )
        self._commit()

    def attach_content(self, file_id: str, content: bytes) -> None:
        """Store the binary content of a file (phase two) and update its size.

        Raises:
            LookupError: If no file with *file_id* exists.
        """
        cur = self._conn.execute(
            "UPDATE files SET content = ?, size = ? WHERE id = ?",
            (sqlite3.Binary(content), len(content), file_id),
        )
        if cur.rowcount == 0:
            raise LookupError(f"File '{file_id}' does not exist")
        self._commit()

    def get_file(self, file_id: str, with_content: bool = True) -> File | None:
        """Return a file by ID (optionally without its content), or None."""
        columns = _FILE_META_COLUMNS + (", content" if with_content else "")
        row = self._conn.execute(
            f"SELECT {columns} FROM files WHERE id = ?", (file_id,)
        ).fetchone()
        return _row_to_file(row) if row else None

    def list_files(self) -> list[File]:
        """Return all files (metadata only) ordered by creation time."""
        rows = self._conn.execute(
            f"SELECT {_FILE_META_COLUMNS} FROM files ORDER BY created_at, name"
        ).fetchall()
        return [_row_to_file(r) for r in rows]

    def find_files(
        self, name: str | None = None, media_type: str | None = None
    ) -> list[File]:
        """Return files (metadata only) matching all given filters.

        With no filters every file is returned.
        """
        clauses: list[str] = []
        params: list[str] = []
        if name is not None:
            clauses.append("name = ?")
            params.append(name)
        if media_type is not None:
            clauses.append("media_type = ?")
            params.append(media_type)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {_FILE_META_COLUMNS} FROM files{where} ORDER BY created_at, name",
            params,
        ).fetchall()
        return [_row_to_file(r) for r in rows]

    def file_ids(self) -> set[str]:
        """Return the set of all live file IDs."""
        return {r[0] for r in self._conn.execute("SELECT id FROM files").fetchall()}

    def delete_files(self, file_ids: Sequence[str]) -> int:
        """Delete file rows. The FK cascade removes their chunks, not their vec rows.

        Returns the number of file rows deleted.
        """
        if not file_ids:
            return 0
        placeholders = ",".join("?" * len(file_ids))
        cur = self._conn.execute(
            f"DELETE FROM files WHERE id IN ({placeholders})", list(file_ids)
        )
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Document chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: DocumentChunk) -> int:
        """Insert a chunk. Returns the new rowid."""
        cur = self._conn.execute(
            """
            INSERT INTO document_chunks
                (file_id, chunk_index, text, source_label, page, embedding, embedding_model)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.file_id,
                chunk.chunk_index,
                chunk.text,
                chunk.source_label,
                chunk.page,
                sqlite3.Binary(chunk.embedding),
                chunk.embedding_model,
            ),
        )
        self._commit()
        return cur.lastrowid

    def get_chunk_by_rowid(self, rowid: int) -> DocumentChunk | None:
        """Return a chunk by its SQLite rowid, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE rowid = ?", (rowid,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks_by_file(self, file_id: str) -> list[DocumentChunk]:
        """Return the chunks of *file_id* in chunk_index order."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE file_id = ? "
            "ORDER BY chunk_index, rowid",
            (file_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_parents(self) -> list[tuple[int, str | None]]:
        """Return ``(rowid, file_id)`` for every chunk."""
        return [
            (r[0], r[1])
            for r in self._conn.execute(
                "SELECT rowid, file_id FROM document_chunks ORDER BY rowid"
            ).fetchall()
        ]

    def chunk_rowids_by_label(self, source_label: str) -> list[int]:
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM document_chunks WHERE source_label = ?", (source_label,)
            ).fetchall()
        ]

    def chunk_rowids_by_files(self, file_ids: Sequence[str]) -> list[int]:
        if not file_ids:
            return []
        placeholders = ",".join("?" * len(file_ids))
        return [
            r[0]
            for r in self._conn.execute(
                f"SELECT rowid FROM document_chunks WHERE file_id IN ({placeholders})",
                list(file_ids),
            ).fetchall()
        ]

    def null_parent_chunks_by_label(self) -> dict[str, list[int]]:
        """Group the rowids of chunks without a parent file by source label."""
        groups: dict[str, list[int]] = {}
        for row in self._conn.execute(
            "SELECT rowid, source_label FROM document_chunks WHERE file_id IS NULL "
            "ORDER BY rowid"
        ).fetchall():
            groups.setdefault(row["source_label"], []).append(row["rowid"])
        return groups

    def set_chunk_parent(self, rowids: Sequence[int], file_id: str) -> int:
        """Point *rowids* at *file_id*. Returns the number of chunks updated."""
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        cur = self._conn.execute(
            f"UPDATE document_chunks SET file_id = ? WHERE rowid IN ({placeholders})",
            [file_id, *rowids],
        )
        self._commit()
        return cur.rowcount

    def count_chunks(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM document_chunks").fetchone()[0]

    def count_chunks_by_file(self, file_id: str) -> int:
        """Return the number of chunks belonging to *file_id* (0 if none)."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM document_chunks WHERE file_id = ?", (file_id,)
        ).fetchone()[0]

    def delete_chunks(self, rowids: Iterable[int]) -> int:
        """Delete chunks and their vec rows in every vec table.

        Returns the number of chunk rows deleted.
        """
        ids = list(rowids)
        if not ids:
            return 0
        self.delete_embeddings(ids)
        placeholders = ",".join("?" * len(ids))
        cur = self._conn.execute(
            f"DELETE FROM document_chunks WHERE rowid IN ({placeholders})", ids
        )
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, rowid: int, embedding: Sequence[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = chunk rowid."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(list(embedding))),
        )
        self._commit()

    def delete_embeddings(self, rowids: Sequence[int]) -> int:
        """Delete vec rows for *rowids* from every vec table. Returns rows deleted."""
        if not rowids:
            return 0
        total = 0
        placeholders = ",".join("?" * len(rowids))
        for table in list_vec_tables(self._conn):
            cur = self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                list(rowids),
            )
            total += max(cur.rowcount, 0)
        self._commit()
        return total

    def dangling_embedding_rowids(self) -> dict[str, list[int]]:
        """Return vec rowids per table whose chunk row no longer exists."""
        chunk_rowids = {
            r[0] for r in self._conn.execute("SELECT rowid FROM document_chunks").fetchall()
        }
        dangling: dict[str, list[int]] = {}
        for table in list_vec_tables(self._conn):
            ids = [
                r[0]
                for r in self._conn.execute(f"SELECT rowid FROM [{table}]").fetchall()
                if r[0] not in chunk_rowids
            ]
            if ids:
                dangling[table] = ids
        return dangling

    def delete_embeddings_from(self, table: str, rowids: Sequence[int]) -> int:
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        cur = self._conn.execute(
            f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
            list(rowids),
        )
        self._commit()
        return max(cur.rowcount, 0)

    def search_vec(
        self, table: str, embedding: Sequence[float], limit: int = 5
    ) -> list[tuple[DocumentChunk, float]]:
        """Nearest-neighbour search. Returns (chunk, distance) sorted by distance."""
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? "
            "ORDER BY distance LIMIT ?",
            (json.dumps(list(embedding)), limit),
        ).fetchall()

        results: list[tuple[DocumentChunk, float]] = []
        for vec_row in vec_rows:
            chunk = self.get_chunk_by_rowid(vec_row["rowid"])
            if chunk is not None:
                results.append((chunk, vec_row["distance"]))
        return results

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def add_conversation(self, conversation: Conversation) -> None:
        self._conn.execute(
            """
            INSERT INTO conversations (id, user_id, title, scratch, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                conversation.id,
                conversation.user_id,
                conversation.title,
                conversation.scratch,
                conversation.created_at,
                conversation.updated_at or conversation.created_at,
            ),
        )
        self._commit()

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._conn.execute(
            "SELECT id, user_id, title, scratch, created_at, updated_at "
            "FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self) -> list[Conversation]:
        rows = self._conn.execute(
            "SELECT id, user_id, title, scratch, created_at, updated_at "
            "FROM conversations ORDER BY updated_at DESC"
        ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def update_conversation(
        self,
        conversation_id: str,
        *,
        updated_at: str,
        title: str | None = None,
        scratch: str | None = None,
    ) -> None:
        """Touch a conversation, optionally replacing its title and/or scratch."""
        sets = ["updated_at = ?"]
        params: list[str] = [updated_at]
        if title is not None:
            sets.append("title = ?")
            params.append(title)
        if scratch is not None:
            sets.append("scratch = ?")
            params.append(scratch)
        params.append(conversation_id)
        self._conn.execute(
            f"UPDATE conversations SET {', '.join(sets)} WHERE id = ?", params
        )
        self._commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> bool:
        """Insert a message. Returns False if a message with that id already exists."""
        cur = self._conn.execute(
            """
            INSERT OR IGNORE INTO messages (id, conversation_id, role, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.conversation_id,
                message.role,
                message.content,
                message.created_at,
            ),
        )
        self._commit()
        return cur.rowcount == 1

    def last_message_time(self, conversation_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT MAX(created_at) FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()
        return row[0] if row else None

    def list_messages(self, conversation_id: str) -> list[Message]:
        """Return the messages of a conversation, oldest first."""
        rows = self._conn.execute(
            "SELECT id, conversation_id, role, content, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY created_at, rowid",
            (conversation_id,),
        ).fetchall()
        return [
            Message(
                id=r["id"],
                conversation_id=r["conversation_id"],
                role=r["role"],
                content=r["content"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def count_messages(self, conversation_id: str | None = None) -> int:
        if conversation_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
        ).fetchone()[0]

    def delete_all_conversations(self) -> tuple[int, int]:
        """Delete every message and conversation. Returns (conversations, messages)."""
        messages = self._conn.execute("DELETE FROM messages").rowcount
        conversations = self._conn.execute("DELETE FROM conversations").rowcount
        self._commit()
        return conversations, messages


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_file(row: sqlite3.Row) -> File:
    keys = row.keys()
    content = row["content"] if "content" in keys else None
    return File(
        id=row["id"],
        name=row["name"],
        media_type=row["media_type"],
        size=row["size"],
        content=bytes(content) if content is not None else None,
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        rowid=row["rowid"],
        file_id=row["file_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        source_label=row["source_label"],
        page=row["page"],
        embedding=bytes(row["embedding"]),
        embedding_model=row["embedding_model"],
        created_at=row["created_at"],
    )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        scratch=row["scratch"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
