"""Domain models for the PlantOps database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class File:
    id: str
    name: str
    media_type: str
    size: int = 0
    content: bytes | None = None  # None between metadata insert and content attach
    created_at: str | None = None


@dataclass
class DocumentChunk:
    file_id: str | None
    chunk_index: int
    text: str
    source_label: str
    page: int | None = None
    embedding: bytes = b""  # wire format, see plantops.db.vectors.encode_embedding
    embedding_model: str = ""
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for staged chunks


@dataclass
class Conversation:
    id: str
    user_id: str = ""
    title: str = ""
    scratch: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def scratch_dict(self) -> dict:
        return json.loads(self.scratch or "{}")


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str  # user | assistant
    content: str
    created_at: str
