"""Conversational memory: persist turns, recall a bounded window, title threads.

Window policy: token budget. Prior messages are taken newest-first while the
running token count stays within ``token_budget`` and at most ``max_turns``
messages are selected; they are returned oldest-first as OpenAI-style messages.

Timestamps are stored as fixed-width UTC strings (``YYYY-MM-DDTHH:MM:SS.ffffffZ``)
so that text order equals time order. A message that would not sort after the
last stored one in its conversation is nudged to last + 1 µs.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from plantops.db.models import Conversation, Message
from plantops.db.repository import Repository
from plantops.rag.llm_client import complete, count_tokens

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_TITLE_MAX_CHARS = 60

_TITLE_SYSTEM = (
    "Write a short title (at most 6 words) for a conversation that starts with "
    "the following question. Reply with the title only, no quotes."
)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def format_timestamp(value: datetime | str | None = None) -> str:
    """Normalise *value* (datetime, ISO string, or None = now) to the stored format."""
    if value is None:
        dt = datetime.now(timezone.utc)
    elif isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid message time: {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_stored(ts: str) -> datetime:
    return datetime.strptime(ts, _TS_FORMAT).replace(tzinfo=timezone.utc)


class MemoryManager:
    """Per-conversation message store and prompt-memory builder.

    Args:
        repo: Open Repository.
        model: Model whose tokenizer measures the window; also used for titles.
        token_budget: Upper bound on tokens in the recalled window.
        max_turns: Upper bound on messages in the recalled window.
    """

    def __init__(
        self,
        repo: Repository,
        model: str = "openai/gpt-4o",
        token_budget: int = 2_000,
        max_turns: int = 10,
    ) -> None:
        self._repo = repo
        self._model = model
        self._token_budget = token_budget
        self._max_turns = max_turns

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_user_message(
        self,
        conversation_id: str,
        message_id: str,
        message_time: datetime | str | None,
        user_id: str,
        content: str,
    ) -> bool:
        """Persist a user turn, creating the conversation on first write.

        Returns True if the conversation was created by this call.
        """
        created = self._ensure_conversation(conversation_id, user_id, message_time)
        self._append(conversation_id, message_id, ROLE_USER, content, message_time)
        return created

    def record_assistant_message(
        self,
        conversation_id: str,
        content: str,
        message_time: datetime | str | None = None,
        message_id: str | None = None,
    ) -> Message:
        """Persist an assistant turn and return the stored message."""
        self._ensure_conversation(conversation_id, "", message_time)
        return self._append(
            conversation_id, message_id or str(uuid.uuid4()), ROLE_ASSISTANT, content, message_time
        )

    def _ensure_conversation(
        self, conversation_id: str, user_id: str, message_time: datetime | str | None
    ) -> bool:
        if self._repo.get_conversation(conversation_id) is not None:
            return False
        ts = format_timestamp(message_time)
        self._repo.add_conversation(
            Conversation(id=conversation_id, user_id=user_id, created_at=ts, updated_at=ts)
        )
        logger.info("Created conversation %s", conversation_id)
        return True

    def _append(
        self,
        conversation_id: str,
        message_id: str,
        role: str,
        content: str,
        message_time: datetime | str | None,
    ) -> Message:
        ts = format_timestamp(message_time)
        last = self._repo.last_message_time(conversation_id)
        if last is not None and ts <= last:
            ts = (_parse_stored(last) + timedelta(microseconds=1)).strftime(_TS_FORMAT)
        message = Message(
            id=message_id, conversation_id=conversation_id, role=role, content=content, created_at=ts
        )
        if not self._repo.add_message(message):
            logger.debug("Message %s already stored; ignoring duplicate", message_id)
        self._repo.update_conversation(conversation_id, updated_at=ts)
        return message

    # ------------------------------------------------------------------
    # Recall
    # ------------------------------------------------------------------

    def build_context(
        self, conversation_id: str, exclude_message_id: str | None = None
    ) -> list[dict[str, str]]:
        """Return the bounded prior-history window, oldest first."""
        history = [
            m
            for m in self._repo.list_messages(conversation_id)
            if m.id != exclude_message_id
        ]
        selected: list[Message] = []
        total = 0
        for message in reversed(history):
            if len(selected) >= self._max_turns:
                break
            tokens = count_tokens(self._model, message.content)
            if total + tokens > self._token_budget:
                break
            selected.append(message)
            total += tokens
        selected.reverse()
        return [{"role": m.role, "content": m.content} for m in selected]

    # ------------------------------------------------------------------
    # Titles + scratch
    # ------------------------------------------------------------------

    def generate_title(self, conversation_id: str, first_query: str) -> str:
        """Title a new conversation with one LLM call; falls back to the query text."""
        fallback = first_query.strip()[:_TITLE_MAX_CHARS] or "New conversation"
        try:
            raw = complete(
                model=self._model,
                messages=[
                    {"role": "system", "content": _TITLE_SYSTEM},
                    {"role": "user", "content": first_query},
                ],
                max_tokens=20,
                temperature=0,
            )
            title = raw.strip().strip("\"'").strip()[:_TITLE_MAX_CHARS] or fallback
        except Exception as exc:
            logger.warning("Title generation failed for %s: %s", conversation_id, exc)
            title = fallback
        self._repo.update_conversation(
            conversation_id, updated_at=format_timestamp(), title=title
        )
        return title

    def get_scratch(self, conversation_id: str) -> dict[str, Any]:
        conversation = self._repo.get_conversation(conversation_id)
        if conversation is None:
            return {}
        try:
            return conversation.scratch_dict
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable scratch for conversation %s", conversation_id)
            return {}

    def update_scratch(self, conversation_id: str, **values: Any) -> dict[str, Any]:
        """Merge *values* into the conversation's scratch slot and return it."""
        scratch = self.get_scratch(conversation_id)
        scratch.update(values)
        self._repo.update_conversation(
            conversation_id,
            updated_at=format_timestamp(),
            scratch=json.dumps(scratch, default=str),
        )
        return scratch

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def delete_all(self) -> tuple[int, int]:
        """Delete every conversation and message. Returns (conversations, messages)."""
        conversations, messages = self._repo.delete_all_conversations()
        logger.info("Deleted %d conversations and %d messages", conversations, messages)
        return conversations, messages
