"""Hybrid router: one chat turn from user query to stored assistant response.

Flow:
  1. Store the user turn and recall the prior-turn window.
  2. Load the SchemaMap (cached); failures disable the structured path.
  3. Extract entity set / properties; attempt a structured lookup.
  4. On a Hit, answer directly. Otherwise fall back to document retrieval.
  5. Store the assistant turn; title the conversation on its first turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from plantops.memory.manager import MemoryManager
from plantops.query.extractor import Extraction, IntentExtractor
from plantops.query.structured import Hit, NoRecords, StructuredQueryHandler, StructuredResult
from plantops.rag.fallback import Citation, RetrievalFallback
from plantops.schema.provider import SchemaCache, SchemaFetchError, SchemaMap, humanize

logger = logging.getLogger(__name__)


@dataclass
class ChatRequest:
    conversation_id: str
    message_id: str
    user_query: str
    user_id: str = ""
    message_time: datetime | str | None = None


@dataclass
class AdditionalContent:
    """A retrieved chunk surfaced alongside the answer."""

    text: str
    source_label: str
    page: int | None
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "sourceLabel": self.source_label,
            "page": self.page,
            "score": self.score,
        }


@dataclass
class ChatResponse:
    content: str
    message_time: str
    role: str = "assistant"
    additional_contents: list[AdditionalContent] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    # "structured" or "documents"
    answered_by: str = "documents"

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "messageTime": self.message_time,
            "additionalContents": [c.to_dict() for c in self.additional_contents],
            "citations": [
                {"sourceLabel": c.source_label, "page": c.page} for c in self.citations
            ],
        }


class HybridRouter:
    """Route a chat turn to the structured resource or the document index.

    Args:
        memory: Conversation store + prompt-memory builder.
        fallback: Retrieval fallback handler.
        extractor: Intent/entity extractor.
        schema_cache: Shared SchemaCache (owned by the caller).
        structured: Structured handler; None disables the structured path.
        base_url: Structured resource root used as the schema cache key.
    """

    def __init__(
        self,
        memory: MemoryManager,
        fallback: RetrievalFallback,
        extractor: IntentExtractor | None = None,
        schema_cache: SchemaCache | None = None,
        structured: StructuredQueryHandler | None = None,
        base_url: str = "",
    ) -> None:
        self._memory = memory
        self._fallback = fallback
        self._extractor = extractor or IntentExtractor()
        self._schema_cache = schema_cache
        self._structured = structured
        self._base_url = base_url

    def chat(self, request: ChatRequest) -> ChatResponse:
        """Answer one user turn.

        Raises:
            Exception: Backend failures during the fallback completion propagate
                after the user turn has been stored.
        """
        created = self._memory.record_user_message(
            request.conversation_id,
            request.message_id,
            request.message_time,
            request.user_id,
            request.user_query,
        )
        memory = self._memory.build_context(
            request.conversation_id, exclude_message_id=request.message_id
        )

        result = self._try_structured(request)
        if isinstance(result, Hit):
            logger.info("Answered structurally from %s", result.entity_set)
            response = self._store(request, result.answer, answered_by="structured")
        else:
            structured_context = None
            if isinstance(result, NoRecords):
                structured_context = "A lookup in the business system found no matching records."
            fallback = self._fallback.answer(
                request.user_query, memory=memory, structured_context=structured_context
            )
            response = self._store(request, fallback.answer, answered_by="documents")
            response.additional_contents = [
                AdditionalContent(
                    text=rc.chunk.text,
                    source_label=rc.chunk.source_label,
                    page=rc.chunk.page,
                    score=rc.score,
                )
                for rc in fallback.chunks
            ]
            response.citations = fallback.citations

        if created:
            self._memory.generate_title(request.conversation_id, request.user_query)
        return response

    # ------------------------------------------------------------------
    # Structured path
    # ------------------------------------------------------------------

    def _load_schema(self) -> SchemaMap:
        if not self._base_url or self._schema_cache is None:
            return {}
        try:
            return self._schema_cache.get(self._base_url)
        except SchemaFetchError as exc:
            logger.warning("Schema unavailable, skipping structured lookup: %s", exc)
            return {}

    def _try_structured(self, request: ChatRequest) -> StructuredResult | None:
        if self._structured is None:
            return None
        schema_map = self._load_schema()
        if not schema_map:
            return None

        extraction = self._extractor.extract(request.user_query, schema_map)
        if extraction.is_unknown:
            logger.debug("Extraction is Unknown; using document retrieval")
            return None
        extraction = self._recall_entity(request.conversation_id, extraction)

        result = self._structured.handle(extraction, schema_map)
        if isinstance(result, Hit) and len(result.records) == 1:
            es = schema_map[result.entity_set]
            keys = {k: result.records[0][k] for k in es.keys if k in result.records[0]}
            if keys:
                self._memory.update_scratch(
                    request.conversation_id, entity_set=result.entity_set, keys=keys
                )
        elif not isinstance(result, Hit):
            logger.info("Structured lookup did not answer (%s)", result)
        return result

    def _recall_entity(self, conversation_id: str, extraction: Extraction) -> Extraction:
        """Fill key values from the last referenced record of the same entity set.

        Only applies when the query itself carries no filter values, e.g. a
        follow-up "and who is the manufacturer?" after an order lookup.
        """
        if extraction.filters:
            return extraction
        scratch = self._memory.get_scratch(conversation_id)
        if scratch.get("entity_set") != extraction.entity_set:
            return extraction
        keys = scratch.get("keys")
        if not isinstance(keys, dict) or not keys:
            return extraction
        logger.debug(
            "Reusing %s keys %s from earlier in the conversation",
            humanize(extraction.entity_set or ""),
            keys,
        )
        return Extraction(
            entity_set=extraction.entity_set,
            intent=extraction.intent,
            properties={**extraction.properties, **keys},
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _store(self, request: ChatRequest, content: str, answered_by: str) -> ChatResponse:
        message = self._memory.record_assistant_message(request.conversation_id, content)
        return ChatResponse(
            content=content, message_time=message.created_at, answered_by=answered_by
        )

