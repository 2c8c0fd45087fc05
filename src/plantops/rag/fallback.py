"""Retrieval fallback: answer from document chunks, then attribute sources.

Pipeline:
  1. Retrieve the top-k chunks nearest to the query.
  2. Build the prompt: base instructions + chunks enclosed in triple quotes
     (+ optional structured context), prior turns, then the user query.
  3. One completion call produces the answer. Failures propagate.
  4. Attribution pass: one strict true/false check per chunk, sequentially.
     A chunk whose check fails or answers anything else is left uncited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from plantops.db.repository import Repository
from plantops.rag.llm_client import complete
from plantops.rag.retriever import RetrievedChunk, RetrieverConfig, retrieve

logger = logging.getLogger(__name__)

_BASE_SYSTEM = (
    "You are a helpful assistant who answers user questions based only on the "
    "following context enclosed in triple quotes.\n"
    "If the context does not contain the answer, say that you do not know.\n"
    "Always answer in the same language as the user's question.\n"
)

_ATTRIBUTION_SYSTEM = (
    "You check whether a document excerpt contributed information to an answer. "
    "Reply with exactly one word: true or false."
)


@dataclass
class FallbackConfig:
    model: str = "openai/gpt-4o"
    scorer_model: str = "openai/gpt-4o-mini"
    attribution: bool = True
    max_tokens: int = 1024


@dataclass(frozen=True)
class Citation:
    source_label: str
    page: int | None = None


@dataclass
class FallbackResult:
    answer: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)


class RetrievalFallback:
    """Answer a query from the vector index with prior turns as memory.

    Args:
        repo: Open Repository (chunks + vec tables).
        retriever: Retriever configuration (embedding model, top_k).
        config: Generation and attribution settings.
    """

    def __init__(
        self,
        repo: Repository,
        retriever: RetrieverConfig,
        config: FallbackConfig | None = None,
    ) -> None:
        self._repo = repo
        self._retriever = retriever
        self._config = config or FallbackConfig()

    def answer(
        self,
        query: str,
        memory: list[dict[str, str]] | None = None,
        structured_context: str | None = None,
    ) -> FallbackResult:
        """Return the generated answer, the chunks used and their citations.

        Raises:
            Exception: Any completion failure from the backend.
        """
        chunks = retrieve(query, self._repo, self._retriever)
        messages = build_messages(query, chunks, memory, structured_context)
        answer = complete(
            model=self._config.model,
            messages=messages,
            max_tokens=self._config.max_tokens,
            temperature=0,
        ).strip()

        citations: list[Citation] = []
        if self._config.attribution and chunks and answer:
            citations = attribute(answer, chunks, self._config.scorer_model)
        return FallbackResult(answer=answer, chunks=chunks, citations=citations)


def build_system_prompt(
    chunks: list[RetrievedChunk], structured_context: str | None = None
) -> str:
    context = "\n\n".join(rc.chunk.text for rc in chunks)
    prompt = f'{_BASE_SYSTEM}"""\n{context}\n"""\n'
    if structured_context:
        prompt += f'\nStructured record details:\n"""\n{structured_context}\n"""\n'
    return prompt


def build_messages(
    query: str,
    chunks: list[RetrievedChunk],
    memory: list[dict[str, str]] | None = None,
    structured_context: str | None = None,
) -> list[dict[str, str]]:
    """System prompt, then memory (only if non-empty), then the user query."""
    messages = [{"role": "system", "content": build_system_prompt(chunks, structured_context)}]
    if memory:
        messages.extend(memory)
    messages.append({"role": "user", "content": query})
    return messages


# ------------------------------------------------------------------
# Attribution
# ------------------------------------------------------------------


def _parse_verdict(raw: str) -> bool | None:
    word = raw.strip().strip(".!\"'`").lower()
    if word == "true":
        return True
    if word == "false":
        return False
    return None


def attribute(answer: str, chunks: list[RetrievedChunk], model: str) -> list[Citation]:
    """Check each chunk, in retrieval order, for a contribution to *answer*.

    Returns deduplicated citations. Per-chunk failures are logged and skipped.
    """
    citations: list[Citation] = []
    for rc in chunks:
        prompt = f'Answer:\n"""\n{answer}\n"""\n\nExcerpt:\n"""\n{rc.chunk.text}\n"""'
        try:
            raw = complete(
                model=model,
                messages=[
                    {"role": "system", "content": _ATTRIBUTION_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=5,
                temperature=0,
            )
        except Exception as exc:
            logger.warning("Attribution check failed for chunk %s: %s", rc.chunk.rowid, exc)
            continue

        verdict = _parse_verdict(raw)
        if verdict is None:
            logger.warning(
                "Attribution check for chunk %s returned %.40r; excluding it",
                rc.chunk.rowid,
                raw,
            )
            continue
        if verdict:
            citation = Citation(source_label=rc.chunk.source_label, page=rc.chunk.page)
            if citation not in citations:
                citations.append(citation)
    return citations
