"""Grounded answer generation with source citations."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from pydantic import BaseModel

from pocket_rag.retrieval.llm import ChatClient
from pocket_rag.retrieval.types import ConversationMessage, RetrievedChunk
from pocket_rag.utils.text import truncate

CITATION_RE = re.compile(r"\[Source\s*(\d+)\]", re.IGNORECASE)
SNIPPET_CHARS = 200
NOT_FOUND_MESSAGE = "I couldn't find this information in your saved sources."

SYSTEM_PROMPT_TEMPLATE = """You are a helpful assistant that answers questions based ONLY on the provided sources.

CRITICAL INSTRUCTIONS:
1. NEVER hallucinate or make up information. Only use facts from the provided sources.
2. If the answer is not in the sources, say "{not_found}"
3. Always cite your sources using [Source N] format where N is the source number.
4. Be precise and factual. Do not speculate or add information beyond what's in the sources.
5. If sources contradict each other, mention this discrepancy.
6. Provide direct quotes when appropriate, using quotation marks.

AVAILABLE SOURCES:
{sources}

Remember: Only answer from the sources above. If you cannot find relevant information, clearly state this. Do NOT make up facts."""


class Citation(BaseModel):
    chunk_id: str
    source_id: str | None = None
    title: str
    page: int | None = None
    snippet: str


@dataclass(slots=True)
class GeneratedAnswer:
    answer: str
    model: str
    citations: list[Citation] = field(default_factory=list)


def build_grounded_prompt(sources: Sequence[RetrievedChunk]) -> str:
    blocks = []
    for number, source in enumerate(sources, start=1):
        page = f" (Page {source.page})" if source.page else ""
        blocks.append(f"\n---SOURCE {number}: [{source.title}]{page}---\n{source.text}\n---END SOURCE {number}---\n")
    return SYSTEM_PROMPT_TEMPLATE.format(not_found=NOT_FOUND_MESSAGE, sources="".join(blocks))


def extract_citations(content: str, sources: Sequence[RetrievedChunk]) -> list[Citation]:
    """Map ``[Source N]`` markers to sources, once each, in order of first mention."""
    seen: set[int] = set()
    citations = []
    for match in CITATION_RE.finditer(content):
        position = int(match.group(1)) - 1
        if position < 0 or position >= len(sources) or position in seen:
            continue
        seen.add(position)
        source = sources[position]
        citations.append(
            Citation(
                chunk_id=source.chunk_id,
                source_id=source.source_id,
                title=source.title,
                page=source.page,
                snippet=truncate(source.text, SNIPPET_CHARS),
            )
        )
    return citations


class AnswerGenerator:
    def __init__(self, chat: ChatClient, *, temperature: float = 0.3, max_tokens: int = 2000) -> None:
        self.chat = chat
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(
        self, messages: Sequence[ConversationMessage], sources: Sequence[RetrievedChunk]
    ) -> GeneratedAnswer:
        completion = await self.chat.complete(
            build_grounded_prompt(sources),
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return GeneratedAnswer(
            answer=completion.content,
            model=completion.model,
            citations=extract_citations(completion.content, sources),
        )


__all__ = [
    "AnswerGenerator",
    "GeneratedAnswer",
    "Citation",
    "build_grounded_prompt",
    "extract_citations",
    "NOT_FOUND_MESSAGE",
]
