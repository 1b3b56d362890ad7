"""Corrective relevance grading of retrieved chunks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from pydantic import ValidationError

from pocket_rag.core.metrics import AGENTIC_FALLBACKS
from pocket_rag.core.resilience import Sleep, call_with_policy, extract_json
from pocket_rag.retrieval.llm import ChatClient
from pocket_rag.retrieval.types import (
    ChunkGradePayload,
    ConversationMessage,
    CRAGDecision,
    CRAGResult,
    GradedChunk,
    RetrievedChunk,
)
from pocket_rag.utils.text import truncate

logger = logging.getLogger(__name__)

MAX_GRADED_CHUNKS = 10
CHUNK_PREVIEW_CHARS = 500
RELEVANCE_THRESHOLD = 0.4
EXPANSION_MIN_RELEVANT = 3
EXPANSION_MAX_AVG = 0.5
FALLBACK_SCORE = 0.7

GRADING_PROMPT = """You are a relevance grader for a RAG system. Grade how relevant each chunk is to answering the user's query.

For EACH chunk, provide:
- relevance: "relevant" | "partially_relevant" | "irrelevant"
- score: 0.0-1.0 (how relevant)
- reasoning: brief explanation

Respond ONLY with valid JSON array:
[
  {"index": 0, "relevance": "relevant", "score": 0.9, "reasoning": "Directly answers the question"},
  {"index": 1, "relevance": "irrelevant", "score": 0.1, "reasoning": "Unrelated topic"}
]"""


def decide(relevant_count: int, avg_score: float) -> CRAGDecision:
    if relevant_count == 0:
        return "no_relevant_sources"
    if relevant_count < EXPANSION_MIN_RELEVANT and avg_score < EXPANSION_MAX_AVG:
        return "needs_expansion"
    return "sufficient"


def summarize_grades(graded: Sequence[GradedChunk]) -> CRAGResult:
    """Filter to chunks scoring at least 0.4 and decide whether retrieval was enough."""
    relevant = [item.chunk for item in graded if item.score >= RELEVANCE_THRESHOLD]
    avg = sum(item.score for item in graded) / len(graded) if graded else 0.0
    return CRAGResult(
        graded_chunks=list(graded),
        relevant_chunks=relevant,
        decision=decide(len(relevant), avg),
        avg_relevance_score=avg,
    )


def fallback_result(chunks: Sequence[RetrievedChunk]) -> CRAGResult:
    return CRAGResult(
        graded_chunks=[
            GradedChunk(chunk=chunk, relevance="relevant", score=FALLBACK_SCORE, reasoning="Fallback")
            for chunk in chunks
        ],
        relevant_chunks=list(chunks),
        decision="sufficient",
        avg_relevance_score=FALLBACK_SCORE,
    )


def render_chunks(chunks: Sequence[RetrievedChunk]) -> str:
    return "\n\n".join(
        f"[Chunk {idx}] Source: {chunk.title or 'Untitled'}\n{truncate(chunk.text, CHUNK_PREVIEW_CHARS)}"
        for idx, chunk in enumerate(chunks)
    )


class RelevanceGrader:
    """Grade up to ten candidate chunks in one request and keep the useful ones."""

    def __init__(
        self,
        chat: ChatClient,
        *,
        timeout: float = 15.0,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self.chat = chat
        self.timeout = timeout
        self.sleep = sleep
        self.logger = log or logger

    async def grade(self, query: str, chunks: Sequence[RetrievedChunk]) -> CRAGResult:
        if not chunks:
            return CRAGResult(decision="no_relevant_sources", avg_relevance_score=0.0)

        to_grade = list(chunks[:MAX_GRADED_CHUNKS])
        message = ConversationMessage(
            role="user",
            content=f'User Query: "{query}"\n\nChunks to grade:\n{render_chunks(to_grade)}',
        )
        try:
            completion = await call_with_policy(
                lambda: self.chat.complete(GRADING_PROMPT, [message], temperature=0.1, max_tokens=1000),
                timeout=self.timeout,
                max_retries=0,
                label="Chunk grading",
                sleep=self.sleep,
                log=self.logger,
            )
        except Exception as exc:
            return self._fallback(chunks, f"request failed: {exc}")

        grades = self._parse_grades(extract_json(completion.content, fallback=[]))
        if not grades:
            return self._fallback(chunks, "no usable grades in response")

        graded = []
        for idx, chunk in enumerate(to_grade):
            grade = grades.get(idx)
            if grade is None:
                graded.append(
                    GradedChunk(chunk=chunk, relevance="partially_relevant", score=0.5, reasoning="Not graded")
                )
            else:
                graded.append(
                    GradedChunk(chunk=chunk, relevance=grade.relevance, score=grade.score, reasoning=grade.reasoning)
                )
        result = summarize_grades(graded)
        self.logger.info(
            "Graded %d chunks: %d relevant, decision %s",
            len(graded),
            len(result.relevant_chunks),
            result.decision,
        )
        return result

    def _parse_grades(self, data: Any) -> dict[int, ChunkGradePayload]:
        if not isinstance(data, list):
            return {}
        grades: dict[int, ChunkGradePayload] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                grade = ChunkGradePayload.model_validate(item)
            except ValidationError:
                continue
            grades.setdefault(grade.index, grade)
        return grades

    def _fallback(self, chunks: Sequence[RetrievedChunk], reason: str) -> CRAGResult:
        self.logger.warning("Chunk grading using fallback: %s", reason)
        AGENTIC_FALLBACKS.labels("crag").inc()
        return fallback_result(chunks)


__all__ = ["RelevanceGrader", "summarize_grades", "fallback_result", "decide", "GRADING_PROMPT"]
