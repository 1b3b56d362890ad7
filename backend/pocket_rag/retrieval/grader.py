"""Self-reflective grading of generated answers."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from pydantic import ValidationError

from pocket_rag.core.metrics import AGENTIC_FALLBACKS
from pocket_rag.core.resilience import Sleep, call_with_policy, extract_json
from pocket_rag.retrieval.llm import ChatClient
from pocket_rag.retrieval.types import AnswerGrade, AnswerGradePayload, AnswerSource, ConversationMessage
from pocket_rag.utils.text import truncate

logger = logging.getLogger(__name__)

MIN_GRADED_ANSWER_CHARS = 50
MAX_SOURCES = 5
SOURCE_PREVIEW_CHARS = 300
ANSWER_PREVIEW_CHARS = 1000
RETRY_COMPLETENESS = 0.4

ANSWER_GRADING_PROMPT = """You are an answer quality grader for a RAG system. Evaluate the assistant's answer based on the sources and user question.

CRITERIA:
1. isGrounded: Does the answer ONLY use information from the provided sources? (true/false)
2. answersQuestion: Does the answer actually address what the user asked? (true/false)
3. hasHallucinations: Does the answer contain information NOT in the sources? (true/false)
4. completeness: How completely does it answer the question? (0.0-1.0)
5. issues: List any specific problems found

Respond ONLY with valid JSON:
{
  "isGrounded": true,
  "answersQuestion": true,
  "hasHallucinations": false,
  "completeness": 0.9,
  "issues": [],
  "overallScore": 0.9,
  "shouldRetry": false
}"""


def default_answer_grade() -> AnswerGrade:
    return AnswerGrade()


def blended_score(payload: AnswerGradePayload) -> float:
    return (
        (0.3 if payload.is_grounded else 0.0)
        + (0.3 if payload.answers_question else 0.0)
        + (0.2 if not payload.has_hallucinations else 0.0)
        + 0.2 * payload.completeness
    )


def grade_from_payload(payload: AnswerGradePayload) -> AnswerGrade:
    """Fill in the overall score and the retry signal from the parsed criteria."""
    overall = payload.overall_score if payload.overall_score is not None else blended_score(payload)
    should_retry = (
        not payload.is_grounded
        or not payload.answers_question
        or payload.has_hallucinations
        or payload.completeness < RETRY_COMPLETENESS
    )
    return AnswerGrade(
        is_grounded=payload.is_grounded,
        answers_question=payload.answers_question,
        has_hallucinations=payload.has_hallucinations,
        completeness=payload.completeness,
        overall_score=min(1.0, max(0.0, overall)),
        issues=payload.issues,
        should_retry=should_retry,
    )


def render_sources(sources: Sequence[AnswerSource]) -> str:
    return "\n\n".join(
        f"[Source {idx + 1}] {source.title}\n{truncate(source.text, SOURCE_PREVIEW_CHARS)}"
        for idx, source in enumerate(sources[:MAX_SOURCES])
    )


class AnswerGrader:
    def __init__(
        self,
        chat: ChatClient,
        *,
        timeout: float = 12.0,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self.chat = chat
        self.timeout = timeout
        self.sleep = sleep
        self.logger = log or logger

    async def grade(self, question: str, answer: str, sources: Sequence[AnswerSource]) -> AnswerGrade:
        # Short answers are usually "not found" replies; grading them is wasted latency.
        if len(answer) < MIN_GRADED_ANSWER_CHARS:
            return default_answer_grade()

        message = ConversationMessage(
            role="user",
            content=(
                f'User Question: "{question}"\n\nSources:\n{render_sources(sources)}'
                f"\n\nAssistant Answer:\n{answer[:ANSWER_PREVIEW_CHARS]}"
            ),
        )
        try:
            completion = await call_with_policy(
                lambda: self.chat.complete(ANSWER_GRADING_PROMPT, [message], temperature=0.1, max_tokens=300),
                timeout=self.timeout,
                max_retries=0,
                label="Answer grading",
                sleep=self.sleep,
                log=self.logger,
            )
        except Exception as exc:
            return self._fallback(f"request failed: {exc}")

        data = extract_json(completion.content)
        if not isinstance(data, dict):
            return self._fallback("unparsable response")
        try:
            payload = AnswerGradePayload.model_validate(data)
        except ValidationError as exc:
            return self._fallback(f"invalid response: {exc.error_count()} errors")

        grade = grade_from_payload(payload)
        self.logger.info("Answer graded %.2f (retry=%s)", grade.overall_score, grade.should_retry)
        return grade

    def _fallback(self, reason: str) -> AnswerGrade:
        self.logger.warning("Answer grading using default: %s", reason)
        AGENTIC_FALLBACKS.labels("answer_grading").inc()
        return default_answer_grade()


__all__ = ["AnswerGrader", "default_answer_grade", "grade_from_payload", "ANSWER_GRADING_PROMPT"]
