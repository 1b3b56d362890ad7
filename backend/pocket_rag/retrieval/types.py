"""Result types for the retrieval-control layer and the payloads the chat service returns.

The ``*Payload`` models are the boundary with the text-generation service: they
accept the loosely-typed JSON it produces (camelCase keys, scores as strings or
out of range, booleans as words) and coerce it, so downstream code only ever
sees the validated result models.
"""

from __future__ import annotations

import math
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

QueryIntent = Literal[
    "no_retrieval",
    "simple_lookup",
    "comparison",
    "summarization",
    "analytical",
    "follow_up",
]
ChunkRelevance = Literal["relevant", "partially_relevant", "irrelevant"]
CRAGDecision = Literal["sufficient", "needs_expansion", "no_relevant_sources"]

INTENTS: tuple[str, ...] = get_args(QueryIntent)
RELEVANCE_LABELS: tuple[str, ...] = get_args(ChunkRelevance)


def clamp_score(value: Any, default: float) -> float:
    """Coerce ``value`` to a float in [0, 1]; anything non-numeric yields ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(1.0, max(0.0, number))


def coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "y", "1"}:
            return True
        if lowered in {"false", "no", "n", "0"}:
            return False
    return default


def coerce_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return []


# Results ------------------------------------------------------------------


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class QueryRouterResult(BaseModel):
    intent: QueryIntent
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    skip_retrieval: bool = False
    suggested_response: str | None = None


class RewrittenQuery(BaseModel):
    original: str
    rewritten: str
    extracted_entities: list[str] = Field(default_factory=list)
    needs_context: bool = False

    @model_validator(mode="after")
    def _keep_original_without_context(self) -> "RewrittenQuery":
        if not self.needs_context:
            self.rewritten = self.original
        return self

    @classmethod
    def unchanged(cls, query: str) -> "RewrittenQuery":
        return cls(original=query, rewritten=query)


class AdaptiveRetrievalParams(BaseModel):
    chunk_count: int = Field(ge=0)
    vector_weight: float
    fts_weight: float
    expansion_queries: int = Field(ge=0)


class RetrievedChunk(BaseModel):
    """A candidate chunk handed to the grader by the retrieval collaborator."""

    chunk_id: str
    source_id: str | None = None
    title: str = "Untitled"
    page: int | None = None
    text: str
    score: float | None = None


class GradedChunk(BaseModel):
    chunk: RetrievedChunk
    relevance: ChunkRelevance
    score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class CRAGResult(BaseModel):
    graded_chunks: list[GradedChunk] = Field(default_factory=list)
    relevant_chunks: list[RetrievedChunk] = Field(default_factory=list)
    decision: CRAGDecision
    avg_relevance_score: float = Field(ge=0.0, le=1.0)


class AnswerGrade(BaseModel):
    is_grounded: bool = True
    answers_question: bool = True
    has_hallucinations: bool = False
    completeness: float = Field(default=0.8, ge=0.0, le=1.0)
    overall_score: float = Field(default=0.8, ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    should_retry: bool = False


class AnswerSource(BaseModel):
    title: str = "Untitled"
    text: str


# Service payloads -----------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RouterPayload(_Payload):
    intent: QueryIntent = "simple_lookup"
    confidence: float = 0.5
    reasoning: str = ""
    suggested_response: str | None = Field(default=None, alias="suggestedResponse")

    @field_validator("intent", mode="before")
    @classmethod
    def _known_intent(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in INTENTS:
            return value.strip().lower()
        return "simple_lookup"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_score(value, 0.5)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("suggested_response", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value.strip() else None


class RewritePayload(_Payload):
    rewritten: str | None = None
    extracted_entities: list[str] = Field(default_factory=list, alias="extractedEntities")
    needs_context: bool = Field(default=False, alias="needsContext")

    @field_validator("rewritten", mode="before")
    @classmethod
    def _non_empty(cls, value: Any) -> str | None:
        return value.strip() if isinstance(value, str) and value.strip() else None

    @field_validator("extracted_entities", mode="before")
    @classmethod
    def _entities(cls, value: Any) -> list[str]:
        return coerce_str_list(value)

    @field_validator("needs_context", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return coerce_bool(value, False)


class ChunkGradePayload(_Payload):
    index: int
    relevance: ChunkRelevance = "partially_relevant"
    score: float = 0.5
    reasoning: str = ""

    @field_validator("relevance", mode="before")
    @classmethod
    def _label(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in RELEVANCE_LABELS:
            return value.strip().lower()
        return "partially_relevant"

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_score(value, 0.5)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class AnswerGradePayload(_Payload):
    is_grounded: bool = Field(default=True, alias="isGrounded")
    answers_question: bool = Field(default=True, alias="answersQuestion")
    has_hallucinations: bool = Field(default=False, alias="hasHallucinations")
    completeness: float = 0.8
    issues: list[str] = Field(default_factory=list)
    overall_score: float | None = Field(default=None, alias="overallScore")

    @field_validator("is_grounded", "answers_question", mode="before")
    @classmethod
    def _default_true(cls, value: Any) -> bool:
        return coerce_bool(value, True)

    @field_validator("has_hallucinations", mode="before")
    @classmethod
    def _default_false(cls, value: Any) -> bool:
        return coerce_bool(value, False)

    @field_validator("completeness", mode="before")
    @classmethod
    def _clamp_completeness(cls, value: Any) -> float:
        return clamp_score(value, 0.8)

    @field_validator("overall_score", mode="before")
    @classmethod
    def _clamp_overall(cls, value: Any) -> float | None:
        if value is None:
            return None
        score = clamp_score(value, -1.0)
        return None if score < 0 else score

    @field_validator("issues", mode="before")
    @classmethod
    def _issues(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


__all__ = [
    "QueryIntent",
    "ChunkRelevance",
    "CRAGDecision",
    "INTENTS",
    "clamp_score",
    "coerce_bool",
    "coerce_str_list",
    "ConversationMessage",
    "QueryRouterResult",
    "RewrittenQuery",
    "AdaptiveRetrievalParams",
    "RetrievedChunk",
    "GradedChunk",
    "CRAGResult",
    "AnswerGrade",
    "AnswerSource",
    "RouterPayload",
    "RewritePayload",
    "ChunkGradePayload",
    "AnswerGradePayload",
]
