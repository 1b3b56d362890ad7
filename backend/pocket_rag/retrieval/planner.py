"""Sequencing of the per-question retrieval-control stages."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Sequence

from pocket_rag.retrieval.adaptive import DEFAULT_BASE_CHUNK_COUNT, get_adaptive_params
from pocket_rag.retrieval.rewriter import ContextRewriter
from pocket_rag.retrieval.router import QueryRouter
from pocket_rag.retrieval.types import (
    AdaptiveRetrievalParams,
    ConversationMessage,
    QueryRouterResult,
    RewrittenQuery,
)

logger = logging.getLogger(__name__)

PlannerStage = Literal["routing", "rewriting"]


@dataclass(slots=True)
class PipelineEvent:
    stage: PlannerStage
    status: Literal["started", "completed"]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RetrievalPlan:
    router: QueryRouterResult
    rewritten: RewrittenQuery
    params: AdaptiveRetrievalParams

    @property
    def search_query(self) -> str:
        return self.rewritten.rewritten


EventCallback = Callable[[PipelineEvent], "Awaitable[None] | None"]


class RetrievalPlanner:
    """Run routing, optional rewriting and parameter selection for one question.

    ``on_event`` receives a ``started`` and a ``completed`` event for each stage
    that runs, so a caller can stream progress before the plan is ready. It may
    be a plain function or a coroutine function.
    """

    def __init__(
        self,
        router: QueryRouter,
        rewriter: ContextRewriter,
        base_chunk_count: int = DEFAULT_BASE_CHUNK_COUNT,
    ) -> None:
        self.router = router
        self.rewriter = rewriter
        self.base_chunk_count = base_chunk_count

    async def plan(
        self,
        query: str,
        history: Sequence[ConversationMessage] = (),
        on_event: EventCallback | None = None,
    ) -> RetrievalPlan:
        await _emit(on_event, PipelineEvent("routing", "started", {"status": "Analyzing query intent..."}))
        routed = await self.router.route(query, history)
        await _emit(on_event, PipelineEvent("routing", "completed", routed.model_dump()))

        rewritten = RewrittenQuery.unchanged(query)
        if not routed.skip_retrieval and history:
            await _emit(
                on_event, PipelineEvent("rewriting", "started", {"status": "Rewriting query with context..."})
            )
            rewritten = await self.rewriter.rewrite(query, history)
            await _emit(on_event, PipelineEvent("rewriting", "completed", rewritten.model_dump()))

        params = get_adaptive_params(routed.intent, len(query), self.base_chunk_count)
        logger.info(
            "Planned retrieval: intent=%s chunks=%d rewritten=%s",
            routed.intent,
            params.chunk_count,
            rewritten.needs_context,
        )
        return RetrievalPlan(router=routed, rewritten=rewritten, params=params)


async def _emit(callback: EventCallback | None, event: PipelineEvent) -> None:
    if callback is None:
        return
    result = callback(event)
    if inspect.isawaitable(result):
        await result


__all__ = ["PipelineEvent", "RetrievalPlan", "RetrievalPlanner"]
