"""Tests for retrieval planning and stage events."""

import pytest

from pocket_rag.retrieval.planner import RetrievalPlanner
from pocket_rag.retrieval.rewriter import ContextRewriter
from pocket_rag.retrieval.router import QueryRouter
from pocket_rag.retrieval.types import ConversationMessage

HISTORY = [
    ConversationMessage(role="user", content="What does the Q3 report cover?"),
    ConversationMessage(role="assistant", content="Revenue and hiring."),
]


def _planner(chat, base_chunk_count: int = 10) -> RetrievalPlanner:
    return RetrievalPlanner(QueryRouter(chat), ContextRewriter(chat), base_chunk_count=base_chunk_count)


@pytest.mark.asyncio
async def test_full_plan_emits_stage_events(scripted_chat) -> None:
    chat = scripted_chat(
        '{"intent": "follow_up", "confidence": 0.8}',
        '{"rewritten": "What does the Q3 report say about hiring?", "needsContext": true}',
    )
    events = []

    plan = await _planner(chat).plan("what about that hiring?", HISTORY, on_event=events.append)

    assert [(event.stage, event.status) for event in events] == [
        ("routing", "started"),
        ("routing", "completed"),
        ("rewriting", "started"),
        ("rewriting", "completed"),
    ]
    assert events[0].payload == {"status": "Analyzing query intent..."}
    assert events[1].payload["intent"] == "follow_up"
    assert events[3].payload["rewritten"] == "What does the Q3 report say about hiring?"
    assert plan.search_query == "What does the Q3 report say about hiring?"
    assert plan.params.chunk_count == 8


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(scripted_chat) -> None:
    seen = []

    async def on_event(event) -> None:
        seen.append(event.stage)

    plan = await _planner(scripted_chat('{"intent": "summarization"}')).plan("summarize everything", on_event=on_event)

    assert seen == ["routing", "routing"]
    assert plan.search_query == "summarize everything"
    assert plan.params.chunk_count == 20


@pytest.mark.asyncio
async def test_skipped_retrieval_does_not_rewrite(scripted_chat) -> None:
    chat = scripted_chat()
    events = []

    plan = await _planner(chat).plan("thanks!", HISTORY, on_event=events.append)

    assert chat.calls == []
    assert [event.stage for event in events] == ["routing", "routing"]
    assert plan.router.skip_retrieval
    assert plan.params.chunk_count == 0


@pytest.mark.asyncio
async def test_plan_without_callback(scripted_chat) -> None:
    plan = await _planner(scripted_chat('{"intent": "comparison"}'), base_chunk_count=4).plan("compare A and B")
    assert plan.params.chunk_count == 6
    assert plan.params.expansion_queries == 3
