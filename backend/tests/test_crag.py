"""Tests for corrective relevance grading."""

import orjson
import pytest

from pocket_rag.core.errors import TransientAPIError
from pocket_rag.retrieval.crag import RelevanceGrader, decide
from pocket_rag.retrieval.types import RetrievedChunk


def _chunks(count: int) -> list[RetrievedChunk]:
    return [
        RetrievedChunk(chunk_id=f"chunk-{idx}", source_id="src-1", title=f"Doc {idx}", text=f"chunk text {idx}")
        for idx in range(count)
    ]


def _grades(*scores: float) -> str:
    return orjson.dumps(
        [
            {"index": idx, "relevance": "relevant" if score >= 0.4 else "irrelevant", "score": score}
            for idx, score in enumerate(scores)
        ]
    ).decode()


def test_decision_rules() -> None:
    assert decide(0, 0.0) == "no_relevant_sources"
    assert decide(1, 0.4) == "needs_expansion"
    assert decide(2, 0.5) == "sufficient"
    assert decide(3, 0.1) == "sufficient"


@pytest.mark.asyncio
async def test_mostly_irrelevant_chunks_need_expansion(scripted_chat) -> None:
    chunks = _chunks(3)
    chat = scripted_chat(_grades(0.9, 0.2, 0.1))

    result = await RelevanceGrader(chat).grade("what is photosynthesis?", chunks)

    assert result.decision == "needs_expansion"
    assert [chunk.chunk_id for chunk in result.relevant_chunks] == ["chunk-0"]
    assert result.avg_relevance_score == pytest.approx(0.4)
    assert [item.relevance for item in result.graded_chunks] == ["relevant", "irrelevant", "irrelevant"]


@pytest.mark.asyncio
async def test_relevant_chunks_are_sufficient(scripted_chat) -> None:
    chat = scripted_chat(_grades(0.9, 0.8, 0.7))
    result = await RelevanceGrader(chat).grade("what is photosynthesis?", _chunks(3))

    assert result.decision == "sufficient"
    assert len(result.relevant_chunks) == 3
    assert result.avg_relevance_score == pytest.approx(0.8)

    call = chat.calls[0]
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 1000
    assert '[Chunk 2] Source: Doc 2\nchunk text 2' in call["messages"][0].content


@pytest.mark.asyncio
async def test_all_irrelevant_means_no_sources(scripted_chat) -> None:
    result = await RelevanceGrader(scripted_chat(_grades(0.1, 0.0))).grade("q", _chunks(2))
    assert result.decision == "no_relevant_sources"
    assert result.relevant_chunks == []


@pytest.mark.asyncio
async def test_empty_input_makes_no_call(scripted_chat) -> None:
    chat = scripted_chat()
    result = await RelevanceGrader(chat).grade("q", [])
    assert chat.calls == []
    assert result.decision == "no_relevant_sources"
    assert result.avg_relevance_score == 0.0
    assert result.graded_chunks == []


@pytest.mark.asyncio
async def test_failure_keeps_every_chunk(scripted_chat) -> None:
    chunks = _chunks(4)
    result = await RelevanceGrader(scripted_chat(TransientAPIError("down"))).grade("q", chunks)

    assert result.decision == "sufficient"
    assert result.relevant_chunks == chunks
    assert result.avg_relevance_score == 0.7
    assert all(item.score == 0.7 and item.relevance == "relevant" for item in result.graded_chunks)


@pytest.mark.asyncio
async def test_unparsable_reply_uses_fallback(scripted_chat) -> None:
    result = await RelevanceGrader(scripted_chat("all of them look fine")).grade("q", _chunks(2))
    assert result.avg_relevance_score == 0.7
    assert len(result.relevant_chunks) == 2


@pytest.mark.asyncio
async def test_only_first_ten_chunks_are_graded(scripted_chat) -> None:
    chat = scripted_chat(_grades(*([0.9] * 10)))
    result = await RelevanceGrader(chat).grade("q", _chunks(14))

    assert len(result.graded_chunks) == 10
    assert "[Chunk 10]" not in chat.calls[0]["messages"][0].content


@pytest.mark.asyncio
async def test_missing_and_malformed_grades(scripted_chat) -> None:
    reply = orjson.dumps(
        [
            {"index": 0, "relevance": "RELEVANT", "score": "0.8"},
            {"index": 0, "relevance": "irrelevant", "score": 0.0},
            {"index": "not a number"},
            "junk",
        ]
    ).decode()
    result = await RelevanceGrader(scripted_chat(reply)).grade("q", _chunks(2))

    first, second = result.graded_chunks
    assert (first.relevance, first.score) == ("relevant", 0.8)
    assert (second.relevance, second.score, second.reasoning) == ("partially_relevant", 0.5, "Not graded")
    assert len(result.relevant_chunks) == 2
