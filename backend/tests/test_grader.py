"""Tests for answer grading."""

import pytest

from pocket_rag.core.errors import TransientAPIError
from pocket_rag.retrieval.grader import AnswerGrader, grade_from_payload
from pocket_rag.retrieval.types import AnswerGradePayload, AnswerSource

ANSWER = "Photosynthesis converts light into chemical energy stored as glucose [Source 1]."
SOURCES = [AnswerSource(title=f"Doc {idx}", text="x" * 400) for idx in range(7)]


@pytest.mark.asyncio
async def test_short_answers_are_not_graded(scripted_chat) -> None:
    chat = scripted_chat()
    grade = await AnswerGrader(chat).grade("q", "I couldn't find this information.", SOURCES)

    assert chat.calls == []
    assert grade.is_grounded and grade.answers_question
    assert grade.overall_score == 0.8
    assert not grade.should_retry


@pytest.mark.asyncio
async def test_good_answer(scripted_chat) -> None:
    chat = scripted_chat(
        '{"isGrounded": true, "answersQuestion": true, "hasHallucinations": false, '
        '"completeness": 0.9, "issues": [], "overallScore": 0.92}'
    )
    grade = await AnswerGrader(chat).grade("what is photosynthesis?", ANSWER, SOURCES)

    assert grade.overall_score == 0.92
    assert not grade.should_retry

    content = chat.calls[0]["messages"][0].content
    assert content.count("[Source ") == 5
    assert "[Source 1] Doc 0\n" + "x" * 300 + "..." in content
    assert content.endswith(f"Assistant Answer:\n{ANSWER}")


@pytest.mark.asyncio
async def test_hallucinating_answer_should_retry(scripted_chat) -> None:
    chat = scripted_chat(
        '{"isGrounded": false, "answersQuestion": true, "hasHallucinations": "yes", '
        '"completeness": 0.7, "issues": "mentions a date not in the sources"}'
    )
    grade = await AnswerGrader(chat).grade("q", ANSWER, SOURCES)

    assert grade.has_hallucinations
    assert grade.should_retry
    assert grade.issues == ["mentions a date not in the sources"]
    assert grade.overall_score == pytest.approx(0.3 + 0.2 * 0.7)


def test_low_completeness_should_retry() -> None:
    grade = grade_from_payload(AnswerGradePayload(completeness=0.3))
    assert grade.should_retry
    assert grade.overall_score == pytest.approx(0.86)


def test_service_score_is_clamped() -> None:
    high = grade_from_payload(AnswerGradePayload.model_validate({"overallScore": 1.7}))
    assert high.overall_score == 1.0
    # Unusable scores fall back to the blend of the individual criteria.
    unusable = grade_from_payload(AnswerGradePayload.model_validate({"overallScore": "n/a"}))
    assert unusable.overall_score == pytest.approx(0.96)


@pytest.mark.asyncio
async def test_failure_returns_optimistic_default(scripted_chat) -> None:
    grade = await AnswerGrader(scripted_chat(TransientAPIError("down"))).grade("q", ANSWER, SOURCES)
    assert grade.overall_score == 0.8
    assert grade.completeness == 0.8
    assert not grade.should_retry


@pytest.mark.asyncio
async def test_timeout_returns_default(scripted_chat) -> None:
    chat = scripted_chat('{"isGrounded": false}', delay=0.2)
    grade = await AnswerGrader(chat, timeout=0.01).grade("q", ANSWER, SOURCES)
    assert grade.is_grounded
    assert len(chat.calls) == 1
