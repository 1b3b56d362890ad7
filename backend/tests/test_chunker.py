"""Tests for chunker."""

import pytest

from pocket_rag.ingest.chunker import chunk_pages, chunk_text
from pocket_rag.utils.text import CHARS_PER_TOKEN, clean_text


def _normalize(text: str) -> str:
    return " ".join(text.split())


def _paragraphs(count: int) -> str:
    return "\n\n".join(
        f"Paragraph {idx} talks about topic {idx} in a few plain words." for idx in range(count)
    )


def _long_paragraph(sentences: int) -> str:
    return " ".join(f"Sentence number {idx} is right here." for idx in range(sentences))


def test_chunk_indices_are_sequential() -> None:
    chunks = chunk_text(_paragraphs(30), target_tokens=50, overlap_tokens=10)
    assert len(chunks) > 1
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.page is None for chunk in chunks)


@pytest.mark.parametrize("text", [_paragraphs(40), _long_paragraph(80), _paragraphs(5) + "\n\n" + _long_paragraph(60)])
def test_chunks_never_exceed_one_and_a_half_target(text: str) -> None:
    target = 50
    chunks = chunk_text(clean_text(text), target_tokens=target, overlap_tokens=10)
    assert chunks
    assert all(len(chunk.text) <= 1.5 * target * CHARS_PER_TOKEN for chunk in chunks)


@pytest.mark.parametrize("text", [_paragraphs(25), _long_paragraph(70), _long_paragraph(40) + "\n\n" + _paragraphs(6)])
def test_chunks_without_overlap_reconstruct_input(text: str) -> None:
    cleaned = clean_text(text)
    chunks = chunk_text(cleaned, target_tokens=40, overlap_tokens=0)
    assert _normalize(" ".join(chunk.text for chunk in chunks)) == _normalize(cleaned)


@pytest.mark.parametrize("text", [_long_paragraph(80), _paragraphs(6) + "\n\n" + _long_paragraph(60) + "\n\n" + _paragraphs(4)])
def test_overlapping_chunks_leave_no_gaps(text: str) -> None:
    cleaned = clean_text(text)
    chunks = chunk_text(cleaned, target_tokens=40, overlap_tokens=10)
    assert len(chunks) > 2

    covered = 0
    for chunk in chunks:
        start = cleaned.find(chunk.text)
        assert start != -1, chunk.text
        assert cleaned[covered:start].strip() == ""
        if chunk.index:
            # Each chunk repeats the end of the previous one.
            assert start < covered
        covered = start + len(chunk.text)
    assert cleaned[covered:].strip() == ""


def test_overlapping_chunks_cover_every_paragraph() -> None:
    text = _paragraphs(30)
    chunks = chunk_text(text, target_tokens=50, overlap_tokens=10)
    for paragraph in text.split("\n\n"):
        assert any(paragraph in chunk.text for chunk in chunks), paragraph


def test_next_chunk_starts_with_tail_of_previous() -> None:
    chunks = chunk_text(_paragraphs(30), target_tokens=50, overlap_tokens=10)
    first, second = chunks[0].text, chunks[1].text
    overlap = second.split("\n\n", 1)[0]
    assert overlap and first.endswith(overlap)


def test_oversized_paragraph_splits_on_sentence_end() -> None:
    chunks = chunk_text(_long_paragraph(60), target_tokens=50, overlap_tokens=0)
    assert len(chunks) > 1
    assert all(chunk.text.endswith(".") for chunk in chunks)


def test_short_text_is_single_chunk() -> None:
    chunks = chunk_text("Just one short paragraph.")
    assert len(chunks) == 1
    assert chunks[0].text == "Just one short paragraph."


def test_empty_text_yields_no_chunks() -> None:
    assert chunk_text("") == []
    assert chunk_text("\n\n\n") == []


def test_invalid_parameters_rejected() -> None:
    with pytest.raises(ValueError):
        chunk_text("text", target_tokens=0)
    with pytest.raises(ValueError):
        chunk_text("text", target_tokens=10, overlap_tokens=10)


def test_chunk_pages_numbers_pages_and_indices_globally() -> None:
    pages = [_paragraphs(12), "", "Final page text."]
    chunks = chunk_pages(pages, target_tokens=50, overlap_tokens=10)
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert {chunk.page for chunk in chunks} == {1, 3}
    assert chunks[-1].page == 3
    assert chunks[-1].text == "Final page text."


def test_clean_text_normalizes_whitespace() -> None:
    raw = "  Line one \r\n\r\n\r\n\r\nLine\t\ttwo   here  \rLast "
    assert clean_text(raw) == "Line one\n\nLine two here\nLast"
