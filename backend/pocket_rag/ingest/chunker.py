"""Chunking utilities."""

from __future__ import annotations

import re
from typing import Iterable

from pocket_rag.ingest.types import TextChunk
from pocket_rag.utils.text import CHARS_PER_TOKEN, clean_text

DEFAULT_TARGET_TOKENS = 600
DEFAULT_OVERLAP_TOKENS = 100
SPLIT_SEARCH_WINDOW = 200
OVERSIZE_FACTOR = 1.5

_PARAGRAPH_RE = re.compile(r"\n\n+")
_SENTENCE_END_RE = re.compile(r"[.!?]\s+")


def chunk_text(
    text: str,
    target_tokens: int = DEFAULT_TARGET_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[TextChunk]:
    """Split cleaned text into overlapping chunks of roughly ``target_tokens``.

    Paragraphs are accumulated greedily. When the next paragraph would push the
    buffer past the target size the buffer is emitted and the next one starts
    with its trailing ``overlap_tokens`` worth of characters. A buffer that grows
    past 1.5x the target (one huge paragraph) is force-split at the sentence
    boundary closest to the target offset.
    """
    if target_tokens <= 0:
        raise ValueError("target_tokens must be positive")
    if overlap_tokens < 0 or overlap_tokens >= target_tokens:
        raise ValueError("overlap_tokens must be between 0 and target_tokens")

    target_chars = target_tokens * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    max_chars = target_chars * OVERSIZE_FACTOR

    pieces: list[str] = []
    current = ""

    for paragraph in _PARAGRAPH_RE.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if current and len(current) + len(paragraph) > target_chars:
            pieces.append(current.strip())
            current = _tail(current, overlap_chars) + "\n\n" + paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

        while len(current) > max_chars:
            split_at = _find_split_point(current, target_chars)
            pieces.append(current[:split_at].strip())
            # Without room for an overlap the split point itself is the restart.
            restart = split_at - overlap_chars if split_at > overlap_chars else split_at
            current = current[restart:]

    if current.strip():
        pieces.append(current.strip())

    return [TextChunk(index=index, text=piece) for index, piece in enumerate(p for p in pieces if p)]


def chunk_pages(
    pages: Iterable[str],
    target_tokens: int = DEFAULT_TARGET_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[TextChunk]:
    """Chunk each page on its own, numbering chunks globally and tagging pages from 1."""
    chunks: list[TextChunk] = []
    for page_number, page_text in enumerate(pages, start=1):
        for chunk in chunk_text(clean_text(page_text), target_tokens, overlap_tokens):
            chunks.append(TextChunk(index=len(chunks), text=chunk.text, page=page_number))
    return chunks


def _tail(text: str, length: int) -> str:
    if length <= 0:
        return ""
    return text[max(0, len(text) - length) :]


def _find_split_point(text: str, target_chars: int) -> int:
    """Offset of the sentence end nearest ``target_chars``, or ``target_chars`` itself.

    The search window is narrowed for small targets so the left part never
    exceeds 1.5x the target.
    """
    window = min(SPLIT_SEARCH_WINDOW, target_chars // 2)
    search_start = max(0, target_chars - window)
    search_end = min(len(text), target_chars + window)
    best: int | None = None
    for match in _SENTENCE_END_RE.finditer(text, search_start, search_end):
        position = match.end()
        if best is None or abs(position - target_chars) < abs(best - target_chars):
            best = position
    return target_chars if best is None else best


__all__ = ["chunk_text", "chunk_pages", "DEFAULT_TARGET_TOKENS", "DEFAULT_OVERLAP_TOKENS"]
