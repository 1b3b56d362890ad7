"""Rejection of bot-challenge pages and degenerate extracted content."""

from __future__ import annotations

import re
from dataclasses import dataclass

BOT_BLOCK_PHRASES: tuple[str, ...] = (
    "verifying you are human",
    "checking your browser",
    "just a moment",
    "please wait while we verify",
    "cloudflare",
    "ddos protection",
    "access denied",
    "please enable javascript",
    "please enable cookies",
    "captcha",
    "are you a robot",
    "security check",
    "unusual traffic",
    "bot detection",
)

MIN_CONTENT_CHARS = 200
MIN_UNIQUE_WORD_RATIO = 0.3
MIN_WORDS_FOR_REPETITION_CHECK = 20

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class ContentCheck:
    valid: bool
    reason: str | None = None


def validate_content(title: str, text: str) -> ContentCheck:
    """Check extracted (title, text) before it is chunked.

    Bot-challenge phrases are matched case-insensitively in either field. Text
    with fewer than 200 non-whitespace characters is too short. Among words
    longer than three characters, a distinct/total ratio under 0.3 (with more
    than 20 such words) marks the page as repetitive.
    """
    lower_text = text.lower()
    lower_title = title.lower()
    for phrase in BOT_BLOCK_PHRASES:
        if phrase in lower_text or phrase in lower_title:
            return ContentCheck(False, f'Bot protection detected: "{phrase}"')

    if len(_WHITESPACE_RE.sub("", text)) < MIN_CONTENT_CHARS:
        return ContentCheck(False, f"Content too short (less than {MIN_CONTENT_CHARS} characters)")

    words = [word for word in lower_text.split() if len(word) > 3]
    unique_ratio = len(set(words)) / max(len(words), 1)
    if len(words) > MIN_WORDS_FOR_REPETITION_CHECK and unique_ratio < MIN_UNIQUE_WORD_RATIO:
        return ContentCheck(False, "Content appears repetitive (possible blocked page)")

    return ContentCheck(True)


def validate_document_text(text: str) -> ContentCheck:
    """Uploaded files only need to contain some text."""
    if not text.strip():
        return ContentCheck(False, "No text content could be extracted from file")
    return ContentCheck(True)


__all__ = ["BOT_BLOCK_PHRASES", "ContentCheck", "validate_content", "validate_document_text"]
