"""Text processing helpers."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

CHARS_PER_TOKEN = 4

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")
_HORIZONTAL_SPACE_RE = re.compile(r"[ \t]+")
_EXTENSION_RE = re.compile(r"\.[^.]+$")
_SEPARATOR_RE = re.compile(r"[-_]")


def clean_text(text: str) -> str:
    """Normalize line endings and collapse redundant whitespace."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _EXCESS_NEWLINES_RE.sub("\n\n", text)
    text = _HORIZONTAL_SPACE_RE.sub(" ", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with ``suffix``."""
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


def extract_title_from_url(url: str) -> str:
    """Derive a readable title from the last path segment, else the hostname."""
    try:
        parsed = urlsplit(url)
    except ValueError:
        return url[:50]
    segments = [segment for segment in parsed.path.split("/") if segment]
    if segments:
        stem = _EXTENSION_RE.sub("", segments[-1])
        words = _SEPARATOR_RE.sub(" ", stem)
        return re.sub(r"\b\w", lambda match: match.group(0).upper(), words)
    return parsed.hostname or url[:50]


__all__ = ["CHARS_PER_TOKEN", "clean_text", "truncate", "extract_title_from_url"]
