"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def content_hash(text: str) -> str:
    """Stable fingerprint of chunk text, used to reuse stored embeddings."""
    return sha256_bytes(text.encode("utf-8"))
