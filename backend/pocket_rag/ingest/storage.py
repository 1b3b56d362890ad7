"""Object storage for uploaded files."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from pocket_rag.core.errors import FetchError, SecurityError


class BlobStore(Protocol):
    async def download(self, path: str) -> bytes: ...


class LocalBlobStore:
    """BlobStore reading uploads from a directory on local disk."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()

    def resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if not candidate.is_relative_to(self.root):
            raise SecurityError(f"Storage path escapes upload root: {path}")
        return candidate

    async def download(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as exc:
            raise FetchError(f"Failed to download file: {exc}") from exc

    async def upload(self, path: str, data: bytes) -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, data)


__all__ = ["BlobStore", "LocalBlobStore"]
