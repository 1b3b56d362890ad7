"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SourceStatus(str, Enum):
    QUEUED = "queued"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SourceStatus.READY, SourceStatus.FAILED)


class SourceType(str, Enum):
    PDF = "pdf"
    TXT = "txt"
    DOCX = "docx"
    URL = "url"


class AuditEventType(str, Enum):
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"


@dataclass(slots=True)
class Source:
    id: str
    org_id: str
    pocket_id: str
    type: SourceType
    title: str
    status: SourceStatus = SourceStatus.QUEUED
    url: str | None = None
    storage_path: str | None = None
    mime_type: str = ""
    size_bytes: int = 0
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class Chunk:
    id: str
    org_id: str
    pocket_id: str
    source_id: str
    idx: int
    text: str
    content_hash: str
    page: int | None = None
    embedding: list[float] | None = None
    created_at: str | None = None


@dataclass(slots=True)
class AuditEvent:
    id: str
    org_id: str
    pocket_id: str | None
    event_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    created_at: str | None = None


@dataclass(slots=True)
class Memory:
    id: str
    org_id: str
    user_id: str
    content: str
    created_at: str | None = None


@dataclass(slots=True)
class MemoryChunk:
    id: str
    org_id: str
    memory_id: str
    idx: int
    text: str
    content_hash: str
    embedding: list[float] | None = None
    created_at: str | None = None


__all__ = [
    "SourceStatus",
    "SourceType",
    "AuditEventType",
    "Source",
    "Chunk",
    "AuditEvent",
    "Memory",
    "MemoryChunk",
]
