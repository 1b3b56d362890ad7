"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class ExtractedArticle:
    """Main content pulled out of an HTML page."""

    title: str | None
    text: str


@dataclass(slots=True)
class ExtractedDocument:
    """Text extracted from an uploaded file.

    ``pages`` is only populated by extractors that know page boundaries (PDF).
    """

    text: str
    pages: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TextChunk:
    """Chunk produced by the chunker prior to embedding."""

    index: int
    text: str
    page: int | None = None


@dataclass(slots=True)
class EmbeddedText:
    """A chunk text paired with its fingerprint and vector."""

    text: str
    content_hash: str
    vector: list[float]
    reused: bool = False


@dataclass(slots=True)
class EmbeddingStats:
    """Counts gathered while embedding one source."""

    reused: int = 0
    computed: int = 0
    batches: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"reused": self.reused, "computed": self.computed, "batches": self.batches}


@dataclass(slots=True)
class IngestOutcome:
    """Result of one successful pipeline run."""

    target_id: str
    chunks_created: int
    embeddings: EmbeddingStats = field(default_factory=EmbeddingStats)
    skipped: bool = False


__all__ = [
    "ExtractedArticle",
    "ExtractedDocument",
    "TextChunk",
    "EmbeddedText",
    "EmbeddingStats",
    "IngestOutcome",
]
