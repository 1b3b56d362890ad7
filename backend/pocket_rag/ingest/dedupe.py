"""Deduplication helpers for chunk embeddings."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from pocket_rag.core.errors import EmbeddingServiceError
from pocket_rag.core.metrics import EMBEDDINGS_COMPUTED, EMBEDDINGS_REUSED
from pocket_rag.db.store import KnowledgeStore
from pocket_rag.ingest.embeddings import EmbeddingProvider
from pocket_rag.ingest.types import EmbeddedText, EmbeddingStats
from pocket_rag.utils.hashing import content_hash

logger = logging.getLogger(__name__)


def dedupe_hashes(hashes: Iterable[str]) -> list[str]:
    """Remove duplicates while preserving order."""
    seen: set[str] = set()
    unique: list[str] = []
    for item in hashes:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def iter_batches(items: Sequence[str], batch_size: int) -> Iterable[Sequence[str]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    for start in range(0, len(items), batch_size):
        yield items[start : start + batch_size]


class EmbeddingDeduplicator:
    """Embed a source's chunk texts, reusing vectors already stored for that source.

    Texts are processed in sequential batches of ``batch_size``. For each batch
    the store is asked for vectors matching the batch's fingerprints; only the
    unique fingerprints with no stored vector, and not already computed earlier
    in the same run, are sent to the provider.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        provider: EmbeddingProvider,
        batch_size: int = 100,
        log: logging.Logger | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.provider = provider
        self.batch_size = batch_size
        self.logger = log or logger

    async def embed_for_source(
        self, source_id: str, texts: Sequence[str]
    ) -> tuple[list[EmbeddedText], EmbeddingStats]:
        stats = EmbeddingStats()
        results: list[EmbeddedText] = []
        computed: dict[str, list[float]] = {}
        total_batches = -(-len(texts) // self.batch_size)
        for number, batch in enumerate(iter_batches(texts, self.batch_size), start=1):
            self.logger.info("Embedding batch %d/%d for source %s", number, total_batches, source_id)
            results.extend(await self._embed_batch(source_id, batch, stats, computed))
            stats.batches += 1
        EMBEDDINGS_REUSED.inc(stats.reused)
        EMBEDDINGS_COMPUTED.inc(stats.computed)
        return results, stats

    async def _embed_batch(
        self,
        source_id: str,
        texts: Sequence[str],
        stats: EmbeddingStats,
        computed: dict[str, list[float]],
    ) -> list[EmbeddedText]:
        """Embed one batch; ``computed`` holds this run's vectors and is updated in place."""
        hashes = [content_hash(text) for text in texts]
        unique_hashes = dedupe_hashes(hashes)
        existing = await self.store.find_chunk_vectors(source_id, unique_hashes)

        missing = [digest for digest in unique_hashes if digest not in existing and digest not in computed]
        if missing:
            text_for = dict(zip(hashes, texts))
            vectors = await self.provider.embed([text_for[digest] for digest in missing])
            _check_count(vectors, len(missing))
            computed.update(zip(missing, vectors))

        embedded: list[EmbeddedText] = []
        for text, digest in zip(texts, hashes):
            if digest in existing:
                stats.reused += 1
                embedded.append(EmbeddedText(text, digest, existing[digest], reused=True))
            else:
                embedded.append(EmbeddedText(text, digest, computed[digest]))
        stats.computed += len(missing)
        return embedded


async def embed_all(
    provider: EmbeddingProvider, texts: Sequence[str], batch_size: int = 100
) -> list[EmbeddedText]:
    """Embed every text in sequential batches without consulting stored vectors."""
    embedded: list[EmbeddedText] = []
    for batch in iter_batches(texts, batch_size):
        vectors = await provider.embed(list(batch))
        _check_count(vectors, len(batch))
        embedded.extend(
            EmbeddedText(text, content_hash(text), vector) for text, vector in zip(batch, vectors)
        )
    EMBEDDINGS_COMPUTED.inc(len(embedded))
    return embedded


def _check_count(vectors: Sequence[list[float]], expected: int) -> None:
    if len(vectors) != expected:
        raise EmbeddingServiceError(f"Embedding service returned {len(vectors)} vectors for {expected} texts")


__all__ = ["dedupe_hashes", "iter_batches", "EmbeddingDeduplicator", "embed_all"]
