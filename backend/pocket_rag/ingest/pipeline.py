"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Mapping, Sequence

from pocket_rag.core.config import Settings
from pocket_rag.core.errors import (
    ConfigurationError,
    ExtractionError,
    InvalidTransitionError,
    NotFoundError,
    SecurityError,
)
from pocket_rag.core.logging import get_logger, log_context
from pocket_rag.core.metrics import INGEST_DURATION, PIPELINE_RUNS
from pocket_rag.db.store import KnowledgeStore
from pocket_rag.ingest.acquire import ContentAcquirer
from pocket_rag.ingest.chunker import chunk_pages, chunk_text
from pocket_rag.ingest.dedupe import EmbeddingDeduplicator, embed_all
from pocket_rag.ingest.embeddings import EmbeddingProvider, build_embedding_provider
from pocket_rag.ingest.loaders import ExtractorRegistry
from pocket_rag.ingest.storage import BlobStore
from pocket_rag.ingest.types import IngestOutcome, TextChunk
from pocket_rag.ingest.validation import validate_content, validate_document_text
from pocket_rag.models.entities import AuditEventType, Chunk, MemoryChunk, SourceStatus
from pocket_rag.models.jobs import ChunkMemoryJob, IngestFileJob, IngestUrlJob
from pocket_rag.security.secrets import decrypt_secret
from pocket_rag.security.url_safety import validate_url_for_ssrf
from pocket_rag.utils.ids import new_id
from pocket_rag.utils.text import clean_text

logger = get_logger(__name__)

MIN_MEMORY_CHARS = 10

ALLOWED_TRANSITIONS: Mapping[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.QUEUED: frozenset({SourceStatus.EXTRACTING, SourceStatus.FAILED}),
    SourceStatus.EXTRACTING: frozenset({SourceStatus.CHUNKING, SourceStatus.FAILED}),
    SourceStatus.CHUNKING: frozenset({SourceStatus.EMBEDDING, SourceStatus.FAILED}),
    SourceStatus.EMBEDDING: frozenset({SourceStatus.READY, SourceStatus.FAILED}),
    # Terminal sources may only be re-queued for reprocessing.
    SourceStatus.READY: frozenset({SourceStatus.QUEUED}),
    SourceStatus.FAILED: frozenset({SourceStatus.QUEUED}),
}

ProviderFactory = Callable[[str | None], EmbeddingProvider]


def check_transition(current: SourceStatus, new: SourceStatus) -> None:
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move source from {current.value} to {new.value}")


class SourceRun:
    """Tracks one source's status while a pipeline drives it forward.

    Every status write is conditional on the status this run last saw, so a
    second worker picking up the same source cannot overwrite the first.
    ``owned`` is set once the run has claimed the source, either by finding it
    queued or by moving it; a run that never claimed it must not mark it failed.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        source_id: str,
        org_id: str,
        pocket_id: str,
        status: SourceStatus,
    ) -> None:
        self.store = store
        self.source_id = source_id
        self.org_id = org_id
        self.pocket_id = pocket_id
        self.status = status
        self.owned = False

    async def advance(self, new_status: SourceStatus, **fields: object) -> None:
        check_transition(self.status, new_status)
        moved = await self.store.transition_source(self.source_id, self.status, new_status, **fields)
        if not moved:
            self.owned = False
            raise InvalidTransitionError(
                f"Source {self.source_id} is no longer {self.status.value}, refusing to move it to {new_status.value}"
            )
        self.status = new_status
        self.owned = True


class IngestionOrchestrator:
    """Drive sources and memories through acquisition, chunking, embedding and persistence."""

    def __init__(
        self,
        store: KnowledgeStore,
        settings: Settings,
        *,
        acquirer: ContentAcquirer | None = None,
        blobs: BlobStore | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        provider_factory: ProviderFactory | None = None,
        extractors: ExtractorRegistry | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.acquirer = acquirer or ContentAcquirer.from_settings(settings)
        self.blobs = blobs
        self.provider_factory = provider_factory or (
            lambda api_key: build_embedding_provider(settings, api_key=api_key)
        )
        self.embedding_provider = embedding_provider or self.provider_factory(None)
        self.extractors = extractors or ExtractorRegistry()
        self.logger = log or logger
        self.deduplicator = EmbeddingDeduplicator(
            store, self.embedding_provider, batch_size=settings.embedding_batch_size, log=self.logger
        )

    # Jobs -------------------------------------------------------------

    async def ingest_url(self, job: IngestUrlJob) -> IngestOutcome:
        async def body(run: SourceRun) -> IngestOutcome:
            try:
                validate_url_for_ssrf(job.url)
            except SecurityError as exc:
                self.logger.warning("Blocked URL %s: %s", job.url, exc, extra=self._ctx(run))
                raise SecurityError(f"Security validation failed: {exc}") from exc

            await run.advance(SourceStatus.EXTRACTING)
            content = await self.acquirer.acquire(job.url)
            check = validate_content(content.title, content.text)
            if not check.valid:
                raise ExtractionError(check.reason)
            self.logger.info("Content for %s acquired via %s", job.url, content.via, extra=self._ctx(run))

            await run.advance(
                SourceStatus.CHUNKING,
                title=content.title,
                size_bytes=len(content.text.encode("utf-8")),
            )
            chunks = chunk_text(clean_text(content.text), *self._chunk_sizes())
            return await self._embed_and_store(run, chunks)

        return await self._execute("url", job.source_id, job.org_id, job.pocket_id, body)

    async def ingest_file(self, job: IngestFileJob) -> IngestOutcome:
        async def body(run: SourceRun) -> IngestOutcome:
            if self.blobs is None:
                raise ConfigurationError("No object storage configured for file ingestion")
            await run.advance(SourceStatus.EXTRACTING)
            data = await self.blobs.download(job.storage_path)
            document = await asyncio.to_thread(self.extractors.extract, data, job.mime_type)
            check = validate_document_text(document.text)
            if not check.valid:
                raise ExtractionError(check.reason)
            self.logger.info(
                "Extracted %d characters from %s", len(document.text), job.storage_path, extra=self._ctx(run)
            )

            await run.advance(SourceStatus.CHUNKING, size_bytes=len(data))
            if document.pages:
                chunks = chunk_pages(document.pages, *self._chunk_sizes())
            else:
                chunks = chunk_text(clean_text(document.text), *self._chunk_sizes())
            return await self._embed_and_store(run, chunks)

        return await self._execute("file", job.source_id, job.org_id, job.pocket_id, body)

    async def chunk_memory(self, job: ChunkMemoryJob) -> IngestOutcome:
        """Chunk and embed a free-text memory with the owner's API key.

        Memories have no status of their own; failures propagate to the caller.
        """
        started = time.perf_counter()
        extra = log_context(memory_id=job.memory_id, user_id=job.user_id)
        try:
            api_key = await self._resolve_api_key(job.user_id)
            memory = await self.store.get_memory(job.memory_id)
            if memory is None:
                raise NotFoundError(f"Memory not found: {job.memory_id}")

            if len(memory.content) < MIN_MEMORY_CHARS:
                self.logger.info("Memory content too short, skipping chunking", extra=extra)
                PIPELINE_RUNS.labels("memory", "skipped").inc()
                return IngestOutcome(target_id=job.memory_id, chunks_created=0, skipped=True)

            target, overlap = self._chunk_sizes()
            chunks = chunk_text(clean_text(memory.content), max(1, target // 2), overlap // 2)
            provider = self.provider_factory(api_key)
            embedded = await embed_all(
                provider, [chunk.text for chunk in chunks], self.settings.embedding_batch_size
            )
            records = [
                MemoryChunk(
                    id=new_id(),
                    org_id=job.org_id,
                    memory_id=job.memory_id,
                    idx=idx,
                    text=item.text,
                    content_hash=item.content_hash,
                    embedding=item.vector,
                )
                for idx, item in enumerate(embedded)
            ]
            await self.store.replace_memory_chunks(job.memory_id, records)
        except Exception:
            PIPELINE_RUNS.labels("memory", "failed").inc()
            self.logger.exception("Memory chunking failed", extra=extra)
            raise
        finally:
            INGEST_DURATION.labels("memory").observe(time.perf_counter() - started)

        PIPELINE_RUNS.labels("memory", "completed").inc()
        self.logger.info("Stored %d chunks for memory", len(records), extra=extra)
        return IngestOutcome(target_id=job.memory_id, chunks_created=len(records))

    # Internal helpers -------------------------------------------------

    async def _execute(
        self,
        kind: str,
        source_id: str,
        org_id: str,
        pocket_id: str,
        body: Callable[[SourceRun], Awaitable[IngestOutcome]],
    ) -> IngestOutcome:
        started = time.perf_counter()
        run: SourceRun | None = None
        try:
            run = await self._begin(source_id, org_id, pocket_id, kind)
            outcome = await body(run)
        except Exception as exc:
            PIPELINE_RUNS.labels(kind, "failed").inc()
            await self._record_failure(run, source_id, org_id, pocket_id, exc)
            raise
        finally:
            INGEST_DURATION.labels(kind).observe(time.perf_counter() - started)
        PIPELINE_RUNS.labels(kind, "completed").inc()
        return outcome

    async def _begin(self, source_id: str, org_id: str, pocket_id: str, kind: str) -> SourceRun:
        source = await self.store.get_source(source_id)
        if source is None:
            raise NotFoundError(f"Source not found: {source_id}")
        run = SourceRun(self.store, source_id, org_id, pocket_id, source.status)
        if run.status.is_terminal:
            await run.advance(SourceStatus.QUEUED, error_message=None)
        elif run.status is SourceStatus.QUEUED:
            run.owned = True
        await self.store.record_audit_event(
            org_id,
            pocket_id,
            AuditEventType.PIPELINE_STARTED.value,
            {"source_id": source_id, "kind": kind},
        )
        self.logger.info("Processing %s source", kind, extra=self._ctx(run))
        return run

    async def _embed_and_store(self, run: SourceRun, chunks: Sequence[TextChunk]) -> IngestOutcome:
        self.logger.info("Created %d chunks", len(chunks), extra=self._ctx(run))
        await run.advance(SourceStatus.EMBEDDING)
        embedded, stats = await self.deduplicator.embed_for_source(
            run.source_id, [chunk.text for chunk in chunks]
        )
        records = [
            Chunk(
                id=new_id(),
                org_id=run.org_id,
                pocket_id=run.pocket_id,
                source_id=run.source_id,
                idx=chunk.index,
                page=chunk.page,
                text=item.text,
                content_hash=item.content_hash,
                embedding=item.vector,
            )
            for chunk, item in zip(chunks, embedded)
        ]
        await self.store.replace_chunks(run.source_id, records)
        await run.advance(SourceStatus.READY)
        await self.store.record_audit_event(
            run.org_id,
            run.pocket_id,
            AuditEventType.PIPELINE_COMPLETED.value,
            {"source_id": run.source_id, "chunks_created": len(records)},
        )
        self.logger.info(
            "Source processed with %d chunks (%d vectors reused)",
            len(records),
            stats.reused,
            extra=self._ctx(run),
        )
        return IngestOutcome(target_id=run.source_id, chunks_created=len(records), embeddings=stats)

    async def _record_failure(
        self,
        run: SourceRun | None,
        source_id: str,
        org_id: str,
        pocket_id: str,
        exc: Exception,
    ) -> None:
        message = str(exc) or "Unknown error"
        self.logger.error(
            "Pipeline failed: %s", message, exc_info=exc, extra=log_context(source_id=source_id)
        )
        try:
            if run is not None and run.owned and not run.status.is_terminal:
                await run.advance(SourceStatus.FAILED, error_message=message)
            await self.store.record_audit_event(
                org_id,
                pocket_id,
                AuditEventType.PIPELINE_FAILED.value,
                {"source_id": source_id, "error": message},
            )
        except Exception:
            self.logger.exception("Could not record failure", extra=log_context(source_id=source_id))

    async def _resolve_api_key(self, user_id: str) -> str | None:
        encrypted = await self.store.get_user_api_key(user_id)
        if encrypted:
            self.logger.info("Using user's OpenRouter API key", extra=log_context(user_id=user_id))
            return decrypt_secret(encrypted, self.settings.master_key)
        if self.settings.openrouter_api_key:
            self.logger.info("Using shared OpenRouter API key", extra=log_context(user_id=user_id))
            return self.settings.openrouter_api_key
        if self.settings.embedding_backend == "hashed":
            return None
        raise ConfigurationError("No API key configured for user")

    def _chunk_sizes(self) -> tuple[int, int]:
        return self.settings.chunk_target_tokens, self.settings.chunk_overlap_tokens

    @staticmethod
    def _ctx(run: SourceRun) -> dict[str, object]:
        return log_context(source_id=run.source_id, status=run.status.value)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "check_transition",
    "SourceRun",
    "IngestionOrchestrator",
]
