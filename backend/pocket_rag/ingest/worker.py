"""Job dispatch for the ingest queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping

from pocket_rag.core.logging import get_logger, log_context
from pocket_rag.ingest.pipeline import IngestionOrchestrator
from pocket_rag.ingest.types import IngestOutcome
from pocket_rag.models.jobs import ChunkMemoryJob, IngestFileJob, IngestUrlJob, parse_job

logger = get_logger(__name__)


class IngestWorker:
    """Route queue payloads to the orchestrator, at most ``concurrency`` at a time.

    Each payload is processed as its own task; a failing job does not affect
    the others. Errors are logged and re-raised from :meth:`handle` so the
    queue transport can apply its own retry policy.
    """

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        concurrency: int = 5,
        log: logging.Logger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.orchestrator = orchestrator
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self.logger = log or logger

    async def handle(self, payload: Mapping[str, Any]) -> IngestOutcome:
        job = parse_job(payload)
        extra = log_context(job_type=job.type)
        self.logger.info("Processing %s job", job.type, extra=extra)
        try:
            if isinstance(job, IngestUrlJob):
                outcome = await self.orchestrator.ingest_url(job)
            elif isinstance(job, IngestFileJob):
                outcome = await self.orchestrator.ingest_file(job)
            elif isinstance(job, ChunkMemoryJob):
                outcome = await self.orchestrator.chunk_memory(job)
            else:  # pragma: no cover - parse_job only yields the types above
                raise TypeError(f"Unsupported job type: {job.type}")
        except Exception as exc:
            self.logger.error("%s job failed: %s", job.type, exc, extra=extra)
            raise
        self.logger.info("%s job completed", job.type, extra=extra)
        return outcome

    async def submit(self, payload: Mapping[str, Any]) -> IngestOutcome:
        async with self._semaphore:
            return await self.handle(payload)

    async def run(self, payloads: Iterable[Mapping[str, Any]]) -> list[IngestOutcome | BaseException]:
        """Process a batch of payloads concurrently; results keep input order."""
        tasks = [asyncio.create_task(self.submit(payload)) for payload in payloads]
        return list(await asyncio.gather(*tasks, return_exceptions=True))


__all__ = ["IngestWorker"]
