"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "pocket_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("kind",),
    registry=REGISTRY,
)

PIPELINE_RUNS = Counter(
    "pocket_pipeline_runs_total",
    "Ingest pipeline runs by outcome",
    labelnames=("kind", "outcome"),
    registry=REGISTRY,
)

EMBEDDINGS_REUSED = Counter(
    "pocket_embeddings_reused_total",
    "Chunk vectors reused from a previous run by content hash",
    registry=REGISTRY,
)

EMBEDDINGS_COMPUTED = Counter(
    "pocket_embeddings_computed_total",
    "Chunk vectors computed by the embedding service",
    registry=REGISTRY,
)

AGENTIC_FALLBACKS = Counter(
    "pocket_agentic_fallbacks_total",
    "Retrieval-control stages that degraded to their default result",
    labelnames=("stage",),
    registry=REGISTRY,
)


def render_metrics() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "PIPELINE_RUNS",
    "EMBEDDINGS_REUSED",
    "EMBEDDINGS_COMPUTED",
    "AGENTIC_FALLBACKS",
    "render_metrics",
]
