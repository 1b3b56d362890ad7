"""Tests for metrics exposition and structured logging."""

import logging

import orjson

from pocket_rag.core.logging import JsonFormatter, RedactingFormatter, log_context, redact
from pocket_rag.core.metrics import AGENTIC_FALLBACKS, render_metrics


def test_render_metrics_exposes_pocket_series() -> None:
    AGENTIC_FALLBACKS.labels("routing").inc()
    payload, content_type = render_metrics()
    text = payload.decode("utf-8")

    assert content_type.startswith("text/plain")
    assert 'pocket_agentic_fallbacks_total{stage="routing"}' in text
    assert "pocket_ingest_duration_seconds" in text


def test_json_formatter_lifts_context_fields() -> None:
    record = logging.LogRecord("pocket_rag.test", logging.INFO, __file__, 10, "Ingested %s", ("src-1",), None)
    for key, value in log_context(source_id="src-1", chunks=3).items():
        setattr(record, key, value)

    payload = orjson.loads(JsonFormatter().format(record))

    assert payload["message"] == "Ingested src-1"
    assert payload["level"] == "INFO"
    assert payload["source_id"] == "src-1"
    assert payload["chunks"] == 3
    assert "ctx_source_id" not in payload


def test_log_context_prefixes_keys() -> None:
    assert log_context(job_type="ingest_url") == {"ctx_job_type": "ingest_url"}


def test_api_keys_are_masked() -> None:
    assert redact("calling with sk-or-v1-abcdef123456 now") == "calling with sk-*** now"
    assert redact("task-runner finished") == "task-runner finished"

    record = logging.LogRecord(
        "pocket_rag.test", logging.WARNING, __file__, 10, "bad key %s", ("sk-or-v1-deadbeef99",), None
    )
    assert "deadbeef" not in JsonFormatter().format(record)
    assert "deadbeef" not in RedactingFormatter("%(message)s").format(record)
