"""Timeout, retry and structured-output helpers for external calls.

Every network call made by the ingestion pipeline and the retrieval-control
layer goes through :func:`with_timeout`; the LLM-backed stages additionally
share :func:`call_with_policy`, which layers :func:`retry_with_backoff` on
top so each call site only states its timeout, retry bound and which errors
must not be retried.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import orjson

from pocket_rag.core.errors import CallTimeoutError

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")

logger = logging.getLogger(__name__)


def is_timeout(exc: BaseException) -> bool:
    """Return True for errors that represent an exhausted time budget."""
    return isinstance(exc, (CallTimeoutError, asyncio.TimeoutError, httpx.TimeoutException))


async def with_timeout(operation: Operation[T], timeout: float, label: str = "operation") -> T:
    """Run ``operation`` and raise :class:`CallTimeoutError` if it exceeds ``timeout`` seconds."""
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise CallTimeoutError(f"{label} timed out after {timeout:g}s") from exc


async def retry_with_backoff(
    operation: Operation[T],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[BaseException], bool] | None = None,
    label: str = "operation",
    sleep: Sleep = asyncio.sleep,
    log: logging.Logger | None = None,
) -> T:
    """Call ``operation`` up to ``max_retries + 1`` times.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n``. Errors for
    which ``should_retry`` returns False are raised immediately, and the last
    error is re-raised once the retry budget is spent.
    """
    log = log or logger
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if should_retry is not None and not should_retry(exc):
                log.warning("%s failed with a non-retryable error: %s", label, exc)
                raise
            if attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            log.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                label,
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            await sleep(delay)
            attempt += 1


async def call_with_policy(
    operation: Operation[T],
    *,
    timeout: float,
    max_retries: int = 0,
    base_delay: float = 0.5,
    skip_retry: Callable[[BaseException], bool] = is_timeout,
    label: str = "operation",
    sleep: Sleep = asyncio.sleep,
    log: logging.Logger | None = None,
) -> T:
    """Bound each attempt by ``timeout`` and retry errors not matched by ``skip_retry``."""
    return await retry_with_backoff(
        lambda: with_timeout(operation, timeout, label),
        max_retries=max_retries,
        base_delay=base_delay,
        should_retry=lambda exc: not skip_retry(exc),
        label=label,
        sleep=sleep,
        log=log,
    )


def extract_json(content: str, fallback: Any = None) -> Any:
    """Pull the first JSON object/array out of free text, or return ``fallback``."""
    if not content:
        return fallback
    match = _JSON_BLOCK_RE.search(content)
    if not match:
        return fallback
    try:
        return orjson.loads(match.group(0))
    except orjson.JSONDecodeError:
        logger.warning("Structured output could not be parsed as JSON")
        return fallback


__all__ = [
    "is_timeout",
    "with_timeout",
    "retry_with_backoff",
    "call_with_policy",
    "extract_json",
]
