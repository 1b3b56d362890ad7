"""Error taxonomy shared by the ingestion and retrieval-control layers."""

from __future__ import annotations


class PocketError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(PocketError):
    """Required configuration (API key, master key, ...) is missing or invalid."""


class SecurityError(PocketError):
    """A URL was rejected by the SSRF validator. Never retried."""


class FetchError(PocketError):
    """Network acquisition failed on every available tier."""


class ExtractionError(PocketError):
    """Content could not be extracted, or was rejected as invalid."""


class EmbeddingServiceError(PocketError):
    """The embedding service failed; fatal for the whole source."""


class TransientAPIError(PocketError):
    """A routing/rewriting/grading call failed; callers degrade to defaults."""


class CallTimeoutError(TransientAPIError):
    """An external call exceeded its time budget."""


class InvalidTransitionError(PocketError):
    """A source status change that the state machine does not allow."""


class NotFoundError(PocketError):
    """A job referenced a source or memory that does not exist."""


__all__ = [
    "PocketError",
    "ConfigurationError",
    "SecurityError",
    "FetchError",
    "ExtractionError",
    "EmbeddingServiceError",
    "TransientAPIError",
    "CallTimeoutError",
    "InvalidTransitionError",
    "NotFoundError",
]
