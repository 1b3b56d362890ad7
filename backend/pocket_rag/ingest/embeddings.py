"""Embedding providers."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from typing import Any, Protocol, Sequence

import httpx

from pocket_rag.core.config import Settings
from pocket_rag.core.errors import EmbeddingServiceError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://pocket-rag.local",
    "X-Title": "Pocket RAG",
}


class EmbeddingProvider(Protocol):
    """Turns an ordered list of texts into one vector per text, same order."""

    model: str

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


class OpenRouterEmbeddings:
    """Embedding provider backed by the OpenRouter ``/embeddings`` endpoint.

    Fails loudly: any transport error, non-2xx status, timeout or a result
    count that does not match the input raises :class:`EmbeddingServiceError`.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "openai/text-embedding-3-large",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, api_key: str | None = None, client: httpx.AsyncClient | None = None
    ) -> "OpenRouterEmbeddings":
        return cls(
            api_key=api_key if api_key is not None else settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.embed_model,
            timeout=settings.embedding_timeout,
            client=client,
        )

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        logger.debug("Embedding %d texts with %s", len(texts), self.model)
        payload = {"model": self.model, "input": list(texts)}
        headers = {"Authorization": f"Bearer {self.api_key}", **OPENROUTER_HEADERS}
        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}/embeddings", json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise EmbeddingServiceError(f"OpenRouter embedding timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise EmbeddingServiceError(f"OpenRouter embedding request failed: {exc}") from exc

        if not response.is_success:
            raise EmbeddingServiceError(
                f"OpenRouter embedding failed: {response.status_code} {response.text[:500]}"
            )
        return _parse_embedding_response(response, expected=len(texts))


def _parse_embedding_response(response: httpx.Response, expected: int) -> list[list[float]]:
    try:
        data: list[dict[str, Any]] = response.json()["data"]
        ordered = sorted(data, key=lambda item: item["index"])
        vectors = [list(map(float, item["embedding"])) for item in ordered]
    except (ValueError, KeyError, TypeError) as exc:
        raise EmbeddingServiceError("OpenRouter embedding response was malformed") from exc
    if len(vectors) != expected:
        raise EmbeddingServiceError(
            f"OpenRouter returned {len(vectors)} embeddings for {expected} inputs"
        )
    return vectors


class HashedEmbeddings:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(self, model: str = "hashed", dim: int = 384) -> None:
        self.model = model
        self.dim = dim

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.encode_one(text) for text in texts]

    def encode_one(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _tokenize(text):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


def build_embedding_provider(settings: Settings, api_key: str | None = None) -> EmbeddingProvider:
    """Select the configured backend."""
    if settings.embedding_backend == "hashed":
        return HashedEmbeddings(model=f"hashed:{settings.embed_model}")
    return OpenRouterEmbeddings.from_settings(settings, api_key=api_key)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "OpenRouterEmbeddings",
    "HashedEmbeddings",
    "build_embedding_provider",
]
