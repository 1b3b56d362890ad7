"""Tests for embedding providers."""

import httpx
import orjson
import pytest

from pocket_rag.core.errors import EmbeddingServiceError
from pocket_rag.ingest.embeddings import (
    HashedEmbeddings,
    OpenRouterEmbeddings,
    build_embedding_provider,
)


def _provider(handler) -> OpenRouterEmbeddings:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterEmbeddings(api_key="sk-test", base_url="https://router.test/api/v1", client=client)


@pytest.mark.asyncio
async def test_hashed_embeddings_are_normalized_and_deterministic() -> None:
    model = HashedEmbeddings(dim=32)
    first, second = await model.embed(["hello world", "hello world"])
    assert len(first) == 32
    assert first == second
    assert abs(sum(value * value for value in first) - 1.0) < 1e-6


@pytest.mark.asyncio
async def test_hashed_embedding_of_empty_text_is_zero() -> None:
    (vector,) = await HashedEmbeddings(dim=8).embed([""])
    assert vector == [0.0] * 8


@pytest.mark.asyncio
async def test_openrouter_results_are_sorted_by_index() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = orjson.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    vectors = await _provider(handler).embed(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["url"] == "https://router.test/api/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"model": "openai/text-embedding-3-large", "input": ["first", "second"]}


@pytest.mark.asyncio
async def test_openrouter_count_mismatch_is_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

    with pytest.raises(EmbeddingServiceError, match="1 embeddings for 2 inputs"):
        await _provider(handler).embed(["a", "b"])


@pytest.mark.asyncio
async def test_openrouter_http_error_is_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    with pytest.raises(EmbeddingServiceError, match="429"):
        await _provider(handler).embed(["a"])


@pytest.mark.asyncio
async def test_openrouter_timeout_is_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(EmbeddingServiceError, match="timed out"):
        await _provider(handler).embed(["a"])


@pytest.mark.asyncio
async def test_openrouter_malformed_body_is_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(EmbeddingServiceError, match="malformed"):
        await _provider(handler).embed(["a"])


@pytest.mark.asyncio
async def test_empty_input_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("should not be called")

    assert await _provider(handler).embed([]) == []


def test_backend_selection(settings) -> None:
    assert isinstance(build_embedding_provider(settings), HashedEmbeddings)
    remote = build_embedding_provider(settings.model_copy(update={"embedding_backend": "openrouter"}), "sk-user")
    assert isinstance(remote, OpenRouterEmbeddings)
    assert remote.api_key == "sk-user"
    assert remote.timeout == settings.embedding_timeout
