"""Chat-completion client used by the retrieval-control stages and answer generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx

from pocket_rag.core.config import Settings
from pocket_rag.core.errors import CallTimeoutError, TransientAPIError
from pocket_rag.ingest.embeddings import OPENROUTER_HEADERS
from pocket_rag.retrieval.types import ConversationMessage

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ChatCompletion:
    content: str
    model: str


class ChatClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ConversationMessage],
        *,
        temperature: float,
        max_tokens: int,
        model: str | None = None,
    ) -> ChatCompletion: ...


class OpenRouterChat:
    """ChatClient over OpenRouter ``/chat/completions`` with a fallback model.

    When the primary model fails with anything other than a timeout, the call
    is repeated once with ``fallback_model`` (if it differs from the primary).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "google/gemma-3-27b-it:free",
        fallback_model: str | None = "openai/gpt-oss-120b:free",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.fallback_model = fallback_model
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, api_key: str | None = None, client: httpx.AsyncClient | None = None
    ) -> "OpenRouterChat":
        return cls(
            api_key=api_key if api_key is not None else settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.chat_model,
            fallback_model=settings.fallback_chat_model or None,
            client=client,
        )

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ConversationMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> ChatCompletion:
        primary = model or self.model
        body_messages = [{"role": "system", "content": system_prompt}] + [
            {"role": message.role, "content": message.content} for message in messages
        ]
        try:
            return await self._call(primary, body_messages, temperature, max_tokens)
        except CallTimeoutError:
            raise
        except TransientAPIError as exc:
            if not self.fallback_model or self.fallback_model == primary:
                raise
            logger.warning("Primary model %s failed (%s), trying fallback %s", primary, exc, self.fallback_model)
            return await self._call(self.fallback_model, body_messages, temperature, max_tokens)

    async def _call(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> ChatCompletion:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", **OPENROUTER_HEADERS}
        url = f"{self.base_url}/chat/completions"
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise CallTimeoutError(f"OpenRouter chat timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise TransientAPIError(f"OpenRouter chat request failed: {exc}") from exc

        if not response.is_success:
            raise TransientAPIError(f"OpenRouter chat failed: {response.status_code} {response.text[:500]}")
        try:
            choices = response.json().get("choices") or [{}]
            content = (choices[0].get("message") or {}).get("content") or ""
        except (ValueError, AttributeError, TypeError) as exc:
            raise TransientAPIError("OpenRouter chat response was malformed") from exc
        return ChatCompletion(content=content, model=model)


__all__ = ["ChatCompletion", "ChatClient", "OpenRouterChat"]
