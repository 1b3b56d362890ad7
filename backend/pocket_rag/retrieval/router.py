"""Query intent classification."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Sequence

from pydantic import ValidationError

from pocket_rag.core.metrics import AGENTIC_FALLBACKS
from pocket_rag.core.resilience import Sleep, call_with_policy, extract_json
from pocket_rag.retrieval.llm import ChatClient
from pocket_rag.retrieval.types import ConversationMessage, QueryRouterResult, RouterPayload

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 4
SHORTCUT_CONFIDENCE = 0.95

GREETING_RE = re.compile(r"^(hi|hello|hey|greetings|good\s*(morning|afternoon|evening))[\s!.]*$", re.IGNORECASE)
THANKS_RE = re.compile(r"^(thanks|thank\s*you|thx|ty)[\s!.]*$", re.IGNORECASE)

GREETING_RESPONSE = "Hello! How can I help you today? Feel free to ask me anything about your documents."
THANKS_RESPONSE = "You're welcome! Let me know if you have any other questions."

ROUTER_PROMPT = """You are a query intent classifier for a RAG (Retrieval Augmented Generation) system.
Analyze the user's query and classify its intent.

INTENT TYPES:
- no_retrieval: Greetings, thanks, general chitchat, or questions that don't need document lookup (e.g., "hello", "thanks!", "how are you?", "what can you do?")
- simple_lookup: Direct fact finding, specific information retrieval (e.g., "what is X?", "when did Y happen?")
- comparison: Comparing two or more items, concepts, or documents (e.g., "compare A and B", "what's the difference between X and Y?")
- summarization: Request to summarize content, provide overview (e.g., "summarize the document", "give me an overview of X")
- analytical: Deep analysis, reasoning, inference required (e.g., "why did X cause Y?", "analyze the implications of...")
- follow_up: Follow-up to a previous question, references prior context (e.g., "tell me more", "what about the other one?", "and then?")

Respond ONLY with valid JSON:
{
  "intent": "<intent_type>",
  "confidence": <0.0-1.0>,
  "reasoning": "<brief explanation>",
  "suggestedResponse": "<only for no_retrieval, a friendly response>"
}"""


def default_route() -> QueryRouterResult:
    return QueryRouterResult(
        intent="simple_lookup",
        confidence=0.5,
        reasoning="Using default (fallback)",
        skip_retrieval=False,
    )


def match_shortcut(query: str) -> QueryRouterResult | None:
    """Classify greetings and thanks without calling the chat service."""
    normalized = query.strip().lower()
    if GREETING_RE.match(normalized):
        return QueryRouterResult(
            intent="no_retrieval",
            confidence=SHORTCUT_CONFIDENCE,
            reasoning="Greeting detected via pattern match",
            skip_retrieval=True,
            suggested_response=GREETING_RESPONSE,
        )
    if THANKS_RE.match(normalized):
        return QueryRouterResult(
            intent="no_retrieval",
            confidence=SHORTCUT_CONFIDENCE,
            reasoning="Thanks detected via pattern match",
            skip_retrieval=True,
            suggested_response=THANKS_RESPONSE,
        )
    return None


def render_history(history: Sequence[ConversationMessage], window: int) -> str:
    return "\n".join(f"{message.role}: {message.content}" for message in history[-window:])


class QueryRouter:
    """Decide how much retrieval a query needs.

    The slow path is bounded by ``timeout`` per attempt and retried at most
    ``max_retries`` times; a timeout is never retried. Every failure mode ends
    in :func:`default_route`.
    """

    def __init__(
        self,
        chat: ChatClient,
        *,
        timeout: float = 10.0,
        max_retries: int = 1,
        base_delay: float = 0.5,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self.chat = chat
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        self.logger = log or logger

    async def route(
        self, query: str, history: Sequence[ConversationMessage] = ()
    ) -> QueryRouterResult:
        shortcut = match_shortcut(query)
        if shortcut is not None:
            return shortcut

        prompt = f'Query: "{query}"'
        if history:
            prompt += f"\n\nConversation history:\n{render_history(history, HISTORY_WINDOW)}"
        message = ConversationMessage(role="user", content=prompt)

        try:
            completion = await call_with_policy(
                lambda: self.chat.complete(ROUTER_PROMPT, [message], temperature=0.1, max_tokens=200),
                timeout=self.timeout,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                label="Query router",
                sleep=self.sleep,
                log=self.logger,
            )
        except Exception as exc:
            return self._fallback(f"request failed: {exc}")

        data = extract_json(completion.content)
        if not isinstance(data, dict):
            return self._fallback("unparsable response")
        try:
            payload = RouterPayload.model_validate(data)
        except ValidationError as exc:
            return self._fallback(f"invalid response: {exc.error_count()} errors")

        skip = payload.intent == "no_retrieval"
        return QueryRouterResult(
            intent=payload.intent,
            confidence=payload.confidence,
            reasoning=payload.reasoning,
            skip_retrieval=skip,
            suggested_response=payload.suggested_response if skip else None,
        )

    def _fallback(self, reason: str) -> QueryRouterResult:
        self.logger.warning("Query router using default: %s", reason)
        AGENTIC_FALLBACKS.labels("routing").inc()
        return default_route()


__all__ = ["QueryRouter", "match_shortcut", "default_route", "render_history", "ROUTER_PROMPT"]
