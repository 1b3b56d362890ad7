"""Conversation-aware query rewriting."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Sequence

from pydantic import ValidationError

from pocket_rag.core.metrics import AGENTIC_FALLBACKS
from pocket_rag.core.resilience import Sleep, call_with_policy, extract_json
from pocket_rag.retrieval.llm import ChatClient
from pocket_rag.retrieval.router import render_history
from pocket_rag.retrieval.types import ConversationMessage, RewritePayload, RewrittenQuery

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 6

REFERENCE_RE = re.compile(
    r"\b(it|this|that|they|them|these|those|the same|another|other|more|also)\b", re.IGNORECASE
)

REWRITE_PROMPT = """You are a query rewriter for a RAG system. Your job is to rewrite queries to be self-contained and explicit.

TASKS:
1. Resolve pronouns (it, that, they, this, etc.) using conversation context
2. Expand abbreviations or references to previous topics
3. Make the query self-contained so it can be searched independently
4. Extract key entities mentioned

Respond ONLY with valid JSON:
{
  "rewritten": "<the rewritten, self-contained query>",
  "extractedEntities": ["entity1", "entity2"],
  "needsContext": <true if query references prior conversation, false otherwise>
}"""


def has_references(query: str) -> bool:
    return REFERENCE_RE.search(query) is not None


class ContextRewriter:
    """Resolve references to earlier turns so the query can be searched on its own."""

    def __init__(
        self,
        chat: ChatClient,
        *,
        timeout: float = 8.0,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self.chat = chat
        self.timeout = timeout
        self.sleep = sleep
        self.logger = log or logger

    async def rewrite(
        self, query: str, history: Sequence[ConversationMessage] = ()
    ) -> RewrittenQuery:
        if not history or not has_references(query):
            return RewrittenQuery.unchanged(query)

        message = ConversationMessage(
            role="user",
            content=(
                f"Conversation history:\n{render_history(history, HISTORY_WINDOW)}"
                f'\n\nCurrent query: "{query}"'
            ),
        )
        try:
            completion = await call_with_policy(
                lambda: self.chat.complete(REWRITE_PROMPT, [message], temperature=0.1, max_tokens=300),
                timeout=self.timeout,
                max_retries=0,
                label="Query rewrite",
                sleep=self.sleep,
                log=self.logger,
            )
        except Exception as exc:
            return self._fallback(query, f"request failed: {exc}")

        data = extract_json(completion.content)
        if not isinstance(data, dict):
            return self._fallback(query, "unparsable response")
        try:
            payload = RewritePayload.model_validate(data)
        except ValidationError as exc:
            return self._fallback(query, f"invalid response: {exc.error_count()} errors")

        return RewrittenQuery(
            original=query,
            rewritten=payload.rewritten or query,
            extracted_entities=payload.extracted_entities,
            needs_context=payload.needs_context,
        )

    def _fallback(self, query: str, reason: str) -> RewrittenQuery:
        self.logger.warning("Query rewrite using original query: %s", reason)
        AGENTIC_FALLBACKS.labels("rewriting").inc()
        return RewrittenQuery.unchanged(query)


__all__ = ["ContextRewriter", "has_references", "REWRITE_PROMPT"]
