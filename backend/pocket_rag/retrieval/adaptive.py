"""Intent-driven retrieval parameters."""

from __future__ import annotations

from pocket_rag.retrieval.types import AdaptiveRetrievalParams, QueryIntent

DEFAULT_BASE_CHUNK_COUNT = 10
LONG_QUERY_CHARS = 100


def get_adaptive_params(
    intent: QueryIntent, query_length: int, base_chunk_count: int = DEFAULT_BASE_CHUNK_COUNT
) -> AdaptiveRetrievalParams:
    """Map an intent (and the query's length) to retrieval breadth and blend weights.

    Fractional chunk counts (1.5x base, 1.2x for queries over 100 characters)
    are rounded up.
    """
    base = base_chunk_count
    if intent == "no_retrieval":
        chunk_count, vector_weight, fts_weight, expansions = 0, 0.7, 0.3, 0
    elif intent == "simple_lookup":
        chunk_count, vector_weight, fts_weight, expansions = min(6, base), 0.6, 0.4, 1
    elif intent == "comparison":
        chunk_count, vector_weight, fts_weight, expansions = min(15, _ceil_ratio(base, 3, 2)), 0.7, 0.3, 3
    elif intent == "summarization":
        chunk_count, vector_weight, fts_weight, expansions = min(20, base * 2), 0.8, 0.2, 2
    elif intent == "analytical":
        chunk_count, vector_weight, fts_weight, expansions = min(15, _ceil_ratio(base, 3, 2)), 0.75, 0.25, 3
    elif intent == "follow_up":
        chunk_count, vector_weight, fts_weight, expansions = min(8, base), 0.7, 0.3, 1
    else:
        chunk_count, vector_weight, fts_weight, expansions = base, 0.7, 0.3, 2

    if query_length > LONG_QUERY_CHARS:
        chunk_count = _ceil_ratio(chunk_count, 6, 5)

    return AdaptiveRetrievalParams(
        chunk_count=chunk_count,
        vector_weight=vector_weight,
        fts_weight=fts_weight,
        expansion_queries=expansions,
    )


def _ceil_ratio(value: int, numerator: int, denominator: int) -> int:
    # Exact integer ceil(value * numerator / denominator).
    return -(-value * numerator // denominator)


__all__ = ["get_adaptive_params", "DEFAULT_BASE_CHUNK_COUNT"]
