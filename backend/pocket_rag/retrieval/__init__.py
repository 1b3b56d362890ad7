"""Retrieval-control components."""

from .adaptive import get_adaptive_params
from .answer import AnswerGenerator, GeneratedAnswer
from .crag import RelevanceGrader
from .grader import AnswerGrader
from .llm import ChatClient, OpenRouterChat
from .planner import PipelineEvent, RetrievalPlan, RetrievalPlanner
from .rewriter import ContextRewriter
from .router import QueryRouter

__all__ = [
    "get_adaptive_params",
    "AnswerGenerator",
    "GeneratedAnswer",
    "RelevanceGrader",
    "AnswerGrader",
    "ChatClient",
    "OpenRouterChat",
    "PipelineEvent",
    "RetrievalPlan",
    "RetrievalPlanner",
    "ContextRewriter",
    "QueryRouter",
]
