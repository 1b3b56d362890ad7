"""Shared service wiring for the ingest worker and the retrieval-control layer."""

from __future__ import annotations

from functools import lru_cache

from pocket_rag.core.config import Settings, get_settings
from pocket_rag.db.sqlite import SQLiteDatabase
from pocket_rag.db.store import SQLiteKnowledgeStore
from pocket_rag.ingest.pipeline import IngestionOrchestrator
from pocket_rag.ingest.storage import LocalBlobStore
from pocket_rag.ingest.worker import IngestWorker
from pocket_rag.retrieval import (
    AnswerGenerator,
    AnswerGrader,
    ContextRewriter,
    OpenRouterChat,
    QueryRouter,
    RelevanceGrader,
    RetrievalPlanner,
)

_DB: SQLiteDatabase | None = None
_STORE: SQLiteKnowledgeStore | None = None
_ORCHESTRATOR: IngestionOrchestrator | None = None
_WORKER: IngestWorker | None = None
_CHAT: OpenRouterChat | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_store() -> SQLiteKnowledgeStore:
    global _STORE
    if _STORE is None:
        _STORE = SQLiteKnowledgeStore(get_database())
    return _STORE


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore(get_app_settings().upload_root)


def get_orchestrator() -> IngestionOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = IngestionOrchestrator(
            get_store(),
            get_app_settings(),
            blobs=get_blob_store(),
        )
    return _ORCHESTRATOR


def get_worker() -> IngestWorker:
    global _WORKER
    if _WORKER is None:
        _WORKER = IngestWorker(get_orchestrator(), concurrency=get_app_settings().worker_concurrency)
    return _WORKER


def get_chat_client() -> OpenRouterChat:
    global _CHAT
    if _CHAT is None:
        _CHAT = OpenRouterChat.from_settings(get_app_settings())
    return _CHAT


def get_planner() -> RetrievalPlanner:
    settings = get_app_settings()
    chat = get_chat_client()
    router = QueryRouter(
        chat,
        timeout=settings.router_timeout,
        max_retries=settings.router_retries,
        base_delay=settings.retry_base_delay,
    )
    rewriter = ContextRewriter(chat, timeout=settings.rewrite_timeout)
    return RetrievalPlanner(router, rewriter, base_chunk_count=settings.base_chunk_count)


def get_relevance_grader() -> RelevanceGrader:
    return RelevanceGrader(get_chat_client(), timeout=get_app_settings().grading_timeout)


def get_answer_grader() -> AnswerGrader:
    return AnswerGrader(get_chat_client(), timeout=get_app_settings().answer_grading_timeout)


def get_answer_generator() -> AnswerGenerator:
    return AnswerGenerator(get_chat_client())


def reset_state() -> None:
    """Drop cached singletons so the next call rebuilds them from fresh settings."""
    global _DB, _STORE, _ORCHESTRATOR, _WORKER, _CHAT
    if _DB is not None:
        _DB.close()
    _DB = None
    _STORE = None
    _ORCHESTRATOR = None
    _WORKER = None
    _CHAT = None
    get_app_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_store",
    "get_blob_store",
    "get_orchestrator",
    "get_worker",
    "get_chat_client",
    "get_planner",
    "get_relevance_grader",
    "get_answer_grader",
    "get_answer_generator",
    "reset_state",
]
