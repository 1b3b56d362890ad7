"""Test fixtures for Pocket RAG."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from pocket_rag.core.config import Settings  # noqa: E402
from pocket_rag.core.errors import FetchError, TransientAPIError  # noqa: E402
from pocket_rag.db.sqlite import SQLiteDatabase  # noqa: E402
from pocket_rag.db.store import SQLiteKnowledgeStore  # noqa: E402
from pocket_rag.ingest.acquire import FetchResponse, RenderedPage  # noqa: E402
from pocket_rag.ingest.embeddings import HashedEmbeddings  # noqa: E402
from pocket_rag.models.entities import Source, SourceStatus, SourceType  # noqa: E402
from pocket_rag.retrieval.llm import ChatCompletion  # noqa: E402

ARTICLE_PARAGRAPHS = [
    "Photosynthesis converts light energy into chemical energy stored in glucose molecules.",
    "Chlorophyll pigments absorb mostly blue and red wavelengths while reflecting green light.",
    "The light reactions happen in thylakoid membranes and produce oxygen as a byproduct.",
    "The Calvin cycle fixes carbon dioxide in the stroma using ATP and NADPH from earlier steps.",
    "Environmental factors such as temperature, water supply and carbon dioxide levels limit the rate.",
]


def article_html(title: str = "Photosynthesis Basics", paragraphs: Sequence[str] = ARTICLE_PARAGRAPHS) -> str:
    body = "".join(f"<p>{para}</p>" for para in paragraphs)
    return (
        f"<html><head><title>{title}</title><script>var tracking = 1;</script></head>"
        f"<body><nav>Home | About</nav><article><h1>{title}</h1>{body}</article>"
        "<footer>Copyright</footer></body></html>"
    )


class ScriptedChat:
    """ChatClient that replays queued replies; exceptions in the queue are raised."""

    def __init__(self, *replies: Any, delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[Any],
        *,
        temperature: float,
        max_tokens: int,
        model: str | None = None,
    ) -> ChatCompletion:
        self.calls.append(
            {
                "system": system_prompt,
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.replies:
            raise TransientAPIError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return ChatCompletion(content=reply, model=model or "test-model")


class CountingEmbeddings(HashedEmbeddings):
    """Deterministic provider that records every batch it is asked to embed."""

    def __init__(self, dim: int = 16) -> None:
        super().__init__(model="counting", dim=dim)
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return await super().embed(texts)

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)


class StaticFetcher:
    """PageFetcher serving canned responses by URL."""

    def __init__(self, pages: dict[str, FetchResponse | Exception] | None = None) -> None:
        self.pages = pages or {}
        self.requests: list[tuple[str, dict[str, str]]] = []

    async def fetch(self, url: str, headers: Any) -> FetchResponse:
        self.requests.append((url, dict(headers)))
        page = self.pages.get(url)
        if page is None:
            raise FetchError(f"Failed to fetch URL: {url}")
        if isinstance(page, Exception):
            raise page
        return page


class StaticRenderer:
    def __init__(self, page: RenderedPage | Exception) -> None:
        self.page = page
        self.rendered: list[str] = []

    async def render(self, url: str) -> RenderedPage:
        self.rendered.append(url)
        if isinstance(self.page, Exception):
            raise self.page
        return self.page


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("POCKET_DB_PATH", str(tmp_path / "pocket.db"))
    monkeypatch.delenv("POCKET_CONFIG", raising=False)
    monkeypatch.delenv("POCKET_OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("POCKET_MASTER_KEY", raising=False)

    from pocket_rag import dependencies as deps
    from pocket_rag.core.config import get_settings

    deps.reset_state()
    get_settings.cache_clear()
    yield
    deps.reset_state()
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "pocket.db",
        upload_root=tmp_path / "uploads",
        embedding_backend="hashed",
        embedding_batch_size=4,
        chunk_target_tokens=50,
        chunk_overlap_tokens=10,
        master_key="unit-test-master-key",
    )


@pytest.fixture
def store(settings: Settings) -> SQLiteKnowledgeStore:
    db = SQLiteDatabase(settings.db_path)
    db.ensure_schema()
    yield SQLiteKnowledgeStore(db)
    db.close()


@pytest.fixture
def add_source(store: SQLiteKnowledgeStore):
    async def _add(
        source_id: str = "src-1",
        source_type: SourceType = SourceType.URL,
        status: SourceStatus = SourceStatus.QUEUED,
        **fields: Any,
    ) -> Source:
        source = Source(
            id=source_id,
            org_id=fields.pop("org_id", "org-1"),
            pocket_id=fields.pop("pocket_id", "pocket-1"),
            type=source_type,
            title=fields.pop("title", "Pending"),
            status=status,
            **fields,
        )
        return await store.add_source(source)

    return _add


@pytest.fixture
def embeddings() -> CountingEmbeddings:
    return CountingEmbeddings()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scripted_chat():
    return ScriptedChat


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "\n\n".join(ARTICLE_PARAGRAPHS)


@pytest.fixture
def make_fetcher():
    return StaticFetcher


@pytest.fixture
def make_renderer():
    return StaticRenderer


@pytest.fixture
def html_page():
    return article_html
