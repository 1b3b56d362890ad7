"""Web page acquisition: direct fetch, browser-render fallback, main-content extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Mapping, Protocol
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from pocket_rag.core.config import Settings
from pocket_rag.core.errors import ExtractionError, FetchError
from pocket_rag.core.resilience import with_timeout
from pocket_rag.ingest.types import ExtractedArticle
from pocket_rag.security.url_safety import validate_url_for_ssrf
from pocket_rag.utils.text import clean_text, extract_title_from_url

logger = logging.getLogger(__name__)

MIN_EXTRACTED_CHARS = 100

_NOISE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg", "iframe")


@dataclass(slots=True)
class FetchResponse:
    status: int
    html: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(slots=True)
class RenderedPage:
    html: str
    title: str


@dataclass(slots=True)
class AcquiredContent:
    title: str
    text: str
    via: Literal["direct", "browser"]


class PageFetcher(Protocol):
    async def fetch(self, url: str, headers: Mapping[str, str]) -> FetchResponse: ...


class PageRenderer(Protocol):
    """Headless-browser collaborator that loads a page and waits for it to settle."""

    async def render(self, url: str) -> RenderedPage: ...


class HttpFetcher:
    """PageFetcher over httpx that follows redirects itself.

    Every ``Location`` target is run through the SSRF validator before it is
    requested, so a public URL cannot bounce the fetch onto an internal host.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_redirects: int = 5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._client = client

    async def fetch(self, url: str, headers: Mapping[str, str]) -> FetchResponse:
        if self._client is not None:
            return await self._follow(self._client, url, headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._follow(client, url, headers)

    async def _follow(
        self, client: httpx.AsyncClient, url: str, headers: Mapping[str, str]
    ) -> FetchResponse:
        current = url
        for _ in range(self.max_redirects + 1):
            try:
                response = await client.get(
                    current, headers=dict(headers), follow_redirects=False, timeout=self.timeout
                )
            except httpx.HTTPError as exc:
                raise FetchError(f"Failed to fetch URL: {exc}") from exc
            location = response.headers.get("location")
            if response.is_redirect and location:
                target = urljoin(current, location)
                validate_url_for_ssrf(target)
                logger.debug("Following redirect %s -> %s", current, target)
                current = target
                continue
            return FetchResponse(
                status=response.status_code,
                html=response.text,
                url=str(response.url),
                headers=dict(response.headers),
            )
        raise FetchError(f"Too many redirects (more than {self.max_redirects})")


def extract_article(html: str) -> ExtractedArticle:
    """Pull the page title and main readable text out of ``html``."""
    soup = BeautifulSoup(html or "", "html.parser")
    title = _extract_title(soup)
    for tag in soup(list(_NOISE_TAGS)):
        tag.decompose()
    container = soup.find("article") or soup.find("main") or soup.body or soup
    text = clean_text(container.get_text("\n"))
    return ExtractedArticle(title=title, text=text)


def _extract_title(soup: BeautifulSoup) -> str | None:
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content", "").strip():
        return og_title["content"].strip()
    if soup.title and soup.title.string and soup.title.string.strip():
        return soup.title.string.strip()
    heading = soup.find("h1")
    if heading:
        text = heading.get_text(" ", strip=True)
        if text:
            return text
    return None


class ContentAcquirer:
    """Two-tier acquisition: direct fetch first, browser rendering as the fallback."""

    def __init__(
        self,
        fetcher: PageFetcher,
        renderer: PageRenderer | None = None,
        *,
        user_agent: str = "Mozilla/5.0 (compatible; PocketRAG/1.0)",
        fallback_enabled: bool = True,
        render_timeout: float = 60.0,
        log: logging.Logger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.renderer = renderer
        self.user_agent = user_agent
        self.fallback_enabled = fallback_enabled
        self.render_timeout = render_timeout
        self.logger = log or logger

    @classmethod
    def from_settings(
        cls, settings: Settings, renderer: PageRenderer | None = None, fetcher: PageFetcher | None = None
    ) -> "ContentAcquirer":
        return cls(
            fetcher or HttpFetcher(timeout=settings.fetch_timeout, max_redirects=settings.max_redirects),
            renderer,
            user_agent=settings.user_agent,
            fallback_enabled=settings.browser_fallback_enabled,
            render_timeout=settings.render_timeout,
        )

    @property
    def can_render(self) -> bool:
        return self.fallback_enabled and self.renderer is not None

    async def acquire(self, url: str) -> AcquiredContent:
        """Fetch ``url`` and return its title and main text.

        Raises FetchError when no tier could load the page, and ExtractionError
        when pages loaded but never yielded enough text.
        """
        rendered_title: str | None = None
        via: Literal["direct", "browser"] = "direct"
        try:
            response = await self.fetcher.fetch(url, {"User-Agent": self.user_agent})
            if not response.ok:
                raise FetchError(f"Failed to fetch URL: {response.status}")
            html = response.html
        except FetchError as exc:
            if not self.can_render:
                raise
            self.logger.warning("Direct fetch of %s failed (%s), rendering in browser", url, exc)
            rendered = await self._render(url)
            html, rendered_title, via = rendered.html, rendered.title, "browser"

        article = extract_article(html)
        fallback_title = extract_title_from_url(url)
        if len(article.text) >= MIN_EXTRACTED_CHARS:
            return AcquiredContent(
                title=rendered_title or article.title or fallback_title, text=article.text, via=via
            )

        if via == "direct" and self.can_render and html:
            self.logger.info("Content from %s too short (%d chars), rendering in browser", url, len(article.text))
            try:
                rendered = await self._render(url)
            except FetchError as exc:
                self.logger.warning("Browser fallback for %s failed: %s", url, exc)
            else:
                second = extract_article(rendered.html)
                if len(second.text) > MIN_EXTRACTED_CHARS:
                    return AcquiredContent(
                        title=second.title or rendered.title or fallback_title, text=second.text, via="browser"
                    )

        raise ExtractionError("Could not extract meaningful content from URL")

    async def _render(self, url: str) -> RenderedPage:
        renderer = self.renderer
        if renderer is None:
            raise FetchError("Browser rendering is not configured")
        try:
            return await with_timeout(lambda: renderer.render(url), self.render_timeout, "browser render")
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(f"Browser rendering failed: {exc}") from exc


__all__ = [
    "FetchResponse",
    "RenderedPage",
    "AcquiredContent",
    "PageFetcher",
    "PageRenderer",
    "HttpFetcher",
    "ContentAcquirer",
    "extract_article",
    "MIN_EXTRACTED_CHARS",
]
