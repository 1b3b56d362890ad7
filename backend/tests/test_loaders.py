"""Tests for upload extractors and local object storage."""

import fitz
import pytest

from pocket_rag.core.errors import ExtractionError, FetchError, SecurityError
from pocket_rag.ingest.loaders import PDF_MIME, TEXT_MIME, ExtractorRegistry
from pocket_rag.ingest.storage import LocalBlobStore


def _pdf_bytes(pages: list[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def test_text_extraction_ignores_bad_bytes() -> None:
    document = ExtractorRegistry().extract("café notes".encode("utf-8") + b"\xff", TEXT_MIME)
    assert document.text == "café notes"
    assert document.pages == []


def test_pdf_extraction_keeps_pages() -> None:
    document = ExtractorRegistry().extract(_pdf_bytes(["First page words", "Second page words"]), PDF_MIME)
    assert len(document.pages) == 2
    assert "First page words" in document.pages[0]
    assert "Second page words" in document.pages[1]


def test_corrupt_pdf_is_extraction_error() -> None:
    with pytest.raises(ExtractionError):
        ExtractorRegistry().extract(b"not a pdf at all", PDF_MIME)


def test_unsupported_mime_type() -> None:
    with pytest.raises(ExtractionError, match="Unsupported mime type: application/zip"):
        ExtractorRegistry().extract(b"PK", "application/zip")


@pytest.mark.asyncio
async def test_blob_store_round_trip(tmp_path) -> None:
    blobs = LocalBlobStore(tmp_path / "uploads")
    await blobs.upload("org-1/doc.txt", b"hello")
    assert await blobs.download("org-1/doc.txt") == b"hello"


@pytest.mark.asyncio
async def test_blob_store_rejects_traversal(tmp_path) -> None:
    blobs = LocalBlobStore(tmp_path / "uploads")
    with pytest.raises(SecurityError):
        await blobs.download("../secrets.txt")


@pytest.mark.asyncio
async def test_blob_store_missing_file(tmp_path) -> None:
    with pytest.raises(FetchError, match="Failed to download file"):
        await LocalBlobStore(tmp_path).download("missing.txt")
