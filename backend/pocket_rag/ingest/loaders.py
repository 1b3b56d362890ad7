"""Text extractors for supported upload formats."""

from __future__ import annotations

from io import BytesIO

import fitz
from docx import Document

from pocket_rag.core.errors import ExtractionError
from pocket_rag.ingest.types import ExtractedDocument
from pocket_rag.models.entities import SourceType

PDF_MIME = "application/pdf"
TEXT_MIME = "text/plain"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class BaseExtractor:
    """Common extractor interface."""

    mime_type: str = "application/octet-stream"
    source_type: SourceType

    def extract(self, data: bytes) -> ExtractedDocument:  # pragma: no cover - interface
        raise NotImplementedError


class TextExtractor(BaseExtractor):
    mime_type = TEXT_MIME
    source_type = SourceType.TXT

    def extract(self, data: bytes) -> ExtractedDocument:
        return ExtractedDocument(text=data.decode("utf-8", errors="ignore"))


class PDFExtractor(BaseExtractor):
    mime_type = PDF_MIME
    source_type = SourceType.PDF

    def extract(self, data: bytes) -> ExtractedDocument:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text", sort=True) for page in doc]
        except (fitz.FileDataError, RuntimeError, ValueError) as exc:
            raise ExtractionError(f"Could not read PDF: {exc}") from exc
        return ExtractedDocument(text="\n\n".join(pages), pages=pages)


class DocxExtractor(BaseExtractor):
    mime_type = DOCX_MIME
    source_type = SourceType.DOCX

    def extract(self, data: bytes) -> ExtractedDocument:
        try:
            document = Document(BytesIO(data))
        except Exception as exc:
            raise ExtractionError(f"Could not read DOCX: {exc}") from exc
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        return ExtractedDocument(text="\n\n".join(paragraphs))


class ExtractorRegistry:
    """Registry that selects an extractor by mime type."""

    def __init__(self) -> None:
        self._extractors: dict[str, BaseExtractor] = {}
        for extractor in (PDFExtractor(), TextExtractor(), DocxExtractor()):
            self.register(extractor)

    def register(self, extractor: BaseExtractor) -> None:
        self._extractors[extractor.mime_type] = extractor

    def for_mime(self, mime_type: str) -> BaseExtractor | None:
        return self._extractors.get(mime_type)

    def extract(self, data: bytes, mime_type: str) -> ExtractedDocument:
        extractor = self.for_mime(mime_type)
        if extractor is None:
            raise ExtractionError(f"Unsupported mime type: {mime_type}")
        return extractor.extract(data)


__all__ = [
    "PDF_MIME",
    "TEXT_MIME",
    "DOCX_MIME",
    "BaseExtractor",
    "TextExtractor",
    "PDFExtractor",
    "DocxExtractor",
    "ExtractorRegistry",
]
