"""Input loading utilities for the booklens pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pdf_text import PDFExtractionError, PDFExtractionOptions, extract_pdf_to_text

from .schema import BookInfo
from .text import extract_table_of_contents

__all__ = ["DocumentUnavailableError", "LoadedDocument", "load_document", "title_from_path"]

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md", ".markdown"}
PDF_SUFFIXES = {".pdf"}


class DocumentUnavailableError(RuntimeError):
    """Raised when a document's text cannot be obtained."""


@dataclass(slots=True)
class LoadedDocument:
    """Extracted document text together with its book metadata."""

    content: str
    source: Path
    book_info: BookInfo
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def book_id(self) -> str:
        return self.book_info.id


def title_from_path(path: Path) -> str:
    return " ".join(path.stem.replace("-", " ").replace("_", " ").split()) or path.name


def load_document(
    source: Path | str,
    *,
    book_id: str | None = None,
    first_page: int | None = None,
    last_page: int | None = None,
    encoding: str = "utf-8",
) -> LoadedDocument:
    """Load a PDF or plain-text document and describe it as a :class:`BookInfo`."""

    source_path = Path(source).expanduser()
    if not source_path.is_file():
        raise DocumentUnavailableError(f"Document not available: {source_path}")

    suffix = source_path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        try:
            text = source_path.read_text(encoding=encoding)
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentUnavailableError(f"Document not available: {source_path} ({exc})") from exc
        metadata: dict[str, Any] = {"kind": "text", "length": len(text)}
        title, author, page_count = None, None, None
    elif suffix in PDF_SUFFIXES:
        options = PDFExtractionOptions(first_page=first_page, last_page=last_page)
        try:
            result = extract_pdf_to_text(source_path, options=options, logger=logger.debug)
        except PDFExtractionError as exc:
            logger.error("Text extraction failed for %s: %s", source_path, exc)
            raise DocumentUnavailableError(f"Document not available: {source_path} ({exc})") from exc
        text = result.combined_text
        metadata = {"kind": "pdf", "length": len(text), **result.metadata}
        title = result.metadata.get("title")
        author = result.metadata.get("author")
        page_count = result.metadata.get("page_count")
    else:
        raise DocumentUnavailableError(f"Unsupported document format: {source_path}")

    book_info = BookInfo(
        id=book_id or source_path.name,
        title=str(title) if title else title_from_path(source_path),
        author=str(author) if author else "Unknown",
        path=str(source_path),
        page_count=page_count if isinstance(page_count, int) else None,
        metadata=metadata,
        table_of_contents=extract_table_of_contents(text),
    )
    logger.info("Loaded '%s' (%s characters)", book_info.title, len(text))
    return LoadedDocument(content=text, source=source_path, book_info=book_info, metadata=metadata)
