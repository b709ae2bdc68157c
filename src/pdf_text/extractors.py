"""Page-wise plain-text extraction from PDF documents.

Each page's text is prefixed with a ``[Page N]`` marker so downstream
chunkers can recover page numbers from the combined text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import fitz  # PyMuPDF

__all__ = [
    "PDFExtractionError",
    "PDFExtractionOptions",
    "PDFExtractionResult",
    "extract_pdf_to_text",
    "format_page_marker",
]

Logger = Callable[[str], None]


class PDFExtractionError(RuntimeError):
    """Raised when a PDF cannot be opened or read."""


@dataclass(slots=True)
class PDFExtractionOptions:
    """Configuration bundle controlling PDF text extraction behaviour."""

    first_page: int | None = None
    last_page: int | None = None
    page_markers: bool = True


@dataclass(slots=True)
class PDFExtractionResult:
    """Structured result returned by :func:`extract_pdf_to_text`."""

    page_texts: list[str]
    page_numbers: list[int]
    combined_text: str
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.page_texts)

    def as_dict(self) -> dict[str, object]:
        return {
            "page_texts": self.page_texts,
            "page_numbers": self.page_numbers,
            "combined_text": self.combined_text,
            "metadata": self.metadata,
        }


def format_page_marker(page_number: int) -> str:
    return f"[Page {page_number}]"


def extract_pdf_to_text(
    pdf_path: Path | str,
    *,
    options: PDFExtractionOptions | None = None,
    logger: Logger | None = None,
) -> PDFExtractionResult:
    """Extract page-wise text from a PDF document.

    Parameters
    ----------
    pdf_path:
        Target PDF file to process.
    options:
        Optional 1-based inclusive page range and marker switch.
    logger:
        Optional callback used for diagnostic messages. Supply ``print``
        for CLI output, or ``None`` to stay silent.
    """

    pdf_path = Path(pdf_path).expanduser()
    if not pdf_path.is_file():
        raise PDFExtractionError(f"PDF file does not exist: {pdf_path}")

    opts = options or PDFExtractionOptions()

    try:
        doc = fitz.open(pdf_path)
    except (RuntimeError, ValueError, OSError) as exc:
        raise PDFExtractionError(f"Cannot open PDF {pdf_path}: {exc}") from exc

    page_texts: list[str] = []
    page_numbers: list[int] = []
    with doc:
        total_pages = doc.page_count
        first, last = _resolve_page_range(opts, total_pages)

        for page_number in range(first, last + 1):
            try:
                page = doc.load_page(page_number - 1)
                text = _page_text(page)
            except (RuntimeError, ValueError) as exc:
                raise PDFExtractionError(f"Cannot read page {page_number} of {pdf_path}: {exc}") from exc
            if logger:
                logger(f"Page {page_number}: extracted {len(text)} characters.")
            page_texts.append(text)
            page_numbers.append(page_number)

        raw_meta = doc.metadata or {}
        metadata: dict[str, object] = {
            "title": (raw_meta.get("title") or "").strip() or None,
            "author": (raw_meta.get("author") or "").strip() or None,
            "page_count": total_pages,
            "first_page": first,
            "last_page": last,
        }

    parts: list[str] = []
    for page_number, text in zip(page_numbers, page_texts):
        if opts.page_markers:
            parts.append(f"{format_page_marker(page_number)}\n{text}".rstrip())
        elif text:
            parts.append(text)
    combined_text = "\n\n".join(parts)
    return PDFExtractionResult(
        page_texts=page_texts,
        page_numbers=page_numbers,
        combined_text=combined_text,
        metadata=metadata,
    )


def _resolve_page_range(opts: PDFExtractionOptions, total_pages: int) -> tuple[int, int]:
    first = opts.first_page or 1
    last = min(opts.last_page or total_pages, total_pages)
    if total_pages == 0:
        return 1, 0
    if first < 1 or first > total_pages or last < first:
        raise PDFExtractionError(
            f"Invalid page range {opts.first_page}-{opts.last_page} for a {total_pages}-page document"
        )
    return first, last


def _page_text(page: fitz.Page) -> str:
    page_dict = page.get_text("dict")
    page_parts: list[str] = []
    for block in page_dict.get("blocks", []):
        if block.get("type") != 0:
            continue
        block_lines: list[str] = []
        for line in block.get("lines", []):
            line_text = "".join(span.get("text", "") for span in line.get("spans", []))
            if line_text.strip():
                block_lines.append(line_text.strip())
        if block_lines:
            page_parts.append("\n".join(block_lines))
    return "\n\n".join(page_parts).strip()
