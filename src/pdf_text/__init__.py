"""PDF text extraction package."""

from .extractors import (
    PDFExtractionError,
    PDFExtractionOptions,
    PDFExtractionResult,
    extract_pdf_to_text,
    format_page_marker,
)

__all__ = [
    "PDFExtractionError",
    "PDFExtractionOptions",
    "PDFExtractionResult",
    "extract_pdf_to_text",
    "format_page_marker",
]
