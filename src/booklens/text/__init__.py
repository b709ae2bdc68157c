"""Document text utilities: chunking, page markers and contents detection."""

from .chunker import (
    PageMarker,
    chunk_text,
    estimate_token_count,
    extract_page_markers,
    find_page_boundaries,
)
from .toc import extract_table_of_contents

__all__ = [
    "PageMarker",
    "chunk_text",
    "estimate_token_count",
    "extract_page_markers",
    "extract_table_of_contents",
    "find_page_boundaries",
]
