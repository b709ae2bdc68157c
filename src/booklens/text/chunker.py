"""Token-budgeted, paragraph-aware document chunking.

Text is split on blank lines into paragraphs which are accumulated into a
running buffer until the next paragraph would push the estimated token count
over ``max_tokens``. Paragraphs that are too large on their own are split on
sentence boundaries with the same accumulate-and-flush rule. Chunks smaller
than ``min_tokens`` are folded into the preceding chunk (the first chunk is
always kept). Page numbers are assigned afterwards from page markers found in
the source text.
"""

from __future__ import annotations

import logging
import math
import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..schema import Chunk

__all__ = [
    "PageMarker",
    "chunk_text",
    "estimate_token_count",
    "extract_page_markers",
    "find_page_boundaries",
]

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE = re.compile(r"[^.!?]*(?:[.!?]+|$)")
_PAGE_MARKER = re.compile(
    r"\[Page\s*(\d+)\]|\(page\s*(\d+)\)|\(pg\.?\s*(\d+)\)|Page\s*(\d+)",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class PageMarker:
    position: int
    page_number: int


@dataclass(slots=True)
class _Span:
    """A piece of source text with its character offsets."""

    text: str
    start: int
    end: int


def estimate_token_count(text: str) -> int:
    """Rough token estimate: one token per four characters of English text."""

    return math.ceil(len(text) / 4)


def extract_page_markers(text: str) -> List[PageMarker]:
    """Return every page marker (``[Page N]``, ``(page N)``, ``(pg. N)``, ``Page N``) in order."""

    markers: List[PageMarker] = []
    for match in _PAGE_MARKER.finditer(text):
        number = next(group for group in match.groups() if group is not None)
        markers.append(PageMarker(position=match.start(), page_number=int(number)))
    return markers


def find_page_boundaries(
    start: int,
    end: int,
    markers: Sequence[PageMarker],
) -> tuple[Optional[int], Optional[int]]:
    """Map a character span to the last page marker at or before each end."""

    positions = [marker.position for marker in markers]
    start_index = bisect_right(positions, start) - 1
    end_index = bisect_right(positions, end) - 1
    page_start = markers[start_index].page_number if start_index >= 0 else None
    page_end = markers[end_index].page_number if end_index >= 0 else None
    return page_start, page_end


def _split_paragraphs(text: str) -> List[_Span]:
    spans: List[_Span] = []
    cursor = 0
    for match in _PARAGRAPH_BREAK.finditer(text):
        spans.extend(_trimmed_span(text, cursor, match.start()))
        cursor = match.end()
    spans.extend(_trimmed_span(text, cursor, len(text)))
    return spans


def _split_sentences(paragraph: _Span) -> List[_Span]:
    spans: List[_Span] = []
    for match in _SENTENCE.finditer(paragraph.text):
        spans.extend(
            _trimmed_span(
                paragraph.text,
                match.start(),
                match.end(),
                offset=paragraph.start,
            )
        )
    return spans or [paragraph]


def _trimmed_span(text: str, start: int, end: int, *, offset: int = 0) -> List[_Span]:
    raw = text[start:end]
    stripped = raw.strip()
    if not stripped:
        return []
    leading = len(raw) - len(raw.lstrip())
    begin = offset + start + leading
    return [_Span(text=stripped, start=begin, end=begin + len(stripped))]


class _ChunkBuilder:
    """Accumulates spans and emits chunks, folding undersized ones backwards."""

    def __init__(self, max_tokens: int, min_tokens: int) -> None:
        self.max_tokens = max_tokens
        self.min_tokens = min_tokens
        self.chunks: List[_Span] = []
        self._parts: List[str] = []
        self._separator = PARAGRAPH_SEPARATOR
        self._start = 0
        self._end = 0

    def fits(self, span: _Span, separator: str) -> bool:
        if not self._parts:
            return True
        candidate = separator.join([*self._parts, span.text])
        return estimate_token_count(candidate) <= self.max_tokens

    def add(self, span: _Span, separator: str) -> None:
        if not self._parts:
            self._start = span.start
            self._separator = separator
        self._parts.append(span.text)
        self._end = span.end

    def flush(self) -> None:
        if not self._parts:
            return
        content = _Span(text=self._separator.join(self._parts), start=self._start, end=self._end)
        self._parts = []
        if self.chunks and estimate_token_count(content.text) < self.min_tokens:
            previous = self.chunks[-1]
            previous.text = previous.text + PARAGRAPH_SEPARATOR + content.text
            previous.end = content.end
            return
        self.chunks.append(content)


def chunk_text(text: str, *, max_tokens: int = 1000, min_tokens: int = 100) -> List[Chunk]:
    """Split ``text`` into ordered, token-bounded chunks with page metadata.

    A chunk only exceeds ``max_tokens`` when a single sentence does, or when an
    undersized trailing piece has been folded into its predecessor. Chunks get
    ``page_start``/``page_end`` of ``None`` when the text carries no page
    markers.
    """

    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")

    builder = _ChunkBuilder(max_tokens=max_tokens, min_tokens=min_tokens)

    for paragraph in _split_paragraphs(text):
        if estimate_token_count(paragraph.text) > max_tokens:
            builder.flush()
            for sentence in _split_sentences(paragraph):
                if not builder.fits(sentence, " "):
                    builder.flush()
                builder.add(sentence, " ")
            builder.flush()
            continue

        if not builder.fits(paragraph, PARAGRAPH_SEPARATOR):
            builder.flush()
        builder.add(paragraph, PARAGRAPH_SEPARATOR)

    builder.flush()

    markers = extract_page_markers(text)
    chunks: List[Chunk] = []
    for position, span in enumerate(builder.chunks):
        page_start, page_end = find_page_boundaries(span.start, max(span.start, span.end - 1), markers)
        chunks.append(
            Chunk(
                id=f"chunk-{position}",
                text=span.text,
                page_start=page_start,
                page_end=page_end,
                position=position,
                token_count=estimate_token_count(span.text),
                start_offset=span.start,
                end_offset=span.end,
            )
        )

    logger.debug("Split %s characters into %s chunks (%s page markers)", len(text), len(chunks), len(markers))
    return chunks
