"""Streaming style rewrite of a document, one chunk at a time."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator

from langchain_core.prompts import PromptTemplate

from ..llm import GatewayError, ModelGateway
from ..schema import Chunk
from ..text import chunk_text

__all__ = ["REWRITE_MAX_TOKENS", "StyleRewriter", "chunk_title"]

logger = logging.getLogger(__name__)

REWRITE_MAX_TOKENS = 1500

REWRITE_TEMPLATE = """You are a literary editor rewriting a passage of a book in a requested style.
If you need to think through your approach, place your thinking inside <think> </think> tags.
This thinking will be hidden from the reader.

STYLE: {style}

Rewrite the passage below in that style. Keep the events, characters and meaning of the passage intact.
Respond with ONLY the rewritten passage, no introductions or explanations.

PASSAGE ({title}):
----------------
{text}
----------------"""


def chunk_title(chunk: Chunk) -> str:
    if chunk.page_start is None:
        return f"Part {chunk.position + 1}"
    if chunk.page_end is None or chunk.page_end == chunk.page_start:
        return f"Page {chunk.page_start}"
    return f"Pages {chunk.page_start}-{chunk.page_end}"


class StyleRewriter:
    """Relays rewritten text as a stream of event dictionaries.

    Events are ``{"type": "chunk_start", ...}`` before each chunk,
    ``{"type": "token", "text": ...}`` for each forwarded fragment,
    ``{"type": "error", "message": ...}`` when a chunk's stream fails, and a
    final ``{"done": True}``. Chunks are processed strictly one after another.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        *,
        max_tokens: int = REWRITE_MAX_TOKENS,
        min_tokens: int = 100,
    ) -> None:
        self._gateway = gateway
        self._max_tokens = max_tokens
        self._min_tokens = min_tokens
        self._prompt = PromptTemplate.from_template(REWRITE_TEMPLATE)

    def rewrite(self, text: str, style: str) -> Iterator[Dict[str, Any]]:
        if not style or not style.strip():
            raise ValueError("A target style is required")

        chunks = chunk_text(text, max_tokens=self._max_tokens, min_tokens=self._min_tokens)
        return self._events(chunks, style.strip())

    def _events(self, chunks: list[Chunk], style: str) -> Iterator[Dict[str, Any]]:
        total = len(chunks)
        for index, chunk in enumerate(chunks):
            title = chunk_title(chunk)
            yield {"type": "chunk_start", "index": index, "title": title, "total": total}

            prompt = self._prompt.format(style=style, title=title, text=chunk.text)
            fragments = iter(self._gateway.stream(prompt))
            try:
                for fragment in fragments:
                    yield {"type": "token", "text": fragment}
            except GatewayError as exc:
                logger.error("Rewrite of %s failed: %s", chunk.id, exc)
                yield {"type": "error", "message": str(exc)}
            finally:
                close = getattr(fragments, "close", None)
                if close is not None:
                    close()

        yield {"done": True}
