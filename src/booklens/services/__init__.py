"""Caller-facing services built on the model gateway."""

from .qa import DocumentQA
from .rewrite import StyleRewriter, chunk_title

__all__ = ["DocumentQA", "StyleRewriter", "chunk_title"]
