"""Path helpers for the booklens cache and document locations."""

from __future__ import annotations

import re
from pathlib import Path

__all__ = [
    "DEFAULT_CACHE_ROOT",
    "ensure_directory",
    "resolve_cache_path",
    "sanitize_book_id",
]

DEFAULT_CACHE_ROOT = Path(".booklens_cache")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def ensure_directory(path: Path | str) -> Path:
    resolved = _normalise(path)
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_cache_path(path: Path | str | None = None, *, create: bool = True) -> Path:
    candidate = _normalise(path or DEFAULT_CACHE_ROOT)
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def sanitize_book_id(book_id: str) -> str:
    """Turn a book identifier (usually a filename) into a safe file stem."""

    sanitized = _UNSAFE_CHARS.sub("_", book_id.strip()).strip("._")
    return sanitized or "book"
