"""On-disk cache of completed book analyses, one JSON file per book."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import Field

from ..paths import ensure_directory, sanitize_book_id
from ..schema import BookInfo, FrozenBaseModel, GlobalAnalysis

__all__ = ["AnalysisCache", "CachedAnalysis", "CachedStatus"]

logger = logging.getLogger(__name__)


class CachedStatus(FrozenBaseModel):
    status: str = "completed"
    chunks_analyzed: int = 0
    total_chunks: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class CachedAnalysis(FrozenBaseModel):
    """Serialised shape: ``bookInfo``, ``globalAnalysis`` and ``analysisStatus``."""

    book_info: BookInfo
    global_analysis: GlobalAnalysis
    analysis_status: CachedStatus = Field(default_factory=CachedStatus)


class AnalysisCache:
    """Stores completed analyses under a sanitised book id."""

    SUFFIX = ".analysis.json"

    def __init__(self, cache_root: Path | str) -> None:
        self.cache_root = Path(cache_root).expanduser()

    def path_for(self, book_id: str) -> Path:
        return self.cache_root / f"{sanitize_book_id(book_id)}{self.SUFFIX}"

    def exists(self, book_id: str) -> bool:
        return self.path_for(book_id).is_file()

    def load(self, book_id: str) -> Optional[CachedAnalysis]:
        """Return the cached analysis, or ``None`` when absent or unreadable."""

        path = self.path_for(book_id)
        if not path.is_file():
            return None
        try:
            return CachedAnalysis.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable analysis cache %s: %s", path, exc)
            return None

    def save(self, entry: CachedAnalysis, book_id: str) -> Path:
        ensure_directory(self.cache_root)
        path = self.path_for(book_id)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(entry.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        tmp_path.replace(path)
        logger.info("Cached analysis for '%s' at %s", book_id, path)
        return path

    def delete(self, book_id: str) -> None:
        self.path_for(book_id).unlink(missing_ok=True)
