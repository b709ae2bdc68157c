"""Per-book analysis state and the store that drives background runs."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..schema import BookInfo, Chunk, GlobalAnalysis, to_payload
from .cache import AnalysisCache, CachedAnalysis, CachedStatus
from .chunk_analyzer import AnalysisProgress, ChunkAnalyzer, attach_analyses
from .synthesizer import SynthesisError, Synthesizer

__all__ = [
    "NOT_FOUND",
    "AnalysisCancelledError",
    "AnalysisStatus",
    "BookAnalysisState",
    "BookAnalysisStore",
]

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"


class AnalysisCancelledError(RuntimeError):
    """Raised inside a run once its cancellation has been requested."""


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (AnalysisStatus.PENDING, AnalysisStatus.IN_PROGRESS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class BookAnalysisState:
    """Mutable record of one book's analysis run, owned by the store."""

    book_info: BookInfo
    chunks: List[Chunk] = field(default_factory=list)
    status: AnalysisStatus = AnalysisStatus.PENDING
    global_analysis: Optional[GlobalAnalysis] = None
    chunks_analyzed: int = 0
    total_chunks: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    cancel_requested: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def progress(self) -> Dict[str, int]:
        percentage = 0
        if self.total_chunks > 0:
            percentage = int(self.chunks_analyzed / self.total_chunks * 100 + 0.5)
        return {
            "current": self.chunks_analyzed,
            "total": self.total_chunks,
            "percentage": percentage,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_cache_entry(self) -> CachedAnalysis:
        return CachedAnalysis(
            book_info=self.book_info,
            global_analysis=self.global_analysis or GlobalAnalysis(),
            analysis_status=CachedStatus(
                status=self.status.value,
                chunks_analyzed=self.chunks_analyzed,
                total_chunks=self.total_chunks,
                start_time=self.start_time,
                end_time=self.end_time,
            ),
        )

    @classmethod
    def from_cache_entry(cls, entry: CachedAnalysis) -> "BookAnalysisState":
        return cls(
            book_info=entry.book_info,
            status=AnalysisStatus.COMPLETED,
            global_analysis=entry.global_analysis,
            chunks_analyzed=entry.analysis_status.chunks_analyzed,
            total_chunks=entry.analysis_status.total_chunks,
            start_time=entry.analysis_status.start_time,
            end_time=entry.analysis_status.end_time,
        )


class BookAnalysisStore:
    """Registry of per-book analysis state with background execution.

    ``start_analysis`` returns immediately; the run itself executes on a worker
    thread and is the only writer of its state object. A forced re-analysis
    registers a fresh state, so a superseded run can finish without touching
    the replacement.
    """

    def __init__(
        self,
        analyzer: ChunkAnalyzer,
        synthesizer: Synthesizer,
        *,
        cache: Optional[AnalysisCache] = None,
        max_workers: int = 2,
    ) -> None:
        self._analyzer = analyzer
        self._synthesizer = synthesizer
        self._cache = cache
        self._states: Dict[str, BookAnalysisState] = {}
        self._runs: Dict[str, Future[None]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="booklens-analysis")

    def get(self, book_id: str) -> Optional[BookAnalysisState]:
        with self._lock:
            return self._lookup(book_id)

    def start_analysis(
        self,
        book_id: str,
        chunks: Sequence[Chunk],
        book_info: BookInfo,
        *,
        force: bool = False,
    ) -> Dict[str, Any]:
        """Schedule an analysis run and acknowledge without waiting for it."""

        with self._lock:
            existing = self._lookup(book_id)
            if existing is not None and not force:
                if existing.status is AnalysisStatus.COMPLETED:
                    return {"status": "exists", "bookId": book_id, "message": "Analysis already completed"}
                if existing.status.is_active:
                    return {"status": "in-progress", "bookId": book_id, "progress": existing.progress}

            state = BookAnalysisState(book_info=book_info, chunks=list(chunks), total_chunks=len(chunks))
            self._states[book_id] = state
            self._runs[book_id] = self._executor.submit(self._run, book_id, state)

        logger.info("Started analysis of '%s' (%s chunks, force=%s)", book_id, len(chunks), force)
        return {"status": "started", "bookId": book_id, "totalChunks": len(chunks)}

    def get_results(self, book_id: str) -> Dict[str, Any]:
        state = self.get(book_id)
        if state is None:
            return {"status": NOT_FOUND, "bookId": book_id}

        if state.status.is_active:
            return {"status": state.status.value, "progress": state.progress}

        if state.status is AnalysisStatus.FAILED:
            payload: Dict[str, Any] = {"status": state.status.value, "error": state.error}
            if state.global_analysis is not None:
                payload["partialAnalysis"] = to_payload(state.global_analysis)
            return payload

        return {
            "status": state.status.value,
            "bookInfo": to_payload(state.book_info),
            "globalAnalysis": to_payload(state.global_analysis or GlobalAnalysis()),
            "stats": {
                "chunksAnalyzed": state.chunks_analyzed,
                "totalChunks": state.total_chunks,
                "startTime": _iso(state.start_time),
                "endTime": _iso(state.end_time),
                "durationSeconds": state.duration_seconds,
            },
        }

    def wait(self, book_id: str, timeout: Optional[float] = None) -> Optional[BookAnalysisState]:
        """Block until the current run for ``book_id`` finishes (or ``timeout`` passes)."""

        with self._lock:
            run = self._runs.get(book_id)
        if run is not None:
            wait([run], timeout=timeout)
        return self.get(book_id)

    def cancel(self, book_id: str) -> bool:
        """Ask the active run for ``book_id`` to stop after its current chunk.

        Returns ``False`` when there is no active run to cancel.
        """

        with self._lock:
            state = self._states.get(book_id)
            if state is None or not state.status.is_active:
                return False
            state.cancel_requested.set()
        logger.info("Cancellation requested for '%s'", book_id)
        return True

    def shutdown(self, *, wait_for_runs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_runs)

    def _lookup(self, book_id: str) -> Optional[BookAnalysisState]:
        state = self._states.get(book_id)
        if state is None and self._cache is not None:
            entry = self._cache.load(book_id)
            if entry is not None:
                state = self._states[book_id] = BookAnalysisState.from_cache_entry(entry)
                logger.info("Loaded cached analysis for '%s'", book_id)
        return state

    def _run(self, book_id: str, state: BookAnalysisState) -> None:
        state.status = AnalysisStatus.IN_PROGRESS
        state.start_time = _utcnow()
        state.chunks_analyzed = 0
        state.end_time = None
        state.error = None

        def _on_progress(progress: AnalysisProgress) -> None:
            state.chunks_analyzed = progress.current
            _check_cancelled()

        def _check_cancelled() -> None:
            if state.cancel_requested.is_set():
                raise AnalysisCancelledError(f"Analysis of '{book_id}' was cancelled")

        try:
            analyses = self._analyzer.analyze_all(state.chunks, on_progress=_on_progress)
            state.chunks = attach_analyses(state.chunks, analyses)
            _check_cancelled()
            state.global_analysis = self._synthesizer.synthesize(state.chunks, state.book_info)
        except SynthesisError as exc:
            state.global_analysis = exc.partial
            self._fail(book_id, state, exc)
            return
        except AnalysisCancelledError as exc:
            self._fail(book_id, state, exc)
            return
        except Exception as exc:
            logger.exception("Analysis run for '%s' crashed", book_id)
            self._fail(book_id, state, exc)
            return

        state.end_time = _utcnow()
        state.status = AnalysisStatus.COMPLETED
        logger.info("Completed analysis of '%s' in %.1fs", book_id, state.duration_seconds or 0.0)
        self._persist(book_id, state)

    @staticmethod
    def _fail(book_id: str, state: BookAnalysisState, exc: BaseException) -> None:
        state.end_time = _utcnow()
        state.error = str(exc) or exc.__class__.__name__
        state.status = AnalysisStatus.FAILED
        logger.error("Analysis of '%s' failed: %s", book_id, state.error)

    def _persist(self, book_id: str, state: BookAnalysisState) -> None:
        if self._cache is None:
            return
        with self._lock:
            if self._states.get(book_id) is not state:
                logger.info("Skipping cache write for superseded run of '%s'", book_id)
                return
        try:
            self._cache.save(state.to_cache_entry(), book_id)
        except OSError as exc:
            logger.error("Could not write analysis cache for '%s': %s", book_id, exc)
