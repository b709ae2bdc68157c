"""Token accounting for calls made to the generation backend."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

__all__ = ["UsageRecord", "UsageTracker"]


@dataclass(frozen=True)
class UsageRecord:
    """Single invocation usage metrics."""

    model: Optional[str]
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    streamed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class UsageTracker:
    """Accumulates token usage across backend calls.

    Several book analyses may share one gateway, so records are appended
    under a lock.
    """

    def __init__(self) -> None:
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    @property
    def records(self) -> Sequence[UsageRecord]:
        with self._lock:
            return tuple(self._records)

    def add_record(
        self,
        *,
        model: Optional[str],
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: Optional[int] = None,
        streamed: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageRecord:
        total = total_tokens if total_tokens is not None else prompt_tokens + completion_tokens
        record = UsageRecord(
            model=model,
            prompt_tokens=int(prompt_tokens),
            completion_tokens=int(completion_tokens),
            total_tokens=int(total),
            streamed=streamed,
            metadata=metadata or {},
        )
        with self._lock:
            self._records.append(record)
        return record

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def summary(self) -> Dict[str, Any]:
        records = self.records
        return {
            "calls": len(records),
            "prompt_tokens": sum(record.prompt_tokens for record in records),
            "completion_tokens": sum(record.completion_tokens for record in records),
            "total_tokens": sum(record.total_tokens for record in records),
            "by_model": self._aggregate_by_model(records),
        }

    @staticmethod
    def _aggregate_by_model(records: Sequence[UsageRecord]) -> Dict[str, Dict[str, int]]:
        aggregated: Dict[str, Dict[str, int]] = {}
        for record in records:
            bucket = aggregated.setdefault(
                record.model or "unknown",
                {"calls": 0, "prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
            )
            bucket["calls"] += 1
            bucket["prompt_tokens"] += record.prompt_tokens
            bucket["completion_tokens"] += record.completion_tokens
            bucket["total_tokens"] += record.total_tokens
        return aggregated
