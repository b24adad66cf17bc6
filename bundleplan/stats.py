"""Thread-safe run statistics for a generation."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import threading
from typing import Any

from .types import CollectorRecord, CollectorStatus, utc_now_iso


class RunStats:
    """Collect per-collector outcomes and summarize the run.

    Collector bodies run on timeout worker threads, so updates are guarded
    by a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[CollectorRecord] = []
        self._status_counts: dict[str, int] = defaultdict(int)

        self._started_at = utc_now_iso()
        self._finished_at: str | None = None
        self._state: str | None = None
        self._peak_rss_mib = 0

    def record_collector(self, record: CollectorRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._status_counts[record.status.value] += 1
            for rss in (record.rss_before_mib, record.rss_after_mib):
                if rss is not None:
                    self._peak_rss_mib = max(self._peak_rss_mib, rss)

    def record_memory(self, rss_mib: int) -> None:
        with self._lock:
            self._peak_rss_mib = max(self._peak_rss_mib, rss_mib)

    def record_state(self, state: str) -> None:
        with self._lock:
            self._state = state

    def finish(self) -> None:
        with self._lock:
            self._finished_at = utc_now_iso()

    def records(self) -> list[CollectorRecord]:
        with self._lock:
            return list(self._records)

    def status_of(self, name: str) -> CollectorStatus | None:
        with self._lock:
            for record in reversed(self._records):
                if record.name == name:
                    return record.status
        return None

    def to_json(self) -> dict[str, Any]:
        with self._lock:
            start = _parse_iso_utc(self._started_at)
            end = _parse_iso_utc(self._finished_at) if self._finished_at else datetime.now(timezone.utc)
            return {
                "state": self._state,
                "started_at": self._started_at,
                "finished_at": self._finished_at,
                "duration_seconds": max(0.0, (end - start).total_seconds()),
                "collectors": [record.to_json() for record in self._records],
                "status_counts": dict(self._status_counts),
                "modules_collected": sum(record.module_count for record in self._records),
                "peak_rss_mib": self._peak_rss_mib,
            }


def _parse_iso_utc(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = ["RunStats"]
