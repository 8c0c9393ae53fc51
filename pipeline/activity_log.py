"""
Bounded, user-facing activity log.

Stored oldest-first, displayed newest-first. Persistence is the caller's job:
`to_records()` / `from_records()` convert to plain dicts for the option store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from models.schemas import LogEntry
from pipeline.renderers import TIMESTAMP_FORMAT

LOG_CAPACITY = 50


class ActivityLog:
    def __init__(
        self,
        entries: Optional[Iterable[LogEntry]] = None,
        capacity: int = LOG_CAPACITY,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.capacity = capacity
        self.clock = clock
        self._entries: List[LogEntry] = list(entries or [])[-capacity:]

    @classmethod
    def from_records(cls, records: Any, **kwargs: Any) -> "ActivityLog":
        entries: List[LogEntry] = []
        if isinstance(records, list):
            for record in records:
                if isinstance(record, dict) and "message" in record:
                    entries.append(LogEntry(time=str(record.get("time", "")), message=str(record["message"])))
        return cls(entries, **kwargs)

    def to_records(self) -> List[Dict[str, str]]:
        return [entry.model_dump() for entry in self._entries]

    def append(self, message: str) -> LogEntry:
        if len(self._entries) >= self.capacity:
            self._entries = self._entries[-(self.capacity - 1):] if self.capacity > 1 else []
        entry = LogEntry(time=self.clock().strftime(TIMESTAMP_FORMAT), message=message)
        self._entries.append(entry)
        return entry

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def newest_first(self) -> List[LogEntry]:
        return list(reversed(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["ActivityLog", "LOG_CAPACITY"]
