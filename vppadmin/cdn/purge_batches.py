"""Single-slot memory of the most recent purge batch.

The slot lives as long as the process; a restart forgets it. Concurrent
writers are not serialized: the last `record` wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple


class NoPreviousBatchError(Exception):
    def __init__(self):
        super().__init__("No purge batch has been recorded yet")


@dataclass(frozen=True)
class PurgeBatch:
    urls: Tuple[str, ...]
    created_at: datetime


def dedupe(urls: Iterable[str]) -> Tuple[str, ...]:
    """Drop repeats while keeping first-seen order."""
    return tuple(dict.fromkeys(urls))


class PurgeBatchStore:
    def __init__(self):
        self._last: Optional[PurgeBatch] = None

    def record(self, urls: Iterable[str]) -> PurgeBatch:
        batch = PurgeBatch(urls=dedupe(urls), created_at=datetime.now(timezone.utc))
        self._last = batch
        return batch

    def last(self) -> Optional[PurgeBatch]:
        return self._last

    def require_last(self) -> PurgeBatch:
        batch = self._last
        if batch is None or not batch.urls:
            raise NoPreviousBatchError()
        return batch

    def clear(self) -> None:
        self._last = None
