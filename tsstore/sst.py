"""SST file descriptors, time ranges and compaction tasks."""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field

Timestamp = int


@dataclass(frozen=True)
class TimeRange:
    """A half-open range of timestamps ``[start, end)``."""

    start: Timestamp
    end: Timestamp

    def merge(self, other: TimeRange) -> TimeRange:
        """Return the smallest range covering both ranges."""
        return TimeRange(min(self.start, other.start), max(self.end, other.end))

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class FileMeta:
    max_sequence: int
    num_rows: int
    size: int
    time_range: TimeRange


_id_lock = threading.Lock()
_next_id = itertools.count(time.time_ns())


@dataclass
class SstFile:
    """An SST file: its id, its metadata and whether a compaction holds it."""

    id: int
    meta: FileMeta
    in_compaction: bool = field(default=False, init=False, compare=False, repr=False)

    @classmethod
    def allocate_id(cls) -> int:
        """Return a fresh, strictly increasing file id."""
        with _id_lock:
            return next(_next_id)

    @property
    def size(self) -> int:
        return self.meta.size

    def mark_compaction(self) -> None:
        self.in_compaction = True

    def unmark_compaction(self) -> None:
        self.in_compaction = False

    def is_compaction(self) -> bool:
        return self.in_compaction

    def is_expired(self, expire_time: Timestamp | None) -> bool:
        """A file is expired when all its data lies before ``expire_time``."""
        if expire_time is None:
            return False
        return self.meta.time_range.end <= expire_time


@dataclass
class Task:
    """A compaction task: files to merge and expired files to drop."""

    inputs: list[SstFile] = field(default_factory=list)
    expireds: list[SstFile] = field(default_factory=list)

    def input_size(self) -> int:
        return sum(f.size for f in self.inputs)