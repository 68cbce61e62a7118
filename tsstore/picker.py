"""Time-window compaction candidate picking."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any, Protocol

from tsstore.duration import ReadableDuration
from tsstore.sst import SstFile, Task, Timestamp

logger = logging.getLogger(__name__)


class _SstSource(Protocol):
    def all_ssts(self) -> list[SstFile]: ...


def _to_millis(duration: timedelta | ReadableDuration) -> int:
    if isinstance(duration, ReadableDuration):
        return duration.total_millis()
    return duration // timedelta(milliseconds=1)


def _now_millis() -> Timestamp:
    return time.time_ns() // 1_000_000


def truncate_timestamp(timestamp: Timestamp, segment_millis: int) -> Timestamp:
    """Round ``timestamp`` down to a multiple of ``segment_millis``."""
    if segment_millis <= 0:
        raise ValueError("segment duration must be positive")
    return timestamp - timestamp % segment_millis


class TimeWindowCompactionStrategy:
    """Groups files into time segments and picks small files of the newest full segment."""

    def __init__(
        self,
        segment_duration: timedelta | ReadableDuration,
        new_sst_max_size: int,
        input_sst_max_num: int,
        input_sst_min_num: int,
    ) -> None:
        self.segment_millis = _to_millis(segment_duration)
        if self.segment_millis <= 0:
            raise ValueError("segment duration must be positive")
        self.new_sst_max_size = new_sst_max_size
        self.input_sst_max_num = input_sst_max_num
        self.input_sst_min_num = input_sst_min_num

    def pick_candidate(
        self, ssts: Iterable[SstFile], expire_time: Timestamp | None = None
    ) -> Task | None:
        """Pick a task and mark its files as in compaction, or return None."""
        uncompacted, expired = self._split(ssts, expire_time)
        logger.debug("Begin pick candidate, uncompacted=%r, expired=%r", uncompacted, expired)

        compaction_files = self._pick_compaction_files(self._files_by_segment(uncompacted))
        if compaction_files is None:
            return None
        if not compaction_files and not expired:
            return None

        for f in (*compaction_files, *expired):
            f.mark_compaction()

        task = Task(inputs=compaction_files, expireds=expired)
        logger.debug("End pick candidate, task=%r", task)
        return task

    @staticmethod
    def _split(
        files: Iterable[SstFile], expire_time: Timestamp | None
    ) -> tuple[list[SstFile], list[SstFile]]:
        uncompacted: list[SstFile] = []
        expired: list[SstFile] = []
        for f in files:
            if f.is_compaction():
                continue
            (expired if f.is_expired(expire_time) else uncompacted).append(f)
        return uncompacted, expired

    def _files_by_segment(self, files: list[SstFile]) -> dict[Timestamp, list[SstFile]]:
        segments: defaultdict[Timestamp, list[SstFile]] = defaultdict(list)
        for f in files:
            segment = truncate_timestamp(f.meta.time_range.start, self.segment_millis)
            segments[segment].append(f)
        return segments

    def _pick_compaction_files(
        self, files_by_segment: dict[Timestamp, list[SstFile]]
    ) -> list[SstFile] | None:
        # Assume compaction shrinks the input by about 10%.
        memory_limit = int(self.new_sst_max_size * 1.1)
        for segment in sorted(files_by_segment, reverse=True):
            files = files_by_segment[segment]
            if len(files) < self.input_sst_min_num:
                continue

            # Prefer to compact smaller files first.
            candidates = sorted(files, key=lambda f: f.size)[: self.input_sst_max_num]
            picked: list[SstFile] = []
            input_size = 0
            for f in candidates:
                input_size += f.size
                if input_size > memory_limit:
                    break
                picked.append(f)

            if len(picked) >= self.input_sst_min_num:
                return picked
        return None


class Picker:
    """Picks compaction tasks from the files a manifest currently holds."""

    def __init__(
        self,
        manifest: _SstSource,
        ttl: timedelta | ReadableDuration | None,
        segment_duration: timedelta | ReadableDuration,
        new_sst_max_size: int,
        input_sst_max_num: int,
        input_sst_min_num: int,
        *,
        clock: Callable[[], Timestamp] | None = None,
    ) -> None:
        self._manifest = manifest
        self._ttl_millis = None if ttl is None else _to_millis(ttl)
        self._clock = clock or _now_millis
        self._strategy = TimeWindowCompactionStrategy(
            segment_duration, new_sst_max_size, input_sst_max_num, input_sst_min_num
        )
        # Picking must be sequential so a file is never handed to two tasks.
        self._lock = threading.Lock()

    def pick_candidate(self) -> Task | None:
        with self._lock:
            ssts: Any = self._manifest.all_ssts()
            expire_time = None
            if self._ttl_millis is not None:
                expire_time = self._clock() - self._ttl_millis
            return self._strategy.pick_candidate(ssts, expire_time)