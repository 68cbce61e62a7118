"""The manifest: the set of live SST files, kept as a snapshot plus delta files."""

from __future__ import annotations

import io
import itertools
import logging
import os
import struct
import tempfile
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from tsstore.config import ManifestConfig
from tsstore.encoding import EncodingError, ManifestUpdate, Snapshot
from tsstore.sst import FileMeta, SstFile, TimeRange

logger = logging.getLogger(__name__)

PREFIX_PATH = "manifest"
SNAPSHOT_FILENAME = "snapshot"
DELTA_PREFIX = "delta"
_TMP_SUFFIX = ".tmp"

_COUNT = struct.Struct("<I")
_SST = struct.Struct("<QQIIqq")
_ID = struct.Struct("<Q")

# Delta file names must never go backwards across restarts, so they start
# from the wall clock.
_id_lock = threading.Lock()
_next_id = itertools.count(time.time_ns())


class ManifestError(RuntimeError):
    """Raised when the manifest cannot be read, written or updated."""


def _allocate_id() -> int:
    with _id_lock:
        return next(_next_id)


def encode_update(update: ManifestUpdate) -> bytes:
    """Serialise a manifest update to bytes."""
    parts = [_COUNT.pack(len(update.to_adds))]
    try:
        for sst in update.to_adds:
            meta = sst.meta
            parts.append(
                _SST.pack(
                    sst.id,
                    meta.max_sequence,
                    meta.num_rows,
                    meta.size,
                    meta.time_range.start,
                    meta.time_range.end,
                )
            )
        parts.append(_COUNT.pack(len(update.to_deletes)))
        parts.extend(_ID.pack(file_id) for file_id in update.to_deletes)
    except struct.error as exc:
        raise EncodingError(f"failed to encode manifest update: {exc}") from exc
    return b"".join(parts)


def _read(stream: BinaryIO, fmt: struct.Struct, what: str) -> tuple:
    data = stream.read(fmt.size)
    if len(data) != fmt.size:
        raise EncodingError(f"read {what}: unexpected end of data")
    return fmt.unpack(data)


def decode_update(data: bytes) -> ManifestUpdate:
    """Decode bytes produced by :func:`encode_update`."""
    stream = io.BytesIO(bytes(data))
    (num_adds,) = _read(stream, _COUNT, "added file count")
    to_adds = []
    for _ in range(num_adds):
        file_id, max_sequence, num_rows, size, start, end = _read(stream, _SST, "added file")
        meta = FileMeta(
            max_sequence=max_sequence,
            num_rows=num_rows,
            size=size,
            time_range=TimeRange(start, end),
        )
        to_adds.append(SstFile(file_id, meta))
    (num_deletes,) = _read(stream, _COUNT, "deleted file count")
    to_deletes = [_read(stream, _ID, "deleted file id")[0] for _ in range(num_deletes)]
    if stream.read(1):
        raise EncodingError("trailing bytes after manifest update")
    return ManifestUpdate(to_adds=to_adds, to_deletes=to_deletes)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f".{path.name}.", suffix=_TMP_SUFFIX, delete=False
        ) as tmp:
            tmp.write(data)
            tmp_path = Path(tmp.name)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise ManifestError(f"Failed to write manifest file, path:{path}: {exc}") from exc


def read_snapshot(path: str | os.PathLike[str]) -> Snapshot:
    """Read the snapshot at ``path``; a missing file is an empty snapshot."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return Snapshot()
    except OSError as exc:
        raise ManifestError(f"Failed to read manifest snapshot, path:{path}: {exc}") from exc
    return Snapshot.from_bytes(data)


def _read_delta_file(path: Path) -> ManifestUpdate:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ManifestError(f"failed to read delta file, path:{path}: {exc}") from exc
    try:
        return decode_update(data)
    except EncodingError as exc:
        raise ManifestError(f"failed to decode delta file, path:{path}: {exc}") from exc


def list_delta_paths(delta_dir: str | os.PathLike[str]) -> list[Path]:
    """List the delta files in ``delta_dir``, oldest name first."""
    delta_dir = Path(delta_dir)
    if not delta_dir.exists():
        return []
    try:
        return sorted(
            p for p in delta_dir.iterdir() if p.is_file() and not p.name.endswith(_TMP_SUFFIX)
        )
    except OSError as exc:
        raise ManifestError(
            f"Failed to list delta paths, delta dir:{delta_dir}: {exc}"
        ) from exc


class Manifest:
    """Tracks live SST files; every update is a delta file merged later into a snapshot."""

    def __init__(
        self, root_dir: str | os.PathLike[str], merge_options: ManifestConfig | None = None
    ) -> None:
        root = Path(root_dir)
        self.snapshot_path = root / PREFIX_PATH / SNAPSHOT_FILENAME
        self.delta_dir = root / PREFIX_PATH / DELTA_PREFIX
        self.delta_dir.mkdir(parents=True, exist_ok=True)
        self._options = merge_options or ManifestConfig()

        self._ssts_lock = threading.Lock()
        self._merge_lock = threading.Lock()
        self._count_lock = threading.Lock()
        self._deltas_num = 0
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        # Merge every delta left over from an earlier run before loading.
        self._do_merge(first_run=True)
        self._ssts: list[SstFile] = read_snapshot(self.snapshot_path).to_ssts()
        logger.debug(
            "Load manifest snapshot when startup, sst_len=%d, first_100=%r",
            len(self._ssts),
            self._ssts[:100],
        )

    def __enter__(self) -> Manifest:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def delta_count(self) -> int:
        """Number of delta files not yet merged into the snapshot."""
        with self._count_lock:
            return self._deltas_num

    def _inc_delta_num(self) -> None:
        with self._count_lock:
            self._deltas_num += 1

    def _dec_delta_num(self) -> None:
        with self._count_lock:
            self._deltas_num -= 1

    def add_file(self, file_id: int, meta: FileMeta) -> None:
        self.update(ManifestUpdate(to_adds=[SstFile(file_id, meta)], to_deletes=[]))

    def update(self, update: ManifestUpdate) -> None:
        """Persist an update as a delta file and apply it to the in-memory list."""
        self._maybe_schedule_merge()
        self._inc_delta_num()
        try:
            self._update_inner(update)
        except BaseException:
            self._dec_delta_num()
            raise

    def _update_inner(self, update: ManifestUpdate) -> None:
        path = self.delta_dir / str(_allocate_id())
        _atomic_write(path, encode_update(update))
        deletes = set(update.to_deletes)
        with self._ssts_lock:
            self._ssts.extend(update.to_adds)
            self._ssts = [f for f in self._ssts if f.id not in deletes]

    def all_ssts(self) -> list[SstFile]:
        with self._ssts_lock:
            return list(self._ssts)

    def find_ssts(self, time_range: TimeRange) -> list[SstFile]:
        """Files whose time range overlaps ``time_range``."""
        with self._ssts_lock:
            return [f for f in self._ssts if f.meta.time_range.overlaps(time_range)]

    def _maybe_schedule_merge(self) -> None:
        current = self.delta_count
        hard_limit = self._options.hard_merge_threshold
        if current > hard_limit:
            self._wakeup.set()
            raise ManifestError(
                f"Manifest has too many delta files, value:{current}, hard_limit:{hard_limit}"
            )
        if current > self._options.soft_merge_threshold:
            self._wakeup.set()

    def merge_deltas(self) -> int:
        """Merge all delta files into the snapshot; return how many were merged."""
        return self._do_merge(first_run=False)

    def _do_merge(self, first_run: bool) -> int:
        with self._merge_lock:
            paths = list_delta_paths(self.delta_dir)
            if not paths:
                return 0
            if first_run:
                with self._count_lock:
                    self._deltas_num = len(paths)

            updates = [_read_delta_file(p) for p in paths]
            snapshot = read_snapshot(self.snapshot_path)
            logger.debug("Before snapshot merge deltas: %r", [r.id for r in snapshot.records])
            # Deltas are unordered: add every new file first, then delete.
            to_deletes: list[int] = []
            for update in updates:
                snapshot.add_records(update.to_adds)
                to_deletes.extend(update.to_deletes)
            snapshot.delete_records(to_deletes)
            logger.debug("After snapshot merge deltas: %r", [r.id for r in snapshot.records])
            _atomic_write(self.snapshot_path, snapshot.to_bytes())

            for path in paths:
                try:
                    path.unlink()
                except OSError as exc:
                    logger.error("Failed to delete delta, path:%s, err:%s", path, exc)
                else:
                    self._dec_delta_num()
            return len(paths)

    def start(self) -> None:
        """Start merging deltas in the background."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="manifest-merger", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the background merge, if it runs."""
        self._stop.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        interval = self._options.merge_interval_seconds
        logger.info("Start manifest merge background job, merge_interval=%ss", interval)
        while not self._stop.is_set():
            self._wakeup.wait(interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            if self.delta_count > self._options.min_merge_threshold:
                try:
                    self._do_merge(first_run=False)
                except (ManifestError, EncodingError, ValueError) as exc:
                    logger.error("Failed to merge delta, err:%s", exc)


def _ids(ssts: Iterable[SstFile]) -> list[int]:
    return sorted(f.id for f in ssts)