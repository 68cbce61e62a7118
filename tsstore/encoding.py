"""Binary encoding of the manifest snapshot and manifest updates."""

from __future__ import annotations

import io
import struct
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar

from tsstore.sst import FileMeta, SstFile, TimeRange

_RECORD_VERSION = 1
_MAGIC_FORMAT = struct.Struct("<I")
_HEADER_REST_FORMAT = struct.Struct("<BBQ")
_HEADER_FORMAT = struct.Struct("<IBBQ")
_RECORD_FORMAT = struct.Struct("<QqqII")


class EncodingError(ValueError):
    """Raised when snapshot bytes cannot be encoded or decoded."""


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EncodingError(f"read {what}: unexpected end of data")
    return data


@dataclass
class ManifestUpdate:
    """Files added to and file ids removed from the manifest in one step."""

    to_adds: list[SstFile] = field(default_factory=list)
    to_deletes: list[int] = field(default_factory=list)


@dataclass
class SnapshotHeader:
    """Snapshot header: magic (u32), version (u8), flag (u8), records length (u64).

    ``length`` is the total byte length of the records that follow.
    """

    LENGTH: ClassVar[int] = _HEADER_FORMAT.size
    MAGIC: ClassVar[int] = 0xCAFE_1234

    magic: int = MAGIC
    version: int = _RECORD_VERSION
    flag: int = 0
    length: int = 0

    @classmethod
    def read(cls, stream: BinaryIO) -> SnapshotHeader:
        (magic,) = _MAGIC_FORMAT.unpack(
            _read_exact(stream, _MAGIC_FORMAT.size, "snapshot header magic")
        )
        if magic != cls.MAGIC:
            raise EncodingError("invalid bytes to convert to header.")
        version, flag, length = _HEADER_REST_FORMAT.unpack(
            _read_exact(stream, _HEADER_REST_FORMAT.size, "snapshot header")
        )
        return cls(magic=magic, version=version, flag=flag, length=length)

    def write_to(self, stream: BinaryIO) -> None:
        try:
            data = _HEADER_FORMAT.pack(self.magic, self.version, self.flag, self.length)
        except struct.error as exc:
            raise EncodingError(f"write snapshot header: {exc}") from exc
        stream.write(data)


@dataclass(frozen=True)
class SnapshotRecord:
    """One file in a snapshot: id (u64), time range (2 x i64), size (u32), rows (u32)."""

    LENGTH: ClassVar[int] = _RECORD_FORMAT.size
    VERSION: ClassVar[int] = _RECORD_VERSION

    id: int
    time_range: TimeRange
    size: int
    num_rows: int

    @classmethod
    def from_sst(cls, sst: SstFile) -> SnapshotRecord:
        return cls(
            id=sst.id,
            time_range=sst.meta.time_range,
            size=sst.meta.size,
            num_rows=sst.meta.num_rows,
        )

    @classmethod
    def read(cls, stream: BinaryIO) -> SnapshotRecord:
        file_id, start, end, size, num_rows = _RECORD_FORMAT.unpack(
            _read_exact(stream, _RECORD_FORMAT.size, "snapshot record")
        )
        return cls(id=file_id, time_range=TimeRange(start, end), size=size, num_rows=num_rows)

    def write_to(self, stream: BinaryIO) -> None:
        try:
            data = _RECORD_FORMAT.pack(
                self.id,
                self.time_range.start,
                self.time_range.end,
                self.size,
                self.num_rows,
            )
        except struct.error as exc:
            raise EncodingError(f"write snapshot record: {exc}") from exc
        stream.write(data)

    def to_sst(self) -> SstFile:
        meta = FileMeta(
            max_sequence=self.id,
            num_rows=self.num_rows,
            size=self.size,
            time_range=self.time_range,
        )
        return SstFile(self.id, meta)


@dataclass
class Snapshot:
    """The merged list of files a manifest holds, with its header."""

    header: SnapshotHeader = field(default_factory=SnapshotHeader)
    records: list[SnapshotRecord] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, data: bytes) -> Snapshot:
        """Decode a snapshot; empty input gives an empty snapshot."""
        data = bytes(data)
        if not data:
            return cls()
        stream = io.BytesIO(data)
        header = SnapshotHeader.read(stream)
        total = header.length
        if not (
            total > 0
            and total % SnapshotRecord.LENGTH == 0
            and total + SnapshotHeader.LENGTH == len(data)
        ):
            raise EncodingError(
                f"create snapshot from bytes failed, header:{header!r}, "
                f"bytes_length: {len(data)}"
            )
        records = [
            SnapshotRecord.read(stream) for _ in range(total // SnapshotRecord.LENGTH)
        ]
        return cls(header=header, records=records)

    def to_bytes(self) -> bytes:
        stream = io.BytesIO()
        self.header.write_to(stream)
        for record in self.records:
            record.write_to(stream)
        return stream.getvalue()

    def to_ssts(self) -> list[SstFile]:
        if self.header.length == 0:
            return []
        return [record.to_sst() for record in self.records]

    def _update_length(self) -> None:
        self.header.length = len(self.records) * SnapshotRecord.LENGTH

    def add_records(self, ssts: Iterable[SstFile]) -> None:
        self.records.extend(SnapshotRecord.from_sst(sst) for sst in ssts)
        self._update_length()

    def delete_records(self, to_deletes: Iterable[int]) -> None:
        """Remove records by file id; every id must be present."""
        ids = set(to_deletes)
        known = {record.id for record in self.records}
        missing = sorted(ids - known)
        if missing:
            raise ValueError(f"File not found in snapshot, id:{missing[0]}")
        self.records = [record for record in self.records if record.id not in ids]
        self._update_length()