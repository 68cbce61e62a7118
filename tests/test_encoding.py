import io

import pytest

from tsstore.encoding import (
    EncodingError,
    ManifestUpdate,
    Snapshot,
    SnapshotHeader,
    SnapshotRecord,
)
from tsstore.sst import FileMeta, SstFile, TimeRange


def make_sst(file_id, size=1, num_rows=1, time_range=TimeRange(1, 2)):
    return SstFile(
        file_id,
        FileMeta(max_sequence=file_id, num_rows=num_rows, size=size, time_range=time_range),
    )


def test_snapshot_header_round_trip():
    header = SnapshotHeader()
    buf = io.BytesIO()
    header.write_to(buf)
    assert len(buf.getvalue()) == SnapshotHeader.LENGTH
    buf.seek(0)
    decoded = SnapshotHeader.read(buf)
    assert decoded == SnapshotHeader(magic=SnapshotHeader.MAGIC, version=1, flag=0, length=0)


def test_snapshot_header_magic_is_little_endian():
    buf = io.BytesIO()
    SnapshotHeader().write_to(buf)
    assert buf.getvalue()[:4] == b"\x34\x12\xfe\xca"


def test_snapshot_header_rejects_bad_magic():
    with pytest.raises(EncodingError):
        SnapshotHeader.read(io.BytesIO(b"\x00" * SnapshotHeader.LENGTH))


def test_snapshot_header_rejects_truncated_input():
    buf = io.BytesIO()
    SnapshotHeader().write_to(buf)
    with pytest.raises(EncodingError):
        SnapshotHeader.read(io.BytesIO(buf.getvalue()[:8]))


def test_snapshot_record_round_trip():
    sst = make_sst(99, size=938, num_rows=100, time_range=TimeRange(100, 200))
    record = SnapshotRecord.from_sst(sst)
    buf = io.BytesIO()
    record.write_to(buf)
    assert len(buf.getvalue()) == SnapshotRecord.LENGTH
    buf.seek(0)
    decoded = SnapshotRecord.read(buf)
    assert decoded == SnapshotRecord(
        id=99, time_range=TimeRange(100, 200), size=938, num_rows=100
    )
    assert decoded.to_sst() == sst


def test_snapshot_record_overflow_raises():
    record = SnapshotRecord(id=1, time_range=TimeRange(0, 1), size=2**32, num_rows=0)
    with pytest.raises(EncodingError):
        record.write_to(io.BytesIO())


def test_empty_bytes_give_empty_snapshot():
    snapshot = Snapshot.from_bytes(b"")
    assert snapshot.records == []
    assert snapshot.to_ssts() == []
    assert len(snapshot.to_bytes()) == SnapshotHeader.LENGTH


def test_header_only_bytes_are_rejected():
    data = Snapshot().to_bytes()
    with pytest.raises(EncodingError):
        Snapshot.from_bytes(data)


def test_snapshot_round_trip():
    ssts = [make_sst(i, size=10 + i, num_rows=i, time_range=TimeRange(i, i + 5)) for i in range(3)]
    snapshot = Snapshot()
    snapshot.add_records(ssts)
    data = snapshot.to_bytes()
    assert len(data) == SnapshotHeader.LENGTH + 3 * SnapshotRecord.LENGTH
    decoded = Snapshot.from_bytes(data)
    assert decoded.header.length == 3 * SnapshotRecord.LENGTH
    assert decoded.to_ssts() == ssts


def test_snapshot_append_after_decode():
    snapshot = Snapshot()
    snapshot.add_records([make_sst(1)] * 4)
    decoded = Snapshot.from_bytes(snapshot.to_bytes())
    decoded.add_records([make_sst(2)] * 2)
    again = Snapshot.from_bytes(decoded.to_bytes())
    assert [r.id for r in again.records] == [1, 1, 1, 1, 2, 2]


def test_snapshot_length_mismatch_rejected():
    snapshot = Snapshot()
    snapshot.add_records([make_sst(1), make_sst(2)])
    data = snapshot.to_bytes()
    with pytest.raises(EncodingError):
        Snapshot.from_bytes(data[:-1])
    with pytest.raises(EncodingError):
        Snapshot.from_bytes(data + b"\x00")


def test_delete_records():
    snapshot = Snapshot()
    snapshot.add_records([make_sst(i) for i in range(5)])
    snapshot.delete_records([1, 3])
    assert [r.id for r in snapshot.records] == [0, 2, 4]
    assert snapshot.header.length == 3 * SnapshotRecord.LENGTH


def test_delete_missing_record_raises():
    snapshot = Snapshot()
    snapshot.add_records([make_sst(1)])
    with pytest.raises(ValueError):
        snapshot.delete_records([7])


def test_manifest_update_holds_changes():
    update = ManifestUpdate([make_sst(5)], [1, 2])
    assert [f.id for f in update.to_adds] == [5]
    assert update.to_deletes == [1, 2]