import time

import pytest

from tsstore.config import ManifestConfig
from tsstore.encoding import EncodingError, ManifestUpdate
from tsstore.manifest import (
    Manifest,
    ManifestError,
    decode_update,
    encode_update,
    list_delta_paths,
    read_snapshot,
)
from tsstore.sst import FileMeta, SstFile, TimeRange


def _meta(i):
    return FileMeta(max_sequence=i, num_rows=i, size=i, time_range=TimeRange(i, i + 1))


def _sorted(ssts):
    return sorted(ssts, key=lambda f: f.id)


def test_encode_decode_round_trip():
    update = ManifestUpdate(
        to_adds=[
            SstFile(99, FileMeta(99, 100, 938, TimeRange(100, 200))),
            SstFile(7, FileMeta(3, 1, 2, TimeRange(-5, 5))),
        ],
        to_deletes=[1, 2, 3],
    )
    decoded = decode_update(encode_update(update))
    assert decoded == update


def test_encode_empty_update():
    data = encode_update(ManifestUpdate())
    assert data == b"\x00" * 8
    assert decode_update(data) == ManifestUpdate()


def test_decode_truncated_raises():
    data = encode_update(ManifestUpdate(to_adds=[SstFile(1, _meta(1))], to_deletes=[4]))
    with pytest.raises(EncodingError):
        decode_update(data[:-1])


def test_decode_trailing_bytes_raises():
    data = encode_update(ManifestUpdate(to_deletes=[4]))
    with pytest.raises(EncodingError):
        decode_update(data + b"\x00")


def test_read_snapshot_missing_is_empty(tmp_path):
    snapshot = read_snapshot(tmp_path / "nothing")
    assert snapshot.to_ssts() == []
    assert snapshot.records == []


def test_read_snapshot_invalid_raises(tmp_path):
    path = tmp_path / "snapshot"
    path.write_bytes(b"garbage-bytes-here")
    with pytest.raises(EncodingError):
        read_snapshot(path)


def test_find_manifest(tmp_path):
    manifest = Manifest(tmp_path)
    for i in range(20):
        manifest.add_file(i, _meta(i))

    found = manifest.find_ssts(TimeRange(10, 15))
    expected = [SstFile(i, _meta(i)) for i in range(10, 15)]
    assert _sorted(found) == _sorted(expected)


def test_merge_manifest(tmp_path):
    manifest = Manifest(tmp_path)
    for i in range(20):
        manifest.add_file(i, _meta(i))
    assert len(list_delta_paths(manifest.delta_dir)) == 20
    assert manifest.delta_count == 20

    merged = manifest.merge_deltas()
    assert merged == 20

    ssts = read_snapshot(manifest.snapshot_path).to_ssts()
    assert _sorted(ssts) == _sorted(manifest.all_ssts())
    assert list_delta_paths(manifest.delta_dir) == []
    assert manifest.delta_count == 0


def test_background_merge(tmp_path):
    config = ManifestConfig(merge_interval_seconds=1)
    with Manifest(tmp_path, config) as manifest:
        for i in range(20):
            manifest.add_file(i, _meta(i))
        deadline = time.monotonic() + 10
        while list_delta_paths(manifest.delta_dir) and time.monotonic() < deadline:
            time.sleep(0.1)

        ssts = read_snapshot(manifest.snapshot_path).to_ssts()
        assert _sorted(ssts) == _sorted(manifest.all_ssts())
        assert list_delta_paths(manifest.delta_dir) == []


def test_update_deletes_files(tmp_path):
    manifest = Manifest(tmp_path)
    for i in range(5):
        manifest.add_file(i, _meta(i))
    manifest.update(ManifestUpdate(to_adds=[SstFile(10, _meta(10))], to_deletes=[1, 3]))
    assert [f.id for f in _sorted(manifest.all_ssts())] == [0, 2, 4, 10]

    manifest.merge_deltas()
    assert [f.id for f in _sorted(read_snapshot(manifest.snapshot_path).to_ssts())] == [
        0,
        2,
        4,
        10,
    ]


def test_reopen_loads_pending_deltas(tmp_path):
    first = Manifest(tmp_path)
    for i in range(6):
        first.add_file(i, _meta(i))
    expected = _sorted(first.all_ssts())

    second = Manifest(tmp_path)
    assert _sorted(second.all_ssts()) == expected
    assert list_delta_paths(second.delta_dir) == []
    assert second.delta_count == 0


def test_hard_threshold_rejects_update(tmp_path):
    config = ManifestConfig(soft_merge_threshold=1, hard_merge_threshold=2)
    manifest = Manifest(tmp_path, config)
    for i in range(3):
        manifest.add_file(i, _meta(i))

    with pytest.raises(ManifestError, match="too many delta files"):
        manifest.add_file(3, _meta(3))

    assert manifest.delta_count == 3
    assert len(list_delta_paths(manifest.delta_dir)) == 3
    assert [f.id for f in _sorted(manifest.all_ssts())] == [0, 1, 2]

    manifest.merge_deltas()
    manifest.add_file(3, _meta(3))
    assert [f.id for f in _sorted(manifest.all_ssts())] == [0, 1, 2, 3]