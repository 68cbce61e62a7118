import pytest

from tsstore.sst import FileMeta, SstFile, Task, TimeRange


def make_sst(file_id, size=1, start=0, end=10):
    return SstFile(
        file_id,
        FileMeta(max_sequence=file_id, num_rows=1, size=size, time_range=TimeRange(start, end)),
    )


def test_time_range_merge_covers_both():
    merged = TimeRange(1, 5).merge(TimeRange(3, 10))
    assert merged == TimeRange(1, 10)
    assert TimeRange(3, 10).merge(TimeRange(1, 5)) == merged


@pytest.mark.parametrize(
    "lhs, rhs, expected",
    [
        (TimeRange(0, 10), TimeRange(5, 15), True),
        (TimeRange(0, 10), TimeRange(10, 20), False),
        (TimeRange(0, 10), TimeRange(2, 3), True),
        (TimeRange(20, 30), TimeRange(0, 10), False),
    ],
)
def test_time_range_overlaps(lhs, rhs, expected):
    assert lhs.overlaps(rhs) is expected
    assert rhs.overlaps(lhs) is expected


def test_mark_and_unmark_compaction():
    sst = make_sst(1)
    assert sst.is_compaction() is False
    sst.mark_compaction()
    assert sst.is_compaction() is True
    sst.unmark_compaction()
    assert sst.is_compaction() is False


def test_equality_ignores_compaction_flag():
    a = make_sst(7, size=3)
    b = make_sst(7, size=3)
    a.mark_compaction()
    assert a == b
    assert a != make_sst(8, size=3)


def test_size_is_meta_size():
    assert make_sst(1, size=938).size == 938


def test_is_expired():
    assert make_sst(0, start=0, end=10).is_expired(15) is True
    assert make_sst(1, start=10, end=20).is_expired(15) is False
    assert make_sst(0, start=0, end=10).is_expired(None) is False


def test_allocate_id_is_increasing():
    ids = [SstFile.allocate_id() for _ in range(100)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_task_input_size():
    assert Task().input_size() == 0
    task = Task(inputs=[make_sst(1, size=5)])
    assert task.input_size() == 5
    before = task.input_size()
    task.inputs.append(make_sst(2, size=40))
    assert task.input_size() == before + 40


def test_task_input_size_ignores_expired():
    task = Task(inputs=[make_sst(1, size=5)], expireds=[make_sst(2, size=99)])
    assert task.input_size() == 5