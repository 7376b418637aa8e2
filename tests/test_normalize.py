from __future__ import annotations

import pytest

from pprof_store.errors import UnsupportedSampleShape
from pprof_store.models import RawTuple
from pprof_store.normalize import check_sample_shape, iter_raw_tuples
from tests.profiles import TWO_SAMPLES, snapshot_of


def test_one_tuple_per_sample_location_line() -> None:
    rows = list(iter_raw_tuples(snapshot_of(TWO_SAMPLES)))

    assert rows == [
        RawTuple(0, 0, 0, "f1", "file1", 10, (5, 100)),
        RawTuple(1, 0, 0, "f1", "file1", 10, (3, 60)),
        RawTuple(1, 1, 0, "f2", "file2", 20, (3, 60)),
    ]


def test_inlined_location_expands_to_several_lines() -> None:
    snap = snapshot_of([((1, 10), [[("inner", "a.go", 3), ("outer", "a.go", 30)], [("main", "main.go", 7)]])])

    rows = list(iter_raw_tuples(snap))

    assert [(r.location_idx, r.line_idx, r.func) for r in rows] == [
        (0, 0, "inner"),
        (0, 1, "outer"),
        (1, 0, "main"),
    ]


def test_repeated_call_site_keeps_distinct_ordinals() -> None:
    frame = [("recurse", "r.go", 5)]
    rows = list(iter_raw_tuples(snapshot_of([((1, 10), [frame, frame, frame])])))

    assert [r.location_idx for r in rows] == [0, 1, 2]
    assert {(r.func, r.file_name, r.line) for r in rows} == {("recurse", "r.go", 5)}


def test_as_row_matches_staging_column_order() -> None:
    row = RawTuple(2, 1, 0, "f", "file", 9, (7, 70)).as_row()
    assert row == (2, 1, 0, "f", "file", 9, 7, 70)


def test_iteration_is_lazy() -> None:
    snap = snapshot_of([((1, 10), [[("a", "a.go", 1)]]), ((1, 2, 3), [[("b", "b.go", 2)]])])
    it = iter_raw_tuples(snap)

    assert next(it).func == "a"
    with pytest.raises(UnsupportedSampleShape) as exc:
        next(it)
    assert (exc.value.sample_index, exc.value.expected, exc.value.actual) == (1, 2, 3)


def test_check_sample_shape_rejects_wrong_width() -> None:
    snap = snapshot_of([((1,), [[("a", "a.go", 1)]])])
    with pytest.raises(UnsupportedSampleShape):
        check_sample_shape(snap, source="cpu.pb.gz")
    # the vector width is a parameter of the normalizer
    assert [r.values for r in iter_raw_tuples(snap, value_width=1)] == [(1,)]


def test_empty_snapshot_yields_nothing() -> None:
    assert list(iter_raw_tuples(snapshot_of([]))) == []
