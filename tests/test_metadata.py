from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pprof_store.errors import MalformedMetadata
from pprof_store.metadata import capture_time, parse_rfc3339, resolve_metadata
from tests.profiles import CAPTURE_NANOS, TWO_SAMPLES, snapshot_of

REFERENCE_META = {
    "build_id": "456",
    "token": "fra.1",
    "service": "adjust_server",
    "dc": "fra",
    "host": "backend-1",
}


def test_identity_keys_and_labels_are_split() -> None:
    record = resolve_metadata(REFERENCE_META, snapshot_of(TWO_SAMPLES))

    assert (record.build_id, record.token, record.service) == ("456", "fra.1", "adjust_server")
    assert record.labels == {"dc": "fra", "host": "backend-1"}
    assert record.received_at is None


def test_created_at_comes_from_capture_time() -> None:
    record = resolve_metadata(REFERENCE_META, snapshot_of(TWO_SAMPLES, time_nanos=CAPTURE_NANOS))
    assert record.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_created_at_left_unset_without_capture_time() -> None:
    record = resolve_metadata(REFERENCE_META, snapshot_of(TWO_SAMPLES, time_nanos=0))
    assert record.created_at is None


def test_capture_time_keeps_microseconds() -> None:
    snap = snapshot_of(TWO_SAMPLES, time_nanos=CAPTURE_NANOS + 1_234_567)
    assert capture_time(snap) == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) + timedelta(microseconds=1234)


def test_received_at_is_parsed() -> None:
    meta = dict(REFERENCE_META, received_at="2024-05-01T12:30:00+02:00")
    record = resolve_metadata(meta, snapshot_of(TWO_SAMPLES))
    assert record.received_at == datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)
    assert "received_at" not in record.labels


@pytest.mark.parametrize(
    "value",
    ["not-a-date", "2024-05-01", "2024-05-01T12:00:00", "01/05/2024 12:00", ""],
)
def test_bad_received_at_raises_malformed_metadata(value: str) -> None:
    meta = dict(REFERENCE_META, received_at=value)
    with pytest.raises(MalformedMetadata) as exc:
        resolve_metadata(meta, snapshot_of(TWO_SAMPLES), source="cpu.pb.gz")
    assert exc.value.key == "received_at"
    assert exc.value.stage == "metadata"
    assert "received_at" in str(exc.value)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024-05-01T12:00:00Z", datetime(2024, 5, 1, 12, tzinfo=timezone.utc)),
        ("2024-05-01t12:00:00z", datetime(2024, 5, 1, 12, tzinfo=timezone.utc)),
        ("2024-05-01 12:00:00.5Z", datetime(2024, 5, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)),
        ("2024-05-01T12:00:00.123456789Z", datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)),
    ],
)
def test_parse_rfc3339(text: str, expected: datetime) -> None:
    assert parse_rfc3339(text) == expected


def test_missing_identity_defaults_to_empty() -> None:
    record = resolve_metadata({"dc": "ams"}, snapshot_of(TWO_SAMPLES))
    assert (record.build_id, record.token, record.service) == ("", "", "")
    assert record.labels == {"dc": "ams"}
