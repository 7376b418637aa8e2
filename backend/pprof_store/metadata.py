import re
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from .errors import MalformedMetadata
from .models import IngestionRecord, Snapshot

# RFC 3339 date-time: full date, 'T' (or space), time, optional fraction, mandatory offset.
RFC3339_RX = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

IDENTITY_KEYS = ("build_id", "token", "service")


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware datetime.
    Raises ValueError when the text is not RFC 3339.
    """
    s = value.strip()
    if not RFC3339_RX.match(s):
        raise ValueError("expected RFC 3339 date-time, e.g. 2024-05-01T12:00:00Z")
    if s[-1] in "Zz":
        s = s[:-1] + "+00:00"
    # fromisoformat wants exactly 6 fractional digits before 3.11
    m = re.search(r"\.(\d+)", s)
    if m:
        s = s[:m.start(1)] + m.group(1)[:6].ljust(6, "0") + s[m.end(1):]
    return datetime.fromisoformat(s.replace("t", "T"))


def capture_time(snapshot: Snapshot) -> Optional[datetime]:
    """Snapshot capture time as an aware UTC datetime, or None when unset."""
    if not snapshot.time_nanos:
        return None
    secs, nanos = divmod(snapshot.time_nanos, 1_000_000_000)
    return datetime.fromtimestamp(secs, tz=timezone.utc) + timedelta(microseconds=nanos // 1000)


def resolve_metadata(meta: Mapping[str, str], snapshot: Snapshot, source: Optional[str] = None) -> IngestionRecord:
    """
    Merge caller metadata with the parsed snapshot.

    `build_id`, `token`, `service` fill the service identity, `received_at` must be
    RFC 3339, and every other key becomes a label. `created_at` is the snapshot's
    capture time, or None for the coordinator to default.
    """
    record = IngestionRecord(
        build_id="",
        token="",
        service="",
        snapshot=snapshot,
        created_at=capture_time(snapshot),
    )
    for key, value in meta.items():
        if key in IDENTITY_KEYS:
            setattr(record, key, value)
        elif key == "received_at":
            try:
                record.received_at = parse_rfc3339(value)
            except ValueError as e:
                raise MalformedMetadata(key, value, str(e), source=source) from e
        else:
            record.labels[key] = value
    return record
