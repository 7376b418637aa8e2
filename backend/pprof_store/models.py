from __future__ import annotations

import dataclasses as dc
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple


# ------------------------------
# Decoded snapshot graph
# ------------------------------
@dc.dataclass(frozen=True)
class Line:
    function: str
    file: str
    line: int


@dc.dataclass(frozen=True)
class Location:
    """Frames of one call site, inlined callee first."""
    lines: Tuple[Line, ...]


@dc.dataclass(frozen=True)
class Sample:
    values: Tuple[int, ...]
    locations: Tuple[Location, ...]


@dc.dataclass(frozen=True)
class Snapshot:
    """
    One decoded pprof profile, with string-table indexes and id references
    already resolved. `time_nanos` is 0 when the profile carries no capture time.
    """
    samples: Tuple[Sample, ...]
    time_nanos: int = 0
    duration_nanos: int = 0
    period: int = 0
    period_type: Optional[Tuple[str, str]] = None
    sample_types: Tuple[Tuple[str, str], ...] = ()

    def describe_sample_types(self) -> str:
        return ",".join(f"{t}/{u}" for t, u in self.sample_types) or "(none)"

    def describe_period(self) -> str:
        if not self.period_type:
            return f"{self.period}"
        return f"{self.period} {self.period_type[1]}"


# ------------------------------
# Pipeline records
# ------------------------------
class RawTuple(NamedTuple):
    """One staged row: a single source line of one location inside one sample."""
    sample_idx: int
    location_idx: int
    line_idx: int
    func: str
    file_name: str
    line: int
    values: Tuple[int, ...]

    def as_row(self) -> Tuple[Any, ...]:
        return (
            self.sample_idx, self.location_idx, self.line_idx,
            self.func, self.file_name, self.line, *self.values,
        )


@dc.dataclass
class IngestionRecord:
    build_id: str
    token: str
    service: str
    snapshot: Snapshot
    created_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    labels: Dict[str, str] = dc.field(default_factory=dict)


class IngestionState(str, Enum):
    PARSING = "parsing"
    SERVICE_REGISTERED = "service_registered"
    STAGED = "staged"
    LOCATIONS_RESOLVED = "locations_resolved"
    SAMPLES_INSERTED = "samples_inserted"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dc.dataclass
class IngestionResult:
    build_id: str
    token: str
    source: str
    sha256: str
    created_at: datetime
    received_at: Optional[datetime] = None
    service_created: bool = False
    tuples_staged: int = 0
    locations_created: int = 0
    samples_inserted: int = 0
    state: IngestionState = IngestionState.PARSING
    sample_types: List[str] = dc.field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out = dc.asdict(self)
        out["state"] = self.state.value
        out["created_at"] = self.created_at.isoformat()
        out["received_at"] = self.received_at.isoformat() if self.received_at else None
        return out
