import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from . import profile_proto
from .errors import DecodeFailure, OversizedProfile
from .models import Line, Location, Sample, Snapshot

LOG = logging.getLogger("pprof_store.snapshot")


def _resolver(strings: List[str]):
    def s(idx: int, what: str) -> str:
        if idx < 0 or idx >= len(strings):
            raise ValueError(f"{what} string index {idx} out of range ({len(strings)} strings)")
        return strings[idx]
    return s


def _value_type(vt, s) -> Tuple[str, str]:
    return s(vt.type, "value type"), s(vt.unit, "value unit")


def build_snapshot(msg) -> Snapshot:
    """
    Resolve string-table indexes, function ids, and location ids of a decoded
    `Profile` message into the plain Snapshot graph.
    Raises ValueError on any dangling reference.
    """
    strings = list(msg.string_table)
    if strings and strings[0] != "":
        raise ValueError("string_table[0] must be the empty string")
    if not strings:
        strings = [""]
    s = _resolver(strings)

    functions: Dict[int, Tuple[str, str]] = {}
    for fn in msg.function:
        if fn.id == 0:
            raise ValueError("function with id 0")
        functions[fn.id] = (s(fn.name, "function name"), s(fn.filename, "function filename"))

    mapping_files: Dict[int, str] = {m.id: s(m.filename, "mapping filename") for m in msg.mapping}

    locations: Dict[int, Location] = {}
    for loc in msg.location:
        if loc.id == 0:
            raise ValueError("location with id 0")
        mapping_file = mapping_files.get(loc.mapping_id, "")
        lines: List[Line] = []
        for ln in loc.line:
            if ln.function_id == 0:
                name, filename = "", ""
            elif ln.function_id in functions:
                name, filename = functions[ln.function_id]
            else:
                raise ValueError(f"location {loc.id} references unknown function {ln.function_id}")
            lines.append(Line(function=name, file=filename, line=ln.line))
        if not lines:
            # unsymbolized frame: keep it addressable instead of dropping it
            lines.append(Line(function=f"0x{loc.address:x}", file=mapping_file, line=0))
        locations[loc.id] = Location(lines=tuple(lines))

    samples: List[Sample] = []
    for i, smp in enumerate(msg.sample):
        try:
            locs = tuple(locations[lid] for lid in smp.location_id)
        except KeyError as e:
            raise ValueError(f"sample #{i} references unknown location {e.args[0]}") from e
        samples.append(Sample(values=tuple(smp.value), locations=locs))

    period_type: Optional[Tuple[str, str]] = None
    if msg.HasField("period_type"):
        period_type = _value_type(msg.period_type, s)

    return Snapshot(
        samples=tuple(samples),
        time_nanos=msg.time_nanos,
        duration_nanos=msg.duration_nanos,
        period=msg.period,
        period_type=period_type,
        sample_types=tuple(_value_type(vt, s) for vt in msg.sample_type),
    )


def parse_snapshot(data: bytes, source: Optional[str] = None, max_bytes: Optional[int] = None) -> Snapshot:
    """Decode and resolve one snapshot. `max_bytes` caps the size after gzip inflation."""
    try:
        snap = build_snapshot(profile_proto.decode(data, max_bytes))
    except profile_proto.ProfileTooLarge as e:
        raise OversizedProfile("profile too large", source=source, limit=e.limit) from e
    except ValueError as e:
        raise DecodeFailure("could not parse profile", source=source) from e
    LOG.debug("decoded %s: samples=%d sample_types=%s time_nanos=%s",
              source or "<bytes>", len(snap.samples), snap.describe_sample_types(), snap.time_nanos)
    return snap


def read_snapshot_bytes(path: Union[str, Path]) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise DecodeFailure("could not read profile", source=str(path)) from e


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    return parse_snapshot(read_snapshot_bytes(path), source=str(path))
