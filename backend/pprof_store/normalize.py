from typing import Iterator

from .errors import UnsupportedSampleShape
from .models import RawTuple, Snapshot

# CPU profiles carry (samples/count, cpu/nanoseconds) per sample.
CPU_VALUE_WIDTH = 2


def iter_raw_tuples(snapshot: Snapshot, value_width: int = CPU_VALUE_WIDTH, source=None) -> Iterator[RawTuple]:
    """
    Flatten samples -> locations -> lines into staged rows, lazily.

    Ordinals keep the snapshot order: a call site may repeat inside one sample
    and one location expands to several lines when frames were inlined.
    A sample whose value vector is not `value_width` wide aborts the iteration.
    """
    for sample_idx, sample in enumerate(snapshot.samples):
        if len(sample.values) != value_width:
            raise UnsupportedSampleShape(sample_idx, value_width, len(sample.values), source=source)
        for location_idx, loc in enumerate(sample.locations):
            for line_idx, ln in enumerate(loc.lines):
                yield RawTuple(
                    sample_idx, location_idx, line_idx,
                    ln.function, ln.file, ln.line, sample.values,
                )


def check_sample_shape(snapshot: Snapshot, value_width: int = CPU_VALUE_WIDTH, source=None) -> None:
    for sample_idx, sample in enumerate(snapshot.samples):
        if len(sample.values) != value_width:
            raise UnsupportedSampleShape(sample_idx, value_width, len(sample.values), source=source)
