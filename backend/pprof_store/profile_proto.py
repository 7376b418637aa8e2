"""
Message classes for the pprof wire format (perftools.profiles, profile.proto).

The schema is declared here and registered in a private descriptor pool, so the
protobuf runtime does all of the wire decoding without a protoc build step.
Field numbers follow github.com/google/pprof/proto/profile.proto.
"""
from __future__ import annotations

import gzip
import zlib
from typing import List, Optional, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.message import DecodeError
from google.protobuf.message_factory import GetMessageClass

PACKAGE = "perftools.profiles"

_FD = descriptor_pb2.FieldDescriptorProto
_OPT = _FD.LABEL_OPTIONAL
_REP = _FD.LABEL_REPEATED

# (number, name, label, type, message type name or None)
_FieldSpec = Tuple[int, str, int, int, str]

_MESSAGES: List[Tuple[str, List[_FieldSpec]]] = [
    ("Profile", [
        (1, "sample_type", _REP, _FD.TYPE_MESSAGE, "ValueType"),
        (2, "sample", _REP, _FD.TYPE_MESSAGE, "Sample"),
        (3, "mapping", _REP, _FD.TYPE_MESSAGE, "Mapping"),
        (4, "location", _REP, _FD.TYPE_MESSAGE, "Location"),
        (5, "function", _REP, _FD.TYPE_MESSAGE, "Function"),
        (6, "string_table", _REP, _FD.TYPE_STRING, ""),
        (7, "drop_frames", _OPT, _FD.TYPE_INT64, ""),
        (8, "keep_frames", _OPT, _FD.TYPE_INT64, ""),
        (9, "time_nanos", _OPT, _FD.TYPE_INT64, ""),
        (10, "duration_nanos", _OPT, _FD.TYPE_INT64, ""),
        (11, "period_type", _OPT, _FD.TYPE_MESSAGE, "ValueType"),
        (12, "period", _OPT, _FD.TYPE_INT64, ""),
        (13, "comment", _REP, _FD.TYPE_INT64, ""),
        (14, "default_sample_type", _OPT, _FD.TYPE_INT64, ""),
    ]),
    ("ValueType", [
        (1, "type", _OPT, _FD.TYPE_INT64, ""),
        (2, "unit", _OPT, _FD.TYPE_INT64, ""),
    ]),
    ("Sample", [
        (1, "location_id", _REP, _FD.TYPE_UINT64, ""),
        (2, "value", _REP, _FD.TYPE_INT64, ""),
        (3, "label", _REP, _FD.TYPE_MESSAGE, "Label"),
    ]),
    ("Label", [
        (1, "key", _OPT, _FD.TYPE_INT64, ""),
        (2, "str", _OPT, _FD.TYPE_INT64, ""),
        (3, "num", _OPT, _FD.TYPE_INT64, ""),
        (4, "num_unit", _OPT, _FD.TYPE_INT64, ""),
    ]),
    ("Mapping", [
        (1, "id", _OPT, _FD.TYPE_UINT64, ""),
        (2, "memory_start", _OPT, _FD.TYPE_UINT64, ""),
        (3, "memory_limit", _OPT, _FD.TYPE_UINT64, ""),
        (4, "file_offset", _OPT, _FD.TYPE_UINT64, ""),
        (5, "filename", _OPT, _FD.TYPE_INT64, ""),
        (6, "build_id", _OPT, _FD.TYPE_INT64, ""),
        (7, "has_functions", _OPT, _FD.TYPE_BOOL, ""),
        (8, "has_filenames", _OPT, _FD.TYPE_BOOL, ""),
        (9, "has_line_numbers", _OPT, _FD.TYPE_BOOL, ""),
        (10, "has_inline_frames", _OPT, _FD.TYPE_BOOL, ""),
    ]),
    ("Location", [
        (1, "id", _OPT, _FD.TYPE_UINT64, ""),
        (2, "mapping_id", _OPT, _FD.TYPE_UINT64, ""),
        (3, "address", _OPT, _FD.TYPE_UINT64, ""),
        (4, "line", _REP, _FD.TYPE_MESSAGE, "Line"),
        (5, "is_folded", _OPT, _FD.TYPE_BOOL, ""),
    ]),
    ("Line", [
        (1, "function_id", _OPT, _FD.TYPE_UINT64, ""),
        (2, "line", _OPT, _FD.TYPE_INT64, ""),
        (3, "column", _OPT, _FD.TYPE_INT64, ""),
    ]),
    ("Function", [
        (1, "id", _OPT, _FD.TYPE_UINT64, ""),
        (2, "name", _OPT, _FD.TYPE_INT64, ""),
        (3, "system_name", _OPT, _FD.TYPE_INT64, ""),
        (4, "filename", _OPT, _FD.TYPE_INT64, ""),
        (5, "start_line", _OPT, _FD.TYPE_INT64, ""),
    ]),
]


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fp = descriptor_pb2.FileDescriptorProto(
        name="perftools/profiles/profile.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    for msg_name, fields in _MESSAGES:
        msg = fp.message_type.add(name=msg_name)
        for number, name, label, ftype, type_name in fields:
            field = msg.field.add(name=name, number=number, label=label, type=ftype)
            if type_name:
                field.type_name = f".{PACKAGE}.{type_name}"
    return fp


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())

Profile = GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.Profile"))

GZIP_MAGIC = b"\x1f\x8b"


class ProfileTooLarge(ValueError):
    def __init__(self, limit: int):
        super().__init__(f"decoded profile exceeds {limit} bytes")
        self.limit = limit


def _gunzip(data: bytes, max_bytes: Optional[int] = None) -> bytes:
    """
    Inflate every gzip member of `data`. Output is produced in bounded steps,
    so a small upload cannot inflate past `max_bytes`.
    """
    out = bytearray()
    while data:
        d = zlib.decompressobj(16 + zlib.MAX_WBITS)
        # one byte over the budget is enough to know it was exceeded
        room = 0 if max_bytes is None else max_bytes - len(out) + 1
        try:
            out += d.decompress(data, room)
        except zlib.error as e:
            raise ValueError(f"bad gzip framing: {e}") from e
        if max_bytes is not None and len(out) > max_bytes:
            raise ProfileTooLarge(max_bytes)
        if not d.eof:
            raise ValueError("bad gzip framing: truncated stream")
        data = d.unused_data
    return bytes(out)


def decode(data: bytes, max_bytes: Optional[int] = None):
    """
    Decode gzip-framed or raw pprof bytes into a `Profile` message.
    Raises ValueError on empty input, bad gzip framing, or malformed protobuf,
    and ProfileTooLarge when the raw protobuf would exceed `max_bytes`.
    """
    if not data:
        raise ValueError("empty input")
    if data[:2] == GZIP_MAGIC:
        data = _gunzip(data, max_bytes)
    elif max_bytes is not None and len(data) > max_bytes:
        raise ProfileTooLarge(max_bytes)
    msg = Profile()
    try:
        msg.ParseFromString(data)
    except DecodeError as e:
        raise ValueError(f"malformed profile protobuf: {e}") from e
    return msg


def encode(msg, compress: bool = True) -> bytes:
    raw = msg.SerializeToString()
    return gzip.compress(raw) if compress else raw
