"""
Ingestion error taxonomy.

Every error names the pipeline stage it came from. Database-side failures are
raised with `raise ... from exc`, so `__cause__` holds the psycopg error.
"""
from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    stage = "ingest"

    def __init__(self, message: str, *, source: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        text = f"{self.stage}: {self.message}"
        if self.source:
            text = f"{text} [{self.source}]"
        if self.__cause__ is not None:
            text = f"{text}: {self.__cause__}"
        return text


class DecodeFailure(IngestError):
    stage = "decode"


class OversizedProfile(DecodeFailure):
    def __init__(self, message: str, *, limit: int, **kw):
        super().__init__(message, **kw)
        self.limit = limit


class MalformedMetadata(IngestError):
    stage = "metadata"

    def __init__(self, key: str, value: str, reason: str, **kw):
        super().__init__(f"metadata key {key!r} has invalid value {value!r} ({reason})", **kw)
        self.key = key
        self.value = value


class UnsupportedSampleShape(IngestError):
    stage = "normalize"

    def __init__(self, sample_index: int, expected: int, actual: int, **kw):
        super().__init__(
            f"sample #{sample_index} carries {actual} values, expected {expected}", **kw
        )
        self.sample_index = sample_index
        self.expected = expected
        self.actual = actual


class ServiceRegistrationFailed(IngestError):
    stage = "register_service"


class StagingWriteFailed(IngestError):
    stage = "staging"


class LocationResolutionFailed(IngestError):
    stage = "resolve_locations"


class AggregationFailed(IngestError):
    stage = "aggregate_samples"


class CommitFailed(IngestError):
    stage = "commit"


# Raised before any row is written; the HTTP layer reports these as client errors.
CLIENT_ERRORS = (DecodeFailure, MalformedMetadata, UnsupportedSampleShape)
