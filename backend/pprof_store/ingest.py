import asyncio
import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

import psycopg

from .db import connection, prepare_connection
from .errors import CommitFailed, IngestError
from .locations import resolve_locations
from .metadata import resolve_metadata
from .models import IngestionRecord, IngestionResult, IngestionState, Snapshot
from .normalize import check_sample_shape, iter_raw_tuples
from .samples import insert_samples
from .services import register_service
from .snapshot import parse_snapshot, read_snapshot_bytes
from .staging import stage_tuples

LOG = logging.getLogger("pprof_store.ingest")


# ------------------------------
# Transactional part
# ------------------------------
async def store_record(
    conn,
    record: IngestionRecord,
    *,
    source: str,
    sha256: str = "",
) -> IngestionResult:
    """
    Persist one ingestion record inside a single transaction:
      register service -> COPY staging rows -> upsert locations -> insert samples -> commit.
    Any failure rolls the whole snapshot back and propagates; nothing is retried.
    """
    created_at = record.created_at or datetime.now(timezone.utc)
    snapshot = record.snapshot
    # a sample without frames has nothing to join against and yields no fact row
    expected = sum(1 for s in snapshot.samples if s.locations)
    if expected != len(snapshot.samples):
        LOG.warning("[INGEST] %s: %d samples without locations are skipped",
                    source, len(snapshot.samples) - expected)

    result = IngestionResult(
        build_id=record.build_id,
        token=record.token,
        source=source,
        sha256=sha256,
        created_at=created_at,
        received_at=record.received_at,
        sample_types=[f"{t}/{u}" for t, u in snapshot.sample_types],
    )
    LOG.info("[INGEST] start source=%s build_id=%s token=%s service=%s samples=%d sample_types=%s "
             "period=%s duration=%.3fs",
             source, record.build_id, record.token, record.service or "(none)",
             len(snapshot.samples), snapshot.describe_sample_types(),
             snapshot.describe_period(), snapshot.duration_nanos / 1e9)

    try:
        async with conn.transaction():
            result.service_created = await register_service(conn, record, source)
            result.state = IngestionState.SERVICE_REGISTERED

            result.tuples_staged = await stage_tuples(conn, iter_raw_tuples(snapshot, source=source), source)
            result.state = IngestionState.STAGED

            result.locations_created = await resolve_locations(conn, source)
            result.state = IngestionState.LOCATIONS_RESOLVED

            result.samples_inserted = await insert_samples(conn, record, created_at, expected, source)
            result.state = IngestionState.SAMPLES_INSERTED
    except IngestError as e:
        LOG.error("[INGEST] rolled back source=%s after state=%s: %s", source, result.state.value, e)
        result.state = IngestionState.ROLLED_BACK
        raise
    except psycopg.Error as e:
        # step failures arrive wrapped; a bare driver error comes from BEGIN or COMMIT
        reached = result.state
        result.state = IngestionState.ROLLED_BACK
        if reached is IngestionState.SAMPLES_INSERTED:
            err: IngestError = CommitFailed("could not commit transaction", source=source)
        else:
            err = IngestError("could not open transaction", source=source, stage="begin")
        LOG.error("[INGEST] rolled back source=%s after state=%s: %s", source, reached.value, e)
        raise err from e
    except asyncio.CancelledError:
        LOG.warning("[INGEST] cancelled source=%s after state=%s; rolled back", source, result.state.value)
        result.state = IngestionState.ROLLED_BACK
        raise

    result.state = IngestionState.COMMITTED
    LOG.info("[INGEST] committed source=%s service_created=%s staged=%d new_locations=%d samples=%d",
             source, result.service_created, result.tuples_staged,
             result.locations_created, result.samples_inserted)
    return result


# ------------------------------
# Public API
# ------------------------------
def _decode(data: bytes, source: str, max_bytes: Optional[int]) -> Tuple[str, Snapshot]:
    return hashlib.sha256(data).hexdigest(), parse_snapshot(data, source=source, max_bytes=max_bytes)


async def ingest_profile_bytes(
    meta: Mapping[str, str],
    data: bytes,
    *,
    source: str = "<upload>",
    dsn: Optional[str] = None,
    conn=None,
    max_bytes: Optional[int] = None,
) -> IngestionResult:
    """
    Decode one snapshot, merge caller metadata and store it.
    Decoding, metadata and sample-shape errors surface before a transaction opens.
    `max_bytes` bounds the profile size after gzip inflation (OversizedProfile).

    Pass `conn` to reuse an open connection. It must be idle; the hstore
    adapter is registered on it when missing. Otherwise one is opened for the call.
    """
    loop = asyncio.get_running_loop()
    # inflate + protobuf parse is CPU bound; keep it off the event loop
    digest, snapshot = await loop.run_in_executor(None, _decode, data, source, max_bytes)
    record = resolve_metadata(meta, snapshot, source=source)
    check_sample_shape(snapshot, source=source)

    if conn is not None:
        try:
            await prepare_connection(conn)
        except psycopg.Error as e:
            raise IngestError("connection not usable for ingestion", source=source, stage="begin") from e
        return await store_record(conn, record, source=source, sha256=digest)
    async with connection(dsn) as own:
        return await store_record(own, record, source=source, sha256=digest)


async def ingest_profile(
    meta: Mapping[str, str],
    file_path: Union[str, Path],
    *,
    dsn: Optional[str] = None,
    conn=None,
    max_bytes: Optional[int] = None,
) -> IngestionResult:
    source = str(file_path)
    loop = asyncio.get_running_loop()
    data = await loop.run_in_executor(None, read_snapshot_bytes, source)
    return await ingest_profile_bytes(meta, data, source=source, dsn=dsn, conn=conn, max_bytes=max_bytes)
