import logging
from typing import Iterable, Optional

import psycopg

from .errors import IngestError, StagingWriteFailed
from .models import RawTuple

LOG = logging.getLogger("pprof_store.staging")

STAGING_TABLE = "profile_pprof_samples_tmp"

STAGING_COLUMNS = (
    "sample_idx", "location_idx", "line_idx",
    "func", "file_name", "line",
    "value_cpu", "value_nanos",
)

# Session-local; rows vanish at the end of every transaction (commit or rollback).
SQL_CREATE_STAGING = f"""
    CREATE TEMPORARY TABLE IF NOT EXISTS {STAGING_TABLE} (
        sample_idx   INTEGER NOT NULL,
        location_idx INTEGER NOT NULL,
        line_idx     INTEGER NOT NULL,
        func         TEXT    NOT NULL,
        file_name    TEXT    NOT NULL,
        line         BIGINT  NOT NULL,
        value_cpu    BIGINT  NOT NULL,
        value_nanos  BIGINT  NOT NULL
    ) ON COMMIT DELETE ROWS
"""

SQL_COPY_STAGING = f"COPY {STAGING_TABLE} ({', '.join(STAGING_COLUMNS)}) FROM STDIN"


async def stage_tuples(conn, tuples: Iterable[RawTuple], source: Optional[str] = None) -> int:
    """
    Stream raw tuples into the transaction-scoped staging table with a single
    COPY. Must run inside an open transaction. Returns the number of rows staged.
    """
    staged = 0
    try:
        async with conn.cursor() as cur:
            await cur.execute(SQL_CREATE_STAGING)
            async with cur.copy(SQL_COPY_STAGING) as copy:
                for t in tuples:
                    await copy.write_row(t.as_row())
                    staged += 1
    except IngestError:
        raise
    except (psycopg.Error, ValueError, TypeError) as e:
        raise StagingWriteFailed(
            f"could not COPY into {STAGING_TABLE} after {staged} rows", source=source
        ) from e
    LOG.debug("staged %d rows into %s", staged, STAGING_TABLE)
    return staged
