import logging
from datetime import datetime
from typing import Optional

import psycopg

from .db import SCHEMA
from .errors import AggregationFailed
from .models import IngestionRecord
from .staging import STAGING_TABLE

LOG = logging.getLogger("pprof_store.samples")

# One fact row per (sample ordinal, value tuple). The ordinal stays in the
# grouping key, so identical samples of one snapshot remain separate rows.
SQL_INSERT_SAMPLES = f"""
    INSERT INTO {SCHEMA}.profile_pprof_samples_cpu
        (build_id, token, locations, created_at, value_cpu, value_nanos)
    SELECT s.build_id, s.token, t.locations, s.created_at, t.value_cpu, t.value_nanos
      FROM (VALUES (%s::text, %s::text, %s::timestamptz)) AS s (build_id, token, created_at),
           (
             SELECT tmp.sample_idx,
                    array_agg(l.location_id ORDER BY tmp.location_idx, tmp.line_idx) AS locations,
                    tmp.value_cpu, tmp.value_nanos
               FROM {STAGING_TABLE} AS tmp
               JOIN {SCHEMA}.profile_pprof_locations AS l
                 ON l.func = tmp.func AND l.file_name = tmp.file_name AND l.line = tmp.line
              GROUP BY tmp.sample_idx, tmp.value_cpu, tmp.value_nanos
           ) AS t
     ORDER BY t.sample_idx
"""


async def insert_samples(
    conn,
    record: IngestionRecord,
    created_at: datetime,
    expected: Optional[int] = None,
    source: Optional[str] = None,
) -> int:
    """
    Join staged rows to canonical location ids, group them back into samples and
    insert all fact rows with one statement. When `expected` is given, a
    different fact-row count aborts the ingestion.
    """
    try:
        async with conn.cursor() as cur:
            await cur.execute(SQL_INSERT_SAMPLES, (record.build_id, record.token, created_at))
            inserted = max(cur.rowcount, 0)
    except psycopg.Error as e:
        raise AggregationFailed("could not insert samples", source=source) from e
    if expected is not None and inserted != expected:
        raise AggregationFailed(
            f"built {inserted} fact rows for {expected} samples", source=source
        )
    LOG.debug("samples inserted=%d build_id=%s token=%s", inserted, record.build_id, record.token)
    return inserted
