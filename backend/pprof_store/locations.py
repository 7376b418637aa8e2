import logging
from typing import Optional

import psycopg

from .db import SCHEMA
from .errors import LocationResolutionFailed
from .staging import STAGING_TABLE

LOG = logging.getLogger("pprof_store.locations")

# Sorted so that concurrent ingestions take unique-index locks in the same order.
SQL_INSERT_LOCATIONS = f"""
    INSERT INTO {SCHEMA}.profile_pprof_locations (func, file_name, line)
    SELECT DISTINCT tmp.func, tmp.file_name, tmp.line
      FROM {STAGING_TABLE} AS tmp
     ORDER BY tmp.func, tmp.file_name, tmp.line
    ON CONFLICT (func, file_name, line) DO NOTHING
"""


async def resolve_locations(conn, source: Optional[str] = None) -> int:
    """
    Add every staged (func, file_name, line) missing from the global location
    dictionary. Existing rows, including ones a concurrent ingestion just
    inserted, are left alone; ids are resolved later by joining on the key.
    Returns the number of new locations.
    """
    try:
        async with conn.cursor() as cur:
            await cur.execute(SQL_INSERT_LOCATIONS)
            created = max(cur.rowcount, 0)
    except psycopg.Error as e:
        raise LocationResolutionFailed("could not insert locations", source=source) from e
    LOG.debug("locations created=%d", created)
    return created
