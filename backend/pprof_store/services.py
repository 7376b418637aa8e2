import logging
from typing import Optional

import psycopg

from .db import SCHEMA
from .errors import ServiceRegistrationFailed
from .models import IngestionRecord

LOG = logging.getLogger("pprof_store.services")

# First writer wins: a known (build_id, token) keeps its name and labels.
SQL_INSERT_SERVICE = f"""
    INSERT INTO {SCHEMA}.services (build_id, token, name, labels)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (build_id, token) DO NOTHING
"""


async def register_service(conn, record: IngestionRecord, source: Optional[str] = None) -> bool:
    """Idempotently register the owning service. Returns True when a row was created."""
    try:
        async with conn.cursor() as cur:
            await cur.execute(
                SQL_INSERT_SERVICE,
                (record.build_id, record.token, record.service, dict(record.labels)),
            )
            created = cur.rowcount == 1
    except psycopg.Error as e:
        raise ServiceRegistrationFailed("could not INSERT service", source=source) from e
    LOG.debug("service build_id=%s token=%s created=%s", record.build_id, record.token, created)
    return created
