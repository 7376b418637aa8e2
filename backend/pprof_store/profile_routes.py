import os
import logging
from datetime import datetime
from typing import Dict, List, Mapping, Optional

import psycopg
from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel

from .errors import CLIENT_ERRORS, IngestError, OversizedProfile
from .ingest import ingest_profile_bytes

LOG = logging.getLogger("pprof_store.api")

router = APIRouter(prefix="/profiles", tags=["profiles"])

# X-Pprof-Build-Id: 456  ->  build_id=456
HEADER_PREFIX = os.getenv("PPROF_HEADER_PREFIX", "x-pprof-").lower()
MAX_UPLOAD_BYTES = int(os.getenv("PPROF_MAX_UPLOAD_BYTES", str(64 * 1024 * 1024)))
# bound after gzip inflation
MAX_PROFILE_BYTES = int(os.getenv("PPROF_MAX_PROFILE_BYTES", str(256 * 1024 * 1024)))


class IngestResponse(BaseModel):
    build_id: str
    token: str
    source: str
    sha256: str
    created_at: datetime
    received_at: Optional[datetime] = None
    service_created: bool
    tuples_staged: int
    locations_created: int
    samples_inserted: int
    state: str
    sample_types: List[str] = []


def metadata_from_headers(headers: Mapping[str, str], prefix: str = HEADER_PREFIX) -> Dict[str, str]:
    """Collect prefixed request headers as metadata; dashes in the key become underscores."""
    meta: Dict[str, str] = {}
    for name, value in headers.items():
        lname = name.lower()
        if not lname.startswith(prefix) or len(lname) == len(prefix):
            continue
        meta[lname[len(prefix):].replace("-", "_")] = value
    return meta


@router.post("", response_model=IngestResponse)
async def upload_profile(request: Request, file: UploadFile = File(...)):
    """
    Ingest one uploaded pprof snapshot. Metadata (build_id, token, service,
    received_at, labels) comes from X-Pprof-* headers.
    """
    meta = metadata_from_headers(request.headers)
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail={"stage": "upload", "detail": "empty upload"})
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail={"stage": "upload", "detail": f"profile exceeds {MAX_UPLOAD_BYTES} bytes"})

    source = file.filename or "<upload>"
    try:
        result = await ingest_profile_bytes(meta, data, source=source, max_bytes=MAX_PROFILE_BYTES)
    except OversizedProfile as e:
        raise HTTPException(status_code=413, detail={"stage": e.stage, "detail": str(e)})
    except CLIENT_ERRORS as e:
        raise HTTPException(status_code=400, detail={"stage": e.stage, "detail": str(e)})
    except IngestError as e:
        raise HTTPException(status_code=500, detail={"stage": e.stage, "detail": str(e)})
    except psycopg.OperationalError as e:
        LOG.error("database unavailable while ingesting %s: %s", source, e)
        raise HTTPException(status_code=503, detail={"stage": "connect", "detail": "database unavailable"})

    return IngestResponse(**result.to_dict())
