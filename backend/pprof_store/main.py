import os
import logging

import psycopg
from fastapi import FastAPI

from . import __version__
from .db import SCHEMA, check_connection
from .logging_config import configure_logging
from .profile_routes import router as profile_router

# ---------------- logging ----------------
configure_logging()
LOG = logging.getLogger("pprof_store.api")

API_TITLE = "pprof store API"
API_VERSION = os.getenv("API_VERSION", __version__)

app = FastAPI(title=API_TITLE, version=API_VERSION)

# Register sub-routers
app.include_router(profile_router)


# ---------------- Diagnostics / Health ----------------
@app.get("/health")
async def health(db: bool = False):
    """
    Lightweight health endpoint. `?db=true` also round-trips a SELECT 1.
    """
    out = {
        "ok": True,
        "service": API_TITLE,
        "version": API_VERSION,
        "schema": SCHEMA,
    }
    if db:
        try:
            out["db"] = await check_connection()
        except psycopg.Error as e:
            LOG.warning("health db check failed: %s", e)
            out["ok"] = False
            out["db"] = False
    return out
