"""
pprof-store command line.

    python -m pprof_store --pg.host db --meta build_id=456 --meta token=fra.1 cpu.pb.gz ...

Files are ingested in order, each in its own transaction. SIGINT/SIGTERM
cancels the file in flight (rolled back) and skips the rest; files committed
before the signal stay.
"""
import argparse
import asyncio
import logging
import signal
from typing import Dict, List, Optional, Sequence

import psycopg

from .db import connection, conninfo, ensure_schema
from .errors import IngestError
from .ingest import ingest_profile
from .logging_config import configure_logging
from .models import IngestionResult

LOG = logging.getLogger("pprof_store.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

# Metadata used when no --meta is given (reference deployment).
REFERENCE_META: Dict[str, str] = {
    "build_id": "456",
    "token": "fra.1",
    "service": "adjust_server",
    "dc": "fra",
    "host": "backend-1",
}


def parse_meta(pairs: Sequence[str]) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        meta[key] = value
    return meta


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="pprof-store", description="Ingest pprof CPU profiles into PostgreSQL.")
    ap.add_argument("--pg.host", dest="pg_host", help="db host (default: PG_HOST or localhost)")
    ap.add_argument("--pg.user", dest="pg_user", help="db user (default: PG_USER or postgres)")
    ap.add_argument("--pg.password", dest="pg_password", help="db password (default: PG_PASSWORD or postgres)")
    ap.add_argument("--pg.database", dest="pg_database", help="db name (default: PG_DATABASE or pprof_data)")
    ap.add_argument("--dsn", help="full libpq connection string; overrides --pg.* and DATABASE_URL")
    ap.add_argument("--meta", action="append", default=[], metavar="KEY=VALUE",
                    help="metadata pair, repeatable (build_id, token, service, received_at, labels)")
    ap.add_argument("--init-schema", action="store_true", help="create tables before ingesting")
    ap.add_argument("--log-level", help="overrides PPROF_LOG_LEVEL")
    ap.add_argument("files", nargs="*", metavar="FILE")
    return ap


async def run(dsn: str, meta: Dict[str, str], files: Sequence[str], init_schema: bool = False) -> List[IngestionResult]:
    results: List[IngestionResult] = []
    async with connection(dsn) as conn:
        if init_schema:
            await ensure_schema(conn)
        for f in files:
            results.append(await ingest_profile(meta, f, conn=conn))
    return results


async def _run_interruptible(dsn: str, meta: Dict[str, str], files: Sequence[str], init_schema: bool) -> List[IngestionResult]:
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(run(dsn, meta, files, init_schema))
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
            installed.append(sig)
        except NotImplementedError:
            LOG.debug("signal handlers unsupported on this platform")
    try:
        return await task
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    configure_logging(args.log_level)

    if not args.files and not args.init_schema:
        ap.error("no profiles passed")
    try:
        meta = parse_meta(args.meta) if args.meta else dict(REFERENCE_META)
    except ValueError as e:
        ap.error(str(e))

    dsn = args.dsn or conninfo(args.pg_host, args.pg_user, args.pg_password, args.pg_database)
    try:
        results = asyncio.run(_run_interruptible(dsn, meta, args.files, args.init_schema))
    except asyncio.CancelledError:
        LOG.warning("interrupted; in-flight profile rolled back")
        return EXIT_INTERRUPTED
    except IngestError as e:
        LOG.error("ingest failed at %s: %s", e.stage, e)
        return EXIT_FAILED
    except psycopg.Error as e:
        LOG.error("database error: %s", e)
        return EXIT_FAILED

    for r in results:
        print(f"{r.source}: samples={r.samples_inserted} new_locations={r.locations_created} "
              f"service_created={r.service_created} sha256={r.sha256[:12]}")
    return EXIT_OK
