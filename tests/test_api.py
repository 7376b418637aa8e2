from __future__ import annotations

import gzip
from datetime import datetime, timezone

import psycopg
import pytest
from fastapi.testclient import TestClient

from pprof_store import main as api_main
from pprof_store import profile_routes
from pprof_store.errors import AggregationFailed, DecodeFailure, MalformedMetadata
from pprof_store.models import IngestionResult, IngestionState

HEADERS = {
    "X-Pprof-Build-Id": "456",
    "X-Pprof-Token": "fra.1",
    "X-Pprof-Service": "adjust_server",
    "X-Pprof-Dc": "fra",
}


@pytest.fixture
def client() -> TestClient:
    return TestClient(api_main.app)


@pytest.fixture
def captured(monkeypatch):
    seen = {}

    async def fake_ingest(meta, data, *, source="<upload>", dsn=None, conn=None, max_bytes=None):
        seen.update(meta=meta, data=data, source=source, max_bytes=max_bytes)
        return IngestionResult(
            build_id=meta.get("build_id", ""),
            token=meta.get("token", ""),
            source=source,
            sha256="00" * 32,
            created_at=datetime(2024, 5, 1, 12, tzinfo=timezone.utc),
            tuples_staged=3,
            locations_created=2,
            samples_inserted=2,
            state=IngestionState.COMMITTED,
            sample_types=["samples/count", "cpu/nanoseconds"],
        )

    monkeypatch.setattr(profile_routes, "ingest_profile_bytes", fake_ingest)
    return seen


def _raising(exc: Exception):
    async def fake_ingest(meta, data, *, source="<upload>", dsn=None, conn=None, max_bytes=None):
        raise exc

    return fake_ingest


def test_metadata_from_headers() -> None:
    meta = profile_routes.metadata_from_headers(
        {"X-Pprof-Build-Id": "456", "x-pprof-received-at": "2024-05-01T12:00:00Z", "X-Pprof-": "x", "Accept": "*/*"},
        prefix="x-pprof-",
    )
    assert meta == {"build_id": "456", "received_at": "2024-05-01T12:00:00Z"}


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["schema"] == api_main.SCHEMA
    assert "db" not in body


def test_health_reports_unreachable_db(client: TestClient, monkeypatch) -> None:
    async def down(dsn=None):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(api_main, "check_connection", down)

    body = client.get("/health", params={"db": "true"}).json()
    assert body["ok"] is False
    assert body["db"] is False


def test_upload_profile(client: TestClient, captured) -> None:
    resp = client.post("/profiles", headers=HEADERS, files={"file": ("cpu.pb.gz", b"\x1f\x8b-profile")})

    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "committed"
    assert body["samples_inserted"] == 2
    assert body["source"] == "cpu.pb.gz"
    assert captured["meta"] == {"build_id": "456", "token": "fra.1", "service": "adjust_server", "dc": "fra"}
    assert captured["data"] == b"\x1f\x8b-profile"
    assert captured["max_bytes"] == profile_routes.MAX_PROFILE_BYTES


def test_empty_upload_is_rejected(client: TestClient, captured) -> None:
    resp = client.post("/profiles", headers=HEADERS, files={"file": ("cpu.pb.gz", b"")})
    assert resp.status_code == 400
    assert resp.json()["detail"]["stage"] == "upload"
    assert captured == {}


def test_oversized_upload_is_rejected(client: TestClient, captured, monkeypatch) -> None:
    monkeypatch.setattr(profile_routes, "MAX_UPLOAD_BYTES", 4)
    resp = client.post("/profiles", headers=HEADERS, files={"file": ("cpu.pb.gz", b"0123456789")})
    assert resp.status_code == 413
    assert captured == {}


@pytest.mark.parametrize(
    "exc, status, stage",
    [
        (DecodeFailure("could not parse profile", source="cpu.pb.gz"), 400, "decode"),
        (MalformedMetadata("received_at", "yesterday", "not RFC3339"), 400, "metadata"),
        (AggregationFailed("built 1 fact rows for 2 samples"), 500, "aggregate_samples"),
    ],
)
def test_ingest_errors_map_to_status(client: TestClient, monkeypatch, exc, status, stage) -> None:
    monkeypatch.setattr(profile_routes, "ingest_profile_bytes", _raising(exc))

    resp = client.post("/profiles", headers=HEADERS, files={"file": ("cpu.pb.gz", b"data")})

    assert resp.status_code == status
    assert resp.json()["detail"]["stage"] == stage


def test_database_unavailable_is_503(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(
        profile_routes, "ingest_profile_bytes", _raising(psycopg.OperationalError("connection refused"))
    )
    resp = client.post("/profiles", headers=HEADERS, files={"file": ("cpu.pb.gz", b"data")})
    assert resp.status_code == 503


def test_gzip_that_inflates_past_limit_is_413(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(profile_routes, "MAX_UPLOAD_BYTES", 1024 * 1024)
    monkeypatch.setattr(profile_routes, "MAX_PROFILE_BYTES", 1024 * 1024)
    bomb = gzip.compress(b"\x00" * (8 * 1024 * 1024))
    assert len(bomb) < profile_routes.MAX_UPLOAD_BYTES

    # decoding fails before a database connection is needed
    resp = client.post("/profiles", headers=HEADERS, files={"file": ("bomb.pb.gz", bomb)})

    assert resp.status_code == 413
    assert resp.json()["detail"]["stage"] == "decode"
