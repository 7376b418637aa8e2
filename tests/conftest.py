"""Pytest configuration for the pprof-store test suite."""

from __future__ import annotations

import os

import pytest

# Integration runs work in their own schema; must be set before pprof_store is imported.
os.environ.setdefault("PPROF_SCHEMA", "pprof_test")


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests that need a PostgreSQL server reachable through DATABASE_URL.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested and a database is configured."""

    if config.getoption("--run-integration") and os.getenv("DATABASE_URL"):
        return

    skip_integration = pytest.mark.skip(
        reason="integration tests require --run-integration and DATABASE_URL",
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
