"""Ingest pprof CPU profiles into PostgreSQL."""

__version__ = "0.3.0"
