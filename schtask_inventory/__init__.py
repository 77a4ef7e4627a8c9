"""Scheduled task inventory snapshots as NDJSON."""

__version__ = "0.1.0"
