"""Shared helpers for the media ingest jobs (R2 storage, NATS consumer, errors)."""
