"""Timestamp helper shared by the models, sessions and aggregation."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the naive ``DateTime`` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
