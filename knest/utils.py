"""Utility helpers shared across the client core."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from . import config
from .errors import DecodeError


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def parse_timestamp(
    value: Optional[str],
    formats: Sequence[str] = config.TIMESTAMP_FORMATS,
) -> datetime:
    """Parse a server timestamp, trying each known layout in order.

    Naive results are taken to be UTC. A value matching none of the layouts is
    a DecodeError; it is never replaced by the current time.
    """

    if not value:
        raise DecodeError("Missing timestamp")
    for layout in formats:
        try:
            parsed = datetime.strptime(value, layout)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise DecodeError(f"Invalid date format: {value}")


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
