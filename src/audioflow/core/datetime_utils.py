"""UTC timestamps as stored in the state database (ISO-8601 strings)."""

from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso_timestamp(timestamp: str) -> datetime:
    """Parse a stored timestamp into an aware datetime.

    A trailing "Z" is accepted, and a timestamp without an offset is taken
    to be UTC.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_duration_seconds(started_at: str, ended_at: str) -> int | None:
    """Whole seconds between two stored timestamps, or None if unparseable."""
    try:
        elapsed = parse_iso_timestamp(ended_at) - parse_iso_timestamp(started_at)
    except (TypeError, ValueError):
        return None
    return int(elapsed.total_seconds())
