"""Common helpers for file-backed storage."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def backup_stamp(moment: datetime | None = None) -> str:
    """Lexicographically sortable UTC stamp used in backup file names."""

    return (moment or utc_now()).astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")
