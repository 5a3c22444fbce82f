"""UTC timestamp helpers shared by the SQLite-backed stores.

All timestamps are stored as ``YYYY-MM-DDTHH:MM:SSZ`` strings so that
lexicographic comparison in SQL matches chronological order.
"""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime

DB_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def to_db(value: datetime) -> str:
    """Format *value* for storage, converting naive datetimes as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(DB_FORMAT)


def from_db(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, DB_FORMAT).replace(tzinfo=UTC)


def parse_message_date(value: str | None) -> datetime | None:
    """Parse an inbound message date in RFC 2822 or ISO 8601 form.

    Returns:
        An aware UTC datetime, or ``None`` when *value* is empty or
        unparseable.
    """
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
