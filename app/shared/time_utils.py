"""Timestamp helpers. Everything is stored and compared in UTC."""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a Postgres/ISO timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for empty input.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
