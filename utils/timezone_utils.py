"""
Timestamp helpers shared by models, repositories and the sync functions.

All timestamps are stored in the database as UTC ISO-8601 strings.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a database timestamp into an aware datetime.

    Supabase returns ISO strings, sometimes with a trailing 'Z'. Naive values
    are assumed to be UTC.

    Args:
        value: ISO string, datetime or None

    Returns:
        Aware datetime, or None when value is empty or unparseable
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def age_minutes(value: Union[str, datetime, None], now: Optional[datetime] = None) -> int:
    """Whole minutes elapsed since `value` (0 when unknown)."""
    dt = parse_timestamp(value)
    if dt is None:
        return 0
    return int(((now or utc_now()) - dt).total_seconds() // 60)
