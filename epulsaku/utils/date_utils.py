"""Date manipulation utilities"""

import calendar
from datetime import datetime, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Timezone-aware current instant (the default injected clock)"""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize an instant as UTC ISO-8601 with millisecond precision and a Z suffix"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp; None when missing or malformed. Naive values are UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-month subtraction; the day is clamped to the target month's length (Mar 31 - 1 = Feb 28/29)"""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calendar_fields(moment: datetime, tz_name: str) -> Dict[str, int]:
    """Derived reporting fields; day_of_week counts from Sunday = 0"""
    local = moment.astimezone(ZoneInfo(tz_name))
    return {
        "transaction_year": local.year,
        "transaction_month": local.month,
        "transaction_day_of_month": local.day,
        "transaction_day_of_week": (local.weekday() + 1) % 7,
        "transaction_hour": local.hour,
    }


def format_local(moment: datetime, tz_name: str) -> str:
    """Human-readable local time used in bot messages, e.g. 14/05/2024 14.30.15 WITA"""
    local = moment.astimezone(ZoneInfo(tz_name))
    return f"{local.strftime('%d/%m/%Y %H.%M.%S')} {local.tzname()}"


def generate_ref_id(moment: datetime, counter: int, tz_name: str) -> str:
    """Reference id in the form YYYYMMDDHHMMSS-NNN"""
    local = moment.astimezone(ZoneInfo(tz_name))
    return f"{local.strftime('%Y%m%d%H%M%S')}-{counter:03d}"
