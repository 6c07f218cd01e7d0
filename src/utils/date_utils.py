"""
Date handling utilities for CRM synchronization.

Parses email header dates into timezone-aware datetimes and converts
between datetimes and the human formats written to the sheet
("11 Jan 2025", "2:30 PM").
"""

from datetime import date, datetime, time
import email.utils
import logging
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")

DISPLAY_TIME_FORMAT = "%I:%M %p"

# Accepted when reading dates back from the sheet
SHEET_DATE_FORMATS = [
    "%d %b %Y",
    "%d %B %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%b %d, %Y",
]

SHEET_TIME_FORMATS = [
    "%I:%M %p",
    "%I %p",
    "%H:%M",
]


class DateParsingError(Exception):
    """Custom exception for date parsing failures."""
    pass


def parse_email_date(date_str: str) -> Tuple[datetime, bool]:
    """
    Parse email date strings with comprehensive format handling.

    Tries RFC 2822 first, then ISO 8601, then a handful of common
    variations. Naive results are assumed to be UTC.

    Args:
        date_str: Date string to parse

    Returns:
        Tuple containing:
        - Parsed datetime object (now, in UTC, on failure)
        - Boolean indicating parsing success
    """
    if not date_str:
        logger.error("Empty date string provided")
        return datetime.now(UTC), False

    try:
        email_tuple = email.utils.parsedate_tz(date_str)
        if email_tuple:
            timestamp = email.utils.mktime_tz(email_tuple)
            return datetime.fromtimestamp(timestamp, UTC), True

        try:
            parsed_date = datetime.fromisoformat(date_str)
            if not parsed_date.tzinfo:
                parsed_date = parsed_date.replace(tzinfo=UTC)
            return parsed_date, True
        except ValueError:
            pass

        for fmt in [
            "%Y-%m-%d %H:%M:%S %z",
            "%Y-%m-%d %H:%M:%S",
            "%a, %d %b %Y %H:%M:%S %z",
            "%a, %d %b %Y %H:%M:%S"
        ]:
            try:
                parsed = datetime.strptime(date_str, fmt)
                if not parsed.tzinfo:
                    parsed = parsed.replace(tzinfo=UTC)
                return parsed, True
            except ValueError:
                continue

        raise DateParsingError(f"Unable to parse date string: {date_str}")

    except Exception as e:
        logger.error(f"Error parsing date string '{date_str}': {str(e)}")
        return datetime.now(UTC), False


def parse_event_time(value: str) -> Optional[datetime]:
    """
    Parse a calendar start value: RFC 3339 dateTime or all-day ``YYYY-MM-DD``.

    All-day events are anchored at midnight UTC.
    """
    if not value:
        return None
    try:
        if len(value) == 10:
            return datetime.combine(date.fromisoformat(value), time.min, tzinfo=UTC)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if not parsed.tzinfo:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    except ValueError:
        logger.warning(f"Unparseable calendar time: {value}")
        return None


def format_meeting_date(value) -> str:
    """
    Format a date as "11 Jan 2025".

    Accepts a date, a datetime, or an ISO/sheet date string. Strings that
    cannot be parsed are returned unchanged.
    """
    if not value:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return f"{value.day} {value.strftime('%b %Y')}"
    parsed = parse_display_date(str(value))
    if parsed is None:
        return str(value)
    return f"{parsed.day} {parsed.strftime('%b %Y')}"


def format_meeting_time(value: Optional[datetime]) -> str:
    """Format a datetime as "2:30 PM" in its own timezone."""
    if not value:
        return ""
    return value.strftime(DISPLAY_TIME_FORMAT).lstrip("0")


def parse_display_date(value: str) -> Optional[date]:
    """Parse a date as written in the sheet. Returns None when unparseable."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass
    for fmt in SHEET_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_display_time(value: str) -> Optional[time]:
    """Parse a time as written in the sheet. Returns None when unparseable."""
    value = (value or "").strip().upper()
    if not value:
        return None
    for fmt in SHEET_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    return None
