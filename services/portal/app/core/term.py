"""
Academic term classification.

Dates are bucketed into four inclusive ranges:

- Winter: Dec 15 -> Jan 20 (labelled by the January year)
- Spring: Jan 21 -> May 20
- Summer: May 21 -> Aug 20
- Fall:   Aug 21 -> Dec 14
"""
import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

DateLike = Union[str, date, datetime, None]

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Formats tried after ISO-8601 for free-form input
_FALLBACK_FORMATS = (
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def _calendar_date(year: int, month: int, day: int) -> date:
    """Build a date from possibly out-of-range fields, rolling over like a calendar."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1) + timedelta(days=day - 1)


def parse_date(value: DateLike) -> Optional[date]:
    """Parse a date-like value into a calendar date, or None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    # Bare YYYY-MM-DD is read as calendar fields, never through a timezone
    if _ISO_DATE.match(text):
        year, month, day = (int(part) for part in text.split("-"))
        try:
            return _calendar_date(year, month, day)
        except (ValueError, OverflowError):
            return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def term_for_date(value: DateLike) -> str:
    """
    Return the academic term label for a date, e.g. "Fall 2024".

    Missing or unparseable input yields an empty string; this never raises.
    """
    d = parse_date(value)
    if d is None:
        return ""

    month, day, year = d.month, d.day, d.year

    if (month == 12 and day >= 15) or (month == 1 and day <= 20):
        return f"Winter {year + 1 if month == 12 else year}"

    if (month == 1 and day >= 21) or 2 <= month <= 4 or (month == 5 and day <= 20):
        return f"Spring {year}"

    if (month == 5 and day >= 21) or month in (6, 7) or (month == 8 and day <= 20):
        return f"Summer {year}"

    return f"Fall {year}"
