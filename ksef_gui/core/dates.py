from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

from ksef_gui.domain import ValidationError

_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%d-%m-%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M:%S",
)

_DAYS_AGO_RE = re.compile(r"^(\d+)\s*days?\s*ago$")
_SHORT_OFFSET_RE = re.compile(r"^-(\d+)\s*d$")


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _first_of_month(value: date) -> date:
    return value.replace(day=1)


def parse_date(value: str | None, *, now: datetime | None = None) -> datetime:
    """Normalise a free-form date string into a naive local datetime.

    Accepts ISO dates and datetimes, a handful of common day-first and
    slash-separated layouts, and the relative keywords used by the UI
    (``today``, ``yesterday``, ``thismonth``, ``lastmonth``, ``N days ago``).
    """

    raw = (value or "").strip()
    if not raw:
        raise ValidationError("Date is required")

    current = now or datetime.now()
    today = current.date()
    lowered = raw.lower().replace("_", "").replace(" ", "")

    if lowered == "today":
        return _start_of_day(today)
    if lowered == "yesterday":
        return _start_of_day(today - timedelta(days=1))
    if lowered == "thismonth":
        return _start_of_day(_first_of_month(today))
    if lowered == "lastmonth":
        previous = _first_of_month(today) - timedelta(days=1)
        return _start_of_day(_first_of_month(previous))

    spaced = " ".join(raw.lower().split())
    match = _DAYS_AGO_RE.match(spaced) or _SHORT_OFFSET_RE.match(spaced)
    if match:
        return _start_of_day(today - timedelta(days=int(match.group(1))))

    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    if parsed is not None:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed

    for fmt in _FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue

    raise ValidationError(f"Could not parse date string: {raw}")
