"""Resolution of search parameters into remote query filters."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ksef_gui.core.dates import parse_date
from ksef_gui.domain import SearchQuery, ValidationError

SUBJECT_TYPES: tuple[str, ...] = ("Subject1", "Subject2", "Subject3", "SubjectAuthorized")
DATE_TYPES: tuple[str, ...] = ("Issue", "Invoicing", "PermanentStorage")

SUBJECT_ALIASES: dict[str, str] = {
    "1": "Subject1",
    "seller": "Subject1",
    "sprzedawca": "Subject1",
    "2": "Subject2",
    "buyer": "Subject2",
    "nabywca": "Subject2",
    "3": "Subject3",
    "4": "SubjectAuthorized",
}


def _match_enum(value: str, choices: tuple[str, ...]) -> str | None:
    lowered = value.strip().lower()
    for choice in choices:
        if choice.lower() == lowered:
            return choice
    return None


def resolve_subject_type(value: str | None) -> str:
    raw = (value or "").strip()
    resolved = _match_enum(raw, SUBJECT_TYPES) or SUBJECT_ALIASES.get(raw.lower())
    if resolved is None:
        raise ValidationError(f"Invalid SubjectType: {value}")
    return resolved


def resolve_date_type(value: str | None) -> str:
    resolved = _match_enum(value or "", DATE_TYPES)
    if resolved is None:
        raise ValidationError(f"Invalid DateType: {value}")
    return resolved


@dataclass(slots=True, frozen=True)
class QueryFilters:
    subject_type: str
    date_type: str
    date_from: datetime
    date_to: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        date_range: dict[str, Any] = {
            "dateType": self.date_type,
            "from": self.date_from.isoformat(),
        }
        if self.date_to is not None:
            date_range["to"] = self.date_to.isoformat()
        return {"subjectType": self.subject_type, "dateRange": date_range}


def build_filters(query: SearchQuery, *, now: datetime | None = None) -> QueryFilters:
    """Validate ``query`` and normalise its dates. Raises before any I/O."""

    subject_type = resolve_subject_type(query.subject_type)
    date_type = resolve_date_type(query.date_type)
    date_from = parse_date(query.date_from, now=now)
    date_to = parse_date(query.date_to, now=now) if query.date_to else None
    return QueryFilters(
        subject_type=subject_type,
        date_type=date_type,
        date_from=date_from,
        date_to=date_to,
    )
