"""Data models for the profile and daily-log documents.

Field names are snake_case in Python and camelCase in stored documents so
existing data written by other clients of the same store stays readable.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime, time, timezone
from typing import Any

# Python attribute -> stored document field
PROFILE_FIELDS: dict[str, str] = {
    "goals": "goals",
    "dietary_restrictions": "dietaryRestrictions",
    "exercise_preferences": "exercisePreferences",
    "genetic_predispositions": "geneticPredispositions",
    "medical_conditions": "medicalConditions",
}

LOG_FIELDS: dict[str, str] = {
    "date": "date",
    "heart_rate": "heartRate",
    "sleep_hours": "sleepHours",
    "activity_minutes": "activityMinutes",
    "mood": "mood",
    "symptoms": "symptoms",
    "timestamp": "timestamp",
}


@dataclass
class Profile:
    """Self-reported wellness profile, one per identity.

    ``None`` means the field was never written; an absent document is
    equivalent to a profile with every field ``None``.
    """

    goals: str | None = None
    dietary_restrictions: str | None = None
    exercise_preferences: str | None = None
    genetic_predispositions: str | None = None  # simulated / self-reported
    medical_conditions: str | None = None  # simulated / self-reported

    def is_empty(self) -> bool:
        """True when no field carries any text."""
        return not any((getattr(self, name) or "").strip() for name in PROFILE_FIELDS)

    def to_document(self) -> dict[str, str]:
        """Stored representation; fields that are ``None`` are left out."""
        return {
            stored: getattr(self, name)
            for name, stored in PROFILE_FIELDS.items()
            if getattr(self, name) is not None
        }

    @classmethod
    def from_document(cls, data: dict[str, Any] | None) -> Profile:
        """Build a Profile from stored fields, ignoring unknown keys."""
        if not data:
            return cls()
        values: dict[str, str | None] = {}
        for name, stored in PROFILE_FIELDS.items():
            value = data.get(stored)
            values[name] = None if value is None else str(value)
        return cls(**values)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Profile:
        """Build a partial Profile from snake_case or stored (camelCase) keys.

        Raises:
            ValueError: On keys that are not profile fields.
        """
        by_stored = {stored: name for name, stored in PROFILE_FIELDS.items()}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = key if key in PROFILE_FIELDS else by_stored.get(key)
            if name is None:
                raise ValueError(f"Unknown profile field: {key!r}")
            values[name] = None if value is None else str(value)
        return cls(**values)


@dataclass
class LogEntry:
    """A single daily health log. Immutable once written."""

    date: date | None = None
    heart_rate: int | None = None
    sleep_hours: float | None = None
    activity_minutes: int | None = None
    mood: str | None = None
    symptoms: str | None = None
    timestamp: datetime | None = None
    id: str = ""

    def to_document(self) -> dict[str, Any]:
        """Stored representation.

        ``date`` is stored as the UTC-midnight instant of the calendar date;
        ``timestamp`` as an ISO-8601 instant. Unset optional fields are omitted.
        """
        doc: dict[str, Any] = {}
        if self.date is not None:
            doc["date"] = date_to_instant(self.date)
        for name, stored in LOG_FIELDS.items():
            if name in ("date", "timestamp"):
                continue
            value = getattr(self, name)
            if value is not None:
                doc[stored] = value
        if self.timestamp is not None:
            doc["timestamp"] = _aware(self.timestamp).isoformat()
        return doc

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any] | None) -> LogEntry:
        """Build a LogEntry from a stored document; unreadable values become ``None``."""
        data = data or {}
        return cls(
            id=doc_id,
            date=coerce_date(data.get("date")),
            heart_rate=_as_int(data.get("heartRate")),
            sleep_hours=_as_float(data.get("sleepHours")),
            activity_minutes=_as_int(data.get("activityMinutes")),
            mood=_as_text(data.get("mood")),
            symptoms=_as_text(data.get("symptoms")),
            timestamp=_as_datetime(data.get("timestamp")),
        )

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def date_to_instant(value: date) -> str:
    """Canonical stored form of a calendar date: its UTC-midnight instant."""
    if isinstance(value, datetime):
        value = _aware(value).date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc).isoformat()


def coerce_date(value: Any) -> date | None:
    """Convert a stored or user-supplied date value to a calendar date.

    Accepts ``date``, ``datetime`` (UTC date taken), ISO date strings
    (``2024-03-01``) and ISO instant strings. Anything else yields ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _aware(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        parsed = _as_datetime(text)
        return parsed.date() if parsed is not None else None
    return None


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return _aware(value)
    if isinstance(value, str) and value:
        try:
            return _aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
