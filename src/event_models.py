"""
Event data models for schedule extraction.
Defines RawEvent (untrusted, from the LLM) and Event (normalized, for ICS output).
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

DEFAULT_TITLE = "Work Schedule"


def _text(value: Any) -> Optional[str]:
    """Coerce a loosely-typed field to a non-empty string, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    return value if value.strip() else None


@dataclass
class RawEvent:
    """
    Raw event extracted from an image by the LLM.
    This is the unvalidated output of the vision model; any field may be missing.
    """
    start: Optional[str] = None
    end: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> "RawEvent":
        """Build a RawEvent from an arbitrary JSON value. Non-objects yield an empty record."""
        if not isinstance(record, dict):
            return cls()
        return cls(
            start=_text(record.get('start')),
            end=_text(record.get('end')),
            title=_text(record.get('title')),
            summary=_text(record.get('summary')),
            description=_text(record.get('description')),
            location=_text(record.get('location')),
        )

    def display_title(self) -> str:
        return self.title or self.summary or DEFAULT_TITLE


@dataclass(frozen=True)
class Event:
    """
    Normalized calendar event.
    start/end are naive datetimes holding the schedule's wall-clock time (floating time).
    """
    start: datetime
    end: datetime
    title: str = DEFAULT_TITLE
    description: str = ""
    location: str = ""

    def key(self) -> Tuple[datetime, datetime, str]:
        """Identity used for de-duplication across images."""
        return (self.start, self.end, self.title)

    def duration_minutes(self) -> int:
        """Get event duration in minutes."""
        delta = self.end - self.start
        return int(delta.total_seconds() / 60)

    def shifted(self, days: int) -> "Event":
        """Copy of this event moved by a whole number of days."""
        offset = timedelta(days=days)
        return replace(self, start=self.start + offset, end=self.end + offset)
