"""
Event normalizer for converting raw LLM records to Event objects.
Handles date/time parsing to floating (timezone-less) wall-clock datetimes,
plus the cross-image merge: de-duplication, sorting and weekly expansion.
"""

import re
from datetime import datetime
from typing import Any, Iterable, List, Optional
from dateutil import parser as dateutil_parser

from src.event_models import Event, RawEvent
from src.logging_helper import Log

MAX_REPEAT_WEEKS = 52

# Literal wall-clock prefix; anything after it (fractions, Z, +hh:mm) is ignored.
_LOCAL_DATETIME_RE = re.compile(
    r'^\s*(\d{4})-(\d{2})-(\d{2})[T ](\d{2}):(\d{2})(?::(\d{2}))?'
)


def _parse_strict(value: str) -> Optional[datetime]:
    match = _LOCAL_DATETIME_RE.match(value)
    if match is None:
        return None
    year, month, day, hour, minute, second = match.groups()
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second or 0)
    )


def _parse_fallback(value: str) -> datetime:
    # Dates without a year/month/day borrow them from today, at midnight.
    now = datetime.now()
    default_dt = datetime(now.year, now.month, now.day)
    dt = dateutil_parser.parse(value, default=default_dt)
    if dt.tzinfo is not None:
        # Keep the displayed wall-clock time; never convert between zones.
        dt = dt.replace(tzinfo=None)
    return dt


def parse_local_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a date/time string into a naive datetime holding its wall-clock fields.

    Strings that start with YYYY-MM-DDTHH:MM[:SS] are read component by component,
    ignoring any timezone suffix. Anything else goes through dateutil as a
    best-effort fallback.

    Args:
        value: Date/time string from the LLM

    Returns:
        Naive datetime, or None if the string cannot be parsed
    """
    if not value:
        return None

    try:
        if _LOCAL_DATETIME_RE.match(value):
            dt = _parse_strict(value)
        else:
            dt = _parse_fallback(value)
    except (ValueError, OverflowError) as e:
        Log.warn(f"Date parsing error for '{value}': {e}")
        return None

    # Strip microseconds to avoid precision issues and cleaner logs
    if dt is not None and dt.microsecond != 0:
        dt = dt.replace(microsecond=0)
    return dt


def coerce_records(payload: Any) -> list:
    """
    Pull the list of event records out of an LLM response.

    Accepts a bare array, {"events": [...]} or {"data": [...]}.
    Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for field in ('events', 'data'):
            records = payload.get(field)
            if isinstance(records, list):
                return records
    return []


def normalize_record(record: Any) -> Optional[Event]:
    """Normalize a single raw record, or return None if it must be dropped."""
    raw = RawEvent.from_record(record)

    start = parse_local_datetime(raw.start)
    end = parse_local_datetime(raw.end)
    if start is None or end is None:
        reason = "missing_time" if raw.start is None or raw.end is None else "parse_error"
        Log.kv({
            "stage": "normalize",
            "result": "skipped",
            "reason": reason,
            "start": raw.start,
            "end": raw.end
        })
        return None

    return Event(
        start=start,
        end=end,
        title=raw.display_title(),
        description=raw.description or "",
        location=raw.location or ""
    )


def normalize(raw_events: Iterable[Any]) -> List[Event]:
    """
    Normalize a batch of raw records into Events, preserving input order.
    Records whose start or end cannot be parsed are skipped.
    """
    events = []
    skipped = 0
    for record in raw_events:
        event = normalize_record(record)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    Log.kv({"stage": "normalize", "result": "success", "events": len(events), "skipped": skipped})
    return events


def normalize_payload(payload: Any) -> List[Event]:
    """Normalize a whole LLM response (array, {"events"} or {"data"})."""
    return normalize(coerce_records(payload))


def dedupe_events(events: Iterable[Event]) -> List[Event]:
    """Drop events whose (start, end, title) was already seen, keeping the first."""
    seen = set()
    unique_events = []
    for event in events:
        key = event.key()
        if key not in seen:
            seen.add(key)
            unique_events.append(event)
    return unique_events


def sort_events(events: Iterable[Event]) -> List[Event]:
    """Stable sort by start time."""
    return sorted(events, key=lambda event: event.start)


def merge_events(batches: Iterable[Iterable[Event]]) -> List[Event]:
    """
    Combine per-image event lists into one de-duplicated, time-ordered list.
    """
    combined = [event for batch in batches for event in batch]
    merged = sort_events(dedupe_events(combined))
    Log.kv({
        "stage": "merge",
        "input": len(combined),
        "output": len(merged),
        "duplicates": len(combined) - len(merged)
    })
    return merged


def expand_weekly(events: Iterable[Event], weeks: int) -> List[Event]:
    """
    Repeat every event once a week for `weeks` weeks (the original week included).

    Raises:
        ValueError: if weeks is outside 1..52
    """
    if not 1 <= weeks <= MAX_REPEAT_WEEKS:
        raise ValueError(f"weeks must be between 1 and {MAX_REPEAT_WEEKS}, got {weeks}")

    expanded = [event.shifted(7 * week) for event in events for week in range(weeks)]
    return merge_events([expanded])
