"""
ICS Generator for creating iCalendar (.ics) documents.
Generates RFC5545-compliant calendars with floating (timezone-less) event times.
"""

import hashlib
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union
from dateutil import tz as dateutil_tz

from src.event_models import Event
from src.logging_helper import Log

ICS_CONTENT_TYPE = "text/calendar"
ICS_FILENAME = "schedule.ics"
CALENDAR_NAME = "Work Schedule"
PRODID = "-//Schedule to Calendar//Schedule Converter//EN"
SUPPORTED_FORMATS = ("outlook", "apple")

MAX_LINE_OCTETS = 75
CRLF = "\r\n"


def escape_text(text: Optional[str]) -> str:
    """
    Escape text for iCalendar TEXT values (RFC5545).
    Escapes backslashes, semicolons, commas, and newlines.

    Args:
        text: Text to escape

    Returns:
        Escaped text safe for iCalendar
    """
    if text is None:
        return ""

    # Replace backslashes first (before other replacements)
    text = text.replace('\\', '\\\\')
    # Escape semicolons
    text = text.replace(';', '\\;')
    # Escape commas
    text = text.replace(',', '\\,')
    # Escape newlines
    text = text.replace('\r\n', '\n')
    text = text.replace('\n', '\\n')
    text = text.replace('\r', '')
    return text


def fold_line(line: str) -> str:
    """
    Fold a content line to at most 75 octets per physical line.
    Continuation lines start with a single space; UTF-8 characters are never split.
    """
    if len(line.encode('utf-8')) <= MAX_LINE_OCTETS:
        return line

    parts = []
    current = ""
    current_octets = 0
    for char in line:
        char_octets = len(char.encode('utf-8'))
        if current_octets + char_octets > MAX_LINE_OCTETS:
            parts.append(current)
            current = " " + char
            current_octets = 1 + char_octets
        else:
            current += char
            current_octets += char_octets
    parts.append(current)
    return CRLF.join(parts)


def format_floating(dt: datetime) -> str:
    """
    Format a wall-clock datetime as floating iCalendar time (YYYYMMDDTHHMMSS, no Z).
    Any tzinfo is ignored; the fields are written as they are.
    """
    return f"{dt.year:04d}{dt.month:02d}{dt.day:02d}T{dt.hour:02d}{dt.minute:02d}{dt.second:02d}"


def _format_ical_datetime(dt: datetime) -> str:
    """
    Format datetime to iCalendar format (UTC).

    Args:
        dt: UTC datetime object

    Returns:
        Formatted datetime string (YYYYMMDDTHHMMSSZ)
    """
    return dt.strftime('%Y%m%dT%H%M%SZ')


def _event_uid(event: Event, index: int) -> str:
    uid_string = f"{index}_{format_floating(event.start)}_{format_floating(event.end)}_{event.title}"
    return hashlib.md5(uid_string.encode('utf-8')).hexdigest() + "@schedule-ics.local"


def _event_lines(event: Event, index: int, dtstamp: str) -> List[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{_event_uid(event, index)}",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{format_floating(event.start)}",
        f"DTEND:{format_floating(event.end)}",
        f"SUMMARY:{escape_text(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    lines.append("END:VEVENT")
    return lines


def generate_ics(events: Iterable[Event], format_hint: str = "apple") -> str:
    """
    Generate an ICS document for the given events.

    Both supported formats currently produce the same document.

    Args:
        events: Normalized events, already de-duplicated and sorted
        format_hint: "outlook" or "apple"

    Returns:
        ICS document text with CRLF line endings

    Raises:
        ValueError: if format_hint is not a supported format
    """
    if format_hint not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported calendar format: {format_hint}")

    Log.section("ICS Generator")
    events = list(events)
    dtstamp = _format_ical_datetime(datetime.now(dateutil_tz.tzutc()))

    ics_lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(CALENDAR_NAME)}",
    ]
    for index, event in enumerate(events):
        ics_lines.extend(_event_lines(event, index, dtstamp))
    ics_lines.append("END:VCALENDAR")

    ics_content = CRLF.join(fold_line(line) for line in ics_lines) + CRLF

    Log.info(f"Generated calendar with {len(events)} event(s)")
    Log.kv({
        "stage": "ics",
        "result": "success",
        "format": format_hint,
        "events": len(events),
        "bytes": len(ics_content.encode('utf-8'))
    })
    return ics_content


serialize = generate_ics


def write_ics(events: Iterable[Event], path: Union[str, Path], format_hint: str = "apple") -> Path:
    """Generate an ICS document and write it to `path`. Returns the path written."""
    ics_path = Path(path)
    ics_content = generate_ics(events, format_hint)
    # newline='' keeps the CRLF terminators exactly as generated
    with open(ics_path, 'w', encoding='utf-8', newline='') as f:
        f.write(ics_content)
    Log.info(f"ICS file written: {ics_path}")
    Log.kv({"stage": "ics", "action": "written", "ics_path": str(ics_path)})
    return ics_path
