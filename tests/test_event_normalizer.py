"""
Unit tests for the event normalizer: date parsing, payload coercion,
record normalization, merge and weekly expansion.
"""

import time
from datetime import datetime

import pytest

from src.event_models import DEFAULT_TITLE, Event
from src.event_normalizer import (
    coerce_records,
    dedupe_events,
    expand_weekly,
    merge_events,
    normalize,
    normalize_payload,
    parse_local_datetime,
    sort_events,
)


class TestParseLocalDatetime:
    """Tests for parse_local_datetime."""

    def test_strict_pattern(self):
        assert parse_local_datetime("2026-01-10T15:00:00") == datetime(2026, 1, 10, 15, 0, 0)

    @pytest.mark.parametrize("value", [
        "2026-01-10T15:00:00Z",
        "2026-01-10T15:00:00+05:00",
        "2026-01-10T15:00:00-08:00",
        "2026-01-10T15:00:00.123Z",
    ])
    def test_zone_suffix_is_ignored(self, value):
        """Offsets are stripped, never converted."""
        dt = parse_local_datetime(value)
        assert dt == datetime(2026, 1, 10, 15, 0, 0)
        assert dt.tzinfo is None

    def test_strict_without_seconds(self):
        assert parse_local_datetime("2026-01-10T09:30") == datetime(2026, 1, 10, 9, 30)

    def test_strict_out_of_range_is_rejected(self):
        assert parse_local_datetime("2026-13-40T25:00:00") is None

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="requires time.tzset")
    def test_independent_of_process_timezone(self, monkeypatch):
        results = []
        for zone in ("UTC", "America/Los_Angeles", "Asia/Kolkata"):
            monkeypatch.setenv("TZ", zone)
            time.tzset()
            results.append(parse_local_datetime("2026-01-10T15:00:00Z"))
        monkeypatch.delenv("TZ", raising=False)
        time.tzset()
        assert results == [datetime(2026, 1, 10, 15, 0, 0)] * 3

    def test_fallback_natural_format(self):
        assert parse_local_datetime("January 10, 2026 3:00 PM") == datetime(2026, 1, 10, 15, 0)

    def test_fallback_drops_timezone_keeping_wall_clock(self):
        dt = parse_local_datetime("Jan 10 2026 15:00 +0500")
        assert dt == datetime(2026, 1, 10, 15, 0)
        assert dt.tzinfo is None

    def test_fallback_truncates_microseconds(self):
        assert parse_local_datetime("2026/01/10 15:00:00.999") == datetime(2026, 1, 10, 15, 0, 0)

    @pytest.mark.parametrize("value", [None, "", "not a date", "sometime next week"])
    def test_unparseable(self, value):
        assert parse_local_datetime(value) is None


class TestCoerceRecords:
    """Tests for coerce_records."""

    def test_bare_array(self):
        assert coerce_records([{"a": 1}]) == [{"a": 1}]

    def test_events_field(self):
        assert coerce_records({"events": [1, 2]}) == [1, 2]

    def test_data_field(self):
        assert coerce_records({"data": [3]}) == [3]

    @pytest.mark.parametrize("payload", [None, "text", 42, {}, {"events": "nope"}, {"items": []}])
    def test_other_shapes_are_empty(self, payload):
        assert coerce_records(payload) == []


class TestNormalize:
    """Tests for normalize and normalize_payload."""

    def test_example_record(self):
        events = normalize([
            {"start": "2026-01-10T15:00:00", "end": "2026-01-10T22:00:00", "title": "Coverage"}
        ])
        assert len(events) == 1
        assert events[0].start.hour == 15
        assert events[0].end.hour == 22
        assert events[0].title == "Coverage"
        assert events[0].description == ""
        assert events[0].location == ""

    def test_invalid_records_are_dropped(self):
        records = [
            {"start": "2026-01-10T09:00:00", "end": "2026-01-10T17:00:00"},
            {"start": "garbage", "end": "2026-01-10T17:00:00"},
            {"start": "2026-01-11T09:00:00"},
            "not an object",
            None,
            {"start": "2026-01-12T09:00:00", "end": "2026-01-12T17:00:00"},
        ]
        events = normalize(records)
        assert [e.start.day for e in events] == [10, 12]

    def test_title_fallbacks(self):
        events = normalize([
            {"start": "2026-01-10T09:00:00", "end": "2026-01-10T10:00:00", "title": "A", "summary": "B"},
            {"start": "2026-01-10T09:00:00", "end": "2026-01-10T10:00:00", "title": "", "summary": "B"},
            {"start": "2026-01-10T09:00:00", "end": "2026-01-10T10:00:00"},
        ])
        assert [e.title for e in events] == ["A", "B", DEFAULT_TITLE]

    def test_end_before_start_passes_through(self):
        events = normalize([{"start": "2026-01-10T22:00:00", "end": "2026-01-10T06:00:00"}])
        assert len(events) == 1
        assert events[0].end < events[0].start

    def test_preserves_input_order(self):
        events = normalize([
            {"start": "2026-01-12T09:00:00", "end": "2026-01-12T10:00:00"},
            {"start": "2026-01-10T09:00:00", "end": "2026-01-10T10:00:00"},
        ])
        assert [e.start.day for e in events] == [12, 10]

    @pytest.mark.parametrize("payload", [None, [], {}, "oops", {"events": None}])
    def test_empty_or_non_array_payload(self, payload):
        assert normalize_payload(payload) == []

    def test_payload_with_events_field(self):
        events = normalize_payload({"events": [
            {"start": "2026-02-01T09:00:00", "end": "2026-02-01T17:00:00", "title": "Shift",
             "description": "8h", "location": "Store 12"}
        ]})
        assert events == [Event(
            start=datetime(2026, 2, 1, 9), end=datetime(2026, 2, 1, 17),
            title="Shift", description="8h", location="Store 12"
        )]


class TestMerge:
    """Tests for dedupe_events, sort_events and merge_events."""

    def test_duplicates_collapse_keeping_first(self, create_event):
        first = create_event(description="from image 1", location="A")
        second = create_event(description="from image 2", location="B")
        assert dedupe_events([first, second]) == [first]

    def test_different_title_is_not_duplicate(self, create_event):
        events = [create_event(title="Coverage"), create_event(title="Task")]
        assert len(dedupe_events(events)) == 2

    def test_different_end_is_not_duplicate(self, create_event):
        events = [create_event(), create_event(end=datetime(2026, 1, 10, 23))]
        assert len(dedupe_events(events)) == 2

    def test_sort_is_stable(self, create_event):
        a = create_event(title="A")
        b = create_event(title="B")
        early = create_event(start=datetime(2026, 1, 9, 8), title="Early")
        assert sort_events([a, b, early]) == [early, a, b]

    def test_merge_across_images(self):
        record = {"start": "2026-02-01T09:00:00", "end": "2026-02-01T17:00:00", "title": "Shift"}
        merged = merge_events([normalize([record]), normalize([dict(record)])])
        assert len(merged) == 1

    def test_merge_sorts_any_permutation(self, create_event):
        events = [create_event(start=datetime(2026, 1, day, 9), end=datetime(2026, 1, day, 17))
                  for day in (5, 1, 3, 2, 4)]
        merged = merge_events([events[:2], events[2:]])
        starts = [e.start for e in merged]
        assert starts == sorted(starts)


class TestExpandWeekly:
    """Tests for expand_weekly."""

    def test_copies_offset_by_weeks(self, create_event):
        expanded = expand_weekly([create_event()], 3)
        assert [e.start for e in expanded] == [
            datetime(2026, 1, 10, 15), datetime(2026, 1, 17, 15), datetime(2026, 1, 24, 15)
        ]
        assert all(e.duration_minutes() == 420 for e in expanded)

    def test_single_week_is_identity(self, create_event):
        event = create_event()
        assert expand_weekly([event], 1) == [event]

    def test_overlapping_copies_are_deduplicated_and_sorted(self, create_event):
        week1 = create_event()
        week2 = week1.shifted(7)
        expanded = expand_weekly([week1, week2], 2)
        assert [e.start.day for e in expanded] == [10, 17, 24]

    @pytest.mark.parametrize("weeks", [0, 53, -1])
    def test_rejects_out_of_range(self, create_event, weeks):
        with pytest.raises(ValueError):
            expand_weekly([create_event()], weeks)
