# tests/test_segment_merger.py
from datetime import datetime, timezone

from conftest import at, event

from attendance_engine.schemas.participant import Segment
from attendance_engine.services.segment_merger import (
    clipped_duration_seconds,
    merge_overlapping,
    merge_segments,
    to_utc,
)


def test_rejoin_segments_are_kept_apart_and_summed():
    """
    A student who drops and reconnects gets two segments whose durations add up.
    """
    events = [
        event("a@example.com", 0, 20),
        event("A@Example.com", 30, 60),
    ]

    merged = merge_segments(events, {"a@example.com": "user-a"}, at(60))

    record = merged["user-a"]
    assert record.user_id == "user-a"
    assert len(record.segments) == 2
    assert record.total_duration_seconds == 50 * 60


def test_overlapping_and_touching_segments_are_unioned():
    events = [
        event("a@example.com", 0, 20),
        event("a@example.com", 10, 30),
        event("a@example.com", 30, 40),
    ]

    merged = merge_segments(events, {}, at(60))

    segments = merged["a@example.com"].segments
    assert len(segments) == 1
    assert segments[0].join_time == at(0)
    assert segments[0].leave_time == at(40)


def test_missing_leave_time_is_closed_at_actual_end():
    merged = merge_segments([event("a@example.com", 45, None)], {}, at(60))

    segments = merged["a@example.com"].segments
    assert segments[0].leave_time == at(60)
    assert merged["a@example.com"].total_duration_seconds == 15 * 60


def test_leave_before_join_is_skipped():
    events = [
        event("a@example.com", 30, 20),
        event("b@example.com", 0, 10),
    ]

    merged = merge_segments(events, {}, at(60))

    assert "a@example.com" not in merged
    assert "b@example.com" in merged


def test_zero_length_segments_are_dropped():
    merged = merge_segments([event("a@example.com", 15, 15)], {}, at(60))
    assert merged == {}


def test_emails_resolving_to_same_user_are_grouped():
    """
    A work address and an aliased personal address collapse into one record.
    """
    events = [
        event("jane@school.edu", 0, 25),
        event("jane.personal@gmail.com", 20, 50),
    ]
    resolved = {"jane@school.edu": "user-jane", "jane.personal@gmail.com": "user-jane"}

    merged = merge_segments(events, resolved, at(60))

    assert list(merged) == ["user-jane"]
    record = merged["user-jane"]
    assert record.email == "jane@school.edu"
    assert len(record.segments) == 1
    assert record.total_duration_seconds == 50 * 60


def test_guests_without_email_are_kept_apart_by_participant_id():
    events = [
        event(None, 0, 30, name="Guest", participant_id="p-1"),
        event(None, 0, 40, name="Guest", participant_id="p-2"),
    ]

    merged = merge_segments(events, {}, at(60))

    assert set(merged) == {"guest:p-1", "guest:p-2"}
    assert merged["guest:p-1"].user_id is None
    assert merged["guest:p-1"].provider_email == "Guest"


def test_merge_overlapping_is_order_independent():
    a = Segment(join_time=at(30), leave_time=at(50))
    b = Segment(join_time=at(0), leave_time=at(10))
    c = Segment(join_time=at(5), leave_time=at(12))

    merged = merge_overlapping([a, b, c])

    assert [(s.join_time, s.leave_time) for s in merged] == [
        (at(0), at(12)),
        (at(30), at(50)),
    ]


def test_clipped_duration_truncates_at_effective_end():
    """
    A segment from minute 40 to 70 with an effective end at 60 counts 20 minutes.
    """
    segments = [
        Segment(join_time=at(40), leave_time=at(70)),
        Segment(join_time=at(75), leave_time=at(80)),
    ]

    assert clipped_duration_seconds(segments, at(60)) == 20 * 60


def test_to_utc_treats_naive_values_as_utc():
    naive = datetime(2025, 3, 3, 10, 0)
    assert to_utc(naive) == datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)


def test_overlap_unioned_and_disjoint_preserved():
    events = [
        event("a@example.com", 0, 10),
        event("a@example.com", 8, 20),
        event("a@example.com", 25, 30),
    ]

    segments = merge_segments(events, {}, at(60))["a@example.com"].segments

    assert [(s.join_time, s.leave_time) for s in segments] == [
        (at(0), at(20)),
        (at(25), at(30)),
    ]
