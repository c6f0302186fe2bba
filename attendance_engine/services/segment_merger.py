# attendance_engine/services/segment_merger.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from attendance_engine.schemas.participant import (
    ParticipantRecord,
    RawParticipantEvent,
    Segment,
)
from attendance_engine.services.identity_resolver import normalize_email

logger = logging.getLogger(__name__)

GUEST_KEY_PREFIX = "guest:"


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC. Naive values are assumed to be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def participant_key(event: RawParticipantEvent, user_id: Optional[str]) -> str:
    """
    Grouping key for one raw event.

    Resolved user id first, then the normalized email. Guests without an
    email are kept apart by provider participant id (or display name).
    """
    if user_id:
        return user_id
    email = normalize_email(event.email)
    if email:
        return email
    return f"{GUEST_KEY_PREFIX}{event.participant_id or event.display_name or 'unknown'}"


def merge_overlapping(segments: Iterable[Segment]) -> List[Segment]:
    """
    Union overlapping or touching segments.

    Input order does not matter. Output is ascending by join time, with no
    two segments overlapping or touching, and zero-length segments removed.
    """
    ordered = sorted(
        (s for s in segments if s.leave_time > s.join_time),
        key=lambda s: (s.join_time, s.leave_time),
    )
    if not ordered:
        return []

    merged: List[Segment] = [Segment(join_time=ordered[0].join_time, leave_time=ordered[0].leave_time)]
    for current in ordered[1:]:
        last = merged[-1]
        if current.join_time <= last.leave_time:
            if current.leave_time > last.leave_time:
                last.leave_time = current.leave_time
        else:
            merged.append(Segment(join_time=current.join_time, leave_time=current.leave_time))
    return merged


def clipped_duration_seconds(segments: Iterable[Segment], effective_end: datetime) -> float:
    """
    Sum of segment durations with every segment truncated at `effective_end`.

    A segment that starts after the effective end contributes nothing.
    """
    total = 0.0
    for seg in segments:
        end = min(seg.leave_time, effective_end)
        if end > seg.join_time:
            total += (end - seg.join_time).total_seconds()
    return total


def merge_segments(
    events: Iterable[RawParticipantEvent],
    resolved: Mapping[str, Optional[str]],
    actual_end: datetime,
) -> Dict[str, ParticipantRecord]:
    """
    Collapse raw provider events into one ParticipantRecord per participant.

    Parameters
    ----------
    events:
        Raw join/leave rows for one meeting.
    resolved:
        Normalized email -> user id (None if unmatched), usually produced by
        IdentityResolver.resolve_many. Events whose emails resolve to the same
        user are grouped together.
    actual_end:
        Meeting end used to close events without a leave time.

    Rules
    -----
    - Events without a leave time are closed at `actual_end`.
    - Events whose leave time precedes their join time are skipped.
    - Overlapping or touching segments are unioned; zero-length ones dropped.
    - Participants left with no valid segment are not returned.
    """
    actual_end = to_utc(actual_end)
    ordered = sorted(events, key=lambda e: to_utc(e.join_time))

    records: Dict[str, ParticipantRecord] = {}
    candidates: Dict[str, List[Segment]] = {}

    for event in ordered:
        email = normalize_email(event.email)
        user_id = resolved.get(email) if email else None
        key = participant_key(event, user_id)

        join = to_utc(event.join_time)
        leave = to_utc(event.leave_time) if event.leave_time is not None else actual_end
        if leave < join:
            logger.warning(
                "Skipping participant event for %s: leave %s precedes join %s",
                email or event.display_name,
                leave.isoformat(),
                join.isoformat(),
            )
            continue

        record = records.get(key)
        if record is None:
            record = ParticipantRecord(
                key=key,
                user_id=user_id,
                email=email,
                display_name=event.display_name,
            )
            records[key] = record
            candidates[key] = []
        elif not record.email and email:
            record.email = email

        candidates[key].append(Segment(join_time=join, leave_time=leave))

    merged: Dict[str, ParticipantRecord] = {}
    for key, record in records.items():
        segments = merge_overlapping(candidates[key])
        if not segments:
            continue
        record.segments = segments
        merged[key] = record
    return merged
