# attendance_engine/services/cliff_detector.py
"""
Mass-departure ("cliff") detection.

When an instructor announces the end of a session, most students leave
together. The onset of that cluster becomes the effective session end so
students are not penalized for leaving when told to. Ordinary staggered
attrition must not trigger it.

Pure computation over in-memory data: no I/O, no shared state.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, List

from attendance_engine.schemas.cliff import (
    CliffConfidence,
    CliffDetectionResult,
    CliffRejectionReason,
    HistogramBucket,
)
from attendance_engine.schemas.participant import ParticipantRecord
from attendance_engine.services.segment_merger import to_utc

WINDOW_SIZE_MINUTES = 10.0
STAYER_THRESHOLD_MINUTES = 2.0
HISTOGRAM_BUCKET_MINUTES = 5

MIN_DEPARTURES = 3
MIN_PARTICIPANTS = 5
LARGE_SESSION_PARTICIPANTS = 20
SCAN_START_FRACTION = 0.5

MIN_CLUSTER_RATIO_SMALL = 0.30
MIN_CLUSTER_RATIO_LARGE = 0.25
MIN_ABSOLUTE_SMALL = 3
MIN_ABSOLUTE_LARGE = 5
MIN_SPIKE_RATIO = 2.5
MIN_EXPECTED_IN_WINDOW = 0.5

IMPACT_START_FRACTION = 0.85
IMPACT_END_FRACTION = 0.95


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def _classify_confidence(cliff_ratio: float, count: int, spike_ratio: float) -> CliffConfidence:
    if cliff_ratio >= 0.50 and count >= 8 and spike_ratio >= 5:
        return CliffConfidence.HIGH
    if cliff_ratio >= 0.35 or (count >= 6 and spike_ratio >= 3):
        return CliffConfidence.MEDIUM
    return CliffConfidence.LOW


def _build_histogram(
    departures: List[float],
    stayers: int,
    total_minutes: float,
    window_start: float,
    window_end: float,
) -> List[HistogramBucket]:
    bucket_count = max(math.ceil(total_minutes / HISTOGRAM_BUCKET_MINUTES), 1)
    histogram: List[HistogramBucket] = []
    for i in range(bucket_count):
        bucket_start = i * HISTOGRAM_BUCKET_MINUTES
        bucket_end = bucket_start + HISTOGRAM_BUCKET_MINUTES
        count = sum(1 for m in departures if bucket_start <= m < bucket_end)
        if i == bucket_count - 1:
            count += stayers
        histogram.append(
            HistogramBucket(
                minute=bucket_start,
                departures=count,
                is_cliff=bucket_start < window_end and bucket_end > window_start,
            )
        )
    return histogram


def detect_formal_end(
    participants: Iterable[ParticipantRecord],
    meeting_start: datetime,
    meeting_end: datetime,
    *,
    window_minutes: float = WINDOW_SIZE_MINUTES,
    stayer_threshold_minutes: float = STAYER_THRESHOLD_MINUTES,
) -> CliffDetectionResult:
    """
    Look for an instructor-announced early end in the final departures.

    Steps
    -----
    1) Each participant's final departure is the leave time of their last
       segment. Departures within `stayer_threshold_minutes` of the meeting
       end are stayers: counted as participants, not as departures.
    2) Reject if fewer than 3 departures or fewer than 5 participants.
    3) Slide a `window_minutes` window over departures starting in the
       second half of the meeting and keep the fullest window (earliest
       on ties).
    4) Accept only if the cluster ratio, absolute count and spike over the
       background departure rate all clear their thresholds.
    5) The effective end is the window start, rounded to the minute.

    Raises
    ------
    ValueError
        If `meeting_end` is not after `meeting_start`.
    """
    start = to_utc(meeting_start)
    end = to_utc(meeting_end)
    total_minutes = _minutes_between(start, end)
    if total_minutes <= 0:
        raise ValueError("meeting_end must be after meeting_start")

    stayer_cutoff = total_minutes - stayer_threshold_minutes
    departures: List[float] = []
    stayers = 0

    for participant in participants:
        if not participant.segments:
            continue
        final_leave = max(to_utc(seg.leave_time) for seg in participant.segments)
        minutes_mark = _minutes_between(start, final_leave)
        if minutes_mark >= stayer_cutoff:
            stayers += 1
        else:
            departures.append(minutes_mark)

    total_participants = len(departures) + stayers

    if len(departures) < MIN_DEPARTURES:
        return CliffDetectionResult(
            detected=False,
            reason=CliffRejectionReason.TOO_FEW_DEPARTURES,
            total_final_departures=len(departures),
            meeting_end_stayers=stayers,
            total_participants=total_participants,
        )
    if total_participants < MIN_PARTICIPANTS:
        return CliffDetectionResult(
            detected=False,
            reason=CliffRejectionReason.SESSION_TOO_SMALL,
            total_final_departures=len(departures),
            meeting_end_stayers=stayers,
            total_participants=total_participants,
        )

    departures.sort()
    halfway = total_minutes * SCAN_START_FRACTION

    best_start = 0.0
    best_count = 0
    for candidate in departures:
        if candidate < halfway:
            continue
        window_end = candidate + window_minutes
        count = sum(1 for other in departures if candidate <= other <= window_end)
        if count > best_count:
            best_start, best_count = candidate, count

    total_departures = len(departures)
    cliff_ratio = best_count / total_departures

    background_departures = total_departures - best_count
    background_minutes = total_minutes - window_minutes
    if background_minutes > 0:
        expected_in_window = background_departures / background_minutes * window_minutes
    else:
        expected_in_window = 0.0
    spike_ratio = best_count / max(expected_in_window, MIN_EXPECTED_IN_WINDOW)

    small_session = total_participants < LARGE_SESSION_PARTICIPANTS
    min_ratio = MIN_CLUSTER_RATIO_SMALL if small_session else MIN_CLUSTER_RATIO_LARGE
    min_absolute = MIN_ABSOLUTE_SMALL if small_session else MIN_ABSOLUTE_LARGE

    reason = None
    if cliff_ratio < min_ratio:
        reason = CliffRejectionReason.CLUSTER_TOO_SMALL
    elif best_count < min_absolute:
        reason = CliffRejectionReason.ABSOLUTE_COUNT_LOW
    elif spike_ratio < MIN_SPIKE_RATIO:
        reason = CliffRejectionReason.NOT_ENOUGH_SPIKE

    if reason is not None:
        return CliffDetectionResult(
            detected=False,
            reason=reason,
            departures_in_cliff=best_count,
            total_final_departures=total_departures,
            meeting_end_stayers=stayers,
            total_participants=total_participants,
            cliff_ratio=cliff_ratio,
            spike_ratio=spike_ratio,
        )

    effective_end_minutes = int(math.floor(best_start + 0.5))
    window_start = best_start
    window_end = best_start + window_minutes

    # Left slightly ahead of the cliff: penalized without it.
    students_impacted = sum(
        1
        for m in departures
        if m >= effective_end_minutes * IMPACT_START_FRACTION
        and m / total_minutes < IMPACT_END_FRACTION
    )

    return CliffDetectionResult(
        detected=True,
        confidence=_classify_confidence(cliff_ratio, best_count, spike_ratio),
        effective_end_minutes=effective_end_minutes,
        cliff_window_start_min=window_start,
        cliff_window_end_min=window_end,
        departures_in_cliff=best_count,
        total_final_departures=total_departures,
        meeting_end_stayers=stayers,
        total_participants=total_participants,
        cliff_ratio=cliff_ratio,
        spike_ratio=spike_ratio,
        students_impacted=students_impacted,
        histogram=_build_histogram(departures, stayers, total_minutes, window_start, window_end),
    )
