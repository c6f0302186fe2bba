# tests/test_cliff_detector.py
from typing import List

import pytest
from conftest import MEETING_START, at

from attendance_engine.schemas.cliff import CliffConfidence, CliffRejectionReason
from attendance_engine.schemas.participant import ParticipantRecord, Segment
from attendance_engine.services.cliff_detector import detect_formal_end


def _participants(final_departures: List[float]) -> List[ParticipantRecord]:
    return [
        ParticipantRecord(
            key=f"user-{i}",
            user_id=f"user-{i}",
            segments=[Segment(join_time=at(0), leave_time=at(minute))],
        )
        for i, minute in enumerate(final_departures)
    ]


def _detect(final_departures: List[float], total_minutes: float = 60):
    return detect_formal_end(_participants(final_departures), MEETING_START, at(total_minutes))


def test_announced_end_is_detected():
    """
    Fifteen of twenty students leave between minute 55 and 58 of a 60 minute
    meeting; the rest stay until the end.
    """
    departures = [55 + i * 0.2 for i in range(15)] + [59] * 5

    result = _detect(departures)

    assert result.detected is True
    assert result.reason is None
    assert result.effective_end_minutes == 55
    assert result.confidence == CliffConfidence.HIGH
    assert result.departures_in_cliff == 15
    assert result.total_final_departures == 15
    assert result.meeting_end_stayers == 5
    assert result.total_participants == 20
    assert result.cliff_ratio == pytest.approx(1.0)
    assert result.spike_ratio >= 2.5
    assert result.students_impacted >= 1


def test_histogram_counts_stayers_in_last_bucket():
    departures = [55 + i * 0.2 for i in range(15)] + [59] * 5

    result = _detect(departures)

    assert len(result.histogram) == 12
    last = result.histogram[-1]
    assert last.minute == 55
    assert last.departures == 20
    assert last.is_cliff is True
    assert result.histogram[0].is_cliff is False
    assert sum(bucket.departures for bucket in result.histogram) == 20


def test_uniform_attrition_is_not_a_cliff():
    departures = [float(m) for m in range(2, 57, 2)] + [60, 60]

    result = _detect(departures)

    assert result.detected is False
    assert result.reason == CliffRejectionReason.CLUSTER_TOO_SMALL
    assert result.effective_end_minutes is None


def test_too_few_departures():
    result = _detect([60, 60, 59.5, 59, 30])

    assert result.detected is False
    assert result.reason == CliffRejectionReason.TOO_FEW_DEPARTURES
    assert result.total_final_departures == 1


def test_session_too_small():
    result = _detect([40, 41, 42, 60])

    assert result.detected is False
    assert result.reason == CliffRejectionReason.SESSION_TOO_SMALL
    assert result.total_participants == 4


def test_absolute_count_low_in_large_session():
    departures = [float(m) for m in range(2, 25, 2)] + [40, 41, 42, 43] + [60] * 4

    result = _detect(departures)

    assert result.detected is False
    assert result.reason == CliffRejectionReason.ABSOLUTE_COUNT_LOW
    assert result.departures_in_cliff == 4


def test_not_enough_spike_over_background_rate():
    departures = [2, 5, 8, 11, 14, 17, 20, 23, 26] + [40, 41, 42, 43] + [60, 60]

    result = _detect(departures)

    assert result.detected is False
    assert result.reason == CliffRejectionReason.NOT_ENOUGH_SPIKE
    assert result.spike_ratio < 2.5


def test_departures_in_first_half_are_not_scanned():
    """
    A mass departure before the halfway mark is never the effective end.
    """
    departures = [10 + i * 0.1 for i in range(10)] + [60] * 5

    result = _detect(departures)

    assert result.detected is False


def test_custom_window_and_stayer_threshold():
    departures = [50, 51, 52, 53, 54, 55] + [60] * 4

    result = detect_formal_end(
        _participants(departures),
        MEETING_START,
        at(60),
        window_minutes=2,
        stayer_threshold_minutes=8,
    )

    # 52 and later count as stayers with an eight minute threshold
    assert result.meeting_end_stayers == 8
    assert result.total_final_departures == 2
    assert result.reason == CliffRejectionReason.TOO_FEW_DEPARTURES


def test_rejects_empty_meeting_window():
    with pytest.raises(ValueError):
        detect_formal_end(_participants([10, 20]), MEETING_START, MEETING_START)
