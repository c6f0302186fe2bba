# attendance_engine/schemas/cliff.py
from enum import Enum

from pydantic import BaseModel, Field


class CliffConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CliffRejectionReason(str, Enum):
    """
    Machine-readable reasons for a non-detection.

    A non-detection is a normal outcome; the run proceeds with the natural end.
    """

    TOO_FEW_DEPARTURES = "TOO_FEW_DEPARTURES"
    SESSION_TOO_SMALL = "SESSION_TOO_SMALL"
    CLUSTER_TOO_SMALL = "CLUSTER_TOO_SMALL"
    ABSOLUTE_COUNT_LOW = "ABSOLUTE_COUNT_LOW"
    NOT_ENOUGH_SPIKE = "NOT_ENOUGH_SPIKE"


class HistogramBucket(BaseModel):
    minute: int = Field(..., description="Bucket start, in minutes from the actual start.")
    departures: int = Field(
        ...,
        description="Final departures in the bucket. Stayers are counted in the last bucket.",
    )
    is_cliff: bool = Field(
        ...,
        description="True if the bucket overlaps the winning departure window.",
    )


class CliffDetectionResult(BaseModel):
    """
    Outcome of the mass-departure analysis for one meeting.

    Only `detected` and `reason` are guaranteed; the remaining fields are
    filled in as far as the analysis got before accepting or rejecting.
    """

    detected: bool = Field(..., examples=[True])
    reason: CliffRejectionReason | None = Field(
        None,
        description="Why no cliff was accepted. None when detected.",
    )
    confidence: CliffConfidence | None = Field(None, examples=["medium"])
    effective_end_minutes: int | None = Field(
        None,
        description="Onset of the mass departure, rounded, in minutes from the actual start.",
        examples=[55],
    )
    cliff_window_start_min: float | None = None
    cliff_window_end_min: float | None = None
    departures_in_cliff: int | None = None
    total_final_departures: int | None = None
    meeting_end_stayers: int | None = None
    total_participants: int | None = None
    cliff_ratio: float | None = None
    spike_ratio: float | None = None
    students_impacted: int | None = Field(
        None,
        description="Departures shortly before the effective end that the cliff stops penalizing.",
    )
    histogram: list[HistogramBucket] | None = None
