# attendance_engine/schemas/attendance.py
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from attendance_engine.schemas.cliff import CliffDetectionResult
from attendance_engine.schemas.participant import Segment


class MeetingDetails(BaseModel):
    """
    Provider-reported bounds of a finished meeting.
    """

    meeting_uuid: str = Field(..., examples=["4444AAAiAAAAAiAiAiiAii=="])
    start_time: datetime | None = Field(None, description="Actual start reported by the provider.")
    end_time: datetime | None = Field(None, description="Actual end reported by the provider.")

    @property
    def duration_minutes(self) -> int | None:
        """Rounded minutes between start and end, or None if unknown or non-positive."""
        if self.start_time is None or self.end_time is None:
            return None
        minutes = round((self.end_time - self.start_time).total_seconds() / 60.0)
        return minutes if minutes > 0 else None


class SessionInfo(BaseModel):
    """
    Subset of the scheduled session needed for reconciliation.
    """

    session_id: str
    title: str = ""
    scheduled_start: datetime | None = None
    duration_minutes: int | None = Field(None, description="Scheduled duration.")
    actual_duration_minutes: int | None = Field(
        None, description="Previously recorded actual duration, if any."
    )
    formal_end_minutes: int | None = Field(
        None,
        description="Administrator-applied effective end, in minutes from the actual start.",
    )
    cliff_dismissed: bool = Field(
        False,
        description="True if an administrator dismissed automatic cliff detection.",
    )


class SessionWindow(BaseModel):
    """
    Nominal and effective time bounds of one meeting.

    `effective_end` never exceeds `actual_end`.
    """

    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    actual_start: datetime
    actual_end: datetime
    effective_end: datetime

    @property
    def effective_duration_minutes(self) -> float:
        return max((self.effective_end - self.actual_start).total_seconds() / 60.0, 0.0)


class DurationSource(str, Enum):
    CALLER = "caller"
    PROVIDER = "provider"
    SESSION_ACTUAL = "session.actual_duration_minutes"
    SESSION_SCHEDULED = "session.duration_minutes"


class EffectiveEndSource(str, Enum):
    ACTUAL_END = "actual_end"
    CLIFF = "cliff"
    FORMAL_END = "formal_end"


class ImportStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class AttendanceRecordWrite(BaseModel):
    """
    One attendance row as handed to the persistence layer.
    """

    session_id: str
    user_id: str | None = None
    participant_key: str = Field(
        ...,
        description=(
            "Merge key of the participant: user id, normalized email, or "
            "guest:<participant id> for guests without an email."
        ),
    )
    provider_email: str
    join_time: datetime = Field(..., description="Earliest segment start.")
    leave_time: datetime = Field(..., description="Latest segment end, before clipping.")
    duration_seconds: int = Field(..., description="Attended seconds, clipped to the effective end.")
    attendance_percentage: int = Field(..., ge=0, le=100)
    segments: list[Segment] = Field(
        default_factory=list,
        description="Merged segments before clipping, kept for display and audit.",
    )


class ImportCounts(BaseModel):
    imported: int = 0
    unmatched: int = 0
    failed: int = 0


class AttendanceCalculationResult(BaseModel):
    """
    Summary returned by a reconciliation run.

    `imported` and `unmatched` only count rows that were persisted.
    """

    session_id: str
    meeting_uuid: str
    imported: int = Field(..., examples=[7])
    unmatched: int = Field(..., examples=[3])
    failed: int = Field(0, description="Rows whose write failed.")
    actual_duration_used: int = Field(..., examples=[60])
    duration_source: DurationSource = Field(..., examples=["provider"])
    effective_duration_minutes: float = Field(..., examples=[55.0])
    effective_end_source: EffectiveEndSource = Field(..., examples=["cliff"])
    window: SessionWindow | None = None
    cliff: CliffDetectionResult | None = None
    errors: list[str] = Field(default_factory=list)


class AttendanceCalculateRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    meeting_uuid: str = Field(..., min_length=1)
    actual_duration_minutes: int | None = Field(
        None,
        description="Optional override. Resolved from the provider when omitted.",
    )


class CliffDetectRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    meeting_uuid: str = Field(..., min_length=1)


class CliffApplyRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    meeting_uuid: str = Field(..., min_length=1)
    formal_end_minutes: float = Field(..., gt=0)


class CliffDismissRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    meeting_uuid: str | None = None


class CliffActionResponse(BaseModel):
    success: bool = True
    formal_end_minutes: int | None = None
    attendance: AttendanceCalculationResult | None = None


class PreviewMatchedEntry(BaseModel):
    user_id: str
    name: str
    email: str
    percentage: int
    duration_minutes: int
    join_time: datetime | None = None
    leave_time: datetime | None = None


class PreviewUnmatchedEntry(BaseModel):
    provider_email: str
    percentage: int
    duration_minutes: int
    join_time: datetime | None = None
    leave_time: datetime | None = None


class PreviewSummary(BaseModel):
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    avg_percentage: int = 0


class AttendancePreview(BaseModel):
    """
    Matched and unmatched attendance rows of a session, highest percentage first.
    """

    session_id: str
    matched: list[PreviewMatchedEntry] = Field(default_factory=list)
    unmatched: list[PreviewUnmatchedEntry] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)


class BulkRecalculationItem(BaseModel):
    session_id: str
    meeting_uuid: str | None = None
    status: str = Field(..., examples=["ok"], description="ok, skipped or error")
    result: AttendanceCalculationResult | None = None
    error: str | None = None


class BulkRecalculationSummary(BaseModel):
    total: int
    succeeded: int
    skipped: int
    errors: int
    results: list[BulkRecalculationItem]
