# attendance_engine/schemas/participant.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RawParticipantEvent(BaseModel):
    """
    One join (or join/leave pair) reported by the meeting provider for a
    single participant instance within one meeting.

    Rows are immutable once parsed from the provider payload.
    """

    model_config = ConfigDict(frozen=True)

    email: str | None = Field(
        None,
        description="Provider-reported email. Compared case-insensitively.",
        examples=["Student@Example.com"],
    )
    display_name: str = Field(
        "",
        description="Name shown in the meeting client.",
        examples=["Jane Student"],
    )
    participant_id: str | None = Field(
        None,
        description=(
            "Provider participant identifier. Used to keep guests without an "
            "email apart from each other."
        ),
    )
    join_time: datetime = Field(..., description="Instant the participant connected.")
    leave_time: datetime | None = Field(
        None,
        description=(
            "Instant the participant disconnected. Absent if still connected when "
            "the data was pulled; closed at the meeting's actual end."
        ),
    )


class Segment(BaseModel):
    """
    A single contiguous interval ``[join_time, leave_time)`` during which one
    participant was connected.
    """

    join_time: datetime
    leave_time: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.leave_time - self.join_time).total_seconds()


class ParticipantRecord(BaseModel):
    """
    All merged segments for one resolved user, or one unresolved email, within
    a single reconciliation run.
    """

    key: str = Field(
        ...,
        description="Participant key: resolved user id, else normalized email.",
    )
    user_id: str | None = Field(
        None,
        description="Resolved user id. None means the participant is unmatched.",
    )
    email: str = Field(
        "",
        description="Representative (first-seen) provider email.",
    )
    display_name: str = Field("", description="First-seen display name.")
    segments: list[Segment] = Field(
        default_factory=list,
        description="Non-overlapping segments ordered by join time.",
    )

    @property
    def total_duration_seconds(self) -> float:
        return sum(seg.duration_seconds for seg in self.segments)

    @property
    def provider_email(self) -> str:
        """Email used for the attendance row; guests fall back to their name."""
        return self.email or self.display_name or "unknown"
