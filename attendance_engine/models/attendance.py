# attendance_engine/models/attendance.py
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)

from attendance_engine.db.base import Base
from attendance_engine.models.profile import _uuid_str


class Attendance(Base):
    """
    Reconciled attendance of one participant in one session.

    `user_id` is NULL for unmatched participants; those rows are keyed by
    `zoom_user_email` instead.
    """

    __tablename__ = "attendance"

    id = Column(String(36), primary_key=True, default=_uuid_str)

    session_id = Column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    zoom_user_email = Column(String(320), nullable=False, index=True)
    # Identifies unmatched rows; guests sharing a display name stay apart
    participant_key = Column(String(320), nullable=True, index=True)

    join_time = Column(DateTime(timezone=True), nullable=False)
    # Latest segment end before clipping
    leave_time = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=False, default=0)
    attendance_percentage = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<Attendance id={self.id} session_id={self.session_id} "
            f"user_id={self.user_id} pct={self.attendance_percentage}>"
        )


class AttendanceSegment(Base):
    """
    One merged connection interval of an attendance row.
    """

    __tablename__ = "attendance_segments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    attendance_id = Column(
        String(36),
        ForeignKey("attendance.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=False, default=0)
