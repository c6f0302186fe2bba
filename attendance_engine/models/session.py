# attendance_engine/models/session.py
from sqlalchemy import JSON, Column, DateTime, Integer, String

from attendance_engine.db.base import Base
from attendance_engine.models.profile import _uuid_str


class Session(Base):
    """
    A scheduled class session linked to a provider meeting.
    """

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_uuid_str)

    title = Column(String(255), nullable=False, default="")
    zoom_meeting_id = Column(String(255), nullable=True, index=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)

    # Administrator-applied effective end; overrides automatic cliff detection.
    formal_end_minutes = Column(Integer, nullable=True)

    # Last detection result plus apply/dismiss markers, for display and audit.
    cliff_detection = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Session id={self.id} title={self.title!r} meeting={self.zoom_meeting_id}>"
