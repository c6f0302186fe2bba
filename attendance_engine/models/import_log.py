# attendance_engine/models/import_log.py
from sqlalchemy import Column, DateTime, Integer, String, Text, func

from attendance_engine.db.base import Base


class ZoomImportLog(Base):
    """
    Audit trail of reconciliation runs, one row per run.
    """

    __tablename__ = "zoom_import_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    zoom_meeting_uuid = Column(String(255), nullable=False, index=True)
    session_id = Column(String(36), nullable=False, index=True)

    status = Column(String(32), nullable=False)

    participants_imported = Column(Integer, nullable=False, default=0)
    participants_unmatched = Column(Integer, nullable=False, default=0)
    participants_failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<ZoomImportLog id={self.id} session_id={self.session_id} status={self.status}>"
