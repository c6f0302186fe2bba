# attendance_engine/models/profile.py
import uuid

from sqlalchemy import Column, DateTime, String, func

from attendance_engine.db.base import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """
    A registered user. Provider emails are matched against `email` first.
    """

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid_str)

    email = Column(String(320), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email}>"
