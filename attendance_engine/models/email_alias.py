# attendance_engine/models/email_alias.py
from sqlalchemy import Column, DateTime, ForeignKey, String, func

from attendance_engine.db.base import Base
from attendance_engine.models.profile import _uuid_str


class UserEmailAlias(Base):
    """
    Administrator-maintained mapping from a provider email that does not
    match any registered account (e.g. a personal address) to a user.
    """

    __tablename__ = "user_email_aliases"

    id = Column(String(36), primary_key=True, default=_uuid_str)

    user_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Stored lowercased
    alias_email = Column(String(320), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<UserEmailAlias id={self.id} alias={self.alias_email} user_id={self.user_id}>"
