# attendance_engine/schemas/alias.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EmailAliasCreate(BaseModel):
    """
    Payload for linking a provider email to a registered user.
    """

    user_id: str = Field(..., min_length=1, examples=["5b1c0c4e-1d1f-4d0b-9a34-0f1d2c3b4a59"])
    alias_email: str = Field(
        ...,
        min_length=3,
        description="Provider email to map onto the user. Stored lowercased.",
        examples=["jane.personal@gmail.com"],
    )


class EmailAliasRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    alias_email: str
    created_at: datetime | None = None


class EmailAliasCreated(BaseModel):
    alias: EmailAliasRead
    rematched_records: int = Field(
        ...,
        description="Unmatched attendance rows re-linked to the user by this alias.",
    )


class UnmatchedSessionRef(BaseModel):
    session_id: str
    title: str = ""
    scheduled_start: datetime | None = None


class UnmatchedEmail(BaseModel):
    email: str
    sessions: list[UnmatchedSessionRef] = Field(default_factory=list)
