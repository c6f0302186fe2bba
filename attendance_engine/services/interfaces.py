# attendance_engine/services/interfaces.py
"""
Collaborator interfaces used by the attendance calculator.

The calculator never imports a concrete provider client or database layer;
it is handed objects satisfying these protocols, so tests can inject fakes.
"""
from __future__ import annotations

from typing import Iterable, Protocol

from attendance_engine.schemas.attendance import (
    AttendanceRecordWrite,
    ImportCounts,
    ImportStatus,
    MeetingDetails,
    SessionInfo,
)
from attendance_engine.schemas.cliff import CliffDetectionResult
from attendance_engine.schemas.participant import RawParticipantEvent


class MeetingProviderError(RuntimeError):
    """
    Raised by a meeting provider client when a call fails or times out.
    """


class MeetingProvider(Protocol):
    async def get_meeting_details(self, meeting_uuid: str) -> MeetingDetails: ...

    async def get_meeting_actual_duration(self, meeting_uuid: str) -> int | None: ...

    async def get_participant_events(self, meeting_uuid: str) -> list[RawParticipantEvent]: ...


class IdentityStore(Protocol):
    async def find_user_by_email(self, email: str) -> str | None: ...

    async def find_alias_target(self, email: str) -> str | None: ...

    async def find_users_by_emails(self, emails: Iterable[str]) -> dict[str, str]: ...

    async def find_alias_targets(self, emails: Iterable[str]) -> dict[str, str]: ...


class AttendanceStore(Protocol):
    async def get_session_info(self, session_id: str) -> SessionInfo | None: ...

    async def upsert_attendance_record(self, record: AttendanceRecordWrite) -> None: ...

    async def prune_session_attendance(
        self, session_id: str, keep: Iterable[tuple[str | None, str]]
    ) -> int: ...

    async def record_import_audit(
        self,
        meeting_uuid: str,
        session_id: str,
        status: ImportStatus,
        counts: ImportCounts,
        error_message: str | None = None,
    ) -> None: ...

    async def save_cliff_detection(self, session_id: str, result: CliffDetectionResult) -> None: ...

    async def set_formal_end(self, session_id: str, formal_end_minutes: int) -> bool: ...

    async def clear_formal_end(self, session_id: str) -> bool: ...
