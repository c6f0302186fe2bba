# tests/conftest.py
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

# Point the application engine at a throwaway database before the app is imported.
os.environ.setdefault(
    "DB_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(prefix='attendance-engine-'), 'app.db')}",
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from attendance_engine.db.base import Base
from attendance_engine.main import create_app
from attendance_engine.schemas.attendance import (
    AttendanceRecordWrite,
    ImportCounts,
    ImportStatus,
    MeetingDetails,
    SessionInfo,
)
from attendance_engine.schemas.participant import RawParticipantEvent
from attendance_engine.services.interfaces import MeetingProviderError

MEETING_START = datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """Instant `minutes` after MEETING_START."""
    return MEETING_START + timedelta(minutes=minutes)


def event(
    email: Optional[str],
    join_min: float,
    leave_min: Optional[float],
    name: str = "",
    participant_id: Optional[str] = None,
) -> RawParticipantEvent:
    return RawParticipantEvent(
        email=email,
        display_name=name or (email or "Guest"),
        participant_id=participant_id,
        join_time=at(join_min),
        leave_time=at(leave_min) if leave_min is not None else None,
    )


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for endpoints that do not touch the database.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """
    Fresh SQLite database per test, with every table created.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'attendance.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=test_engine,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )
    yield factory
    await test_engine.dispose()


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# In-memory collaborators for the calculator
# ---------------------------------------------------------------------------


class FakeProvider:
    def __init__(
        self,
        events: Optional[List[RawParticipantEvent]] = None,
        start: Optional[datetime] = MEETING_START,
        duration_minutes: Optional[float] = 60,
    ) -> None:
        self.events = list(events or [])
        self.start = start
        self.duration_minutes = duration_minutes
        self.fail_events = False
        self.fail_details = False
        self.event_calls = 0

    async def get_meeting_details(self, meeting_uuid: str) -> MeetingDetails:
        if self.fail_details:
            raise MeetingProviderError("details unavailable")
        end = None
        if self.start is not None and self.duration_minutes is not None:
            end = self.start + timedelta(minutes=self.duration_minutes)
        return MeetingDetails(meeting_uuid=meeting_uuid, start_time=self.start, end_time=end)

    async def get_meeting_actual_duration(self, meeting_uuid: str) -> Optional[int]:
        return (await self.get_meeting_details(meeting_uuid)).duration_minutes

    async def get_participant_events(self, meeting_uuid: str) -> List[RawParticipantEvent]:
        self.event_calls += 1
        if self.fail_events:
            raise MeetingProviderError("Zoom GET timed out")
        return list(self.events)


class FakeIdentityStore:
    def __init__(
        self,
        users: Optional[Dict[str, str]] = None,
        aliases: Optional[Dict[str, str]] = None,
    ) -> None:
        self.users = {k.lower(): v for k, v in (users or {}).items()}
        self.aliases = {k.lower(): v for k, v in (aliases or {}).items()}
        self.batch_calls = 0
        self.fail_batches = False
        self.fail_emails: set = set()

    async def find_user_by_email(self, email: str) -> Optional[str]:
        if email in self.fail_emails:
            raise RuntimeError(f"lookup failed for {email}")
        return self.users.get(email)

    async def find_alias_target(self, email: str) -> Optional[str]:
        if email in self.fail_emails:
            raise RuntimeError(f"lookup failed for {email}")
        return self.aliases.get(email)

    async def find_users_by_emails(self, emails: Iterable[str]) -> Dict[str, str]:
        self.batch_calls += 1
        if self.fail_batches:
            raise RuntimeError("batch query failed")
        return {e: self.users[e] for e in emails if e in self.users}

    async def find_alias_targets(self, emails: Iterable[str]) -> Dict[str, str]:
        self.batch_calls += 1
        if self.fail_batches:
            raise RuntimeError("batch query failed")
        return {e: self.aliases[e] for e in emails if e in self.aliases}


class FakeAttendanceStore:
    def __init__(self, session: Optional[SessionInfo] = None) -> None:
        self.sessions: Dict[str, SessionInfo] = {}
        if session is not None:
            self.sessions[session.session_id] = session
        self.rows: Dict[tuple, AttendanceRecordWrite] = {}
        self.audits: List[dict] = []
        self.cliffs: Dict[str, object] = {}
        self.fail_emails: set = set()

    async def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        return self.sessions.get(session_id)

    async def upsert_attendance_record(self, record: AttendanceRecordWrite) -> None:
        if record.provider_email in self.fail_emails:
            raise RuntimeError("write rejected")
        key = (record.session_id, record.user_id or record.participant_key)
        self.rows[key] = record

    async def prune_session_attendance(self, session_id, keep) -> int:
        wanted = {(session_id, user_id or key) for user_id, key in keep}
        stale = [k for k in self.rows if k[0] == session_id and k not in wanted]
        for k in stale:
            del self.rows[k]
        return len(stale)

    async def record_import_audit(
        self,
        meeting_uuid: str,
        session_id: str,
        status: ImportStatus,
        counts: ImportCounts,
        error_message: Optional[str] = None,
    ) -> None:
        self.audits.append(
            {
                "meeting_uuid": meeting_uuid,
                "session_id": session_id,
                "status": status,
                "counts": counts,
                "error_message": error_message,
            }
        )

    async def save_cliff_detection(self, session_id, result) -> None:
        self.cliffs[session_id] = result

    async def set_formal_end(self, session_id: str, formal_end_minutes: int) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self.sessions[session_id] = session.model_copy(
            update={"formal_end_minutes": formal_end_minutes, "cliff_dismissed": False}
        )
        return True

    async def clear_formal_end(self, session_id: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self.sessions[session_id] = session.model_copy(
            update={"formal_end_minutes": None, "cliff_dismissed": True}
        )
        return True

    def rows_for(self, session_id: str) -> List[AttendanceRecordWrite]:
        return [r for k, r in self.rows.items() if k[0] == session_id]


@pytest.fixture
def session_info() -> SessionInfo:
    return SessionInfo(
        session_id="session-1",
        title="Week 3 lecture",
        scheduled_start=MEETING_START,
        duration_minutes=60,
    )


@pytest.fixture
def attendance_store(session_info) -> FakeAttendanceStore:
    return FakeAttendanceStore(session_info)
