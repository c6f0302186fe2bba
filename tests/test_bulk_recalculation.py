# tests/test_bulk_recalculation.py
import pytest
from conftest import FakeProvider, event
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from attendance_engine.models.import_log import ZoomImportLog
from attendance_engine.models.session import Session
from attendance_engine.services.attendance_calculator import AttendanceCalculator
from attendance_engine.services.attendance_store import SqlAttendanceStore, SqlIdentityStore
from attendance_engine.services.bulk_recalculation import recalculate_all_sessions
from attendance_engine.services.interfaces import MeetingProviderError


class _SelectiveProvider(FakeProvider):
    async def get_participant_events(self, meeting_uuid: str):
        if meeting_uuid == "uuid-broken":
            raise MeetingProviderError("meeting not found")
        return await super().get_participant_events(meeting_uuid)


@pytest.mark.asyncio
async def test_bulk_recalculation_reports_each_session(session_factory):
    async with session_factory() as db:
        db.add_all(
            [
                Session(id="session-ok", title="OK", zoom_meeting_id="uuid-ok", duration_minutes=60),
                Session(id="session-broken", title="Broken", zoom_meeting_id="uuid-broken"),
                Session(id="session-blank", title="Blank", zoom_meeting_id=""),
            ]
        )
        await db.commit()

    provider = _SelectiveProvider([event("a@school.edu", 0, 60), event("b@school.edu", 0, 30)])

    def build(db) -> AttendanceCalculator:
        return AttendanceCalculator(
            provider=provider,
            identity_store=SqlIdentityStore(db),
            store=SqlAttendanceStore(db),
        )

    summary = await recalculate_all_sessions(session_factory, build, concurrency=1)

    by_session = {item.session_id: item for item in summary.results}
    assert summary.total == 3
    assert summary.succeeded == 1
    assert summary.skipped == 1
    assert summary.errors == 1
    assert by_session["session-ok"].result.unmatched == 2
    assert by_session["session-blank"].status == "skipped"
    assert "meeting not found" in by_session["session-broken"].error

    async with session_factory() as db:
        statuses = (
            await db.execute(select(ZoomImportLog.session_id, ZoomImportLog.status))
        ).all()
    assert sorted(statuses) == [("session-broken", "failed"), ("session-ok", "completed")]


class _BrokenSessionStore(SqlAttendanceStore):
    async def get_session_info(self, session_id: str):
        if session_id == "session-bad":
            raise OperationalError("SELECT", {}, Exception("db gone"))
        return await super().get_session_info(session_id)


@pytest.mark.asyncio
async def test_unexpected_error_in_one_session_does_not_stop_the_others(session_factory):
    async with session_factory() as db:
        db.add_all(
            [
                Session(id="session-ok", title="OK", zoom_meeting_id="uuid-ok", duration_minutes=60),
                Session(id="session-bad", title="Bad", zoom_meeting_id="uuid-bad", duration_minutes=60),
            ]
        )
        await db.commit()

    provider = FakeProvider([event("a@school.edu", 0, 60)])

    def build(db) -> AttendanceCalculator:
        return AttendanceCalculator(
            provider=provider,
            identity_store=SqlIdentityStore(db),
            store=_BrokenSessionStore(db),
        )

    summary = await recalculate_all_sessions(session_factory, build, concurrency=1)

    by_session = {item.session_id: item for item in summary.results}
    assert summary.succeeded == 1
    assert summary.errors == 1
    assert by_session["session-ok"].status == "ok"
    assert by_session["session-bad"].status == "error"
    assert "db gone" in by_session["session-bad"].error
