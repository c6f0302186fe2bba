# attendance_engine/services/attendance_store.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.models.attendance import Attendance, AttendanceSegment
from attendance_engine.models.email_alias import UserEmailAlias
from attendance_engine.models.import_log import ZoomImportLog
from attendance_engine.models.profile import Profile, _uuid_str
from attendance_engine.models.session import Session
from attendance_engine.schemas.attendance import (
    AttendancePreview,
    AttendanceRecordWrite,
    ImportCounts,
    ImportStatus,
    PreviewMatchedEntry,
    PreviewSummary,
    PreviewUnmatchedEntry,
    SessionInfo,
)
from attendance_engine.schemas.cliff import CliffDetectionResult

logger = logging.getLogger(__name__)

# Keys of `sessions.cliff_detection` owned by apply/dismiss actions, kept
# when a fresh detection result is stored.
_CLIFF_ACTION_KEYS = ("dismissed", "applied_at", "applied_formal_end_minutes")


class SqlIdentityStore:
    """
    Read-only identity lookups against `profiles` and `user_email_aliases`.

    All comparisons are case-insensitive.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _execute(self, stmt):
        # Postgres aborts the whole transaction after a failed statement
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def find_user_by_email(self, email: str) -> Optional[str]:
        found = await self.find_users_by_emails([email])
        return found.get(email.strip().lower())

    async def find_alias_target(self, email: str) -> Optional[str]:
        found = await self.find_alias_targets([email])
        return found.get(email.strip().lower())

    async def find_users_by_emails(self, emails: Iterable[str]) -> Dict[str, str]:
        wanted = sorted({e.strip().lower() for e in emails if e and e.strip()})
        if not wanted:
            return {}
        stmt = select(Profile.id, Profile.email).where(func.lower(Profile.email).in_(wanted))
        result = await self._execute(stmt)
        return {email.lower(): user_id for user_id, email in result.all()}

    async def find_alias_targets(self, emails: Iterable[str]) -> Dict[str, str]:
        wanted = sorted({e.strip().lower() for e in emails if e and e.strip()})
        if not wanted:
            return {}
        stmt = select(UserEmailAlias.user_id, UserEmailAlias.alias_email).where(
            func.lower(UserEmailAlias.alias_email).in_(wanted)
        )
        result = await self._execute(stmt)
        return {alias.lower(): user_id for user_id, alias in result.all()}


class SqlAttendanceStore:
    """
    Persistence for reconciliation results.

    Every attendance write commits on its own so that one failing row does
    not roll back the rows written before it.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        session = await self.db.get(Session, session_id)
        if session is None:
            return None
        cliff_state = session.cliff_detection or {}
        return SessionInfo(
            session_id=session.id,
            title=session.title or "",
            scheduled_start=session.scheduled_at,
            duration_minutes=session.duration_minutes,
            actual_duration_minutes=session.actual_duration_minutes,
            formal_end_minutes=session.formal_end_minutes,
            cliff_dismissed=bool(cliff_state.get("dismissed")),
        )

    async def upsert_attendance_record(self, record: AttendanceRecordWrite) -> None:
        """
        Create or update the attendance row of one participant and replace
        its segments.

        Rows are identified by (session_id, user_id), or by
        (session_id, participant_key) for unmatched participants, so that
        re-running a reconciliation updates rows in place.
        """
        stmt = select(Attendance).where(Attendance.session_id == record.session_id)
        if record.user_id:
            stmt = stmt.where(Attendance.user_id == record.user_id)
        else:
            stmt = stmt.where(
                Attendance.user_id.is_(None),
                or_(
                    Attendance.participant_key == record.participant_key,
                    and_(
                        Attendance.participant_key.is_(None),
                        Attendance.zoom_user_email == record.provider_email,
                    ),
                ),
            )

        try:
            result = await self.db.execute(stmt)
            row = result.scalars().first()

            if row is None:
                row = Attendance(id=_uuid_str(), session_id=record.session_id, user_id=record.user_id)
                self.db.add(row)
            else:
                await self.db.execute(
                    delete(AttendanceSegment).where(AttendanceSegment.attendance_id == row.id)
                )

            row.participant_key = record.participant_key
            row.zoom_user_email = record.provider_email
            row.join_time = record.join_time
            row.leave_time = record.leave_time
            row.duration_seconds = record.duration_seconds
            row.attendance_percentage = record.attendance_percentage
            # Parent row must exist before its segments are inserted
            await self.db.flush()

            for seg in record.segments:
                self.db.add(
                    AttendanceSegment(
                        attendance_id=row.id,
                        join_time=seg.join_time,
                        leave_time=seg.leave_time,
                        duration_seconds=round(seg.duration_seconds),
                    )
                )

            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def prune_session_attendance(
        self,
        session_id: str,
        keep: Iterable[tuple[Optional[str], str]],
    ) -> int:
        """
        Delete attendance rows of participants absent from the latest run.

        `keep` holds (user_id, participant_key) pairs; matched rows are kept by
        user id, unmatched rows by participant key.
        """
        keep = list(keep)
        keep_users = {user_id for user_id, _ in keep if user_id}
        keep_keys = {key for user_id, key in keep if not user_id}

        result = await self.db.execute(
            select(
                Attendance.id,
                Attendance.user_id,
                Attendance.participant_key,
                Attendance.zoom_user_email,
            ).where(Attendance.session_id == session_id)
        )
        stale: List[str] = []
        for row_id, user_id, key, email in result.all():
            if user_id:
                if user_id not in keep_users:
                    stale.append(row_id)
            elif (key or email) not in keep_keys:
                stale.append(row_id)

        if not stale:
            return 0

        try:
            await self.db.execute(
                delete(AttendanceSegment).where(AttendanceSegment.attendance_id.in_(stale))
            )
            await self.db.execute(delete(Attendance).where(Attendance.id.in_(stale)))
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return len(stale)

    async def record_import_audit(
        self,
        meeting_uuid: str,
        session_id: str,
        status: ImportStatus,
        counts: ImportCounts,
        error_message: Optional[str] = None,
    ) -> None:
        self.db.add(
            ZoomImportLog(
                zoom_meeting_uuid=meeting_uuid,
                session_id=session_id,
                status=status.value,
                participants_imported=counts.imported,
                participants_unmatched=counts.unmatched,
                participants_failed=counts.failed,
                error_message=error_message,
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def save_cliff_detection(self, session_id: str, result: CliffDetectionResult) -> None:
        """
        Store the latest detection on the session, keeping apply/dismiss markers.
        """
        session = await self.db.get(Session, session_id)
        if session is None:
            return
        previous = session.cliff_detection or {}
        payload = result.model_dump(mode="json")
        for key in _CLIFF_ACTION_KEYS:
            if key in previous:
                payload[key] = previous[key]
        session.cliff_detection = payload
        await self.db.commit()

    async def set_formal_end(self, session_id: str, formal_end_minutes: int) -> bool:
        """
        Apply an effective end to the session. Returns False if it does not exist.
        """
        session = await self.db.get(Session, session_id)
        if session is None:
            return False
        session.formal_end_minutes = formal_end_minutes
        state = dict(session.cliff_detection or {})
        state.update(
            dismissed=False,
            applied_at=datetime.now(tz=timezone.utc).isoformat(),
            applied_formal_end_minutes=formal_end_minutes,
        )
        session.cliff_detection = state
        await self.db.commit()
        return True

    async def clear_formal_end(self, session_id: str) -> bool:
        """
        Remove an applied effective end and mark detection as dismissed.
        """
        session = await self.db.get(Session, session_id)
        if session is None:
            return False
        session.formal_end_minutes = None
        state = dict(session.cliff_detection or {})
        state.update(dismissed=True, applied_at=None, applied_formal_end_minutes=None)
        session.cliff_detection = state
        await self.db.commit()
        return True

    async def list_sessions_with_meetings(self) -> List[Session]:
        stmt = (
            select(Session)
            .where(Session.zoom_meeting_id.is_not(None))
            .order_by(Session.scheduled_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def latest_meeting_uuid(self, session_id: str) -> Optional[str]:
        """
        Meeting UUID of the most recent import for the session, else the
        meeting id configured on the session.
        """
        stmt = (
            select(ZoomImportLog.zoom_meeting_uuid)
            .where(ZoomImportLog.session_id == session_id)
            .order_by(ZoomImportLog.id.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        uuid = result.scalar_one_or_none()
        if uuid:
            return uuid
        session = await self.db.get(Session, session_id)
        return session.zoom_meeting_id if session is not None else None

    async def build_attendance_preview(self, session_id: str) -> AttendancePreview:
        """
        Split the session's attendance rows into matched and unmatched.
        """
        stmt = (
            select(Attendance)
            .where(Attendance.session_id == session_id)
            .order_by(Attendance.attendance_percentage.desc())
        )
        result = await self.db.execute(stmt)
        rows = list(result.scalars().all())
        if not rows:
            return AttendancePreview(session_id=session_id)

        user_ids = [r.user_id for r in rows if r.user_id]
        profiles: Dict[str, Profile] = {}
        if user_ids:
            profile_result = await self.db.execute(select(Profile).where(Profile.id.in_(user_ids)))
            profiles = {p.id: p for p in profile_result.scalars().all()}

        matched: List[PreviewMatchedEntry] = []
        unmatched: List[PreviewUnmatchedEntry] = []
        total_pct = 0

        for row in rows:
            pct = row.attendance_percentage or 0
            minutes = round((row.duration_seconds or 0) / 60)
            total_pct += pct
            profile = profiles.get(row.user_id) if row.user_id else None
            if profile is not None:
                matched.append(
                    PreviewMatchedEntry(
                        user_id=profile.id,
                        name=profile.full_name or "Unknown",
                        email=profile.email,
                        percentage=pct,
                        duration_minutes=minutes,
                        join_time=row.join_time,
                        leave_time=row.leave_time,
                    )
                )
            else:
                unmatched.append(
                    PreviewUnmatchedEntry(
                        provider_email=row.zoom_user_email or "Unknown",
                        percentage=pct,
                        duration_minutes=minutes,
                        join_time=row.join_time,
                        leave_time=row.leave_time,
                    )
                )

        return AttendancePreview(
            session_id=session_id,
            matched=matched,
            unmatched=unmatched,
            summary=PreviewSummary(
                total=len(rows),
                matched=len(matched),
                unmatched=len(unmatched),
                avg_percentage=round(total_pct / len(rows)),
            ),
        )
