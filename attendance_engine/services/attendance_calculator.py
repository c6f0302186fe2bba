# attendance_engine/services/attendance_calculator.py
"""
Attendance reconciliation for a finished meeting.

Turns raw provider join/leave rows into one auditable attendance row per
participant:

1. Resolve the meeting duration (caller, provider, then session values).
2. Fetch raw participant events; a failure here is fatal to the run.
3. Batch-resolve emails to users and merge segments per participant.
4. Detect an announced early end ("cliff") and pick the effective end.
5. Clip segments at the effective end and compute percentages.
6. Persist each row independently, prune stale rows, record an audit entry.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from attendance_engine.schemas.attendance import (
    AttendanceCalculationResult,
    AttendanceRecordWrite,
    DurationSource,
    EffectiveEndSource,
    ImportCounts,
    ImportStatus,
    MeetingDetails,
    SessionInfo,
    SessionWindow,
)
from attendance_engine.schemas.cliff import CliffDetectionResult
from attendance_engine.schemas.participant import ParticipantRecord, RawParticipantEvent
from attendance_engine.services.cliff_detector import (
    STAYER_THRESHOLD_MINUTES,
    WINDOW_SIZE_MINUTES,
    detect_formal_end,
)
from attendance_engine.services.identity_resolver import IdentityResolver
from attendance_engine.services.interfaces import (
    AttendanceStore,
    IdentityStore,
    MeetingProvider,
    MeetingProviderError,
)
from attendance_engine.services.segment_merger import (
    clipped_duration_seconds,
    merge_segments,
    to_utc,
)

logger = logging.getLogger(__name__)


class InvalidAttendanceRequest(ValueError):
    """
    Missing or invalid input. Raised before any work is persisted.
    """


class SessionNotFoundError(InvalidAttendanceRequest):
    """
    The session id does not refer to a known session.
    """


class UpstreamProviderError(RuntimeError):
    """
    The meeting provider could not deliver participant events.
    """


class NoParticipantDataError(LookupError):
    """
    The provider returned no participant rows for the meeting.
    """


class DurationUnavailableError(RuntimeError):
    """
    No meeting duration could be determined from any source.
    """


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def attendance_percentage(attended_seconds: float, effective_duration_minutes: float) -> int:
    """
    Whole-number percentage of the effective duration, clamped to [0, 100].
    """
    if effective_duration_minutes <= 0:
        return 0
    pct = round_half_up(attended_seconds / (effective_duration_minutes * 60.0) * 100.0)
    return min(max(pct, 0), 100)


class AttendanceCalculator:
    """
    Orchestrates identity resolution, segment merging, cliff detection and
    percentage computation for one session at a time.

    All collaborators are injected; the calculator holds no state between
    runs, so independent sessions can be processed in parallel with
    separate instances.
    """

    def __init__(
        self,
        provider: MeetingProvider,
        identity_store: IdentityStore,
        store: AttendanceStore,
        *,
        window_minutes: float = WINDOW_SIZE_MINUTES,
        stayer_threshold_minutes: float = STAYER_THRESHOLD_MINUTES,
    ) -> None:
        self.provider = provider
        self.resolver = IdentityResolver(identity_store)
        self.store = store
        self.window_minutes = window_minutes
        self.stayer_threshold_minutes = stayer_threshold_minutes

    async def calculate_session_attendance(
        self,
        session_id: str,
        meeting_uuid: str,
        actual_duration_minutes: Optional[int] = None,
    ) -> AttendanceCalculationResult:
        """
        Reconcile attendance of `session_id` from the provider meeting `meeting_uuid`.

        Raises
        ------
        InvalidAttendanceRequest
            Empty ids, non-positive duration, or unknown session.
        UpstreamProviderError
            Participant events could not be fetched. Nothing is persisted.
        DurationUnavailableError
            No duration from the caller, provider or session record.
        """
        session = await self._load_session(session_id, meeting_uuid, actual_duration_minutes)

        details = await self._fetch_meeting_details(meeting_uuid)
        duration, duration_source = self._resolve_duration(
            session, details, actual_duration_minutes
        )
        logger.info(
            "Using duration %s min (source: %s) for session %s",
            duration,
            duration_source.value,
            session_id,
        )

        events = await self._fetch_events(session_id, meeting_uuid)

        if not events:
            logger.info("No participant events for meeting %s; nothing to reconcile", meeting_uuid)
            await self._record_audit(meeting_uuid, session_id, ImportStatus.COMPLETED, ImportCounts())
            return AttendanceCalculationResult(
                session_id=session_id,
                meeting_uuid=meeting_uuid,
                imported=0,
                unmatched=0,
                actual_duration_used=duration,
                duration_source=duration_source,
                effective_duration_minutes=float(duration),
                effective_end_source=EffectiveEndSource.ACTUAL_END,
            )

        actual_start = self._actual_start(details, events)
        actual_end = actual_start + timedelta(minutes=duration)

        participants = await self._merge_participants(events, actual_end)

        cliff = detect_formal_end(
            participants.values(),
            actual_start,
            actual_end,
            window_minutes=self.window_minutes,
            stayer_threshold_minutes=self.stayer_threshold_minutes,
        )
        effective_end, end_source = self._effective_end(session, cliff, actual_start, actual_end)
        self._log_cliff(session_id, cliff, end_source)
        await self._save_cliff(session_id, cliff)

        window = SessionWindow(
            scheduled_start=session.scheduled_start,
            scheduled_end=(
                session.scheduled_start + timedelta(minutes=session.duration_minutes)
                if session.scheduled_start is not None and session.duration_minutes
                else None
            ),
            actual_start=actual_start,
            actual_end=actual_end,
            effective_end=effective_end,
        )

        records = [
            self._build_record(session_id, participant, window)
            for _, participant in sorted(participants.items())
        ]
        counts, errors = await self._persist(session_id, records)

        status = ImportStatus.COMPLETED if counts.failed == 0 else ImportStatus.PARTIAL
        await self._record_audit(
            meeting_uuid,
            session_id,
            status,
            counts,
            error_message="; ".join(errors) or None,
        )

        logger.info(
            "Attendance for session %s: imported=%d unmatched=%d failed=%d effective=%.1f min (%s)",
            session_id,
            counts.imported,
            counts.unmatched,
            counts.failed,
            window.effective_duration_minutes,
            end_source.value,
        )

        return AttendanceCalculationResult(
            session_id=session_id,
            meeting_uuid=meeting_uuid,
            imported=counts.imported,
            unmatched=counts.unmatched,
            failed=counts.failed,
            actual_duration_used=duration,
            duration_source=duration_source,
            effective_duration_minutes=window.effective_duration_minutes,
            effective_end_source=end_source,
            window=window,
            cliff=cliff,
            errors=errors,
        )

    async def detect_cliff(self, session_id: str, meeting_uuid: str) -> CliffDetectionResult:
        """
        Run cliff detection on live provider data without touching attendance.

        The result is stored on the session for display. Meeting bounds come
        from the provider, or from the participants' earliest join and latest
        leave when the provider cannot report them.
        """
        await self._load_session(session_id, meeting_uuid, None)

        events = await self._fetch_events(session_id, meeting_uuid, audit=False)
        if not events:
            raise NoParticipantDataError(f"No participants found for meeting {meeting_uuid}")

        details = await self._fetch_meeting_details(meeting_uuid)
        if details is not None and details.start_time and details.end_time:
            meeting_start, meeting_end = details.start_time, details.end_time
        else:
            logger.warning(
                "Meeting details unavailable for %s; deriving bounds from participant times",
                meeting_uuid,
            )
            meeting_start = min(to_utc(e.join_time) for e in events)
            leaves = [to_utc(e.leave_time) for e in events if e.leave_time is not None]
            meeting_end = max(leaves) if leaves else max(to_utc(e.join_time) for e in events)

        if meeting_end <= meeting_start:
            raise NoParticipantDataError(
                f"Cannot determine a meeting window for {meeting_uuid}"
            )

        participants = await self._merge_participants(events, meeting_end)
        result = detect_formal_end(
            participants.values(),
            meeting_start,
            meeting_end,
            window_minutes=self.window_minutes,
            stayer_threshold_minutes=self.stayer_threshold_minutes,
        )
        self._log_cliff(session_id, result, None)
        await self._save_cliff(session_id, result)
        return result

    async def apply_formal_end(
        self,
        session_id: str,
        meeting_uuid: str,
        formal_end_minutes: float,
    ) -> Tuple[int, AttendanceCalculationResult]:
        """
        Set an administrator-approved effective end and recalculate.
        """
        if not formal_end_minutes or formal_end_minutes <= 0:
            raise InvalidAttendanceRequest("formal_end_minutes must be a positive number")
        minutes = round_half_up(formal_end_minutes)
        await self._load_session(session_id, meeting_uuid, None)

        await self.store.set_formal_end(session_id, minutes)
        logger.info("Applied formal end of %d min to session %s", minutes, session_id)

        result = await self.calculate_session_attendance(session_id, meeting_uuid)
        return minutes, result

    async def dismiss_cliff(
        self,
        session_id: str,
        meeting_uuid: Optional[str] = None,
    ) -> Optional[AttendanceCalculationResult]:
        """
        Clear any applied effective end, stop automatic cliffs for the
        session, and recalculate when a meeting UUID is given.
        """
        if not session_id or not session_id.strip():
            raise InvalidAttendanceRequest("session_id is required")
        if not await self.store.clear_formal_end(session_id):
            raise SessionNotFoundError(f"Unknown session {session_id}")
        logger.info("Dismissed cliff detection for session %s", session_id)

        if meeting_uuid:
            return await self.calculate_session_attendance(session_id, meeting_uuid)
        return None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_session(
        self,
        session_id: str,
        meeting_uuid: str,
        actual_duration_minutes: Optional[int],
    ) -> SessionInfo:
        if not session_id or not session_id.strip():
            raise InvalidAttendanceRequest("session_id is required")
        if not meeting_uuid or not meeting_uuid.strip():
            raise InvalidAttendanceRequest("meeting_uuid is required")
        if actual_duration_minutes is not None and actual_duration_minutes <= 0:
            raise InvalidAttendanceRequest("actual_duration_minutes must be positive")

        session = await self.store.get_session_info(session_id)
        if session is None:
            raise SessionNotFoundError(f"Unknown session {session_id}")
        return session

    async def _fetch_meeting_details(self, meeting_uuid: str) -> Optional[MeetingDetails]:
        try:
            return await self.provider.get_meeting_details(meeting_uuid)
        except MeetingProviderError as exc:
            logger.warning("Could not fetch meeting details for %s: %s", meeting_uuid, exc)
            return None

    def _resolve_duration(
        self,
        session: SessionInfo,
        details: Optional[MeetingDetails],
        actual_duration_minutes: Optional[int],
    ) -> Tuple[int, DurationSource]:
        if actual_duration_minutes:
            return int(actual_duration_minutes), DurationSource.CALLER

        provider_minutes = details.duration_minutes if details is not None else None
        if provider_minutes:
            return provider_minutes, DurationSource.PROVIDER

        if session.actual_duration_minutes and session.actual_duration_minutes > 0:
            fallback = (session.actual_duration_minutes, DurationSource.SESSION_ACTUAL)
        elif session.duration_minutes and session.duration_minutes > 0:
            fallback = (session.duration_minutes, DurationSource.SESSION_SCHEDULED)
        else:
            raise DurationUnavailableError(
                f"Could not determine meeting duration for session {session.session_id}"
            )

        logger.warning(
            "Provider duration unavailable for session %s; falling back to %s=%d min. "
            "Every percentage of this run depends on it.",
            session.session_id,
            fallback[1].value,
            fallback[0],
        )
        return fallback

    async def _fetch_events(
        self,
        session_id: str,
        meeting_uuid: str,
        audit: bool = True,
    ) -> List[RawParticipantEvent]:
        try:
            return await self.provider.get_participant_events(meeting_uuid)
        except MeetingProviderError as exc:
            logger.error("Participant fetch failed for meeting %s: %s", meeting_uuid, exc)
            if audit:
                await self._record_audit(
                    meeting_uuid,
                    session_id,
                    ImportStatus.FAILED,
                    ImportCounts(),
                    error_message=str(exc),
                )
            raise UpstreamProviderError(
                f"Could not fetch participants for meeting {meeting_uuid}: {exc}"
            ) from exc

    def _actual_start(
        self,
        details: Optional[MeetingDetails],
        events: List[RawParticipantEvent],
    ) -> datetime:
        if details is not None and details.start_time is not None:
            return to_utc(details.start_time)
        start = min(to_utc(e.join_time) for e in events)
        logger.info("Using earliest participant join %s as actual start", start.isoformat())
        return start

    async def _merge_participants(
        self,
        events: List[RawParticipantEvent],
        actual_end: datetime,
    ) -> Dict[str, ParticipantRecord]:
        resolved = await self.resolver.resolve_many(e.email for e in events)
        return merge_segments(events, resolved, actual_end)

    def _effective_end(
        self,
        session: SessionInfo,
        cliff: CliffDetectionResult,
        actual_start: datetime,
        actual_end: datetime,
    ) -> Tuple[datetime, EffectiveEndSource]:
        if session.formal_end_minutes and session.formal_end_minutes > 0:
            formal_end = actual_start + timedelta(minutes=session.formal_end_minutes)
            return min(formal_end, actual_end), EffectiveEndSource.FORMAL_END

        if cliff.detected and cliff.effective_end_minutes is not None and not session.cliff_dismissed:
            cliff_end = actual_start + timedelta(minutes=cliff.effective_end_minutes)
            return min(cliff_end, actual_end), EffectiveEndSource.CLIFF

        return actual_end, EffectiveEndSource.ACTUAL_END

    def _log_cliff(
        self,
        session_id: str,
        cliff: CliffDetectionResult,
        end_source: Optional[EffectiveEndSource],
    ) -> None:
        if cliff.detected:
            logger.info(
                "Cliff detected for session %s at %s min (confidence=%s, applied=%s)",
                session_id,
                cliff.effective_end_minutes,
                cliff.confidence.value if cliff.confidence else None,
                end_source == EffectiveEndSource.CLIFF,
            )
        else:
            logger.info(
                "No cliff for session %s (%s)",
                session_id,
                cliff.reason.value if cliff.reason else "unknown",
            )

    async def _save_cliff(self, session_id: str, cliff: CliffDetectionResult) -> None:
        try:
            await self.store.save_cliff_detection(session_id, cliff)
        except Exception as exc:
            logger.error("Failed to store cliff detection for session %s: %s", session_id, exc)

    def _build_record(
        self,
        session_id: str,
        participant: ParticipantRecord,
        window: SessionWindow,
    ) -> AttendanceRecordWrite:
        clipped = clipped_duration_seconds(participant.segments, window.effective_end)
        return AttendanceRecordWrite(
            session_id=session_id,
            user_id=participant.user_id,
            participant_key=participant.key,
            provider_email=participant.provider_email,
            join_time=participant.segments[0].join_time,
            leave_time=participant.segments[-1].leave_time,
            duration_seconds=round_half_up(clipped),
            attendance_percentage=attendance_percentage(clipped, window.effective_duration_minutes),
            segments=participant.segments,
        )

    async def _persist(
        self,
        session_id: str,
        records: List[AttendanceRecordWrite],
    ) -> Tuple[ImportCounts, List[str]]:
        counts = ImportCounts()
        errors: List[str] = []

        for record in records:
            try:
                await self.store.upsert_attendance_record(record)
            except Exception as exc:
                logger.error(
                    "Failed to write attendance for %s in session %s: %s",
                    record.provider_email,
                    session_id,
                    exc,
                )
                counts.failed += 1
                errors.append(f"{record.provider_email}: {exc}")
                continue

            if record.user_id:
                counts.imported += 1
            else:
                counts.unmatched += 1

        try:
            pruned = await self.store.prune_session_attendance(
                session_id, [(r.user_id, r.participant_key) for r in records]
            )
        except Exception as exc:
            logger.error("Failed to prune stale attendance for session %s: %s", session_id, exc)
            errors.append(f"prune: {exc}")
        else:
            if pruned:
                logger.info("Removed %d stale attendance rows from session %s", pruned, session_id)

        return counts, errors

    async def _record_audit(
        self,
        meeting_uuid: str,
        session_id: str,
        status: ImportStatus,
        counts: ImportCounts,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            await self.store.record_import_audit(
                meeting_uuid, session_id, status, counts, error_message=error_message
            )
        except Exception as exc:
            logger.error("Failed to record import audit for session %s: %s", session_id, exc)
