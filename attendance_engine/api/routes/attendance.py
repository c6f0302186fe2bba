# attendance_engine/api/routes/attendance.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.api.dependencies.engine import (
    build_calculator,
    get_attendance_calculator,
    get_meeting_provider,
    get_session_factory,
    to_http_error,
)
from attendance_engine.core.config import get_settings
from attendance_engine.db.session import get_db
from attendance_engine.schemas.attendance import (
    AttendanceCalculateRequest,
    AttendanceCalculationResult,
    AttendancePreview,
    BulkRecalculationSummary,
)
from attendance_engine.services.attendance_calculator import (
    AttendanceCalculator,
    DurationUnavailableError,
    InvalidAttendanceRequest,
    UpstreamProviderError,
)
from attendance_engine.services.attendance_store import SqlAttendanceStore
from attendance_engine.services.bulk_recalculation import recalculate_all_sessions
from attendance_engine.services.interfaces import MeetingProvider

router = APIRouter(prefix="/attendance", tags=["Attendance"])


@router.post(
    "/calculate",
    response_model=AttendanceCalculationResult,
    status_code=HTTPStatus.OK,
    summary="Reconcile attendance of a session from its Zoom meeting",
    description=(
        "Fetches the meeting's participant join/leave rows, resolves emails to users "
        "(direct match, then alias), merges rejoins into segments, detects an "
        "announced early end and writes one attendance row per participant.\n\n"
        "`actual_duration_minutes` is optional; when omitted the duration is taken from "
        "Zoom, then from the session record. `duration_source` tells which one was used.\n\n"
        "Re-running the calculation with unchanged data yields identical rows."
    ),
    responses={
        400: {"description": "Missing or invalid identifiers or duration."},
        404: {"description": "Unknown session."},
        422: {"description": "No duration could be determined."},
        502: {"description": "Zoom participant data could not be fetched."},
    },
)
async def calculate_attendance(
    payload: AttendanceCalculateRequest,
    calculator: AttendanceCalculator = Depends(get_attendance_calculator),
) -> AttendanceCalculationResult:
    try:
        return await calculator.calculate_session_attendance(
            payload.session_id,
            payload.meeting_uuid,
            payload.actual_duration_minutes,
        )
    except (InvalidAttendanceRequest, UpstreamProviderError, DurationUnavailableError) as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/preview",
    response_model=AttendancePreview,
    summary="Preview reconciled attendance of a session",
    description=(
        "Returns matched participants (with profile data) and unmatched provider "
        "emails for the session, highest percentage first, with summary counts."
    ),
)
async def preview_attendance(
    session_id: str = Query(..., min_length=1, description="Session to preview."),
    db: AsyncSession = Depends(get_db),
) -> AttendancePreview:
    store = SqlAttendanceStore(db)
    if await store.get_session_info(session_id) is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=f"Unknown session {session_id}")
    return await store.build_attendance_preview(session_id)


@router.post(
    "/recalculate-all",
    response_model=BulkRecalculationSummary,
    summary="Recalculate attendance for every session with a Zoom meeting",
    description=(
        "Runs the reconciliation once per session with bounded parallelism "
        "(`BULK_RECALC_CONCURRENCY`). Failing sessions are reported individually."
    ),
)
async def recalculate_all(
    provider: MeetingProvider = Depends(get_meeting_provider),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BulkRecalculationSummary:
    settings = get_settings()
    return await recalculate_all_sessions(
        session_factory,
        lambda db: build_calculator(db, provider),
        concurrency=settings.BULK_RECALC_CONCURRENCY,
    )
