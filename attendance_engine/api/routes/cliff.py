# attendance_engine/api/routes/cliff.py
from http import HTTPStatus

from fastapi import APIRouter, Depends

from attendance_engine.api.dependencies.engine import get_attendance_calculator, to_http_error
from attendance_engine.schemas.attendance import (
    CliffActionResponse,
    CliffApplyRequest,
    CliffDetectRequest,
    CliffDismissRequest,
)
from attendance_engine.schemas.cliff import CliffDetectionResult
from attendance_engine.services.attendance_calculator import (
    AttendanceCalculator,
    DurationUnavailableError,
    InvalidAttendanceRequest,
    NoParticipantDataError,
    UpstreamProviderError,
)

router = APIRouter(prefix="/cliff", tags=["Cliff detection"])

_CALCULATOR_ERRORS = (
    InvalidAttendanceRequest,
    UpstreamProviderError,
    DurationUnavailableError,
    NoParticipantDataError,
)


@router.post(
    "/detect",
    response_model=CliffDetectionResult,
    status_code=HTTPStatus.OK,
    summary="Detect an announced early end for a session",
    description=(
        "Analyzes final departure times of the meeting's participants and reports "
        "whether most of them left together in the second half (a \"cliff\"). "
        "The result is stored on the session; attendance rows are not changed."
    ),
    responses={
        404: {"description": "Unknown session or no participant data."},
        502: {"description": "Zoom participant data could not be fetched."},
    },
)
async def detect_cliff(
    payload: CliffDetectRequest,
    calculator: AttendanceCalculator = Depends(get_attendance_calculator),
) -> CliffDetectionResult:
    try:
        return await calculator.detect_cliff(payload.session_id, payload.meeting_uuid)
    except _CALCULATOR_ERRORS as exc:
        raise to_http_error(exc) from exc


@router.post(
    "/apply",
    response_model=CliffActionResponse,
    summary="Apply an effective end to a session and recalculate",
    description=(
        "Sets `formal_end_minutes` on the session. It takes precedence over "
        "automatic detection on every later calculation, capped at the actual end."
    ),
)
async def apply_cliff(
    payload: CliffApplyRequest,
    calculator: AttendanceCalculator = Depends(get_attendance_calculator),
) -> CliffActionResponse:
    try:
        minutes, result = await calculator.apply_formal_end(
            payload.session_id, payload.meeting_uuid, payload.formal_end_minutes
        )
    except _CALCULATOR_ERRORS as exc:
        raise to_http_error(exc) from exc
    return CliffActionResponse(formal_end_minutes=minutes, attendance=result)


@router.post(
    "/dismiss",
    response_model=CliffActionResponse,
    summary="Dismiss cliff detection for a session",
    description=(
        "Clears any applied effective end and stops automatic cliffs from being "
        "applied to the session. Recalculates when `meeting_uuid` is given."
    ),
)
async def dismiss_cliff(
    payload: CliffDismissRequest,
    calculator: AttendanceCalculator = Depends(get_attendance_calculator),
) -> CliffActionResponse:
    try:
        result = await calculator.dismiss_cliff(payload.session_id, payload.meeting_uuid)
    except _CALCULATOR_ERRORS as exc:
        raise to_http_error(exc) from exc
    return CliffActionResponse(attendance=result)
