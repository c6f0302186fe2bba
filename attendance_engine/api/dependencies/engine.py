# attendance_engine/api/dependencies/engine.py
from http import HTTPStatus

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.core.config import get_settings
from attendance_engine.db.session import AsyncSessionLocal, get_db
from attendance_engine.services.attendance_calculator import (
    AttendanceCalculator,
    DurationUnavailableError,
    InvalidAttendanceRequest,
    NoParticipantDataError,
    SessionNotFoundError,
    UpstreamProviderError,
)
from attendance_engine.services.attendance_store import SqlAttendanceStore, SqlIdentityStore
from attendance_engine.services.interfaces import MeetingProvider
from attendance_engine.services.zoom_client import ZoomClientError, get_zoom_client


def get_meeting_provider() -> MeetingProvider:
    """
    Shared Zoom client. Responds 503 when Zoom credentials are not configured.
    """
    try:
        return get_zoom_client()
    except ZoomClientError as exc:
        raise HTTPException(status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def build_calculator(db: AsyncSession, provider: MeetingProvider) -> AttendanceCalculator:
    settings = get_settings()
    return AttendanceCalculator(
        provider=provider,
        identity_store=SqlIdentityStore(db),
        store=SqlAttendanceStore(db),
        window_minutes=settings.CLIFF_WINDOW_MINUTES,
        stayer_threshold_minutes=settings.CLIFF_STAYER_THRESHOLD_MINUTES,
    )


async def get_attendance_calculator(
    db: AsyncSession = Depends(get_db),
    provider: MeetingProvider = Depends(get_meeting_provider),
) -> AttendanceCalculator:
    """
    Calculator wired to the request's DB session and the meeting provider.
    """
    return build_calculator(db, provider)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def to_http_error(exc: Exception) -> HTTPException:
    """
    Map calculator errors onto HTTP responses.
    """
    if isinstance(exc, (SessionNotFoundError, NoParticipantDataError)):
        return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidAttendanceRequest):
        return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
    if isinstance(exc, UpstreamProviderError):
        return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, DurationUnavailableError):
        return HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))
