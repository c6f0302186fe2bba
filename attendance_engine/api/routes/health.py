# attendance_engine/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field
from sqlalchemy.engine import make_url

from attendance_engine.core.config import get_settings


router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(..., examples=["ok"])
    app_name: str = Field(..., examples=["Attendance Reconciliation Engine"])
    environment: str = Field(..., examples=["local"])
    database_backend: str = Field(
        ...,
        description="Backend of the configured DB_URL. Credentials are never reported.",
        examples=["sqlite"],
    )
    zoom_configured: bool = Field(
        ...,
        description="True if Zoom server-to-server OAuth credentials are set.",
    )
    cliff_window_minutes: float = Field(..., examples=[10.0])
    timestamp_utc: datetime


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check for the attendance engine",
    description=(
        "Reports the running configuration without calling Zoom or the database: "
        "database backend, whether Zoom credentials are present and the active "
        "cliff detection window."
    ),
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        database_backend=make_url(settings.DB_URL).get_backend_name(),
        zoom_configured=bool(
            settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET
        ),
        cliff_window_minutes=settings.CLIFF_WINDOW_MINUTES,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
