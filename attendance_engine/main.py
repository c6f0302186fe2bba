# attendance_engine/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI

from attendance_engine.api.routes import aliases, attendance, cliff, health
from attendance_engine.core.config import get_settings
from attendance_engine.core.logging import setup_logging
from attendance_engine.db.session import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    settings = get_settings()
    logger = setup_logging(settings.LOG_LEVEL)
    await init_db()
    logger.info("%s started (env=%s)", settings.APP_NAME, settings.APP_ENV)
    yield


def create_app() -> FastAPI:
    """
    Application factory for the attendance reconciliation engine.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Reconciles Zoom participant join/leave data into per-session attendance\n"
            "records: identity resolution, segment merging, announced-end (cliff)\n"
            "detection and percentage calculation against an effective end."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Routers
    app.include_router(health.router)
    app.include_router(attendance.router)
    app.include_router(cliff.router)
    app.include_router(aliases.router)

    return app


app = create_app()
