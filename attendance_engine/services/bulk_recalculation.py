# attendance_engine/services/bulk_recalculation.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.schemas.attendance import (
    BulkRecalculationItem,
    BulkRecalculationSummary,
)
from attendance_engine.services.attendance_calculator import (
    AttendanceCalculator,
    DurationUnavailableError,
    InvalidAttendanceRequest,
    UpstreamProviderError,
)
from attendance_engine.services.attendance_store import SqlAttendanceStore

logger = logging.getLogger(__name__)


async def recalculate_all_sessions(
    session_factory: async_sessionmaker[AsyncSession],
    build_calculator: Callable[[AsyncSession], AttendanceCalculator],
    concurrency: int = 3,
) -> BulkRecalculationSummary:
    """
    Recalculate attendance for every session linked to a provider meeting.

    Behavior
    --------
    - The meeting UUID of each session is the one of its latest import,
      else the meeting id configured on the session.
    - At most `concurrency` sessions run at once. Each run gets its own DB
      session and calculator, so runs share no mutable state.
    - A failing session is reported as `error` and does not stop the others.
    """
    async with session_factory() as db:
        store = SqlAttendanceStore(db)
        sessions = await store.list_sessions_with_meetings()
        targets = [(s.id, await store.latest_meeting_uuid(s.id)) for s in sessions]

    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def run_one(session_id: str, meeting_uuid: Optional[str]) -> BulkRecalculationItem:
        if not meeting_uuid:
            return BulkRecalculationItem(
                session_id=session_id, status="skipped", error="No meeting UUID"
            )
        async with semaphore:
            async with session_factory() as db:
                calculator = build_calculator(db)
                try:
                    result = await calculator.calculate_session_attendance(session_id, meeting_uuid)
                except (InvalidAttendanceRequest, UpstreamProviderError, DurationUnavailableError) as exc:
                    logger.warning("Bulk recalculation failed for session %s: %s", session_id, exc)
                    return BulkRecalculationItem(
                        session_id=session_id,
                        meeting_uuid=meeting_uuid,
                        status="error",
                        error=str(exc),
                    )
                except Exception as exc:
                    logger.exception("Unexpected error recalculating session %s", session_id)
                    return BulkRecalculationItem(
                        session_id=session_id,
                        meeting_uuid=meeting_uuid,
                        status="error",
                        error=f"{type(exc).__name__}: {exc}",
                    )
        return BulkRecalculationItem(
            session_id=session_id,
            meeting_uuid=meeting_uuid,
            status="ok",
            result=result,
        )

    items: List[BulkRecalculationItem] = list(
        await asyncio.gather(*(run_one(sid, uuid) for sid, uuid in targets))
    )

    summary = BulkRecalculationSummary(
        total=len(items),
        succeeded=sum(1 for i in items if i.status == "ok"),
        skipped=sum(1 for i in items if i.status == "skipped"),
        errors=sum(1 for i in items if i.status == "error"),
        results=items,
    )
    logger.info(
        "Bulk recalculation finished: total=%d ok=%d skipped=%d errors=%d",
        summary.total,
        summary.succeeded,
        summary.skipped,
        summary.errors,
    )
    return summary
