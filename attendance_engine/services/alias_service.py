# attendance_engine/services/alias_service.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.models.attendance import Attendance
from attendance_engine.models.email_alias import UserEmailAlias
from attendance_engine.models.profile import Profile
from attendance_engine.models.session import Session
from attendance_engine.schemas.alias import UnmatchedEmail, UnmatchedSessionRef
from attendance_engine.services.identity_resolver import normalize_email

logger = logging.getLogger(__name__)


class AliasError(ValueError):
    """
    Raised when an alias cannot be created (unknown user, duplicate alias).
    """


async def add_email_alias(db: AsyncSession, user_id: str, alias_email: str) -> UserEmailAlias:
    """
    Link `alias_email` to an existing user.

    The alias is stored lowercased and must be unique across all users.
    """
    normalized = normalize_email(alias_email)
    if not normalized:
        raise AliasError("alias_email is required")

    if await db.get(Profile, user_id) is None:
        raise AliasError(f"Unknown user {user_id}")

    existing = await db.execute(
        select(UserEmailAlias).where(func.lower(UserEmailAlias.alias_email) == normalized)
    )
    if existing.scalar_one_or_none() is not None:
        raise AliasError("This email is already linked to a user")

    alias = UserEmailAlias(user_id=user_id, alias_email=normalized)
    db.add(alias)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise AliasError("This email is already linked to a user") from exc
    await db.refresh(alias)

    logger.info("Added alias %s for user %s", normalized, user_id)
    return alias


async def remove_email_alias(db: AsyncSession, alias_id: str) -> bool:
    """
    Delete an alias. Returns False if it did not exist.
    """
    result = await db.execute(delete(UserEmailAlias).where(UserEmailAlias.id == alias_id))
    await db.commit()
    removed = (result.rowcount or 0) > 0
    if removed:
        logger.info("Removed alias %s", alias_id)
    return removed


async def list_email_aliases(db: AsyncSession, user_id: Optional[str] = None) -> List[UserEmailAlias]:
    stmt = select(UserEmailAlias).order_by(UserEmailAlias.created_at.desc(), UserEmailAlias.alias_email)
    if user_id:
        stmt = stmt.where(UserEmailAlias.user_id == user_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def rematch_attendance_by_email(db: AsyncSession, email: str, user_id: str) -> int:
    """
    Attach existing unmatched attendance rows recorded under `email` to `user_id`.

    Sessions where the user already has a row are left alone; recalculating
    those sessions merges the segments into the user's row.

    Returns
    -------
    int
        Number of rows re-linked.
    """
    normalized = normalize_email(email)

    taken = await db.execute(select(Attendance.session_id).where(Attendance.user_id == user_id))
    sessions_with_row = set(taken.scalars().all())

    result = await db.execute(
        select(Attendance).where(
            Attendance.user_id.is_(None),
            func.lower(Attendance.zoom_user_email) == normalized,
        )
    )
    rematched = 0
    for row in result.scalars().all():
        if row.session_id in sessions_with_row:
            continue
        row.user_id = user_id
        sessions_with_row.add(row.session_id)
        rematched += 1

    await db.commit()
    if rematched:
        logger.info("Re-matched %d attendance rows of %s to user %s", rematched, normalized, user_id)
    return rematched


async def list_unmatched_emails(db: AsyncSession) -> List[UnmatchedEmail]:
    """
    Provider emails that did not resolve to any user, with their sessions.
    """
    stmt = (
        select(Attendance.zoom_user_email, Session.id, Session.title, Session.scheduled_at)
        .join(Session, Session.id == Attendance.session_id)
        .where(Attendance.user_id.is_(None))
        .order_by(Attendance.created_at.desc(), Attendance.zoom_user_email)
    )
    result = await db.execute(stmt)

    groups: Dict[str, UnmatchedEmail] = {}
    for email, session_id, title, scheduled_at in result.all():
        group = groups.setdefault(email, UnmatchedEmail(email=email))
        group.sessions.append(
            UnmatchedSessionRef(session_id=session_id, title=title or "", scheduled_start=scheduled_at)
        )
    return list(groups.values())
