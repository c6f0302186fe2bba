# attendance_engine/api/routes/aliases.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.db.session import get_db
from attendance_engine.schemas.alias import (
    EmailAliasCreate,
    EmailAliasCreated,
    EmailAliasRead,
    UnmatchedEmail,
)
from attendance_engine.services.alias_service import (
    AliasError,
    add_email_alias,
    list_email_aliases,
    list_unmatched_emails,
    rematch_attendance_by_email,
    remove_email_alias,
)

router = APIRouter(prefix="/aliases", tags=["Email aliases"])


@router.get(
    "",
    response_model=list[EmailAliasRead],
    summary="List email aliases",
    description="All aliases, or only those of `user_id` when given.",
)
async def get_aliases(
    user_id: str | None = Query(default=None, description="Restrict to one user."),
    db: AsyncSession = Depends(get_db),
) -> list[EmailAliasRead]:
    aliases = await list_email_aliases(db, user_id=user_id)
    return [EmailAliasRead.model_validate(a) for a in aliases]


@router.get(
    "/unmatched",
    response_model=list[UnmatchedEmail],
    summary="List provider emails that matched no user",
    description=(
        "Unmatched attendance rows grouped by provider email, with the sessions they "
        "appeared in. Adding an alias for one of them re-links its rows."
    ),
)
async def get_unmatched_emails(db: AsyncSession = Depends(get_db)) -> list[UnmatchedEmail]:
    return await list_unmatched_emails(db)


@router.post(
    "",
    response_model=EmailAliasCreated,
    status_code=HTTPStatus.CREATED,
    summary="Link a provider email to a user",
    responses={
        400: {
            "description": "Unknown user or alias already linked.",
            "content": {
                "application/json": {
                    "example": {"detail": "This email is already linked to a user"}
                }
            },
        },
    },
)
async def create_alias(
    payload: EmailAliasCreate,
    db: AsyncSession = Depends(get_db),
) -> EmailAliasCreated:
    try:
        alias = await add_email_alias(db, payload.user_id, payload.alias_email)
    except AliasError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    rematched = await rematch_attendance_by_email(db, alias.alias_email, alias.user_id)
    return EmailAliasCreated(
        alias=EmailAliasRead.model_validate(alias),
        rematched_records=rematched,
    )


@router.delete(
    "/{alias_id}",
    status_code=HTTPStatus.NO_CONTENT,
    summary="Remove an email alias",
    responses={404: {"description": "Alias not found."}},
)
async def delete_alias(
    alias_id: str = Path(..., description="Identifier of the alias."),
    db: AsyncSession = Depends(get_db),
) -> Response:
    if not await remove_email_alias(db, alias_id):
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Alias not found.")
    return Response(status_code=HTTPStatus.NO_CONTENT)
