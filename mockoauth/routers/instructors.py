import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pydantic import ValidationError

from mockoauth.db import sessions, store
from mockoauth.db.schemas.instructors import InstructorUpdate
from mockoauth.deps import Authenticated, auth_context_dependency, get_now, read_body
from mockoauth.exceptions import ApiError, InstructorNotFoundError, OperationFailedError
from mockoauth.responses import JsonResponse, ok
from mockoauth.utils import generate_record_id, to_iso

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Instructors"])


async def read_instructor_update(body: dict[str, Any] = Depends(read_body)) -> InstructorUpdate:
    try:
        return InstructorUpdate.model_validate(body)
    except ValidationError:
        raise ApiError(status.HTTP_400_BAD_REQUEST, 40030, "invalid_instructor_payload")


@router.post("/instructor", summary="Add an instructor")
async def add_instructor(
    request: Request,
    ctx: auth_context_dependency,
    body: dict[str, Any] = Depends(read_body),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    """
    Add an instructor

    Args:
        request (Request): Incoming request, used for the correlation id.
        ctx (auth_context_dependency): Authentication outcome.
        body (dict): Instructor payload with Email, FirstName and LastName.
        db (AsyncSession): The database session.
        now (datetime): Current instant.

    Raises:
        OperationFailedError: If the instructor could not be stored.

    Returns:
        JsonResponse: Success envelope.
    """
    if isinstance(ctx, Authenticated):
        instructor_id = generate_record_id("inst", ctx.client.client_id, now)
        try:
            await store.add_instructor(db, ctx.client.id, instructor_id, body, now)
        except SQLAlchemyError:
            logger.exception("addInstructor failed")
            raise OperationFailedError(50013, "add_instructor_failed")

    return JsonResponse(status_code=status.HTTP_200_OK, content=ok(request, now=now))


@router.put("/instructor", summary="Update an instructor")
async def update_instructor(
    request: Request,
    ctx: auth_context_dependency,
    payload: InstructorUpdate = Depends(read_instructor_update),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    """
    Update the instructor whose email is OldEmail

    Body fields: OldEmail, NewEmail, FirstName, LastName, IsActive.
    """
    if isinstance(ctx, Authenticated):
        values = {
            "email": payload.NewEmail,
            "first_name": payload.FirstName,
            "last_name": payload.LastName,
            "status": "active" if payload.IsActive else "inactive",
            "updated_at": to_iso(now),
            "update_request": payload.model_dump(exclude_unset=True),
        }
        try:
            matched = await store.update_first_instructor(db, ctx.client.id, payload.OldEmail, values)
        except SQLAlchemyError:
            logger.exception("updateInstructor failed")
            raise OperationFailedError(50014, "update_instructor_failed")
        if not matched:
            raise InstructorNotFoundError()

    return JsonResponse(status_code=status.HTTP_200_OK, content=ok(request, now=now))
