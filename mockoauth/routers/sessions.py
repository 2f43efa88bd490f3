import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mockoauth.db import sessions, store
from mockoauth.deps import Authenticated, auth_context_dependency, get_now, read_body
from mockoauth.exceptions import ApiError, OperationFailedError, SessionNotFoundError
from mockoauth.responses import JsonResponse, ok
from mockoauth.utils import generate_record_id, to_iso

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sessions"])

# Public meeting link, lets anonymous attendees join
JOIN_URL = "https://teams.microsoft.com/meet/26774560933895?p=O0H4eRZnY6HDk5EQIV"

MOCK_ATTENDEES = [{"email": "instructor@example.com"}]


def extended_option(
    option_type: str,
    option_id: str,
    parent_id: str | None,
    name: str,
    is_checked: bool = False,
    children: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "Type": option_type,
        "Id": option_id,
        "ParentId": parent_id,
        "Name": name,
        "Description": None,
        "Placeholder": None,
        "Value": None,
        "IsNameVisible": True,
        "IsMultiline": False,
        "IsChecked": is_checked,
        "ChildExtendedOptions": children or [],
    }


EXTENDED_OPTIONS = [
    extended_option(
        "Label",
        "1",
        None,
        "Session Extended Options",
        children=[
            extended_option("CheckBox", "2", "1", "Allow Attendee To Enable Camera", is_checked=True),
            extended_option("CheckBox", "3", "1", "Allow Attendee To Enable Mic", is_checked=True),
            extended_option("CheckBox", "4", "1", "Record Automatically"),
        ],
    )
]


async def count_call(db: AsyncSession, ctx, endpoint: str) -> None:
    """
    Best-effort usage bookkeeping for read-only endpoints, a failed write is only logged
    """
    if not isinstance(ctx, Authenticated):
        return
    try:
        await store.increment_usage(db, ctx.client.id, endpoint)
    except SQLAlchemyError:
        logger.exception("%s usage update failed", endpoint)


@router.post("/session", summary="Create a session")
async def create_session(
    request: Request,
    ctx: auth_context_dependency,
    body: dict[str, Any] = Depends(read_body),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    """
    Create a session

    The body is stored as sent. SessionId is optional and generated when missing.
    """
    if isinstance(ctx, Authenticated):
        client = ctx.client
        requested_id = body.get("SessionId")
        session_id = (str(requested_id).strip() if requested_id else "") or generate_record_id(
            "sess", client.client_id, now
        )
        try:
            await store.add_session(db, client.id, session_id, body, now)
        except SQLAlchemyError:
            logger.exception("createSession failed")
            raise OperationFailedError(50010, "create_session_failed")

    return JsonResponse(status_code=status.HTTP_200_OK, content=ok(request, now=now))


@router.put("/session/{SessionId}", summary="Update a session")
async def update_session(
    request: Request,
    SessionId: str,
    ctx: auth_context_dependency,
    body: dict[str, Any] = Depends(read_body),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    # An unknown SessionId is accepted, the provider does not report it
    if isinstance(ctx, Authenticated):
        values = {"status": "updated", "updated_at": to_iso(now), "last_update_request": body}
        try:
            await store.update_first_session(db, ctx.client.id, SessionId.strip(), values, "updatesession")
        except SQLAlchemyError:
            logger.exception("updateSession failed")
            raise OperationFailedError(50011, "update_session_failed")

    return JsonResponse(status_code=status.HTTP_200_OK, content=ok(request, now=now))


@router.delete("/session/{SessionId}", summary="Cancel a session")
async def cancel_session(
    request: Request,
    SessionId: str,
    ctx: auth_context_dependency,
    LoId: str | None = None,
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    session_id = SessionId.strip()
    if not session_id:
        raise ApiError(status.HTTP_400_BAD_REQUEST, 40020, "SessionId is required")

    if isinstance(ctx, Authenticated):
        values = {
            "status": "canceled",
            "updated_at": to_iso(now),
            "cancel_request": {"SessionId": session_id, "LoId": LoId},
        }
        try:
            matched = await store.update_first_session(db, ctx.client.id, session_id, values, "cancelsession")
        except SQLAlchemyError:
            logger.exception("cancelSession failed")
            raise OperationFailedError(50012, "cancel_session_failed")
        if not matched:
            raise SessionNotFoundError()

    return JsonResponse(status_code=status.HTTP_200_OK, content=ok(request, now=now))


@router.get("/session/{SessionId}/attendees", summary="Get session attendance")
async def get_attendance(
    request: Request,
    SessionId: str,
    ctx: auth_context_dependency,
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    await count_call(db, ctx, "getattendance")
    return JsonResponse(
        status_code=status.HTTP_200_OK,
        content=ok(request, data={"attendees": MOCK_ATTENDEES}, now=now),
    )


@router.get("/session/{SessionId}/user/{base64EncodedEmail}/url", summary="Get the join URL of a session")
async def launch_session(
    request: Request,
    SessionId: str,
    base64EncodedEmail: str,
    ctx: auth_context_dependency,
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    await count_call(db, ctx, "launchsession")
    return JsonResponse(
        status_code=status.HTTP_200_OK,
        content=ok(request, data={"joinUrl": JOIN_URL}, now=now),
    )


@router.get("/session/{SessionId}/extendedoptions", summary="Get the extended options of a session")
async def get_extended_options(
    request: Request,
    SessionId: str,
    ctx: auth_context_dependency,
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    """
    Same options for every session, existing or not
    """
    await count_call(db, ctx, "getextendedoptions")
    return JsonResponse(
        status_code=status.HTTP_200_OK,
        content=ok(request, data={"extendedOptions": EXTENDED_OPTIONS}, now=now),
    )
