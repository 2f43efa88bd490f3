import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mockoauth import utils
from mockoauth.db import sessions, store
from mockoauth.db.schemas.admin import AdminMessage, ClientMetrics
from mockoauth.db.schemas.tokens import IssuedTokenEntry, TokenListing
from mockoauth.deps import get_now, read_params
from mockoauth.exceptions import AdminError
from mockoauth.responses import JsonResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

NOT_CONFIGURED = "Token store not configured"


def require_credentials(params: dict[str, Any] = Depends(read_params)) -> tuple[str, str]:
    client_id = params.get("client_id")
    client_secret = params.get("client_secret")
    if not client_id or not client_secret:
        raise AdminError(
            status.HTTP_400_BAD_REQUEST, {"error": "client_id and client_secret are required"}
        )
    return str(client_id), str(client_secret)


def message(text: str, client_id: str, **extra: Any) -> JsonResponse:
    content = AdminMessage(message=text, client_id=client_id, **extra).model_dump(exclude_none=True)
    return JsonResponse(status_code=status.HTTP_200_OK, content=content)


@router.post("/reset", summary="Reset everything but the credentials of a client")
async def reset(
    credentials: tuple[str, str] = Depends(require_credentials),
    db: AsyncSession = Depends(sessions.get_async_session),
) -> JsonResponse:
    client_id, client_secret = credentials
    if utils.STATELESS_TOKENS:
        return message(f"{NOT_CONFIGURED}; nothing to reset.", client_id)

    try:
        matched = await store.reset_client(db, client_id, client_secret)
    except SQLAlchemyError as e:
        logger.exception("admin.reset failed")
        raise AdminError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": "Reset failed", "details": str(e)}
        )

    logger.info("Reset client %s (matched=%s)", client_id, matched)
    return message("reset ok" if matched else "no data to reset", client_id)


@router.get("/metrics", summary="Per-endpoint usage of a client")
async def metrics(
    credentials: tuple[str, str] = Depends(require_credentials),
    db: AsyncSession = Depends(sessions.get_async_session),
) -> JsonResponse:
    client_id, client_secret = credentials
    if utils.STATELESS_TOKENS:
        return message(f"{NOT_CONFIGURED}; no metrics.", client_id)

    try:
        client = await store.get_client(db, client_id, client_secret)
        if not client:
            return message("no data", client_id)
        usage = await store.get_usage(db, client.id)
    except SQLAlchemyError as e:
        logger.exception("admin.metrics failed")
        raise AdminError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": "Metrics failed", "details": str(e)}
        )

    content = ClientMetrics(
        clientId=client.client_id,
        perEndpointUsage=usage,
        nextTokenTtlSeconds=utils.normalize_ttl(client.next_token_ttl_seconds),
    )
    return JsonResponse(status_code=status.HTTP_200_OK, content=content.model_dump())


@router.post("/config", summary="Set the TTL applied on the next token rotation")
async def config(
    credentials: tuple[str, str] = Depends(require_credentials),
    params: dict[str, Any] = Depends(read_params),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    client_id, client_secret = credentials
    ttl = utils.normalize_ttl(params.get("ttlSeconds"))
    if ttl is None:
        raise AdminError(status.HTTP_400_BAD_REQUEST, {"error": "ttlSeconds must be > 0"})

    if utils.STATELESS_TOKENS:
        return message(f"{NOT_CONFIGURED}; config ignored.", client_id, ttlSeconds=ttl)

    try:
        await store.set_next_ttl(db, client_id, client_secret, ttl, now)
    except SQLAlchemyError as e:
        logger.exception("admin.config failed")
        raise AdminError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": "Config failed", "details": str(e)}
        )

    return message("config ok", client_id, ttlSeconds=ttl)


@router.get("/tokens", summary="List issued tokens of a client", response_model=TokenListing)
async def tokens(
    credentials: tuple[str, str] = Depends(require_credentials),
    db: AsyncSession = Depends(sessions.get_async_session),
) -> JsonResponse:
    client_id, client_secret = credentials
    try:
        client = await store.get_client(db, client_id, client_secret)
        if not client:
            return JsonResponse(status_code=status.HTTP_200_OK, content=TokenListing(client_id=client_id).model_dump())
        issued = await store.list_issued_tokens(db, client.id)
    except SQLAlchemyError as e:
        logger.exception("admin.tokens failed")
        raise AdminError(status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": str(e)})

    entries = [
        IssuedTokenEntry(
            index=index,
            token=entry.token,
            issuedAt=entry.issued_at,
            expiresAt=entry.expires_at,
            active=entry.active is True,
            isCurrent=entry.token == client.current_token,
        )
        for index, entry in enumerate(issued, start=1)
    ]
    listing = TokenListing(
        client_id=client.client_id,
        tokenHits=client.token_hits or 0,
        tokenRotations=client.token_rotations or 0,
        currentToken=client.current_token,
        tokenExpiresAt=client.token_expires_at,
        count=len(entries),
        issuedTokens=entries,
    )
    return JsonResponse(status_code=status.HTTP_200_OK, content=listing.model_dump())
