import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mockoauth import utils
from mockoauth.db import sessions, store
from mockoauth.db.schemas.tokens import TokenResponse
from mockoauth.deps import get_now, read_params
from mockoauth.exceptions import InvalidClientError, ServerError, UnsupportedGrantTypeError
from mockoauth.responses import JsonResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["OAuth"])


def as_text(value: Any) -> str | None:
    """
    JSON bodies may carry numbers or booleans where a string is expected
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


async def issue_stateless_token(
    db: AsyncSession, client_id: str, client_secret: str, scope: str
) -> TokenResponse:
    """
    Mint a token without recording it. The pair's TTL override is honoured when one was stored.
    """
    ttl = utils.select_ttl(
        await store.get_next_ttl(db, client_id, client_secret),
        utils.STATELESS_DEFAULT_TTL_SECONDS,
    )
    return TokenResponse(
        access_token=utils.generate_token(),
        token_type=utils.TOKEN_TYPE,
        expires_in=ttl,
        scope=scope,
    )


async def issue_token(
    db: AsyncSession,
    client_id: str | None,
    client_secret: str | None,
    grant_type: str | None = None,
    scope: str | None = None,
    now: datetime | None = None,
) -> TokenResponse:
    """
    Issue a client-credentials token, reusing the current one while it is valid

    Args:
        db (AsyncSession): The database session.
        client_id (str | None): Client identifier.
        client_secret (str | None): Client secret.
        grant_type (str | None): Must be "client_credentials", which is also the default.
        scope (str | None): Requested scope, "default" when absent.
        now (datetime | None): Current instant. Defaults to utcnow().

    Raises:
        InvalidClientError: If client_id or client_secret is missing.
        UnsupportedGrantTypeError: If grant_type is not client_credentials.
        SQLAlchemyError: If the credential store fails.

    Returns:
        TokenResponse: The current or freshly rotated token.
    """
    if grant_type is None:
        grant_type = utils.CLIENT_CREDENTIALS_GRANT
    if scope is None:
        scope = utils.DEFAULT_SCOPE
    now = now or utils.utcnow()

    if not client_id or not client_secret:
        raise InvalidClientError()
    if grant_type != utils.CLIENT_CREDENTIALS_GRANT:
        raise UnsupportedGrantTypeError()

    if utils.STATELESS_TOKENS:
        return await issue_stateless_token(db, client_id, client_secret, scope)

    client = await store.get_or_create_client(db, client_id, client_secret, now, scope=scope)

    # Counted on every call, reuse included
    await store.record_token_hit(db, client.id)

    expiry = utils.parse_iso(client.token_expires_at)
    if client.current_token and expiry is not None and now < expiry:
        return TokenResponse(
            access_token=client.current_token,
            token_type=client.token_type or utils.TOKEN_TYPE,
            expires_in=utils.remaining_seconds(now, expiry),
            scope=client.scope or scope,
        )

    ttl = utils.select_ttl(client.next_token_ttl_seconds, utils.STATEFUL_DEFAULT_TTL_SECONDS)
    token = utils.generate_token()
    new_expiry = await store.rotate_token(db, client.id, token, now, ttl, scope)
    logger.info("Rotated token for client %s, expires at %s", client_id, new_expiry)

    return TokenResponse(access_token=token, token_type=utils.TOKEN_TYPE, expires_in=ttl, scope=scope)


@router.post("/token", summary="Issue a client-credentials access token", response_model=TokenResponse)
async def token(
    params: dict[str, Any] = Depends(read_params),
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> JsonResponse:
    """
    Issue an access token

    Reads client_id, client_secret, grant_type and scope from the body or the query string.
    """
    try:
        issued = await issue_token(
            db,
            client_id=as_text(params.get("client_id")),
            client_secret=as_text(params.get("client_secret")),
            grant_type=as_text(params.get("grant_type")),
            scope=as_text(params.get("scope")),
            now=now,
        )
    except SQLAlchemyError:
        logger.exception("issue_token failed")
        raise ServerError()

    return JsonResponse(status_code=status.HTTP_200_OK, content=issued.model_dump())
