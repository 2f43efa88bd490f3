import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Union

from fastapi import Depends, Header, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mockoauth import utils
from mockoauth.db import sessions
from mockoauth.db.models import Clients
from mockoauth.db.store import find_client_by_token
from mockoauth.exceptions import ApiError, ValidationFailedError

logger = logging.getLogger(__name__)


class BypassReason(str, Enum):
    """Ways a request is let through without a store-backed token check."""

    NO_CREDENTIALS = "no_credentials"
    BASIC_SCHEME = "basic_scheme"
    LOAD_TEST_TOKEN = "load_test_token"
    LOAD_TEST_CLIENT = "load_test_client"


class TokenStrictness(str, Enum):
    # strict: a token found only in the ledger is always rejected
    # lenient: it is accepted while the pair's current token is still valid
    STRICT = "strict"
    LENIENT = "lenient"


@dataclass(frozen=True)
class Passthrough:
    reason: BypassReason


@dataclass(frozen=True)
class Authenticated:
    client: Clients


@dataclass(frozen=True)
class Rejected:
    status_code: int
    code: int
    message: str

    def to_exception(self) -> ApiError:
        return ApiError(self.status_code, self.code, self.message, headers={"WWW-Authenticate": "Bearer"})


AuthResult = Union[Passthrough, Authenticated, Rejected]

MISSING_AUTHORIZATION = Rejected(status.HTTP_401_UNAUTHORIZED, 40101, "missing_authorization")
INVALID_TOKEN = Rejected(status.HTTP_401_UNAUTHORIZED, 40102, "invalid_token")
TOKEN_EXPIRED = Rejected(status.HTTP_401_UNAUTHORIZED, 40103, "token_expired")


def is_load_test_client(client: Clients) -> bool:
    marker = utils.LOAD_TEST_CLIENT_MARKER
    return any(marker in (value or "").lower() for value in (client.client_id, client.client_secret))


async def authenticate(
    authorization: str | None,
    db: AsyncSession,
    now: datetime,
    strictness: TokenStrictness = TokenStrictness.STRICT,
    anonymous_passthrough: bool = False,
) -> AuthResult:
    """
    Resolve an Authorization header to an authentication outcome.

    Args:
        authorization (str | None): Raw Authorization header value.
        db (AsyncSession): Session used for the token lookups.
        now (datetime): Current instant, compared against the stored expiry.
        strictness (TokenStrictness): Whether a rotated-away token may pass while the current one is valid.
        anonymous_passthrough (bool): Let header-less requests through instead of rejecting them.

    Raises:
        SQLAlchemyError: If the store lookup fails.

    Returns:
        AuthResult: Passthrough, Authenticated or Rejected.
    """
    if not authorization:
        if anonymous_passthrough:
            return Passthrough(BypassReason.NO_CREDENTIALS)
        return MISSING_AUTHORIZATION

    if authorization.startswith("Basic"):
        return Passthrough(BypassReason.BASIC_SCHEME)

    if not authorization.startswith("Bearer "):
        return MISSING_AUTHORIZATION

    token = authorization[len("Bearer ") :].strip()

    if token in utils.LOAD_TEST_TOKENS:
        return Passthrough(BypassReason.LOAD_TEST_TOKEN)

    client = await find_client_by_token(db, token)
    if not client or not client.current_token:
        return INVALID_TOKEN

    if is_load_test_client(client):
        return Passthrough(BypassReason.LOAD_TEST_CLIENT)

    expiry = utils.parse_iso(client.token_expires_at)
    if expiry is None or now > expiry:
        return TOKEN_EXPIRED

    if strictness is TokenStrictness.STRICT and token != client.current_token:
        return INVALID_TOKEN

    return Authenticated(client)


def get_now() -> datetime:
    return utils.utcnow()


def get_strictness() -> TokenStrictness:
    if utils.TOKEN_STRICTNESS == TokenStrictness.LENIENT.value:
        return TokenStrictness.LENIENT
    return TokenStrictness.STRICT


async def get_auth_context(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(sessions.get_async_session),
    now: datetime = Depends(get_now),
) -> Passthrough | Authenticated:
    try:
        result = await authenticate(
            authorization,
            db,
            now,
            strictness=get_strictness(),
            anonymous_passthrough=utils.ANONYMOUS_PASSTHROUGH,
        )
    except SQLAlchemyError:
        logger.exception("Bearer token validation failed")
        raise ValidationFailedError()

    if isinstance(result, Rejected):
        logger.warning("Request rejected: %s", result.message)
        raise result.to_exception()

    if isinstance(result, Passthrough):
        logger.debug("Request let through without token check: %s", result.reason.value)

    return result


async def read_body(request: Request) -> dict[str, Any]:
    """
    Parse a JSON or form body. Anything else, including malformed JSON, reads as empty.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {key: value for key, value in form.items()}

    return {}


async def read_params(request: Request, body: dict[str, Any] = Depends(read_body)) -> dict[str, Any]:
    """
    Merge query string and body parameters, a body value wins unless it is null.
    """
    params: dict[str, Any] = dict(request.query_params)
    for key, value in body.items():
        if value is not None:
            params[key] = value
    return params


auth_context_dependency = Annotated[Passthrough | Authenticated, Depends(get_auth_context)]
