"""
Credential store primitives.

Every credential pair owns one row in ``clients``; the issued-token ledger, usage counters,
sessions and instructors hang off it as child rows. Each public helper here commits its own
work so that callers get the same single-operation atomicity a document store would give.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mockoauth.db.models import Clients, EndpointUsage, Instructors, IssuedTokens, VirtualSessions
from mockoauth.utils import TOKEN_TYPE, expires_at, to_iso

NO_SYNC = {"synchronize_session": False}


async def get_client(db: AsyncSession, client_id: str, client_secret: str) -> Clients | None:
    result = await db.execute(
        select(Clients)
        .where(Clients.client_id == client_id, Clients.client_secret == client_secret)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_client(
    db: AsyncSession,
    client_id: str,
    client_secret: str,
    now: datetime,
    scope: str | None = None,
) -> Clients:
    """
    Return the record for the pair, inserting it on first use.

    Token issuance seeds ``token_type`` and ``scope`` on insert; other writers only set the key.
    """
    client = await get_client(db, client_id, client_secret)
    if client:
        return client

    client = Clients(
        client_id=client_id,
        client_secret=client_secret,
        created_at=to_iso(now),
        token_type=TOKEN_TYPE if scope is not None else None,
        scope=scope,
        token_hits=0,
        token_rotations=0,
    )
    db.add(client)
    try:
        await db.commit()
    except IntegrityError:
        # Another request inserted the same pair first
        await db.rollback()
        client = await get_client(db, client_id, client_secret)
    return client


async def bump_usage(db: AsyncSession, client_pk: int, endpoint: str) -> None:
    """
    Add one to the usage counter of ``endpoint`` without committing.
    """
    result = await db.execute(
        update(EndpointUsage)
        .where(EndpointUsage.client_pk == client_pk, EndpointUsage.endpoint == endpoint)
        .values(count=EndpointUsage.count + 1)
        .execution_options(**NO_SYNC)
    )
    if result.rowcount == 0:
        db.add(EndpointUsage(client_pk=client_pk, endpoint=endpoint, count=1))


async def increment_usage(db: AsyncSession, client_pk: int, endpoint: str) -> None:
    await bump_usage(db, client_pk, endpoint)
    try:
        await db.commit()
    except IntegrityError:
        # Lost the race to create the counter row, it exists now
        await db.rollback()
        await bump_usage(db, client_pk, endpoint)
        await db.commit()


async def record_token_hit(db: AsyncSession, client_pk: int) -> None:
    await db.execute(
        update(Clients)
        .where(Clients.id == client_pk)
        .values(token_hits=Clients.token_hits + 1)
        .execution_options(**NO_SYNC)
    )
    await db.commit()
    await increment_usage(db, client_pk, "token")


async def find_client_by_token(db: AsyncSession, token: str) -> Clients | None:
    """
    Find the owner of ``token``.

    The current token is checked first. A rotated-away token is still traced to its owner through
    the issued-token ledger so that callers can report a precise reason for rejecting it.
    """
    if not token:
        return None

    result = await db.execute(
        select(Clients).where(Clients.current_token == token).limit(1).execution_options(populate_existing=True)
    )
    client = result.scalars().first()
    if client:
        return client

    result = await db.execute(
        select(Clients)
        .join(IssuedTokens, IssuedTokens.client_pk == Clients.id)
        .where(IssuedTokens.token == token)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def rotate_token(
    db: AsyncSession,
    client_pk: int,
    token: str,
    now: datetime,
    ttl_seconds: int | float,
    scope: str,
) -> str:
    """
    Make ``token`` the only active token of the pair and append it to the ledger.

    Returns the new expiry as stored.
    """
    issued_at = to_iso(now)
    expiry = to_iso(expires_at(now, ttl_seconds))

    await db.execute(
        update(IssuedTokens).where(IssuedTokens.client_pk == client_pk).values(active=False).execution_options(**NO_SYNC)
    )
    await db.execute(
        update(Clients)
        .where(Clients.id == client_pk)
        .values(
            current_token=token,
            token_expires_at=expiry,
            token_type=TOKEN_TYPE,
            scope=scope,
            token_rotations=Clients.token_rotations + 1,
        )
        .execution_options(**NO_SYNC)
    )
    db.add(IssuedTokens(client_pk=client_pk, token=token, issued_at=issued_at, expires_at=expiry, active=True))
    await db.commit()
    return expiry


async def get_next_ttl(db: AsyncSession, client_id: str, client_secret: str) -> float | None:
    result = await db.execute(
        select(Clients.next_token_ttl_seconds).where(
            Clients.client_id == client_id, Clients.client_secret == client_secret
        )
    )
    return result.scalars().first()


async def set_next_ttl(
    db: AsyncSession, client_id: str, client_secret: str, ttl_seconds: int | float, now: datetime
) -> None:
    client = await get_or_create_client(db, client_id, client_secret, now)
    await db.execute(
        update(Clients)
        .where(Clients.id == client.id)
        .values(next_token_ttl_seconds=ttl_seconds)
        .execution_options(**NO_SYNC)
    )
    await db.commit()


async def get_usage(db: AsyncSession, client_pk: int) -> dict[str, int]:
    result = await db.execute(
        select(EndpointUsage.endpoint, EndpointUsage.count)
        .where(EndpointUsage.client_pk == client_pk)
        .order_by(EndpointUsage.id)
    )
    return {endpoint: count for endpoint, count in result.all()}


async def list_issued_tokens(db: AsyncSession, client_pk: int) -> list[IssuedTokens]:
    result = await db.execute(
        select(IssuedTokens).where(IssuedTokens.client_pk == client_pk).order_by(IssuedTokens.id)
    )
    return list(result.scalars().all())


async def reset_client(db: AsyncSession, client_id: str, client_secret: str) -> bool:
    """
    Blank everything but the key of the pair. Returns False when there was no record.
    """
    client = await get_client(db, client_id, client_secret)
    if not client:
        return False

    for model in (IssuedTokens, EndpointUsage, VirtualSessions, Instructors):
        await db.execute(delete(model).where(model.client_pk == client.id).execution_options(**NO_SYNC))

    await db.execute(
        update(Clients)
        .where(Clients.id == client.id)
        .values(
            current_token=None,
            token_expires_at=None,
            token_hits=0,
            token_rotations=0,
            last_session_id=None,
        )
        .execution_options(**NO_SYNC)
    )
    await db.commit()
    return True


async def add_session(db: AsyncSession, client_pk: int, session_id: str, body: Any, now: datetime) -> None:
    timestamp = to_iso(now)
    db.add(
        VirtualSessions(
            client_pk=client_pk,
            session_id=session_id,
            status="active",
            created_at=timestamp,
            updated_at=timestamp,
            request=body,
        )
    )
    await db.execute(
        update(Clients).where(Clients.id == client_pk).values(last_session_id=session_id).execution_options(**NO_SYNC)
    )
    await bump_usage(db, client_pk, "createsession")
    await db.commit()


async def add_instructor(
    db: AsyncSession, client_pk: int, instructor_id: str, body: dict[str, Any], now: datetime
) -> None:
    timestamp = to_iso(now)
    db.add(
        Instructors(
            client_pk=client_pk,
            instructor_id=instructor_id,
            email=body.get("Email"),
            first_name=body.get("FirstName"),
            last_name=body.get("LastName"),
            status="active",
            created_at=timestamp,
            updated_at=timestamp,
            request=body,
        )
    )
    await bump_usage(db, client_pk, "addinstructor")
    await db.commit()


async def _update_first_match(db: AsyncSession, model, client_pk: int, column, value, values: dict[str, Any]) -> bool:
    result = await db.execute(
        select(model.id).where(model.client_pk == client_pk, column == value).order_by(model.id).limit(1)
    )
    row_id = result.scalars().first()
    if row_id is None:
        return False

    await db.execute(update(model).where(model.id == row_id).values(**values).execution_options(**NO_SYNC))
    return True


async def update_first_session(
    db: AsyncSession, client_pk: int, session_id: str, values: dict[str, Any], endpoint: str
) -> bool:
    """
    Update the first session of the pair with ``session_id`` and count the call.

    Nothing is written, not even the usage counter, when no session matches.
    """
    matched = await _update_first_match(
        db, VirtualSessions, client_pk, VirtualSessions.session_id, session_id, values
    )
    if matched:
        await bump_usage(db, client_pk, endpoint)
        await db.commit()
    return matched


async def update_first_instructor(db: AsyncSession, client_pk: int, email: str | None, values: dict[str, Any]) -> bool:
    matched = await _update_first_match(db, Instructors, client_pk, Instructors.email, email, values)
    if matched:
        await bump_usage(db, client_pk, "updateinstructor")
        await db.commit()
    return matched


async def get_sessions(db: AsyncSession, client_pk: int) -> list[VirtualSessions]:
    result = await db.execute(
        select(VirtualSessions).where(VirtualSessions.client_pk == client_pk).order_by(VirtualSessions.id)
    )
    return list(result.scalars().all())


async def get_instructors(db: AsyncSession, client_pk: int) -> list[Instructors]:
    result = await db.execute(
        select(Instructors).where(Instructors.client_pk == client_pk).order_by(Instructors.id)
    )
    return list(result.scalars().all())
