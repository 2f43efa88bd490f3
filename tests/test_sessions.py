import pytest
import pytest_asyncio
from httpx import AsyncClient

from mockoauth import utils
from mockoauth.db import store

CREDENTIALS = {"client_id": "acme", "client_secret": "s3cret"}


@pytest_asyncio.fixture
async def token(request_token) -> str:
    return (await request_token()).json()["access_token"]


@pytest.fixture
def auth_headers(token) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "correlationid": "corr-1"}


async def usage(async_client: AsyncClient) -> dict[str, int]:
    rv = await async_client.get("/admin/metrics", params=CREDENTIALS)
    return rv.json()["perEndpointUsage"]


@pytest.mark.asyncio
async def test_missing_authorization_header(async_client: AsyncClient) -> None:
    rv = await async_client.post("/api/session", json={})
    assert rv.status_code == 401
    body = rv.json()
    assert body["status"] == "error"
    assert body["error"] == {"code": 40101, "message": "missing_authorization"}
    assert body["correlationId"]


@pytest.mark.asyncio
async def test_unknown_token_is_invalid_token(async_client: AsyncClient) -> None:
    rv = await async_client.get("/api/session/abc/attendees", headers={"Authorization": "Bearer unknown"})
    assert rv.status_code == 401
    assert rv.json()["error"] == {"code": 40102, "message": "invalid_token"}


@pytest.mark.asyncio
async def test_expired_token(async_client: AsyncClient, auth_headers, clock) -> None:
    clock.advance(200)
    rv = await async_client.post("/api/session", json={}, headers=auth_headers)
    assert rv.status_code == 401
    assert rv.json()["error"] == {"code": 40103, "message": "token_expired"}


@pytest.mark.asyncio
async def test_rotated_token_gets_client_specific_diagnosis(
    async_client: AsyncClient, request_token, token, clock
) -> None:
    clock.advance(121)
    new_token = (await request_token()).json()["access_token"]
    assert new_token != token

    rv = await async_client.post("/api/session", json={}, headers={"Authorization": f"Bearer {token}"})
    assert rv.status_code == 401
    assert rv.json()["error"]["code"] == 40102

    rv = await async_client.post("/api/session", json={}, headers={"Authorization": f"Bearer {new_token}"})
    assert rv.status_code == 200


@pytest.mark.asyncio
async def test_basic_auth_reaches_handler_without_writes(async_client: AsyncClient, token) -> None:
    rv = await async_client.delete("/api/session/does-not-exist", headers={"Authorization": "Basic xyz"})
    assert rv.status_code == 200
    assert rv.json()["status"] == "success"
    assert "createsession" not in await usage(async_client)


@pytest.mark.asyncio
async def test_anonymous_passthrough_setting(monkeypatch, async_client: AsyncClient) -> None:
    monkeypatch.setattr(utils, "ANONYMOUS_PASSTHROUGH", True)
    rv = await async_client.post("/api/session", json={})
    assert rv.status_code == 200


@pytest.mark.asyncio
async def test_create_session_with_given_id(async_client: AsyncClient, auth_headers, session_factory) -> None:
    rv = await async_client.post("/api/session", json={"SessionId": " S-1 ", "Title": "Algebra"}, headers=auth_headers)
    assert rv.status_code == 200
    body = rv.json()
    assert body["status"] == "success"
    assert body["correlationId"] == "corr-1"
    assert body["timestamp"] == "2024-05-01T12:00:00.000Z"

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
        created = await store.get_sessions(db, client.id)
    assert client.last_session_id == "S-1"
    assert [(s.session_id, s.status) for s in created] == [("S-1", "active")]
    assert created[0].request == {"SessionId": " S-1 ", "Title": "Algebra"}
    assert (await usage(async_client))["createsession"] == 1


@pytest.mark.asyncio
async def test_create_session_generates_id(async_client: AsyncClient, auth_headers, session_factory) -> None:
    await async_client.post("/api/session", json={}, headers=auth_headers)

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
    assert client.last_session_id.startswith("sess_acme_")


@pytest.mark.asyncio
async def test_update_and_cancel_session(async_client: AsyncClient, auth_headers, session_factory, clock) -> None:
    await async_client.post("/api/session", json={"SessionId": "S-1"}, headers=auth_headers)
    clock.advance(5)

    rv = await async_client.put("/api/session/S-1", json={"Title": "Geometry"}, headers=auth_headers)
    assert rv.status_code == 200

    rv = await async_client.delete("/api/session/S-1", params={"LoId": "LO-9"}, headers=auth_headers)
    assert rv.status_code == 200

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
        (session,) = await store.get_sessions(db, client.id)
    assert session.status == "canceled"
    assert session.last_update_request == {"Title": "Geometry"}
    assert session.cancel_request == {"SessionId": "S-1", "LoId": "LO-9"}
    assert session.updated_at == "2024-05-01T12:00:05.000Z"

    counts = await usage(async_client)
    assert counts["updatesession"] == 1
    assert counts["cancelsession"] == 1


@pytest.mark.asyncio
async def test_update_unknown_session_still_succeeds(async_client: AsyncClient, auth_headers) -> None:
    rv = await async_client.put("/api/session/missing", json={}, headers=auth_headers)
    assert rv.status_code == 200
    assert "updatesession" not in await usage(async_client)


@pytest.mark.asyncio
async def test_cancel_unknown_session_is_not_found(async_client: AsyncClient, auth_headers) -> None:
    rv = await async_client.delete("/api/session/missing", headers=auth_headers)
    assert rv.status_code == 404
    assert rv.json()["error"] == {"code": 40420, "message": "session_not_found"}


@pytest.mark.asyncio
async def test_only_first_matching_session_is_updated(async_client: AsyncClient, auth_headers, session_factory) -> None:
    await async_client.post("/api/session", json={"SessionId": "dup"}, headers=auth_headers)
    await async_client.post("/api/session", json={"SessionId": "dup"}, headers=auth_headers)
    await async_client.delete("/api/session/dup", headers=auth_headers)

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
        statuses = [s.status for s in await store.get_sessions(db, client.id)]
    assert statuses == ["canceled", "active"]


@pytest.mark.asyncio
async def test_add_and_update_instructor(async_client: AsyncClient, auth_headers, session_factory) -> None:
    rv = await async_client.post(
        "/api/instructor",
        json={"Email": "ada@example.com", "FirstName": "Ada", "LastName": "Lovelace"},
        headers=auth_headers,
    )
    assert rv.status_code == 200

    rv = await async_client.put(
        "/api/instructor",
        json={
            "OldEmail": "ada@example.com",
            "NewEmail": "ada.l@example.com",
            "FirstName": "Ada",
            "LastName": "King",
            "IsActive": False,
        },
        headers=auth_headers,
    )
    assert rv.status_code == 200

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
        (instructor,) = await store.get_instructors(db, client.id)
    assert instructor.instructor_id.startswith("inst_acme_")
    assert instructor.email == "ada.l@example.com"
    assert instructor.last_name == "King"
    assert instructor.status == "inactive"

    counts = await usage(async_client)
    assert counts["addinstructor"] == 1
    assert counts["updateinstructor"] == 1


@pytest.mark.asyncio
async def test_update_unknown_instructor_is_not_found(async_client: AsyncClient, auth_headers) -> None:
    rv = await async_client.put("/api/instructor", json={"OldEmail": "nobody@example.com"}, headers=auth_headers)
    assert rv.status_code == 404
    assert rv.json()["error"] == {"code": 40430, "message": "instructor_not_found"}


@pytest.mark.asyncio
async def test_read_endpoints_return_fixed_payloads(async_client: AsyncClient, auth_headers) -> None:
    rv = await async_client.get("/api/session/S-1/attendees", headers=auth_headers)
    assert rv.json()["data"] == {"attendees": [{"email": "instructor@example.com"}]}

    rv = await async_client.get("/api/session/S-1/user/YWRhQGV4YW1wbGUuY29t/url", headers=auth_headers)
    assert rv.json()["data"]["joinUrl"].startswith("https://teams.microsoft.com/meet/")

    rv = await async_client.get("/api/session/S-1/extendedoptions", headers=auth_headers)
    (root,) = rv.json()["data"]["extendedOptions"]
    assert root["Name"] == "Session Extended Options"
    assert [(o["Id"], o["IsChecked"]) for o in root["ChildExtendedOptions"]] == [
        ("2", True),
        ("3", True),
        ("4", False),
    ]

    counts = await usage(async_client)
    assert counts["getattendance"] == 1
    assert counts["launchsession"] == 1
    assert counts["getextendedoptions"] == 1


@pytest.mark.asyncio
async def test_read_endpoints_survive_usage_write_failure(monkeypatch, async_client: AsyncClient, auth_headers) -> None:
    from sqlalchemy.exc import OperationalError

    async def broken(*args, **kwargs):
        raise OperationalError("UPDATE endpoint_usage", {}, Exception("disk I/O error"))

    monkeypatch.setattr(store, "increment_usage", broken)

    rv = await async_client.get("/api/session/S-1/attendees", headers=auth_headers)
    assert rv.status_code == 200
    assert rv.json()["status"] == "success"


@pytest.mark.asyncio
async def test_lookup_failure_is_internal_validation_error(monkeypatch, async_client: AsyncClient) -> None:
    from sqlalchemy.exc import OperationalError

    async def broken(*args, **kwargs):
        raise OperationalError("SELECT clients", {}, Exception("connection refused"))

    monkeypatch.setattr("mockoauth.deps.find_client_by_token", broken)

    rv = await async_client.get("/api/session/S-1/attendees", headers={"Authorization": "Bearer abc"})
    assert rv.status_code == 500
    assert rv.json()["error"] == {"code": 50001, "message": "internal_validation_error"}


@pytest.mark.asyncio
async def test_write_failure_is_reported(monkeypatch, async_client: AsyncClient, auth_headers) -> None:
    from sqlalchemy.exc import OperationalError

    async def broken(*args, **kwargs):
        raise OperationalError("INSERT virtual_sessions", {}, Exception("readonly database"))

    monkeypatch.setattr(store, "add_session", broken)

    rv = await async_client.post("/api/session", json={}, headers=auth_headers)
    assert rv.status_code == 500
    assert rv.json()["error"] == {"code": 50010, "message": "create_session_failed"}


@pytest.mark.asyncio
async def test_extra_path_segment_after_api(async_client: AsyncClient, auth_headers) -> None:
    rv = await async_client.post("/api/tenant-7/session", json={"SessionId": "T-1"}, headers=auth_headers)
    assert rv.status_code == 200

    rv = await async_client.delete("/api/tenant-7/session/T-1", headers=auth_headers)
    assert rv.status_code == 200


@pytest.mark.asyncio
async def test_instructor_update_payload_types_are_checked(
    async_client: AsyncClient, auth_headers, session_factory
) -> None:
    await async_client.post("/api/instructor", json={"Email": "ada@example.com"}, headers=auth_headers)

    rv = await async_client.put(
        "/api/instructor", json={"OldEmail": "ada@example.com", "IsActive": {"yes": 1}}, headers=auth_headers
    )
    assert rv.status_code == 400
    assert rv.json()["error"] == {"code": 40030, "message": "invalid_instructor_payload"}

    rv = await async_client.put(
        "/api/instructor",
        json={"OldEmail": "ada@example.com", "NewEmail": "ada@example.com", "IsActive": "true", "Note": "x"},
        headers=auth_headers,
    )
    assert rv.status_code == 200

    async with session_factory() as db:
        client = await store.get_client(db, "acme", "s3cret")
        (instructor,) = await store.get_instructors(db, client.id)
    assert instructor.status == "active"
    assert instructor.update_request["Note"] == "x"
