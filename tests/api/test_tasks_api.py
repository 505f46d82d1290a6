"""HTTP tests for /api/tasks: CRUD, filters, identity and admission."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.core.errors import StoreFailure
from app.stores.memory import MemoryTaskStore

from ..conftest import TEST_SIGNING_KEY, make_app, make_settings, register_and_login
from ..fakes import FakeClock


async def create(client: AsyncClient, headers: dict, **fields) -> dict:
    payload = {"title": "Default title", **fields}
    resp = await client.post("/api/tasks", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_create_and_get_task(client: AsyncClient, auth_headers) -> None:
    resp = await client.post(
        "/api/tasks",
        json={"title": "Buy groceries", "description": "milk", "priority": 2},
        headers=auth_headers,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["title"] == "Buy groceries"
    assert body["priority"] == 2
    assert body["status"] == 0
    assert resp.headers["location"].endswith(f"/api/tasks/{body['id']}")

    resp = await client.get(f"/api/tasks/{body['id']}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == body


async def test_create_validates_title_length(client: AsyncClient, auth_headers) -> None:
    resp = await client.post("/api/tasks", json={"title": "abc"}, headers=auth_headers)

    assert resp.status_code == 422


async def test_get_missing_task_is_404(client: AsyncClient, auth_headers) -> None:
    resp = await client.get("/api/tasks/999", headers=auth_headers)

    assert resp.status_code == 404


async def test_list_tasks_paginates(client: AsyncClient, auth_headers) -> None:
    for n in range(7):
        await create(client, auth_headers, title=f"Task number {n}")

    first = await client.get("/api/tasks", headers=auth_headers)
    second = await client.get(
        "/api/tasks", params={"page_number": 2, "page_size": 5}, headers=auth_headers
    )

    assert len(first.json()) == 5
    assert [t["title"] for t in second.json()] == ["Task number 5", "Task number 6"]


@pytest.mark.parametrize("params", [{"page_number": 0}, {"page_size": 0}, {"page_size": 101}])
async def test_invalid_pagination_is_rejected(client: AsyncClient, auth_headers, params) -> None:
    resp = await client.get("/api/tasks", params=params, headers=auth_headers)

    assert resp.status_code == 422


async def test_listing_is_cached_until_ttl(client: AsyncClient, auth_headers, clock) -> None:
    await create(client, auth_headers, title="Before caching")
    assert len((await client.get("/api/tasks", headers=auth_headers)).json()) == 1

    await create(client, auth_headers, title="After caching")
    assert len((await client.get("/api/tasks", headers=auth_headers)).json()) == 1

    clock.advance(300)
    assert len((await client.get("/api/tasks", headers=auth_headers)).json()) == 2


async def test_filter_by_status_and_priority(client: AsyncClient, auth_headers) -> None:
    await create(client, auth_headers, title="Still to do", status=0, priority=3)
    await create(client, auth_headers, title="Being worked", status=1, priority=0)

    by_status = await client.get("/api/tasks/filter/status/1", headers=auth_headers)
    by_priority = await client.get("/api/tasks/filter/priority/3", headers=auth_headers)

    assert [t["title"] for t in by_status.json()] == ["Being worked"]
    assert [t["title"] for t in by_priority.json()] == ["Still to do"]


@pytest.mark.parametrize("path", ["/api/tasks/filter/status/4", "/api/tasks/filter/priority/-1"])
async def test_out_of_range_filters_are_400(client: AsyncClient, auth_headers, path) -> None:
    resp = await client.get(path, headers=auth_headers)

    assert resp.status_code == 400


async def test_search_by_title(client: AsyncClient, auth_headers) -> None:
    await create(client, auth_headers, title="Renew Passport")
    await create(client, auth_headers, title="Water plants")

    resp = await client.get("/api/tasks/search/PASSPORT", headers=auth_headers)

    assert [t["title"] for t in resp.json()] == ["Renew Passport"]


async def test_update_task(client: AsyncClient, auth_headers) -> None:
    task = await create(client, auth_headers, title="Draft letter")

    resp = await client.put(
        f"/api/tasks/{task['id']}",
        json={"id": task["id"], "title": "Send letter", "status": 2},
        headers=auth_headers,
    )
    assert resp.status_code == 204

    updated = (await client.get(f"/api/tasks/{task['id']}", headers=auth_headers)).json()
    assert updated["title"] == "Send letter"
    assert updated["status"] == 2


async def test_update_with_mismatched_id_is_400(client: AsyncClient, auth_headers) -> None:
    task = await create(client, auth_headers, title="Draft letter")

    resp = await client.put(
        f"/api/tasks/{task['id']}",
        json={"id": task["id"] + 1, "title": "Send letter"},
        headers=auth_headers,
    )

    assert resp.status_code == 400


async def test_delete_task(client: AsyncClient, auth_headers) -> None:
    task = await create(client, auth_headers, title="Throw away")

    assert (await client.delete(f"/api/tasks/{task['id']}", headers=auth_headers)).status_code == 204
    assert (await client.delete(f"/api/tasks/{task['id']}", headers=auth_headers)).status_code == 404


async def test_tasks_are_private_to_their_owner(client: AsyncClient) -> None:
    alice = (await register_and_login(client, "alice-user"))["headers"]
    bob = (await register_and_login(client, "bob-user"))["headers"]
    task = await create(client, alice, title="Alice only")

    assert (await client.get("/api/tasks", headers=bob)).json() == []
    assert (await client.get(f"/api/tasks/{task['id']}", headers=bob)).status_code == 404
    resp = await client.put(
        f"/api/tasks/{task['id']}", json={"id": task["id"], "title": "Bob was here"}, headers=bob
    )
    assert resp.status_code == 404
    assert (await client.delete(f"/api/tasks/{task['id']}", headers=bob)).status_code == 404


# Identity


async def test_missing_token_is_401(client: AsyncClient) -> None:
    resp = await client.get("/api/tasks")

    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"
    assert resp.json()["title"] == "AUTHENTICATION_FAILED"


async def test_garbage_token_is_401(client: AsyncClient) -> None:
    resp = await client.get("/api/tasks", headers={"Authorization": "Bearer not.a.token"})

    assert resp.status_code == 401


async def test_expired_token_is_401(client: AsyncClient, settings) -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {"sub": "u1", "iss": settings.jwt_issuer, "aud": settings.jwt_audience, "exp": past},
        TEST_SIGNING_KEY,
        algorithm="HS256",
    )

    resp = await client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert "expired" in resp.json()["detail"]


async def test_token_without_identity_is_user_not_found(client: AsyncClient, settings) -> None:
    token = jwt.encode(
        {
            "name": "ghost",
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        TEST_SIGNING_KEY,
        algorithm="HS256",
    )

    resp = await client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 404
    assert resp.json()["detail"] == "User Not Found"


# Admission


async def test_sixth_request_in_a_minute_is_429() -> None:
    clock = FakeClock()
    app = make_app(make_settings(rate_limit_capacity=5), clock)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        headers = (await register_and_login(client))["headers"]

        statuses = [
            (await client.get("/api/tasks", headers=headers)).status_code for _ in range(6)
        ]
        assert statuses == [200] * 5 + [429]

        rejected = await client.get("/api/tasks", headers=headers)
        assert rejected.headers["retry-after"] == "60"

        clock.advance(60)
        assert (await client.get("/api/tasks", headers=headers)).status_code == 200
        assert (await client.get("/api/tasks", headers=headers)).status_code == 429


# Store failures


class FlakyTaskStore(MemoryTaskStore):
    """Memory store whose listings fail while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True

    async def list(self, identity: str):
        if self.failing:
            raise StoreFailure()
        return await super().list(identity)


async def test_store_failure_is_500_and_not_cached(app, client: AsyncClient, auth_headers) -> None:
    store = FlakyTaskStore()
    app.state.task_store = store

    resp = await client.get("/api/tasks", headers=auth_headers)

    assert resp.status_code == 500
    assert resp.json()["title"] == "STORE_FAILURE"
    assert resp.json()["status"] == 500

    store.failing = False
    resp = await client.get("/api/tasks", headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json() == []
    assert store.reads == 1
