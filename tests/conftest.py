"""Pytest configuration and fixtures.

Every test gets a fresh app built by create_app() with the in-memory stores,
its own cache and limiter, and a clock that only moves when advanced.
"""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.limiter.admission import AdmissionLimiter
from app.main import create_app

from .fakes import FakeClock

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789abcdef"


def make_settings(**overrides) -> Settings:
    values = {
        "storage_backend": "memory",
        "jwt_key": SecretStr(TEST_SIGNING_KEY),
        "password_hash_rounds": 4,
        # generous budgets; rate limit tests build their own app
        "rate_limit_capacity": 1000,
        "anonymous_limit": 1000,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_app(settings: Settings, clock: FakeClock):
    return create_app(
        settings,
        cache=CacheLayer.from_settings(settings, clock=clock),
        limiter=AdmissionLimiter.from_settings(settings, clock=clock),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings: Settings, clock: FakeClock):
    return make_app(settings, clock)


@pytest.fixture
async def client(app) -> AsyncClient:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def register_and_login(client: AsyncClient, username: str | None = None) -> dict:
    """Create an account and return the login payload plus ready-made headers."""
    username = username or f"user-{uuid.uuid4().hex[:10]}"
    password = "CorrectHorse42!"
    resp = await client.post(
        "/api/account/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert resp.status_code == 200, resp.text
    resp = await client.post(
        "/api/account/login", json={"username": username, "password": password}
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    data["password"] = password
    data["headers"] = {"Authorization": f"Bearer {data['token']}"}
    return data


@pytest.fixture
async def auth_headers(client: AsyncClient) -> dict[str, str]:
    """Authorization header for a freshly registered user."""
    return (await register_and_login(client))["headers"]
