from types import SimpleNamespace
from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mozarela.api.ratelimit import admin_limiter, login_limiter, request_limiter
from mozarela.database import Base, get_db
from mozarela.main import app, get_ai_client
from mozarela.models import case, item, session, user  # noqa: F401
from mozarela.models.user import User


class FakeAI:
    """Stands in for AIClient: records prompts, returns a canned reply or raises."""

    def __init__(self, reply: str = '{"commentary": "Signalment fits the top candidate."}',
                 error: Optional[Exception] = None, configured: bool = True):
        self.reply = reply
        self.error = error
        self.configured = configured
        self.calls: list[dict[str, Any]] = []

    async def generate(self, prompt, files=None, model=None, json_mode=True, timeout=None):
        self.calls.append({"prompt": prompt, "files": files or [], "model": model})
        if self.error is not None:
            raise self.error
        return self.reply

    async def list_models(self):
        return [{"name": "fake-model", "ownedBy": "tests"}]


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiters = (request_limiter, admin_limiter, login_limiter)
    for limiter in limiters:
        limiter.clear()
    yield
    for limiter in limiters:
        limiter.clear()


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
async def client(session_factory, fake_ai):
    async def override_get_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def register(client: AsyncClient, email: str, password: str = "secret123",
                   full_name: str = "Test Vet") -> SimpleNamespace:
    """Register a user and return its token, CSRF token, id and ready-made headers."""
    resp = await client.post("/api/auth/register", json={
        "fullName": full_name, "email": email, "password": password, "clinicName": "Test Clinic",
    })
    assert resp.status_code == 200, resp.text
    body = resp.json()
    # Tests pass credentials explicitly
    client.cookies.clear()
    return SimpleNamespace(
        token=body["token"],
        csrf=body["csrfToken"],
        user_id=body["user"]["id"],
        auth={"Authorization": f"Bearer {body['token']}"},
        mutate={"Authorization": f"Bearer {body['token']}", "X-CSRF-Token": body["csrfToken"]},
    )


async def make_admin(session_factory, user_id: str) -> None:
    async with session_factory() as s:
        await s.execute(update(User).where(User.id == user_id).values(is_admin=True))
        await s.commit()


@pytest.fixture
def register_user(client):
    async def _register(email: str, **kwargs) -> SimpleNamespace:
        return await register(client, email, **kwargs)
    return _register


@pytest.fixture
def admin_user(client, session_factory):
    async def _admin(email: str = "admin@example.test") -> SimpleNamespace:
        account = await register(client, email)
        await make_admin(session_factory, account.user_id)
        return account
    return _admin
