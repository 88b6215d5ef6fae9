import os
import uuid

# Keep the app's own engine off disk; tests use the in-memory engine below.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from notegraph.database import models  # noqa: F401
from notegraph.database.database import Base


class FakeAIClient:
    """Stands in for GatewayAIClient; records calls and replays a canned reply."""

    model_name = "fake/model"

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def get_structured_response(self, *, system_prompt, user_prompt, schema):
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt, "schema": schema})
        if self.error is not None:
            raise self.error
        return self.response


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def owner():
    return uuid.uuid4()


@pytest.fixture
def other_owner():
    return uuid.uuid4()


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest_asyncio.fixture
async def client(session_factory, fake_ai):
    """
    Async client over the ASGI app, with the database and AI client swapped for test doubles.
    """
    from server import app
    from notegraph.api.deps import get_ai_client
    from notegraph.database.database import get_db

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with LifespanManager(app):
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    app.dependency_overrides.clear()
