import dataclasses
import os

# before anything imports ticketproxy.db
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "warning")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketproxy import init_db
from ticketproxy.app import create_app
from ticketproxy.config import AppConfig
from ticketproxy.db import get_db, make_engine

UPSTREAM = "https://upstream.test"
API_KEY = "test-api-key"


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every delay (seconds)."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    return AppConfig(
        base_url=UPSTREAM,
        api_key=API_KEY,
        database_url="sqlite://",
        proxy_max_retries=2,
        proxy_backoff_ms=250,
    )


def _upstream_not_configured(request):
    raise AssertionError(f"unexpected upstream call: {request.method} {request.url}")


@pytest.fixture
def make_client(config, session_factory, sleeps):
    """
    Build a TestClient whose upstream is an httpx.MockTransport (or any
    transport) and whose database is the in-memory SQLite engine.
    """
    opened = []

    def _make(handler=None, transport=None, **overrides):
        cfg = dataclasses.replace(config, **overrides) if overrides else config
        transport = transport or httpx.MockTransport(handler or _upstream_not_configured)
        app = create_app(cfg, client=httpx.AsyncClient(transport=transport), sleep=sleeps)

        def _get_db():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = _get_db
        client = TestClient(app)
        client.__enter__()
        opened.append(client)
        return client

    yield _make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
