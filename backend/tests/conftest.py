"""Shared pytest fixtures for test suite"""
import os
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import patch

# Settings are read at import time
os.environ.setdefault("ENCRYPTION_KEY", "GSEy8tXCI92bK_RNnyIgbYXFDe4pvP0VDXUiFORV_GY=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("TWITTER_CLIENT_ID", "twitter-client")
os.environ.setdefault("TWITTER_CLIENT_SECRET", "twitter-secret")
os.environ.setdefault("TIKTOK_CLIENT_KEY", "tiktok-key")
os.environ.setdefault("TIKTOK_CLIENT_SECRET", "tiktok-secret")
os.environ.setdefault("LINKEDIN_CLIENT_ID", "linkedin-client")
os.environ.setdefault("LINKEDIN_CLIENT_SECRET", "linkedin-secret")

import fakeredis
import fakeredis.aioredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from crosspost.api.dependencies import token_manager_dependency
from crosspost.db import redis as redis_module
from crosspost.db.session import get_db
from crosspost.main import app
from crosspost.models import Base
from crosspost.services.oauth.state import OAuthStateCache
from crosspost.services.oauth.token_manager import TokenManager
from crosspost.services.publishing import queue as queue_module


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Synchronous fakeredis used for health checks"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def async_redis():
    """Async fakeredis wired into the publish queue"""
    fake_redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    with patch.object(queue_module, "get_async_redis_client", return_value=fake_redis):
        yield fake_redis


def make_http_factory(handler):
    """httpx client factory whose requests are answered by handler(request)"""
    def factory():
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture(scope="function")
def http_factory():
    """Build httpx client factories backed by a MockTransport handler"""
    return make_http_factory


@pytest.fixture(scope="function")
def state_server():
    """Fake Redis server holding OAuth state for one test"""
    return fakeredis.FakeServer()


@pytest.fixture(scope="function")
def state_cache_factory(state_server):
    """Build state caches sharing the test server, like separate worker processes would"""
    def factory(**kwargs) -> OAuthStateCache:
        kwargs.setdefault("ttl_seconds", 600)
        kwargs.setdefault("sweep_interval_seconds", 300)
        # A fresh client per call, so any event loop can use it
        return OAuthStateCache(
            redis_factory=lambda: fakeredis.aioredis.FakeRedis(server=state_server, decode_responses=True),
            **kwargs,
        )
    return factory


@pytest.fixture(scope="function")
def state_cache(state_cache_factory) -> OAuthStateCache:
    return state_cache_factory()


@pytest.fixture(scope="function")
def state_redis(state_server):
    """Synchronous view of the OAuth state keys, for route tests"""
    return fakeredis.FakeRedis(server=state_server, decode_responses=True)


@pytest.fixture(scope="function")
def token_manager(state_cache, db_session) -> TokenManager:
    """Token manager with no network access unless a test swaps the factory"""
    def unreachable(request):
        raise AssertionError(f"Unexpected HTTP request: {request.method} {request.url}")

    return TokenManager(
        state_cache=state_cache,
        session_factory=lambda: db_session,
        http_client_factory=make_http_factory(unreachable),
    )


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, async_redis, token_manager) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, fake Redis and an isolated token manager

    Not entered as a context manager, so the lifespan (workers, sweeper)
    does not start.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[token_manager_dependency] = lambda: token_manager
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
