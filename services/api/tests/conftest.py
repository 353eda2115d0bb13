import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles

from progress_api.main import app
from progress_api.db import Base, get_db
from progress_api.deps import get_content_provider
from progress_api.errors import NotFound

# --- Test Database Setup ---

@compiles(JSONB, 'sqlite')
def compile_jsonb(element, compiler, **kw):
    return "JSON"


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool  # Important for in-memory to share connection across threads/sessions
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Content collaborator ---

class FakeContentProvider:
    """In-memory stand-in for the content service."""

    def __init__(self, catalog: dict):
        self.catalog = catalog
        self.calls = 0

    def get_item_ids(self, content_type: str, content_id: str) -> list[str]:
        self.calls += 1
        try:
            return list(self.catalog[(content_type, content_id)])
        except KeyError:
            raise NotFound(f"Content not found: {content_type}/{content_id}")


@pytest.fixture
def content():
    return FakeContentProvider({
        ("diet", "keto-5"): ["m1", "m2", "m3", "m4", "m5"],
        ("diet", "detox-2"): ["d1", "d2"],
        ("exercise", "yoga-3"): ["p1", "p2", "p3"],
        ("diet", "empty"): [],
    })


# --- Fixtures ---

@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Direct database session for setup and service-level tests."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory():
    """Opens extra sessions to play a concurrent writer."""
    return TestingSessionLocal


@pytest.fixture
def client(content):
    """Test client with DB and content overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_content_provider] = lambda: content
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1"}


import fakeredis
import fakeredis.aioredis
from progress_api.infra import redis_client

@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    server = fakeredis.FakeServer()
    # Create fake clients sharing the same server
    async_redis = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    sync_redis = fakeredis.FakeRedis(server=server, decode_responses=True)

    # Force the clients into the infra module
    redis_client._redis_async = async_redis
    redis_client._redis_sync = sync_redis

    yield sync_redis

    # Cleanup
    redis_client._redis_async = None
    redis_client._redis_sync = None
