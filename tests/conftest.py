"""
Pytest configuration and fixtures for Socialise API tests.
"""
import os

# Keep the application engine off disk; tests use their own engine below
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SOCIALISE_LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from socialise.cache import TTLCache
from socialise.database import Base, get_db, init_db
from socialise.dependencies import get_clock, get_queue, get_stats_cache
from socialise.limiter import limiter
from socialise.main import app
from socialise.publishers import BasePublisher, PublishOutcome, PublisherRegistry
from socialise.queue import DelayedJobQueue, QueueManager
from socialise.store import PostStore
from socialise.worker import PostPublishProcessor

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

WORKSPACE_ID = "ws-test"
NOW = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)  # a Monday

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    yield _test_session


class FakeClock:
    """Settable clock shared by the queue, the manager and the worker"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePublisher(BasePublisher):
    """Publisher that records calls and succeeds unless told otherwise"""

    def __init__(self, platform: str):
        self.platform = platform
        self.calls = []
        self.fail_with = None
        self.raises = None
        self.before_publish = None

    def publish(self, account, content):
        if self.before_publish is not None:
            self.before_publish()
        self.calls.append(account.social_account_id)
        if self.raises is not None:
            raise self.raises
        if self.fail_with:
            return PublishOutcome.failed(self.fail_with)
        post_id = f"{self.platform}-{len(self.calls)}"
        return PublishOutcome.ok(post_id, f"https://{self.platform}.example/{post_id}")


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    init_db(bind=engine)
    _test_session = TestingSessionLocal()

    yield _test_session

    _test_session.close()
    _test_session = None
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(db, clock):
    return DelayedJobQueue(engine, clock=clock, connect_retries=1, retry_backoff=0)


@pytest.fixture
def manager(db, queue, clock):
    return QueueManager(db, queue, clock=clock)


@pytest.fixture
def publishers():
    return {
        "facebook": FakePublisher("facebook"),
        "instagram": FakePublisher("instagram"),
    }


@pytest.fixture
def processor(db, publishers, clock):
    return PostPublishProcessor(
        TestingSessionLocal,
        PublisherRegistry(publishers),
        max_parallel=4,
        clock=clock,
    )


@pytest.fixture
def store(db):
    return PostStore(db)


@pytest.fixture
def accounts(db, store):
    """A connected Facebook page and Instagram account."""
    facebook = store.create_social_account(WORKSPACE_ID, "facebook", "Cafe Page", "page-1", "fb-token")
    instagram = store.create_social_account(WORKSPACE_ID, "instagram", "Cafe Gram", "ig-1", "ig-token")
    db.commit()
    return {"facebook": facebook.id, "instagram": instagram.id}


@pytest.fixture
def make_post(db, store, accounts):
    """Factory for committed draft posts targeting the given accounts."""
    def _make(platforms=("facebook", "instagram"), caption="Fresh croissants today", media_urls=None):
        post = store.create_post(
            WORKSPACE_ID,
            caption=caption,
            social_account_ids=[accounts[p] for p in platforms],
            media_urls=media_urls or ["https://cdn.example/croissant.jpg"],
        )
        db.commit()
        return post.id

    return _make


@pytest.fixture(scope="function")
def client(db, queue, clock):
    """Create a test client."""
    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_stats_cache] = lambda: TTLCache(5)
    app.dependency_overrides[get_clock] = lambda: clock

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def workspace_headers():
    return {"X-Workspace-Id": WORKSPACE_ID}
