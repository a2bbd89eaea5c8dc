import json
import sys
import os
from datetime import datetime, timezone

import httpx
import pytest

# make sure the repository root is on sys.path for test collection
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Use a dedicated test sqlite file for consistency across the TestClient and app imports
test_db_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '.test.db'))
os.environ['DATABASE_URL'] = f'sqlite:///{test_db_path}'
os.environ.pop('APP_ENV', None)
os.environ.pop('VERCEL_ENV', None)

from backend.tagredirect.db import Base, get_engine, get_session_local  # noqa: E402
from backend.tagredirect import models  # noqa: E402,F401
from backend.tagredirect.config import Settings  # noqa: E402
from backend.tagredirect.kv import MemoryCacheStore  # noqa: E402
from backend.tagredirect.privacy import PrivacyHasher  # noqa: E402
from backend.tagredirect.services import build_services  # noqa: E402

SECRET = "test-internal-secret"
FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def prepare_db():
    # Create tables for tests and drop them at the end
    Base.metadata.create_all(bind=get_engine())
    yield
    Base.metadata.drop_all(bind=get_engine())
    if os.path.exists(test_db_path):
        os.remove(test_db_path)


@pytest.fixture
def db_session():
    session = get_session_local()()
    try:
        yield session
    finally:
        session.query(models.TagEvent).delete()
        session.query(models.Tag).delete()
        session.query(models.Account).delete()
        session.commit()
        session.close()


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        internal_secret=SECRET,
        hash_secret="test-hash-secret",
        internal_api_url="http://internal.test",
        lookup_timeout_seconds=0.5,
        event_timeout_seconds=0.5,
        event_queue_size=100,
        event_workers=2,
    )


class FakeUpstream:
    """In-memory stand-in for the lookup, handle and ingestion services."""

    def __init__(self):
        self.tags = {}
        self.handles = {}
        self.events = []
        self.lookup_calls = 0
        self.handle_calls = 0
        self.fail_lookup = None
        self.fail_events = None

    def add_tag(self, token, **state):
        state.setdefault("id", f"tag-{token}")
        state.setdefault("status", "active")
        self.tags[token] = state
        return state

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.headers.get("x-internal-secret") != SECRET:
            return httpx.Response(403, json={"error": "forbidden"})
        if path == "/api/internal/tag-lookup":
            self.lookup_calls += 1
            if self.fail_lookup == "timeout":
                raise httpx.ReadTimeout("lookup timed out", request=request)
            if self.fail_lookup == "error":
                return httpx.Response(500, json={"error": "boom"})
            state = self.tags.get(request.url.params.get("token"))
            if state is None:
                return httpx.Response(404, json={"error": "not_found"})
            return httpx.Response(200, json=state)
        if path == "/api/internal/handle-for":
            self.handle_calls += 1
            return httpx.Response(200, json={"handle": self.handles.get(request.url.params.get("uid"))})
        if path == "/api/internal/log-event":
            if self.fail_events == "timeout":
                raise httpx.ConnectTimeout("ingestion unreachable", request=request)
            if self.fail_events == "error":
                return httpx.Response(503, json={"error": "down"})
            self.events.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def hasher():
    return PrivacyHasher("test-hash-secret", clock=lambda: FIXED_NOW)


@pytest.fixture
def services(settings, upstream, hasher):
    return build_services(
        settings,
        cache_store=MemoryCacheStore(),
        transport=httpx.MockTransport(upstream.handler),
        hasher=hasher,
    )
