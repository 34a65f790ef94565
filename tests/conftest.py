"""Shared fixtures for the chathub test suite."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure the project root is on sys.path so 'chathub' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from chathub.models import UserCreate  # noqa: E402
from chathub.presence import PresenceTracker  # noqa: E402
from chathub.rate_limit import SlidingWindowRateLimiter  # noqa: E402
from chathub.router import MessageRouter  # noqa: E402
from chathub.session_registry import SessionRegistry  # noqa: E402
from chathub.storage import MemoryStorage  # noqa: E402
from chathub.typing_tracker import TypingTracker  # noqa: E402


# ---------------------------------------------------------------------------
# Fake connection: records what was sent instead of writing to a socket
# ---------------------------------------------------------------------------

class FakeConnection:
    def __init__(self, user_id: str, *, fail: bool = False):
        self.user_id = user_id
        self.sent: list[dict] = []
        self.fail = fail
        self.alive = True

    async def send(self, data: dict) -> bool:
        if self.fail:
            raise RuntimeError("socket already closed")
        self.sent.append(data)
        return True


def sent_of_type(conn: FakeConnection, msg_type: str) -> list[dict]:
    """Extract all events of a given type delivered to a fake connection."""
    return [m for m in conn.sent if m.get("type") == msg_type]


# ---------------------------------------------------------------------------
# Fake scheduler: a manual clock for typing expiry
# ---------------------------------------------------------------------------

class FakeTimer:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later.  Time only moves when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = sorted(
            (t for t in self.timers if not t.cancelled and t.when <= self.now),
            key=lambda t: t.when,
        )
        for timer in due:
            self.timers.remove(timer)
            if not timer.cancelled:
                timer.callback()

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


# ---------------------------------------------------------------------------
# Core component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def typing_tracker(registry, scheduler):
    return TypingTracker(registry, timeout=3.0, call_later=scheduler.call_later)


@pytest.fixture
def rate_limiter():
    return SlidingWindowRateLimiter(limit=5, window=5.0)


@pytest.fixture
def router(registry, storage, typing_tracker, rate_limiter):
    return MessageRouter(
        registry, storage, typing_tracker, rate_limiter=rate_limiter, echo_to_sender=True
    )


@pytest.fixture
def presence(registry, storage):
    return PresenceTracker(registry, storage)


@pytest.fixture
def make_user(storage):
    """Factory: ``await make_user("alice")`` creates and returns a User."""

    async def _make(username: str, avatar_color: str | None = None):
        return await storage.create_user(UserCreate(username=username, avatar_color=avatar_color))

    return _make


@pytest.fixture
async def general(storage):
    """Id of the seeded #general channel."""
    channels = await storage.get_channels()
    return next(c.id for c in channels if c.name == "general")


@pytest.fixture
def connect(registry):
    """Factory: register a FakeConnection for a user and return it."""

    def _connect(user_id: str, *, fail: bool = False) -> FakeConnection:
        conn = FakeConnection(user_id, fail=fail)
        registry.register(user_id, conn)
        return conn

    return _connect


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def services():
    from chathub.server import build_services
    return build_services()


@pytest.fixture
def app(services, tmp_path):
    """The FastAPI app wired to a fresh service container and a temp uploads dir."""
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    with patch("chathub.server.services", services), \
         patch("chathub.server.UPLOADS_DIR", uploads):
        from chathub.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app):
    """Async HTTP client for testing REST endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
