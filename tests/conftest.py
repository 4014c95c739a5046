import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from wabot.config import get_settings
from wabot.services.content import load_content
from wabot.services.freeform import FreeformChat
from wabot.services.routing_service import ConversationRouter
from wabot.services.session_store import InMemorySessionStore
from wabot.services.result import SendResult


class FakeRedisLock:
    def __init__(self, lock: asyncio.Lock, blocking_timeout):
        self._lock = lock
        self.blocking_timeout = blocking_timeout

    async def acquire(self) -> bool:
        try:
            await asyncio.wait_for(self._lock.acquire(), self.blocking_timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def release(self) -> None:
        self._lock.release()


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the session store and lock; every call yields."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.locks: dict[str, asyncio.Lock] = {}

    async def get(self, key):
        await asyncio.sleep(0)
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        await asyncio.sleep(0)
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        await asyncio.sleep(0)
        self.data.pop(key, None)
        self.expiry.pop(key, None)

    def lock(self, name, timeout=None, blocking_timeout=None):
        return FakeRedisLock(self.locks.setdefault(name, asyncio.Lock()), blocking_timeout)


@pytest.fixture(autouse=True)
def mock_env(monkeypatch):
    """Keep tests independent of the host environment."""
    for name in ("ALERT_BOT_TOKEN", "ALERT_CHAT_ID", "SESSION_BACKEND", "SUPPORT_MODE", "CONTENT_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VERIFY_TOKEN", "verify-me")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def content():
    return load_content()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def provider():
    """Generative backend double; generate() is awaited by the free-form flow."""
    backend = Mock()
    backend.generate = AsyncMock(return_value="Hello! How can I help you today?")
    return backend


@pytest.fixture
def router(content, store, provider):
    return ConversationRouter(content, store, FreeformChat(content, provider))


@pytest.fixture
def responder():
    mock = Mock()
    mock.send = AsyncMock(return_value=SendResult.delivered({"messages": [{"id": "wamid.1"}]}))
    return mock


@pytest.fixture
def fake_redis():
    return FakeRedis()
