"""Per-user serialization of inbound event handling."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Union

from redis.exceptions import LockError

from wabot.config import Settings
from wabot.logging_config import get_logger, mask_user_id
from wabot.services.session_store import redis_client, session_backend

logger = get_logger("session_lock")


class SessionLockTimeout(Exception):
    def __init__(self, user_id: str, waited_seconds: float):
        self.user_id = user_id
        self.waited_seconds = waited_seconds
        super().__init__(f"Session lock not acquired within {waited_seconds}s")


class KeyedLock:
    """asyncio locks keyed by user id; idle entries are dropped."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)


class RedisKeyedLock:
    """
    Per-user lock shared by every worker that uses the same Redis.

    Events queue on an in-process KeyedLock first, so one worker holds at
    most one Redis lock per user at a time. The Redis lock expires after
    timeout_seconds if a worker dies while holding it.
    """

    KEY_PREFIX = "wabot:lock:"

    def __init__(self, client, timeout_seconds: float = 30.0, wait_seconds: float = 10.0):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.wait_seconds = wait_seconds
        self._local = KeyedLock()

    def _name(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._local.hold(key):
            lock = self.client.lock(
                self._name(key),
                timeout=self.timeout_seconds,
                blocking_timeout=self.wait_seconds,
            )
            if not await lock.acquire():
                raise SessionLockTimeout(key, self.wait_seconds)
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError as e:
                    # Expired while held; another worker may already own it.
                    logger.warning(
                        f"Session lock lost before release: {e}",
                        extra={"context": {"user": mask_user_id(key), "timeout_seconds": self.timeout_seconds}},
                    )

    def __contains__(self, key: str) -> bool:
        return key in self._local

    def __len__(self) -> int:
        return len(self._local)


SessionLock = Union[KeyedLock, RedisKeyedLock]


def build_session_lock(settings: Settings, client=None) -> SessionLock:
    """Lock matching SESSION_BACKEND; Redis sessions need a cross-worker lock."""
    if session_backend(settings) == "redis":
        logger.info(
            "Using Redis session lock",
            extra={
                "context": {
                    "timeout_seconds": settings.session_lock_timeout_seconds,
                    "wait_seconds": settings.session_lock_wait_seconds,
                }
            },
        )
        return RedisKeyedLock(
            client or redis_client(settings),
            timeout_seconds=settings.session_lock_timeout_seconds,
            wait_seconds=settings.session_lock_wait_seconds,
        )
    return KeyedLock()
