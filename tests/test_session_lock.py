import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import LockNotOwnedError

from wabot.config import Settings
from wabot.services.session_lock import KeyedLock, RedisKeyedLock, SessionLockTimeout, build_session_lock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order = []

        async def work(name: str, delay: float):
            async with locks.hold("user-1"):
                order.append(f"{name}:start")
                await asyncio.sleep(delay)
                order.append(f"{name}:end")

        await asyncio.gather(work("first", 0.02), work("second", 0))

        assert order == ["first:start", "first:end", "second:start", "second:end"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        order = []

        async def work(key: str, delay: float):
            async with locks.hold(key):
                order.append(f"{key}:start")
                await asyncio.sleep(delay)
                order.append(f"{key}:end")

        await asyncio.gather(work("user-1", 0.02), work("user-2", 0))

        assert order.index("user-2:start") < order.index("user-1:end")

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self):
        locks = KeyedLock()

        async with locks.hold("user-1"):
            assert "user-1" in locks
            assert len(locks) == 1

        assert "user-1" not in locks
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_after_exception(self):
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("user-1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
        async with locks.hold("user-1"):
            pass


class TestRedisKeyedLock:
    @pytest.mark.asyncio
    async def test_uses_named_redis_lock_with_timeouts(self):
        redis_lock = Mock()
        redis_lock.acquire = AsyncMock(return_value=True)
        redis_lock.release = AsyncMock()
        client = Mock()
        client.lock.return_value = redis_lock

        async with RedisKeyedLock(client, timeout_seconds=30.0, wait_seconds=5.0).hold("260971234567"):
            redis_lock.release.assert_not_awaited()

        client.lock.assert_called_once_with("wabot:lock:260971234567", timeout=30.0, blocking_timeout=5.0)
        redis_lock.acquire.assert_awaited_once()
        redis_lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_serializes_across_instances(self, fake_redis):
        worker_a = RedisKeyedLock(fake_redis)
        worker_b = RedisKeyedLock(fake_redis)
        order = []

        async def work(locks: RedisKeyedLock, name: str, delay: float):
            async with locks.hold("user-1"):
                order.append(f"{name}:start")
                await asyncio.sleep(delay)
                order.append(f"{name}:end")

        await asyncio.gather(work(worker_a, "a", 0.02), work(worker_b, "b", 0))

        assert order == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_times_out_when_held_elsewhere(self, fake_redis):
        held = fake_redis.lock("wabot:lock:user-1")
        await held.acquire()

        locks = RedisKeyedLock(fake_redis, wait_seconds=0.01)

        with pytest.raises(SessionLockTimeout):
            async with locks.hold("user-1"):
                pass

        assert "user-1" not in locks

    @pytest.mark.asyncio
    async def test_expired_lock_on_release_is_logged(self):
        redis_lock = Mock()
        redis_lock.acquire = AsyncMock(return_value=True)
        redis_lock.release = AsyncMock(side_effect=LockNotOwnedError("Cannot release a lock that's no longer owned"))
        client = Mock()
        client.lock.return_value = redis_lock
        locks = RedisKeyedLock(client)

        async with locks.hold("user-1"):
            pass

        assert len(locks) == 0


class TestBuildSessionLock:
    def test_memory_backend_uses_process_lock(self):
        assert isinstance(build_session_lock(Settings(_env_file=None)), KeyedLock)

    def test_redis_backend_uses_redis_lock(self, fake_redis):
        settings = Settings(
            _env_file=None, session_backend="redis", session_lock_timeout_seconds=12, session_lock_wait_seconds=3
        )

        locks = build_session_lock(settings, fake_redis)

        assert isinstance(locks, RedisKeyedLock)
        assert locks.client is fake_redis
        assert locks.timeout_seconds == 12
        assert locks.wait_seconds == 3

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_session_lock(Settings(_env_file=None, session_backend="sqlite"))
