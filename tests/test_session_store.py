import pytest

from wabot.config import Settings
from wabot.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    build_session_store,
)
from wabot.services.state_machine import Mode, Session

USER = "260971234567"


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_missing_user(self):
        assert await InMemorySessionStore().get(USER) is None

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = InMemorySessionStore()
        session = Session(mode=Mode.SCRIPTED_A, step="ask_email", collected_fields={"full_name": "Ann"})

        await store.set(USER, session)
        assert await store.get(USER) == session
        assert len(store) == 1

        await store.delete(USER)
        assert await store.get(USER) is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self):
        store = InMemorySessionStore()
        await store.set(USER, Session(mode=Mode.SCRIPTED_A, step="ask_email", collected_fields={"full_name": "Ann"}))

        loaded = await store.get(USER)
        loaded.collected_fields["email"] = "ann@example.com"

        assert "email" not in (await store.get(USER)).collected_fields

    @pytest.mark.asyncio
    async def test_delete_missing_user_is_noop(self):
        await InMemorySessionStore().delete(USER)


class TestRedisSessionStore:
    @pytest.mark.asyncio
    async def test_round_trip_with_ttl(self, fake_redis):
        client = fake_redis
        store = RedisSessionStore(client, ttl_seconds=600)
        session = Session(mode=Mode.FREEFORM, persona="customer")

        await store.set(USER, session)

        assert client.expiry[f"wabot:session:{USER}"] == 600
        assert await store.get(USER) == session

    @pytest.mark.asyncio
    async def test_delete(self, fake_redis):
        client = fake_redis
        store = RedisSessionStore(client)
        await store.set(USER, Session(mode=Mode.FREEFORM))

        await store.delete(USER)

        assert client.data == {}
        assert await store.get(USER) is None

    @pytest.mark.asyncio
    async def test_undecodable_session_is_discarded(self, fake_redis):
        client = fake_redis
        client.data[f"wabot:session:{USER}"] = '{"mode": "scripted_a"}'

        assert await RedisSessionStore(client).get(USER) is None


class TestBuildSessionStore:
    def test_memory_by_default(self):
        assert isinstance(build_session_store(Settings(_env_file=None)), InMemorySessionStore)

    def test_redis(self):
        store = build_session_store(Settings(_env_file=None, session_backend="redis", redis_url="redis://localhost:6379/1"))

        assert isinstance(store, RedisSessionStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_session_store(Settings(_env_file=None, session_backend="sqlite"))

    def test_redis_reuses_given_client(self, fake_redis):
        store = build_session_store(Settings(_env_file=None, session_backend="redis"), fake_redis)

        assert store.client is fake_redis
