from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis_async
from pydantic import ValidationError

from wabot.config import Settings
from wabot.logging_config import get_logger, mask_user_id
from wabot.services.state_machine import Session

logger = get_logger("session_store")


class SessionStore(ABC):
    """Per-user conversation state keyed by the sender id."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def set(self, user_id: str, session: Session) -> None:
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Sessions live for the process lifetime only."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    async def get(self, user_id: str) -> Optional[Session]:
        session = self._sessions.get(user_id)
        return session.model_copy(deep=True) if session else None

    async def set(self, user_id: str, session: Session) -> None:
        self._sessions[user_id] = session.model_copy(deep=True)

    async def delete(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    KEY_PREFIX = "wabot:session:"

    def __init__(self, client, ttl_seconds: int = 86400):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    async def get(self, user_id: str) -> Optional[Session]:
        raw = await self.client.get(self._key(user_id))
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Discarding undecodable session: {e}",
                extra={"context": {"user": mask_user_id(user_id)}},
            )
            return None

    async def set(self, user_id: str, session: Session) -> None:
        await self.client.set(self._key(user_id), session.model_dump_json(), ex=self.ttl_seconds)

    async def delete(self, user_id: str) -> None:
        await self.client.delete(self._key(user_id))


def session_backend(settings: Settings) -> str:
    backend = (settings.session_backend or "memory").strip().lower()
    if backend not in ("memory", "redis"):
        raise ValueError(f"Unknown SESSION_BACKEND: {settings.session_backend}")
    return backend


def redis_client(settings: Settings):
    return redis_async.from_url(settings.redis_url, decode_responses=True)


def build_session_store(settings: Settings, client=None) -> SessionStore:
    """Store for SESSION_BACKEND; pass the Redis client shared with the session lock."""
    if session_backend(settings) == "redis":
        client = client or redis_client(settings)
        logger.info("Using Redis session store", extra={"context": {"ttl_seconds": settings.session_ttl_seconds}})
        return RedisSessionStore(client, ttl_seconds=settings.session_ttl_seconds)
    return InMemorySessionStore()
