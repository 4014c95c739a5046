import asyncio
from functools import lru_cache
from typing import Iterable

from wabot.config import get_settings
from wabot.logging_config import EventLogger, get_logger
from wabot.schemas.webhook import InboundEvent
from wabot.services.content import load_content
from wabot.services.freeform import FreeformChat
from wabot.services.llm.openai_provider import OpenAIProvider
from wabot.services.normalizer import MalformedEventError, normalize_event
from wabot.services.routing_service import ConversationRouter, RouteResult
from wabot.services.session_lock import KeyedLock, SessionLock, SessionLockTimeout, build_session_lock
from wabot.services.session_store import build_session_store, redis_client, session_backend
from wabot.services.whatsapp_service import WhatsAppResponder

logger = get_logger("dispatcher")


class Dispatcher:
    """Runs inbound events through the router and delivers the replies."""

    def __init__(self, router: ConversationRouter, responder: WhatsAppResponder, locks: SessionLock | None = None):
        self.router = router
        self.responder = responder
        self.locks = locks or KeyedLock()

    async def handle_event(self, event: InboundEvent) -> RouteResult | None:
        """Process one event. Never raises; returns None when the event is dropped or fails."""
        try:
            user_id, signal = normalize_event(event)
        except MalformedEventError as e:
            logger.info(f"Dropping inbound event: {e.reason}", extra={"context": {"message_id": event.message_id}})
            return None

        log = EventLogger(logger, user_id, event.message_id)
        try:
            async with self.locks.hold(user_id):
                result = await self.router.route(user_id, signal)
                log.info(
                    "Routed inbound event",
                    context={"signal": type(signal).__name__, "mode": result.mode.value, "replies": len(result.messages)},
                )
                # State is already committed; failed sends are not retried.
                for message in result.messages:
                    sent = await self.responder.send(message)
                    if not sent.ok:
                        log.warning(
                            "Outbound message not delivered",
                            context={"error_code": sent.error_code, "status": sent.status_code},
                        )
                return result
        except SessionLockTimeout as e:
            log.warning(f"Dropping inbound event: {e}", context={"waited_seconds": e.waited_seconds})
            return None
        except Exception as e:
            log.error(f"Inbound event handling failed: {e}", exc_info=True)
            return None

    async def handle_events(self, events: Iterable[InboundEvent]) -> list[RouteResult | None]:
        """Process a webhook batch; same-user events keep arrival order through the lock."""
        events = list(events)
        if not events:
            return []
        return list(await asyncio.gather(*(self.handle_event(event) for event in events)))


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    """Production wiring built from settings."""
    settings = get_settings()
    content = load_content(settings.content_path)
    provider = OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
    # Store and lock share one Redis connection pool.
    client = redis_client(settings) if session_backend(settings) == "redis" else None
    router = ConversationRouter(
        content=content,
        store=build_session_store(settings, client),
        freeform=FreeformChat(content, provider),
        support_mode=settings.support_mode,
    )
    return Dispatcher(router, WhatsAppResponder.from_settings(settings), build_session_lock(settings, client))
