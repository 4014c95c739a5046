from typing import Optional

from wabot.logging_config import get_logger, mask_user_id
from wabot.services.alert_service import alert_warning
from wabot.services.content import BotContent, MenuEntry
from wabot.services.llm.base import BackendUnavailable, LLMProvider
from wabot.services.normalizer import FreeText, Inbound
from wabot.services.outbound import OutboundMessage, SendText
from wabot.services.state_machine import Mode, Session

logger = get_logger("freeform")

DEFAULT_PERSONA = "You are a helpful assistant."


class FreeformChat:
    """Relays every text message to the generative backend under a persona."""

    def __init__(self, content: BotContent, provider: LLMProvider):
        self.content = content
        self.provider = provider

    def start(self, option: MenuEntry, to: str) -> tuple[Session, list[OutboundMessage]]:
        session = Session(mode=Mode.FREEFORM, persona=option.persona)
        greeting = self.content.messages.selected.format(label=option.label)
        return session, [SendText(to=to, body=greeting)]

    def persona_text(self, persona: Optional[str]) -> str:
        return self.content.personas.get(persona or "", DEFAULT_PERSONA)

    async def advance(self, session: Session, signal: Inbound, to: str) -> tuple[Session, list[OutboundMessage]]:
        messages = self.content.messages
        if not isinstance(signal, FreeText) or not signal.text:
            return session, [SendText(to=to, body=messages.unsupported_input)]

        try:
            reply = await self.provider.generate(self.persona_text(session.persona), signal.text)
        except BackendUnavailable as e:
            logger.error(
                f"Generative backend unavailable: {e}",
                extra={"context": {"user": mask_user_id(to), "persona": session.persona}},
            )
            await alert_warning("Generative backend unavailable", {"error": str(e)})
            return session, [SendText(to=to, body=messages.backend_unavailable)]
        except Exception as e:
            logger.error(
                f"Generative backend failed: {e}",
                exc_info=True,
                extra={"context": {"user": mask_user_id(to), "persona": session.persona}},
            )
            await alert_warning("Generative backend unavailable", {"error": str(e)})
            return session, [SendText(to=to, body=messages.backend_unavailable)]

        return session, [SendText(to=to, body=reply or messages.empty_reply)]
