from dataclasses import dataclass, field
from typing import Optional

from wabot.logging_config import get_logger, mask_user_id
from wabot.services.content import BotContent, MenuEntry
from wabot.services.freeform import FreeformChat
from wabot.services.normalizer import ButtonSelection, FreeText, Inbound, is_reset_keyword
from wabot.services.outbound import OutboundMessage, SendText
from wabot.services.session_store import SessionStore
from wabot.services.state_machine import (
    SCRIPTED_MODES,
    InvalidStepError,
    Mode,
    Session,
    advance_flow,
    start_flow,
)

logger = get_logger("router")

SUPPORT_MODE_ASSISTANT = "assistant"
SUPPORT_MODE_STUB = "stub"


@dataclass
class RouteResult:
    session: Optional[Session]
    messages: list[OutboundMessage] = field(default_factory=list)

    @property
    def mode(self) -> Mode:
        return self.session.mode if self.session else Mode.UNSET


class ConversationRouter:
    """Decides which flow owns each inbound signal and applies its transition."""

    def __init__(
        self,
        content: BotContent,
        store: SessionStore,
        freeform: FreeformChat,
        support_mode: str = SUPPORT_MODE_ASSISTANT,
    ):
        if support_mode not in (SUPPORT_MODE_ASSISTANT, SUPPORT_MODE_STUB):
            raise ValueError(f"Unknown support mode: {support_mode}")
        self.content = content
        self.store = store
        self.freeform = freeform
        self.support_mode = support_mode

    async def route(self, user_id: str, signal: Inbound) -> RouteResult:
        """
        Read the user's session, apply the signal and persist the result.

        Callers must serialize calls per user_id.
        """
        if is_reset_keyword(signal):
            await self.store.delete(user_id)
            return self._menu(user_id)

        session = await self.store.get(user_id)
        if session is not None and session.mode == Mode.UNSET:
            session = None

        # Menu buttons win over everything else, including an active flow.
        if isinstance(signal, ButtonSelection):
            option = self.content.option_by_id(signal.id)
            if option is not None:
                return await self._start(user_id, option)
            if session is None:
                logger.info(
                    "Unrecognized selection without session",
                    extra={"context": {"user": mask_user_id(user_id), "button_id": signal.id}},
                )
                return self._menu(user_id)

        if session is None:
            if isinstance(signal, FreeText):
                option = self.content.option_by_shortcut(signal.text)
                if option is not None:
                    return await self._start(user_id, option)
            return self._menu(user_id)

        return await self._delegate(user_id, session, signal)

    def _menu(self, user_id: str) -> RouteResult:
        return RouteResult(session=None, messages=[self.content.menu_message(user_id)])

    async def _start(self, user_id: str, option: MenuEntry) -> RouteResult:
        if option.mode == Mode.FREEFORM:
            if self.support_mode == SUPPORT_MODE_STUB:
                await self.store.delete(user_id)
                return RouteResult(session=None, messages=[SendText(to=user_id, body=self.content.messages.support_stub)])
            session, messages = self.freeform.start(option, user_id)
        else:
            session, messages = start_flow(self.content.flows[option.mode], user_id)

        await self.store.set(user_id, session)
        logger.info(
            "Flow started",
            extra={"context": {"user": mask_user_id(user_id), "mode": session.mode.value, "step": session.step}},
        )
        return RouteResult(session=session, messages=messages)

    async def _delegate(self, user_id: str, session: Session, signal: Inbound) -> RouteResult:
        try:
            if session.mode == Mode.FREEFORM:
                new_session, messages = await self.freeform.advance(session, signal, user_id)
            elif session.mode in SCRIPTED_MODES:
                flow = self.content.flows.get(session.mode)
                if flow is None:
                    raise InvalidStepError(session.mode, session.step)
                new_session, messages = advance_flow(flow, session, signal, user_id)
            else:
                raise InvalidStepError(session.mode, session.step)
        except InvalidStepError as e:
            logger.warning(
                f"Resetting inconsistent session: {e}",
                extra={"context": {"user": mask_user_id(user_id)}},
            )
            await self.store.delete(user_id)
            return self._menu(user_id)

        if new_session is None:
            await self.store.delete(user_id)
            logger.info(
                "Flow completed",
                extra={"context": {"user": mask_user_id(user_id), "mode": session.mode.value}},
            )
        else:
            await self.store.set(user_id, new_session)
        return RouteResult(session=new_session, messages=messages)
