"""Turns raw inbound events into canonical signals."""

from dataclasses import dataclass
from typing import Optional, Union

from wabot.schemas.webhook import InboundEvent

RESET_KEYWORD = "menu"

KIND_TEXT = "text"
KIND_BUTTON = "interactive-button"


class MalformedEventError(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed inbound event: {reason}")


@dataclass(frozen=True)
class FreeText:
    text: str


@dataclass(frozen=True)
class ButtonSelection:
    id: str


@dataclass(frozen=True)
class Unrecognized:
    kind: Optional[str] = None


Inbound = Union[FreeText, ButtonSelection, Unrecognized]


def normalize_event(event: InboundEvent) -> tuple[str, Inbound]:
    """
    Return (sender, signal) for one inbound event.

    Raises MalformedEventError when the sender is missing, or when a text or
    button event carries no body at all. Other message kinds (media, location,
    reactions) become Unrecognized.
    """
    sender = (event.sender or "").strip()
    if not sender:
        raise MalformedEventError("missing sender")

    if event.kind == KIND_TEXT:
        if event.text is None:
            raise MalformedEventError("text message without body")
        return sender, FreeText(event.text.strip())

    if event.kind == KIND_BUTTON:
        button_id = (event.button_id or "").strip()
        if not button_id:
            raise MalformedEventError("button reply without id")
        return sender, ButtonSelection(button_id)

    if not event.kind:
        raise MalformedEventError("missing message kind")

    return sender, Unrecognized(event.kind)


def is_reset_keyword(signal: Inbound) -> bool:
    return isinstance(signal, FreeText) and signal.text.casefold() == RESET_KEYWORD
