"""Outbound message intents produced by the flows and rendered by the responder."""

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class MenuOption:
    id: str
    label: str


@dataclass(frozen=True)
class SendText:
    to: str
    body: str


@dataclass(frozen=True)
class SendMenu:
    to: str
    prompt_text: str
    options: tuple[MenuOption, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SendYesNo:
    to: str
    yes_id: str
    no_id: str
    prompt_text: str


OutboundMessage = Union[SendText, SendMenu, SendYesNo]
