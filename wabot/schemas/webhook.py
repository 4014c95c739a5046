from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from wabot.logging_config import get_logger

logger = get_logger("schemas.webhook")


class TextContent(BaseModel):
    body: Optional[str] = None


class ButtonReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class InteractiveContent(BaseModel):
    type: Optional[str] = None  # button_reply, list_reply, ...
    button_reply: Optional[ButtonReply] = None


class QuickReplyButton(BaseModel):
    payload: Optional[str] = None
    text: Optional[str] = None


class WhatsAppMessage(BaseModel):
    from_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("from", "from_number"))
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: Optional[str] = None
    text: Optional[TextContent] = None
    interactive: Optional[InteractiveContent] = None
    button: Optional[QuickReplyButton] = None  # template quick-reply

    model_config = ConfigDict(populate_by_name=True)


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    # Validated one by one in extract_events so a bad message does not sink the batch.
    messages: list[Any] = Field(default_factory=list)
    statuses: list[dict] = Field(default_factory=list)


class Change(BaseModel):
    field: Optional[str] = None
    value: Optional[ChangeValue] = None


class Entry(BaseModel):
    id: Optional[str] = None
    changes: list[Change] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[Entry] = Field(default_factory=list)


class InboundEvent(BaseModel):
    """One inbound message reduced to what the conversation core needs."""

    sender: Optional[str] = None
    kind: Optional[str] = None  # text | interactive-button | <other platform type>
    text: Optional[str] = None
    button_id: Optional[str] = None
    message_id: Optional[str] = None


class WebhookAck(BaseModel):
    status: str = "ok"
    events: int = 0


def message_to_event(message: WhatsAppMessage) -> InboundEvent:
    event = InboundEvent(sender=message.from_number, message_id=message.id)

    if message.type == "text":
        event.kind = "text"
        event.text = message.text.body if message.text else None
    elif message.type == "interactive" and message.interactive and message.interactive.type == "button_reply":
        event.kind = "interactive-button"
        reply = message.interactive.button_reply
        event.button_id = reply.id if reply else None
    elif message.type == "button":
        event.kind = "interactive-button"
        event.button_id = message.button.payload if message.button else None
    else:
        event.kind = message.type

    return event


def extract_events(payload: WebhookPayload) -> list[InboundEvent]:
    """Flatten entry[].changes[].value.messages[] in delivery order."""
    events: list[InboundEvent] = []
    for entry in payload.entry:
        for change in entry.changes:
            if change.value is None:
                continue
            for raw in change.value.messages:
                try:
                    message = WhatsAppMessage.model_validate(raw)
                except ValidationError as exc:
                    message_id = raw.get("id") if isinstance(raw, dict) else None
                    logger.warning(
                        "Skipping malformed inbound message",
                        extra={"context": {"message_id": message_id, "error": str(exc)[:300]}},
                    )
                    continue
                events.append(message_to_event(message))
    return events
