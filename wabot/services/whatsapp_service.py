from typing import Optional

import httpx

from wabot.config import Settings
from wabot.logging_config import get_logger, mask_user_id
from wabot.services.alert_service import alert_error
from wabot.services.outbound import OutboundMessage, SendMenu, SendText, SendYesNo
from wabot.services.result import API_ERROR, NOT_CONFIGURED, TRANSPORT_ERROR, SendResult

logger = get_logger("whatsapp_service")

# WhatsApp rejects reply-button titles longer than this.
BUTTON_TITLE_MAX_LENGTH = 20

YES_LABEL = "Yes"
NO_LABEL = "No"


def truncate_label(label: str, max_length: int = BUTTON_TITLE_MAX_LENGTH) -> str:
    label = (label or "").strip()
    return label if len(label) <= max_length else label[:max_length]


def _reply_button(button_id: str, title: str) -> dict:
    return {"type": "reply", "reply": {"id": button_id, "title": truncate_label(title)}}


def _button_message(to: str, body: str, buttons: list[dict]) -> dict:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "interactive",
        "interactive": {
            "type": "button",
            "body": {"text": body},
            "action": {"buttons": buttons},
        },
    }


def render_payload(intent: OutboundMessage) -> dict:
    """Render an outbound intent to a Cloud API message payload."""
    if isinstance(intent, SendText):
        return {
            "messaging_product": "whatsapp",
            "to": intent.to,
            "type": "text",
            "text": {"body": intent.body},
        }
    if isinstance(intent, SendMenu):
        buttons = [_reply_button(option.id, option.label) for option in intent.options]
        return _button_message(intent.to, intent.prompt_text, buttons)
    if isinstance(intent, SendYesNo):
        buttons = [_reply_button(intent.yes_id, YES_LABEL), _reply_button(intent.no_id, NO_LABEL)]
        return _button_message(intent.to, intent.prompt_text, buttons)
    raise TypeError(f"Unsupported outbound intent: {type(intent).__name__}")


class WhatsAppResponder:
    """Sends outbound intents through the WhatsApp Cloud API. Best effort."""

    def __init__(
        self,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        api_url: str = "https://graph.facebook.com",
        api_version: str = "v20.0",
        timeout_seconds: float = 15.0,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout_seconds = timeout_seconds
        self.messages_url = f"{api_url.rstrip('/')}/{api_version}/{phone_number_id}/messages"

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppResponder":
        return cls(
            access_token=settings.whatsapp_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_url=settings.graph_api_url,
            api_version=settings.graph_api_version,
            timeout_seconds=settings.whatsapp_timeout_seconds,
        )

    async def send(self, intent: OutboundMessage) -> SendResult:
        if not self.access_token or not self.phone_number_id:
            logger.error("WhatsApp credentials missing (WHATSAPP_TOKEN / WHATSAPP_PHONE_NUMBER_ID)")
            return SendResult.failed("WhatsApp credentials missing", NOT_CONFIGURED)

        payload = render_payload(intent)
        context = {"user": mask_user_id(intent.to), "type": payload["type"]}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.messages_url,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": context})
            await alert_error("WhatsApp send failed", {**context, "error": str(e)})
            return SendResult.from_exception(e, TRANSPORT_ERROR)

        if response.status_code >= 300:
            logger.error(
                f"WhatsApp API rejected message: status={response.status_code}, body={response.text[:200]}",
                extra={"context": context},
            )
            await alert_error("WhatsApp send failed", {**context, "status": response.status_code})
            return SendResult.failed(f"WhatsApp API error: {response.status_code}", API_ERROR, response.status_code)

        logger.info(f"Delivered via WhatsApp: status={response.status_code}", extra={"context": context})
        try:
            body = response.json()
        except ValueError:
            body = None
        return SendResult.delivered(body, response.status_code)
