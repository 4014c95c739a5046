from wabot.schemas.webhook import InboundEvent, WebhookAck, WebhookPayload, extract_events

__all__ = ["InboundEvent", "WebhookAck", "WebhookPayload", "extract_events"]
