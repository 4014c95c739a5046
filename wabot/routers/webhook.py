import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from wabot.config import Settings, get_settings
from wabot.logging_config import get_logger
from wabot.schemas.webhook import WebhookAck, WebhookPayload, extract_events
from wabot.services.dispatcher import Dispatcher, get_dispatcher

logger = get_logger("webhook")

router = APIRouter()


async def _read_payload(request: Request) -> Optional[dict]:
    """Tolerant JSON decoding; returns None for anything unusable."""
    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during body read")
        return None

    if not raw or not raw.strip():
        logger.info("Webhook probe with empty body")
        return None

    try:
        payload = json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError as exc:
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return None

    if not isinstance(payload, dict):
        logger.warning("Webhook payload is not an object")
        return None
    return payload


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    settings: Settings,
) -> Response:
    if mode == "subscribe" and settings.verify_token and token == settings.verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    return PlainTextResponse("Forbidden", status_code=403)


@router.get("/webhook")
async def handle_verification(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    """Meta webhook subscription handshake."""
    return verify_subscription(hub_mode, hub_verify_token, hub_challenge, settings)


# Root path kept for apps registered with the bare callback URL
@router.get("/")
async def handle_verification_root(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    return verify_subscription(hub_mode, hub_verify_token, hub_challenge, settings)


@router.post("/webhook", response_model=WebhookAck)
async def handle_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    """
    Acknowledge inbound events immediately and process them after the response.

    Always answers 200 so the platform never redelivers; anything that cannot
    be parsed is logged and dropped.
    """
    payload = await _read_payload(request)
    if payload is None:
        return WebhookAck(events=0)

    try:
        parsed = WebhookPayload.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Webhook envelope validation failed", extra={"context": {"error": str(exc)[:500]}})
        return WebhookAck(events=0)

    events = extract_events(parsed)
    if events:
        background_tasks.add_task(dispatcher.handle_events, events)
    logger.debug(f"Webhook accepted: events={len(events)}")
    return WebhookAck(events=len(events))


@router.post("/", response_model=WebhookAck)
async def handle_webhook_root(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    return await handle_webhook(request, background_tasks, dispatcher)
