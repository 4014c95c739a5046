"""
Structured logging for the bot.

Each record is one JSON line. The user and the inbound message id are
promoted to top-level keys so a conversation can be followed with a plain
grep; everything else passed as ``extra={"context": {...}}`` stays nested.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

EVENT_FIELDS = ("user", "message_id")

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        context = dict(getattr(record, "context", None) or {})
        for name in EVENT_FIELDS:
            if context.get(name) is not None:
                entry[name] = context.pop(name)
        entry["msg"] = record.getMessage()
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> None:
    """Send every record to stdout as JSON. Replaces existing root handlers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    try:
        root.setLevel(level.upper())
    except ValueError:
        root.setLevel(logging.INFO)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"wabot.{name}")


def mask_user_id(user_id: Optional[str], visible: int = 4) -> Optional[str]:
    """Hide all but the last digits of a phone-number user id."""
    if not user_id:
        return user_id
    user_id = str(user_id)
    if len(user_id) <= visible:
        return user_id
    return "*" * (len(user_id) - visible) + user_id[-visible:]


class EventLogger(logging.LoggerAdapter):
    """Logger bound to one inbound event; call-site ``context=`` is merged in."""

    def __init__(self, logger: logging.Logger, user_id: Optional[str], message_id: Optional[str] = None):
        super().__init__(logger, {"user": mask_user_id(user_id), "message_id": message_id})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra["context"] = {**self.extra, **extra.get("context", {}), **kwargs.pop("context", {})}
        return msg, kwargs
