"""Outcome of one best-effort outbound delivery."""

from dataclasses import dataclass
from typing import Any, Optional

NOT_CONFIGURED = "not_configured"
TRANSPORT_ERROR = "transport_error"
API_ERROR = "api_error"


@dataclass(frozen=True)
class SendResult:
    ok: bool
    message_id: Optional[str] = None  # wamid assigned by the Cloud API
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def delivered(cls, body: Any, status_code: int = 200) -> "SendResult":
        """Build from a Cloud API response body: {"messages": [{"id": "wamid..."}]}."""
        message_id = None
        messages = body.get("messages") if isinstance(body, dict) else None
        if messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
        return cls(ok=True, message_id=message_id, status_code=status_code)

    @classmethod
    def failed(cls, error: str, code: str, status_code: Optional[int] = None) -> "SendResult":
        return cls(ok=False, error=error, error_code=code, status_code=status_code)

    @classmethod
    def from_exception(cls, exc: Exception, code: str = TRANSPORT_ERROR) -> "SendResult":
        return cls(ok=False, error=f"{type(exc).__name__}: {exc}", error_code=code)
