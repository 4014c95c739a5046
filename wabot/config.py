from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

REQUIRED_SETTINGS = ("verify_token", "whatsapp_token", "whatsapp_phone_number_id", "openai_api_key")


class Settings(BaseSettings):
    verify_token: Optional[str] = None
    whatsapp_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    graph_api_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v20.0"
    whatsapp_timeout_seconds: float = 15.0

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0

    session_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_seconds: int = 86400
    # Redis backend only: lock expiry and how long an event waits for it.
    session_lock_timeout_seconds: float = 30.0
    session_lock_wait_seconds: float = 10.0

    support_mode: str = "assistant"  # assistant | stub
    content_path: Optional[str] = None

    log_level: str = "INFO"
    alert_bot_token: Optional[str] = None
    alert_chat_id: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    def missing_required(self) -> list[str]:
        """Names of required env vars that are not set."""
        return [name.upper() for name in REQUIRED_SETTINGS if not getattr(self, name)]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
