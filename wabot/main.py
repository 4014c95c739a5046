import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wabot.config import get_settings
from wabot.logging_config import get_logger, setup_logging
from wabot.routers import webhook

setup_logging(get_settings().log_level)

logger = get_logger("main")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    for name in settings.missing_required():
        logger.warning(f"Missing env var {name}")
    logger.info(
        "WhatsApp menu bot started",
        extra={
            "context": {
                "session_backend": settings.session_backend,
                "support_mode": settings.support_mode,
                "port": os.environ.get("PORT"),
            }
        },
    )
    yield


app = FastAPI(
    title="WhatsApp Menu Bot",
    description="Webhook-driven WhatsApp menu router with scripted flows and AI chat",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhook.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
