from __future__ import annotations

import time
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from loguru import logger

from app.api.routes import webhooks
from app.core.config import get_settings
from app.core.logging import configure_logging, log_error, log_info
from app.schemas.tickets import HealthResponse
from app.security.request_logger import RequestLoggingMiddleware
from app.services.conversation import ConversationService, get_conversation_service
from app.services.scheduler import SchedulerService

configure_logging()

settings = get_settings()
scheduler_service = SchedulerService()
_started_at = time.monotonic()

tags_metadata = [
    {
        "name": "Webhooks",
        "description": (
            "Inbound chat events from the messaging bridge and ticket resolution "
            "callbacks from the ticket store."
        ),
    },
    {"name": "Health", "description": "Liveness information for hosting platforms."},
]

app = FastAPI(
    title=settings.app_name,
    description="Conversational support-ticket intake over chat.",
    openapi_tags=tags_metadata,
)

app.add_middleware(
    RequestLoggingMiddleware,
    exempt_paths=("/health",),
)

app.include_router(webhooks.router)


@app.on_event("startup")
async def on_startup() -> None:
    service = get_conversation_service()
    try:
        await service.counter.load()
    except Exception as exc:
        log_error("Ticket counter state could not be loaded", error=str(exc))
        raise
    log_info(
        "Ticket counter ready",
        last_issued=service.counter.last_issued,
        prefix=service.counter.prefix,
    )
    if not service.gateway.configured:
        logger.warning("TICKET_GATEWAY_URL is not set; tickets will not be recorded")
    scheduler_service.bind(service)
    await scheduler_service.start()
    log_info("Application started", environment=settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await scheduler_service.stop()
    await get_conversation_service().close()
    log_info("Application shutdown")


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(
    service: ConversationService = Depends(get_conversation_service),
) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=round(time.monotonic() - _started_at, 3),
        active_sessions=await service.active_sessions(),
    )
