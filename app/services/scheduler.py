from __future__ import annotations

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import get_settings
from app.core.logging import log_error, log_info
from app.services.conversation import ConversationService

SESSION_REAPER_JOB_ID = "session-reaper"
KEEPALIVE_JOB_ID = "keepalive"


class SchedulerService:
    """Periodic housekeeping: idle session expiry and the optional keep-alive ping."""

    def __init__(self, conversation: ConversationService | None = None) -> None:
        settings = get_settings()
        self._scheduler = AsyncIOScheduler(timezone=settings.default_timezone)
        self._conversation = conversation
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def bind(self, conversation: ConversationService) -> None:
        self._conversation = conversation

    async def start(self) -> None:
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        self._ensure_jobs()
        log_info("Scheduler started")

    async def stop(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False
        log_info("Scheduler stopped")

    def _ensure_jobs(self) -> None:
        settings = get_settings()
        if self._conversation is not None and settings.session_reap_interval > 0:
            self._scheduler.add_job(
                self.reap_sessions,
                IntervalTrigger(seconds=settings.session_reap_interval),
                id=SESSION_REAPER_JOB_ID,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        if settings.keepalive_url and settings.keepalive_interval_minutes > 0:
            self._scheduler.add_job(
                self.ping_keepalive,
                IntervalTrigger(minutes=settings.keepalive_interval_minutes),
                id=KEEPALIVE_JOB_ID,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )

    async def reap_sessions(self) -> int:
        if self._conversation is None:
            return 0
        try:
            return await self._conversation.reap_expired_sessions()
        except Exception as exc:  # pragma: no cover - keep the job alive
            log_error("Session reaper failed", error=str(exc))
            return 0

    async def ping_keepalive(self) -> bool:
        url = get_settings().keepalive_url
        if not url:
            return False
        target = f"{str(url).rstrip('/')}/health"
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(target)
        except httpx.HTTPError as exc:
            log_error("Keep-alive ping failed", url=target, error=str(exc))
            return False
        log_info("Keep-alive ping completed", url=target, status_code=response.status_code)
        return response.status_code < 400
