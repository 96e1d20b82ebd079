import asyncio
from types import SimpleNamespace

from app.services import scheduler as scheduler_module
from app.services.scheduler import KEEPALIVE_JOB_ID, SESSION_REAPER_JOB_ID, SchedulerService


def _settings(**overrides):
    values = {
        "default_timezone": "UTC",
        "session_reap_interval": 60,
        "keepalive_url": None,
        "keepalive_interval_minutes": 14,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_jobs_registered_for_reaper_and_keepalive(monkeypatch, service):
    monkeypatch.setattr(
        scheduler_module,
        "get_settings",
        lambda: _settings(keepalive_url="https://bot.example.com"),
    )
    scheduler = SchedulerService(service)

    async def _run():
        await scheduler.start()
        job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
        await scheduler.stop()
        return job_ids

    job_ids = asyncio.run(_run())

    assert job_ids == {SESSION_REAPER_JOB_ID, KEEPALIVE_JOB_ID}
    assert scheduler.started is False


def test_keepalive_skipped_without_url(monkeypatch, service):
    monkeypatch.setattr(scheduler_module, "get_settings", lambda: _settings())
    scheduler = SchedulerService(service)

    async def _run():
        await scheduler.start()
        job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
        pinged = await scheduler.ping_keepalive()
        await scheduler.stop()
        return job_ids, pinged

    job_ids, pinged = asyncio.run(_run())

    assert job_ids == {SESSION_REAPER_JOB_ID}
    assert pinged is False


def test_reap_sessions_delegates_to_conversation(monkeypatch, service, message):
    monkeypatch.setattr(scheduler_module, "get_settings", lambda: _settings())
    asyncio.run(service.handle_message(message("hi")))
    for session in service.sessions._sessions.values():
        session.updated_at -= 10_000

    assert asyncio.run(SchedulerService(service).reap_sessions()) == 1


def test_keepalive_pings_health_endpoint(monkeypatch):
    captured: dict = {}

    class DummyClient:
        def __init__(self, *args, **kwargs) -> None:
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):  # type: ignore[override]
            return False

        async def get(self, url: str):
            captured["url"] = url
            return SimpleNamespace(status_code=200)

    monkeypatch.setattr(scheduler_module.httpx, "AsyncClient", DummyClient)
    monkeypatch.setattr(
        scheduler_module,
        "get_settings",
        lambda: _settings(keepalive_url="https://bot.example.com/"),
    )

    assert asyncio.run(SchedulerService().ping_keepalive()) is True
    assert captured["url"] == "https://bot.example.com/health"
