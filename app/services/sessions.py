"""Conversation session records and the stores that hold them."""
from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from redis.asyncio import Redis


class Stage(str, Enum):
    CONFIRM_START = "confirmStart"
    AWAIT_SCHOOL_CODE = "awaitSchoolCode"
    AWAIT_STUDENT_PIN = "awaitStudentPin"
    AWAIT_DETAILS_AND_MEDIA = "awaitDetailsAndMedia"
    EXISTING_TICKET_CHOICE = "existingTicketChoice"
    AWAIT_CLOSE_SELECTION = "awaitCloseSelection"
    AWAIT_STOP_CHOICE = "awaitStopChoice"
    AWAIT_NUMERIC_CONFIRMATION = "awaitNumericConfirmation"
    AWAIT_REOPEN_REASON = "awaitReopenReason"


# Seeded by support out of band; kept until the user answers.
NON_EXPIRING_STAGES = frozenset({Stage.AWAIT_NUMERIC_CONFIRMATION, Stage.AWAIT_REOPEN_REASON})


@dataclass(slots=True)
class TicketDetails:
    school_code: str = ""
    student_id: str = ""
    issue_description: str = ""
    screenshot_url: str = ""
    user_comments: str = ""


@dataclass(slots=True)
class Session:
    stage: Stage
    ticket_id: str | None = None
    status: str = ""
    details: TicketDetails = field(default_factory=TicketDetails)
    existing_tickets: list[dict[str, Any]] = field(default_factory=list)
    previous_stage: Stage | None = None
    previous_data: dict[str, Any] = field(default_factory=dict)
    resolution: str = ""
    updated_at: float = field(default_factory=time.time)

    @property
    def expires(self) -> bool:
        return self.stage not in NON_EXPIRING_STAGES

    def touch(self, now: float | None = None) -> None:
        self.updated_at = time.time() if now is None else now

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["previous_stage"] = self.previous_stage.value if self.previous_stage else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        previous = data.get("previous_stage")
        return cls(
            stage=Stage(data["stage"]),
            ticket_id=data.get("ticket_id"),
            status=data.get("status") or "",
            details=TicketDetails(**(data.get("details") or {})),
            existing_tickets=list(data.get("existing_tickets") or []),
            previous_stage=Stage(previous) if previous else None,
            previous_data=dict(data.get("previous_data") or {}),
            resolution=data.get("resolution") or "",
            updated_at=float(data.get("updated_at") or time.time()),
        )


class SessionStore(ABC):
    """Keyed storage for in-flight conversations."""

    @abstractmethod
    async def get(self, user_id: str) -> Session | None: ...

    @abstractmethod
    async def put(self, user_id: str, session: Session) -> None: ...

    @abstractmethod
    async def delete(self, user_id: str) -> None: ...

    @abstractmethod
    async def reap_expired(self, now: float | None = None) -> list[tuple[str, Session]]:
        """Remove sessions idle for longer than the TTL and return them."""

    async def take_expired(self, user_id: str) -> Session | None:
        """Remove and return ``user_id``'s session if it has expired."""

        return None

    async def count(self) -> int | None:
        return None

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    def __init__(self, *, ttl_seconds: int = 3600) -> None:
        self._sessions: dict[str, Session] = {}
        self._ttl = ttl_seconds

    async def get(self, user_id: str) -> Session | None:
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if self._is_expired(session, time.time()):
            # Left in place so its reservation can still be released.
            return None
        return session

    async def take_expired(self, user_id: str) -> Session | None:
        session = self._sessions.get(user_id)
        if session is None or not self._is_expired(session, time.time()):
            return None
        del self._sessions[user_id]
        return session

    async def put(self, user_id: str, session: Session) -> None:
        session.touch()
        self._sessions[user_id] = session

    async def delete(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    async def reap_expired(self, now: float | None = None) -> list[tuple[str, Session]]:
        current = time.time() if now is None else now
        expired = [
            (user_id, session)
            for user_id, session in self._sessions.items()
            if self._is_expired(session, current)
        ]
        for user_id, _ in expired:
            del self._sessions[user_id]
        return expired

    async def count(self) -> int:
        now = time.time()
        return sum(1 for session in self._sessions.values() if not self._is_expired(session, now))

    def _is_expired(self, session: Session, now: float) -> bool:
        return self._ttl > 0 and session.expires and now - session.updated_at > self._ttl


class RedisSessionStore(SessionStore):
    """Sessions serialised to JSON in Redis; expiry is delegated to key TTLs."""

    key_prefix = "support-bot:session:"

    def __init__(self, client: Redis, *, ttl_seconds: int = 3600) -> None:
        self._client = client
        self._ttl = ttl_seconds

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    async def get(self, user_id: str) -> Session | None:
        raw = await self._client.get(self._key(user_id))
        if not raw:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            await self._client.delete(self._key(user_id))
            return None

    async def put(self, user_id: str, session: Session) -> None:
        session.touch()
        payload = json.dumps(session.to_dict())
        if self._ttl > 0 and session.expires:
            await self._client.set(self._key(user_id), payload, ex=self._ttl)
        else:
            await self._client.set(self._key(user_id), payload)

    async def delete(self, user_id: str) -> None:
        await self._client.delete(self._key(user_id))

    async def reap_expired(self, now: float | None = None) -> list[tuple[str, Session]]:
        return []

    async def close(self) -> None:
        await self._client.aclose()


class UserLockRegistry:
    """Hand out one lock per user so a user's messages are handled one at a time."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def hold(self, user_id: str) -> "_UserLockContext":
        return _UserLockContext(self, user_id)

    async def _acquire(self, user_id: str) -> None:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(user_id)
            raise

    def _release(self, user_id: str) -> None:
        self._locks[user_id].release()
        self._forget(user_id)

    def _forget(self, user_id: str) -> None:
        remaining = self._waiters.get(user_id, 1) - 1
        if remaining <= 0:
            self._waiters.pop(user_id, None)
            self._locks.pop(user_id, None)
        else:
            self._waiters[user_id] = remaining


class _UserLockContext:
    def __init__(self, registry: UserLockRegistry, user_id: str) -> None:
        self._registry = registry
        self._user_id = user_id

    async def __aenter__(self) -> None:
        await self._registry._acquire(self._user_id)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._registry._release(self._user_id)
        return False
