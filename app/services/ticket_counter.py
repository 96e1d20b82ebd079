"""Durable ticket identifier counter with per-user reservations."""
from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from app.core.logging import log_info, log_warning

_ID_WIDTH = 4


class TicketStateError(RuntimeError):
    """Raised when the persisted counter state cannot be read."""


def format_ticket_id(prefix: str, number: int) -> str:
    return f"{prefix}{number:0{_ID_WIDTH}d}"


def parse_ticket_number(prefix: str, ticket_id: str) -> int | None:
    if not ticket_id or not ticket_id.startswith(prefix):
        return None
    suffix = ticket_id[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


class TicketCounterStore:
    """Issue, reserve and release ticket identifiers.

    The counter and the reservation table share one JSON state file and one
    lock, so a reservation is never visible without the counter value that
    produced it. Every mutation is flushed to disk before the call returns.
    """

    def __init__(self, path: Path, *, prefix: str = "ULI") -> None:
        self._path = Path(path)
        self._prefix = prefix
        self._lock = asyncio.Lock()
        self._last_issued = 0
        self._reservations: dict[str, str] = {}
        self._loaded = False

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def last_issued(self) -> int:
        return self._last_issued

    def reservation_for(self, user_id: str) -> str | None:
        return self._reservations.get(user_id)

    async def load(self) -> None:
        async with self._lock:
            await self._load_locked()

    async def reserve_or_issue(self, user_id: str) -> str:
        """Return the user's pending reservation, or issue and reserve a new id.

        An existing reservation is handed back exactly once and removed from the
        table; the caller is expected to finalize or release it afterwards.
        """

        async with self._lock:
            await self._load_locked()
            existing = self._reservations.pop(user_id, None)
            if existing:
                await self._persist_locked()
                log_info("Reused reserved ticket", ticket_id=existing, user=user_id)
                return existing

            self._last_issued += 1
            ticket_id = format_ticket_id(self._prefix, self._last_issued)
            self._reservations[user_id] = ticket_id
            await self._persist_locked()
            log_info("Issued ticket", ticket_id=ticket_id, user=user_id)
            return ticket_id

    async def release(self, user_id: str) -> bool:
        """Drop the user's reservation, reclaiming the number when it is the tail.

        Returns ``True`` when the counter was decremented.
        """

        async with self._lock:
            await self._load_locked()
            ticket_id = self._reservations.pop(user_id, None)
            if ticket_id is None:
                return False
            decremented = False
            if parse_ticket_number(self._prefix, ticket_id) == self._last_issued and self._last_issued > 0:
                self._last_issued -= 1
                decremented = True
            await self._persist_locked()
            log_info(
                "Released reserved ticket",
                ticket_id=ticket_id,
                user=user_id,
                reclaimed=decremented,
            )
            return decremented

    async def finalize(self, user_id: str) -> None:
        async with self._lock:
            await self._load_locked()
            ticket_id = self._reservations.pop(user_id, None)
            if ticket_id is None:
                return
            await self._persist_locked()
            log_info("Finalized ticket", ticket_id=ticket_id, user=user_id)

    async def _load_locked(self) -> None:
        if self._loaded:
            return
        if not await aiofiles.os.path.exists(self._path):
            self._loaded = True
            return
        async with aiofiles.open(self._path, "r", encoding="utf-8") as handle:
            raw = await handle.read()
        try:
            data: Any = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise TicketStateError(f"Ticket counter state at {self._path} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise TicketStateError(f"Ticket counter state at {self._path} must be an object")

        try:
            last_issued = int(data.get("last_issued", data.get("lastTicket", 0)) or 0)
        except (TypeError, ValueError) as exc:
            raise TicketStateError("Ticket counter value is not an integer") from exc
        if last_issued < 0:
            log_warning("Negative ticket counter in state file reset to zero", value=last_issued)
            last_issued = 0
        reservations = data.get("reservations") or {}
        if not isinstance(reservations, dict):
            raise TicketStateError("Ticket reservations must be an object")

        self._last_issued = last_issued
        self._reservations = {str(user): str(ticket) for user, ticket in reservations.items()}
        self._loaded = True

    async def _persist_locked(self) -> None:
        payload = json.dumps(
            {"last_issued": self._last_issued, "reservations": self._reservations},
            indent=2,
            sort_keys=True,
        )
        if self._path.parent and not await aiofiles.os.path.exists(self._path.parent):
            await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        temp_path = self._path.with_name(f".{self._path.name}.tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as handle:
            await handle.write(payload)
            await handle.flush()
            await asyncio.to_thread(os.fsync, handle.fileno())
        await aiofiles.os.replace(temp_path, self._path)
