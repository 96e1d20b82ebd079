"""HTTP client for the spreadsheet web app that holds ticket records."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from app.core.logging import log_debug, log_error, log_warning
from app.services.sessions import TicketDetails

OPEN_STATUSES = ("Open", "In Progress", "Reopened")
STATUS_CLOSED = "Closed"
STATUS_REOPENED = "Reopened"
STATUS_IN_PROGRESS = "In Progress"


def format_timestamp(moment: datetime) -> str:
    """Render ``moment`` as ``D/M/YYYY, HH:mm:ss`` (no zero padding on day/month)."""

    return f"{moment.day}/{moment.month}/{moment.year}, {moment:%H:%M:%S}"


def _resolve_timezone(name: str | None) -> ZoneInfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        log_warning("Unknown ticket timezone, falling back to local time", timezone=name)
        return None


def _normalise_ticket(row: Mapping[str, Any]) -> dict[str, Any] | None:
    ticket_id = str(row.get("ticketId") or row.get("ticket_id") or "").strip()
    if not ticket_id:
        return None
    return {
        "ticket_id": ticket_id,
        "status": str(row.get("status") or "").strip(),
        "reporting_date": str(row.get("reportingDate") or row.get("reporting_date") or ""),
    }


class TicketGateway:
    """Create and update ticket records held by the remote ticket store.

    Write operations report success as a boolean and never raise for transport
    problems; callers decide what the user is told.
    """

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 15.0,
        timezone_name: str | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._tz = _resolve_timezone(timezone_name)

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    def now(self) -> datetime:
        return datetime.now(self._tz) if self._tz else datetime.now()

    def timestamp(self) -> str:
        return format_timestamp(self.now())

    async def create(self, *, ticket_id: str, raised_by: str, status: str, details: TicketDetails) -> bool:
        payload = {
            "action": "create",
            "ticketId": ticket_id,
            "raisedBy": raised_by,
            "reportingDate": self.timestamp(),
            "schoolCode": details.school_code,
            "studentPin": details.student_id,
            "issueDescription": details.issue_description,
            "screenshotUrl": details.screenshot_url,
            "status": status,
        }
        return await self._post("create", payload)

    async def update_status(self, ticket_id: str, status: str, resolution: str = "") -> bool:
        payload = {
            "action": "updateStatus",
            "ticketId": ticket_id,
            "status": status,
            "closureDate": self.timestamp() if status == STATUS_CLOSED else "",
            "resolution": resolution or "",
        }
        return await self._post("updateStatus", payload)

    async def append_reopen_reason(self, ticket_id: str, reason: str, timestamp: str) -> bool:
        payload = {
            "action": "addReopenReason",
            "ticketId": ticket_id,
            "reopenReason": reason,
            "reopenDate": timestamp,
        }
        return await self._post("addReopenReason", payload)

    async def append_resolution(self, ticket_id: str, resolution: str) -> bool:
        payload = {
            "action": "addSupportResolution",
            "ticketId": ticket_id,
            "resolution": resolution,
        }
        return await self._post("addSupportResolution", payload)

    async def list_tickets_for_user(self, user_id: str) -> list[dict[str, Any]]:
        body = await self._get("checkTickets", {"user": user_id})
        if not isinstance(body, Mapping):
            return []
        rows = body.get("tickets") or []
        if not isinstance(rows, list):
            log_warning("Ticket listing returned unexpected payload", user=user_id)
            return []
        tickets = []
        for row in rows:
            if isinstance(row, Mapping):
                normalised = _normalise_ticket(row)
                if normalised:
                    tickets.append(normalised)
        return tickets

    async def get_details(self, ticket_id: str) -> dict[str, Any] | None:
        body = await self._get("getTicketDetails", {"ticketId": ticket_id})
        if not isinstance(body, Mapping):
            return None
        details = body.get("details")
        if not isinstance(details, Mapping):
            return None
        return {
            "school_name": details.get("schoolName") or None,
            "school_code": details.get("schoolCode") or "",
            "student_pin": details.get("studentPin") or "",
            "issue_description": details.get("issueDescription") or "",
        }

    async def _post(self, action: str, payload: dict[str, Any]) -> bool:
        if not self._base_url:
            log_warning("Ticket gateway call skipped because no URL is configured", action=action)
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.post(self._base_url, json=payload)
        except httpx.HTTPError as exc:
            log_error(
                "Ticket gateway request failed",
                action=action,
                ticket_id=payload.get("ticketId"),
                error=str(exc) or exc.__class__.__name__,
            )
            return False
        if not response.is_success:
            log_error(
                "Ticket gateway rejected request",
                action=action,
                ticket_id=payload.get("ticketId"),
                status_code=response.status_code,
            )
            return False
        log_debug("Ticket gateway request completed", action=action, ticket_id=payload.get("ticketId"))
        return True

    async def _get(self, action: str, params: dict[str, str]) -> Any:
        if not self._base_url:
            log_warning("Ticket gateway lookup skipped because no URL is configured", action=action)
            return None
        query = {"action": action, **params}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(self._base_url, params=query)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log_error(
                "Ticket gateway lookup failed",
                action=action,
                error=str(exc) or exc.__class__.__name__,
            )
            return None
