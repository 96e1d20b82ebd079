import asyncio
from datetime import datetime

import httpx

from app.services import ticket_gateway as gateway_module
from app.services.sessions import TicketDetails
from app.services.ticket_gateway import TicketGateway, format_timestamp

GATEWAY_URL = "https://script.example.com/exec"


class DummyResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def raise_for_status(self) -> None:
        if not self.is_success:
            raise httpx.HTTPStatusError(
                "error",
                request=httpx.Request("GET", GATEWAY_URL),
                response=httpx.Response(self.status_code),
            )

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def _install_client(monkeypatch, captured: dict, response=None, error: Exception | None = None):
    class DummyClient:
        def __init__(self, *args, **kwargs) -> None:
            captured["timeout"] = kwargs.get("timeout")
            captured["follow_redirects"] = kwargs.get("follow_redirects")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):  # type: ignore[override]
            return False

        async def post(self, url: str, json: dict):
            if error is not None:
                raise error
            captured.setdefault("posts", []).append({"url": url, "json": json})
            return response or DummyResponse()

        async def get(self, url: str, params: dict):
            if error is not None:
                raise error
            captured.setdefault("gets", []).append({"url": url, "params": params})
            return response or DummyResponse(payload={})

    monkeypatch.setattr(gateway_module.httpx, "AsyncClient", DummyClient)


def test_format_timestamp_matches_sheet_layout():
    assert format_timestamp(datetime(2025, 3, 5, 9, 4, 7)) == "5/3/2025, 09:04:07"


def test_create_posts_ticket_payload(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured)
    gateway = TicketGateway(GATEWAY_URL, timeout=12.0)
    monkeypatch.setattr(gateway, "timestamp", lambda: "5/3/2025, 09:04:07")
    details = TicketDetails(
        school_code="ABC12",
        student_id="PIN-77",
        issue_description="Marks missing",
        screenshot_url="data:image/png;base64,aGk=",
    )

    result = asyncio.run(
        gateway.create(ticket_id="ULI0001", raised_by="91987@c.us", status="In Progress", details=details)
    )

    assert result is True
    assert captured["timeout"] == 12.0
    assert captured["follow_redirects"] is True
    payload = captured["posts"][0]["json"]
    assert payload == {
        "action": "create",
        "ticketId": "ULI0001",
        "raisedBy": "91987@c.us",
        "reportingDate": "5/3/2025, 09:04:07",
        "schoolCode": "ABC12",
        "studentPin": "PIN-77",
        "issueDescription": "Marks missing",
        "screenshotUrl": "data:image/png;base64,aGk=",
        "status": "In Progress",
    }


def test_update_status_sets_closure_date_only_when_closed(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured)
    gateway = TicketGateway(GATEWAY_URL)
    monkeypatch.setattr(gateway, "timestamp", lambda: "1/1/2025, 00:00:00")

    asyncio.run(gateway.update_status("ULI0001", "Closed", "fixed"))
    asyncio.run(gateway.update_status("ULI0001", "Reopened"))

    closed, reopened = (entry["json"] for entry in captured["posts"])
    assert closed["closureDate"] == "1/1/2025, 00:00:00"
    assert closed["resolution"] == "fixed"
    assert reopened["closureDate"] == ""
    assert reopened["resolution"] == ""


def test_comment_operations_use_sheet_actions(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured)
    gateway = TicketGateway(GATEWAY_URL)

    asyncio.run(gateway.append_reopen_reason("ULI0002", "still broken", "2/2/2025, 10:00:00"))
    asyncio.run(gateway.append_resolution("ULI0002", "patched"))

    reopen, resolution = (entry["json"] for entry in captured["posts"])
    assert reopen == {
        "action": "addReopenReason",
        "ticketId": "ULI0002",
        "reopenReason": "still broken",
        "reopenDate": "2/2/2025, 10:00:00",
    }
    assert resolution == {
        "action": "addSupportResolution",
        "ticketId": "ULI0002",
        "resolution": "patched",
    }


def test_write_failures_return_false(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured, response=DummyResponse(500))
    gateway = TicketGateway(GATEWAY_URL)
    assert asyncio.run(gateway.append_resolution("ULI0002", "patched")) is False

    _install_client(monkeypatch, captured, error=httpx.ReadTimeout("timed out"))
    assert asyncio.run(gateway.update_status("ULI0002", "Closed")) is False


def test_missing_url_skips_calls(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured)
    gateway = TicketGateway(None)

    assert gateway.configured is False
    assert asyncio.run(gateway.append_resolution("ULI0002", "patched")) is False
    assert asyncio.run(gateway.list_tickets_for_user("91987@c.us")) == []
    assert "posts" not in captured
    assert "gets" not in captured


def test_list_tickets_normalises_rows(monkeypatch):
    captured: dict = {}
    payload = {
        "tickets": [
            {"ticketId": "ULI0004", "status": "Open", "reportingDate": "1/3/2025, 09:00:00"},
            {"status": "Open"},
            "garbage",
        ]
    }
    _install_client(monkeypatch, captured, response=DummyResponse(payload=payload))
    gateway = TicketGateway(GATEWAY_URL)

    tickets = asyncio.run(gateway.list_tickets_for_user("91987@c.us"))

    assert tickets == [
        {"ticket_id": "ULI0004", "status": "Open", "reporting_date": "1/3/2025, 09:00:00"}
    ]
    assert captured["gets"][0]["params"] == {"action": "checkTickets", "user": "91987@c.us"}


def test_list_tickets_returns_empty_on_bad_json(monkeypatch):
    captured: dict = {}
    _install_client(monkeypatch, captured, response=DummyResponse(payload=ValueError("bad json")))
    gateway = TicketGateway(GATEWAY_URL)

    assert asyncio.run(gateway.list_tickets_for_user("91987@c.us")) == []


def test_get_details_maps_fields_and_handles_missing(monkeypatch):
    captured: dict = {}
    payload = {
        "details": {
            "schoolName": "Green Valley",
            "schoolCode": "GV01",
            "studentPin": "1234",
            "issueDescription": "Marks missing",
        }
    }
    _install_client(monkeypatch, captured, response=DummyResponse(payload=payload))
    gateway = TicketGateway(GATEWAY_URL)

    details = asyncio.run(gateway.get_details("ULI0004"))

    assert details == {
        "school_name": "Green Valley",
        "school_code": "GV01",
        "student_pin": "1234",
        "issue_description": "Marks missing",
    }
    assert captured["gets"][0]["params"] == {"action": "getTicketDetails", "ticketId": "ULI0004"}

    _install_client(monkeypatch, captured, response=DummyResponse(payload={"details": None}))
    assert asyncio.run(gateway.get_details("ULI0004")) is None
