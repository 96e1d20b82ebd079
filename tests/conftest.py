import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("TICKET_GATEWAY_URL", "")
os.environ.setdefault("DELIVERY_ENDPOINT", "")
os.environ.setdefault("INTRO_IMAGE_PATH", "")
os.environ.setdefault("TICKET_STATE_PATH", str(ROOT / ".pytest-ticket-counter.json"))

from app.schemas.messages import InboundMessage  # noqa: E402
from app.services.conversation import ConversationService  # noqa: E402
from app.services.delivery import MediaDownloadError, MediaPayload  # noqa: E402
from app.services.replies import Replies  # noqa: E402
from app.services.sessions import InMemorySessionStore  # noqa: E402
from app.services.ticket_counter import TicketCounterStore  # noqa: E402


class FakeGateway:
    """Records gateway calls and answers with canned results."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.tickets: list[dict] = []
        self.details: dict | None = None
        self.create_result = True
        self.update_result = True
        self.comment_result = True
        self.resolution_result = True
        self.configured = True

    def timestamp(self) -> str:
        return "5/3/2025, 10:15:00"

    async def create(self, *, ticket_id, raised_by, status, details):
        self.calls.append(("create", ticket_id, raised_by, status, details.issue_description))
        return self.create_result

    async def update_status(self, ticket_id, status, resolution=""):
        self.calls.append(("update_status", ticket_id, status, resolution))
        return self.update_result

    async def append_reopen_reason(self, ticket_id, reason, timestamp):
        self.calls.append(("append_reopen_reason", ticket_id, reason, timestamp))
        return self.comment_result

    async def append_resolution(self, ticket_id, resolution):
        self.calls.append(("append_resolution", ticket_id, resolution))
        return self.resolution_result

    async def list_tickets_for_user(self, user_id):
        self.calls.append(("list_tickets_for_user", user_id))
        return list(self.tickets)

    async def get_details(self, ticket_id):
        self.calls.append(("get_details", ticket_id))
        return self.details


class FakeDelivery:
    def __init__(self) -> None:
        self.texts: list[tuple[str, str]] = []
        self.media: list[tuple[str, Path, str]] = []
        self.media_payload: MediaPayload | None = MediaPayload(mimetype="image/png", data="aGVsbG8=")

    async def send_text(self, user_id, text):
        self.texts.append((user_id, text))

    async def send_media(self, user_id, media_path, caption):
        self.media.append((user_id, media_path, caption))

    async def download_media(self, message):
        if self.media_payload is None:
            raise MediaDownloadError("download failed")
        return self.media_payload

    @property
    def last_text(self) -> str:
        return self.texts[-1][1]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def counter(tmp_path):
    return TicketCounterStore(tmp_path / "ticket-counter.json", prefix="ULI")


@pytest.fixture
def replies():
    return Replies(
        support_name="Ulipsu Support",
        support_phone="+91 88848 19888",
        support_email="support@ulipsu.com",
    )


@pytest.fixture
def service(counter, gateway, delivery, replies):
    return ConversationService(
        sessions=InMemorySessionStore(ttl_seconds=3600),
        counter=counter,
        gateway=gateway,
        delivery=delivery,
        replies=replies,
        intro_image=None,
    )


@pytest.fixture
def message():
    def _build(body: str = "", sender: str = "919876543210@c.us", **extra) -> InboundMessage:
        return InboundMessage(sender=sender, body=body, **extra)

    return _build
