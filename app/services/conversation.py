"""Per-user intake conversation driven by inbound chat messages."""
from __future__ import annotations

from dataclasses import asdict
from functools import lru_cache
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles.os
from redis.asyncio import Redis

from app.core.config import Settings, get_settings
from app.core.logging import log_debug, log_error, log_info, log_warning
from app.schemas.messages import InboundMessage
from app.services.delivery import DeliveryAdapter, HttpDeliveryAdapter, MediaDownloadError
from app.services.replies import Replies
from app.services.sessions import (
    InMemorySessionStore,
    RedisSessionStore,
    Session,
    SessionStore,
    Stage,
    UserLockRegistry,
)
from app.services.ticket_counter import TicketCounterStore
from app.services.ticket_gateway import (
    OPEN_STATUSES,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_REOPENED,
    TicketGateway,
)

STOP_WORDS = frozenset({"stop", "cancel", "quit", "exit", "abort", "end"})
RESTART_WORDS = frozenset({"restart", "reset", "start over", "begin again", "new"})
GREETING_WORDS = frozenset({"hi", "hello", "hey"})
AFFIRMATIVE_WORDS = frozenset({"yes", "y", "ok", "sure", "proceed"})
NEGATIVE_WORDS = frozenset({"no", "n", "cancel", "stop"})

MIN_DESCRIPTION_LENGTH = 10
CLOSED_BY_USER_NOTE = "Closed by user via WhatsApp"

Handler = Callable[[str, Session, InboundMessage, str], Awaitable[None]]


def normalise_text(body: str | None) -> str:
    return (body or "").strip().lower()


def parse_selection(text: str, count: int) -> int | None:
    """Return the zero-based index for a 1-based menu reply, or ``None``."""

    if not text or not text.isascii() or not text.isdigit():
        return None
    number = int(text)
    if 1 <= number <= count:
        return number - 1
    return None


class ConversationService:
    """Route each inbound message through the intake state machine.

    Messages for the same user are handled one at a time; different users
    proceed concurrently and only meet at the ticket counter's lock.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        counter: TicketCounterStore,
        gateway: TicketGateway,
        delivery: DeliveryAdapter,
        replies: Replies,
        intro_image: Path | None = None,
    ) -> None:
        self.sessions = sessions
        self.counter = counter
        self.gateway = gateway
        self.delivery = delivery
        self.replies = replies
        self.intro_image = intro_image
        self._locks = UserLockRegistry()
        self._handlers: dict[Stage, Handler] = {
            Stage.CONFIRM_START: self._on_confirm_start,
            Stage.AWAIT_SCHOOL_CODE: self._on_school_code,
            Stage.AWAIT_STUDENT_PIN: self._on_student_pin,
            Stage.AWAIT_DETAILS_AND_MEDIA: self._on_details_and_media,
            Stage.EXISTING_TICKET_CHOICE: self._on_existing_ticket_choice,
            Stage.AWAIT_CLOSE_SELECTION: self._on_close_selection,
            Stage.AWAIT_STOP_CHOICE: self._on_stop_choice,
            Stage.AWAIT_NUMERIC_CONFIRMATION: self._on_numeric_confirmation,
            Stage.AWAIT_REOPEN_REASON: self._on_reopen_reason,
        }

    async def handle_message(self, message: InboundMessage) -> None:
        if message.is_group_or_broadcast_or_status:
            log_debug("Ignoring group, broadcast or status message", sender=message.sender)
            return
        user = message.sender
        async with self._locks.hold(user):
            await self._dispatch(user, message)

    async def ingest_resolution(self, ticket_id: str, user: str, resolution: str) -> None:
        """Tell the user their ticket was resolved and wait for a 1/2 answer."""

        async with self._locks.hold(user):
            await self._release_if_expired(user)
            details = await self.gateway.get_details(ticket_id)
            if details is None:
                log_warning("Ticket details unavailable for resolution notice", ticket_id=ticket_id)
            await self.delivery.send_text(
                user, self.replies.resolution_notice(ticket_id, details, resolution)
            )
            await self.sessions.put(
                user,
                Session(
                    stage=Stage.AWAIT_NUMERIC_CONFIRMATION,
                    ticket_id=ticket_id,
                    resolution=resolution,
                ),
            )
            log_info("Resolution notice sent", ticket_id=ticket_id, user=user)

    async def reap_expired_sessions(self) -> int:
        expired = await self.sessions.reap_expired()
        for user, session in expired:
            async with self._locks.hold(user):
                await self._release_abandoned(user, session)
        if expired:
            log_info("Expired idle sessions", count=len(expired))
        return len(expired)

    async def active_sessions(self) -> int | None:
        return await self.sessions.count()

    async def close(self) -> None:
        await self.sessions.close()

    async def _dispatch(self, user: str, message: InboundMessage) -> None:
        text = normalise_text(message.body)
        await self._release_if_expired(user)
        session = await self.sessions.get(user)
        if session is None:
            await self._on_greeting(user, text)
            return

        if text in STOP_WORDS:
            await self._stop(user, session)
            return
        if text in RESTART_WORDS:
            await self._restart(user, session)
            return

        handler = self._handlers[session.stage]
        await handler(user, session, message, text)

    async def _release_if_expired(self, user: str) -> None:
        # Caller holds the user's lock.
        abandoned = await self.sessions.take_expired(user)
        if abandoned is not None:
            await self._release_abandoned(user, abandoned)
            log_info("Dropped expired session", user=user, stage=abandoned.stage.value)

    async def _release_abandoned(self, user: str, session: Session) -> None:
        if session.ticket_id and self.counter.reservation_for(user) == session.ticket_id:
            await self.counter.release(user)

    async def _reply(self, user: str, text: str) -> None:
        await self.delivery.send_text(user, text)

    async def _start_ticket(self, user: str) -> Session:
        ticket_id = await self.counter.reserve_or_issue(user)
        session = Session(
            stage=Stage.AWAIT_SCHOOL_CODE,
            ticket_id=ticket_id,
            status=STATUS_IN_PROGRESS,
        )
        await self.sessions.put(user, session)
        return session

    async def _stop(self, user: str, session: Session) -> None:
        if session.ticket_id:
            await self.counter.release(user)
        await self.sessions.put(
            user,
            Session(
                stage=Stage.AWAIT_STOP_CHOICE,
                previous_stage=session.stage,
                previous_data=asdict(session.details),
            ),
        )
        await self._reply(user, self.replies.stop_menu())

    async def _restart(self, user: str, session: Session) -> None:
        if session.ticket_id:
            await self.counter.release(user)
        fresh = await self._start_ticket(user)
        await self._reply(user, self.replies.restarted(fresh.ticket_id))

    async def _on_greeting(self, user: str, text: str) -> None:
        if text not in GREETING_WORDS:
            await self._reply(user, self.replies.instructions())
            return

        tickets = await self.gateway.list_tickets_for_user(user)
        open_tickets = [ticket for ticket in tickets if ticket["status"] in OPEN_STATUSES]
        if open_tickets:
            await self.sessions.put(
                user,
                Session(stage=Stage.EXISTING_TICKET_CHOICE, existing_tickets=open_tickets),
            )
            await self._reply(user, self.replies.existing_tickets_menu(open_tickets))
            return

        await self.sessions.put(user, Session(stage=Stage.CONFIRM_START))
        caption = self.replies.intro_caption()
        if self.intro_image and await aiofiles.os.path.isfile(self.intro_image):
            await self.delivery.send_media(user, self.intro_image, caption)
        else:
            await self._reply(user, caption)

    async def _on_confirm_start(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        if text in AFFIRMATIVE_WORDS:
            fresh = await self._start_ticket(user)
            await self._reply(user, self.replies.ticket_started(fresh.ticket_id))
        elif text in NEGATIVE_WORDS:
            await self.sessions.delete(user)
            await self._reply(user, self.replies.declined())
        else:
            await self._reply(user, self.replies.confirm_reprompt())

    async def _on_school_code(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        school_code = message.body.strip().upper()
        if not school_code:
            await self._reply(user, self.replies.school_code_empty())
            return
        session.details.school_code = school_code
        session.stage = Stage.AWAIT_STUDENT_PIN
        await self.sessions.put(user, session)
        await self._reply(user, self.replies.ask_student_pin())

    async def _on_student_pin(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        student_pin = message.body.strip()
        if not student_pin:
            await self._reply(user, self.replies.student_pin_empty())
            return
        session.details.student_id = student_pin
        session.stage = Stage.AWAIT_DETAILS_AND_MEDIA
        await self.sessions.put(user, session)
        await self._reply(user, self.replies.ask_details())

    async def _on_details_and_media(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        details = session.details
        body = message.body.strip()
        if body:
            details.issue_description = (
                f"{details.issue_description}\n{body}" if details.issue_description else body
            )

        if message.has_media or message.media is not None:
            try:
                media = await self.delivery.download_media(message)
            except MediaDownloadError as exc:
                log_warning("Inbound media could not be processed", user=user, error=str(exc))
                await self.sessions.put(user, session)
                await self._reply(user, self.replies.media_failed())
            else:
                details.screenshot_url = media.as_data_url()
                await self.sessions.put(user, session)
                await self._reply(user, self.replies.media_received())
        else:
            await self.sessions.put(user, session)

        if len(details.issue_description.strip()) < MIN_DESCRIPTION_LENGTH:
            await self._reply(user, self.replies.details_too_short(MIN_DESCRIPTION_LENGTH))
            return

        created = await self.gateway.create(
            ticket_id=session.ticket_id,
            raised_by=user,
            status=session.status or STATUS_IN_PROGRESS,
            details=details,
        )
        await self.sessions.delete(user)
        if created:
            await self.counter.finalize(user)
            log_info("Ticket created", ticket_id=session.ticket_id, user=user)
            await self._reply(user, self.replies.ticket_created(session.ticket_id, details))
        else:
            log_error("Ticket could not be recorded", ticket_id=session.ticket_id, user=user)
            await self._reply(user, self.replies.ticket_failed(session.ticket_id))

    async def _on_existing_ticket_choice(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        if text == "1":
            fresh = await self._start_ticket(user)
            await self._reply(user, self.replies.ticket_started(fresh.ticket_id, from_menu=True))
        elif text == "2":
            session.stage = Stage.AWAIT_CLOSE_SELECTION
            await self.sessions.put(user, session)
            await self._reply(user, self.replies.close_selection_menu(session.existing_tickets))
        elif text == "3":
            await self.sessions.delete(user)
            await self._reply(user, self.replies.status_report(session.existing_tickets))
        else:
            await self._reply(user, self.replies.existing_choice_reprompt())

    async def _on_close_selection(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        index = parse_selection(text, len(session.existing_tickets))
        if index is None:
            await self._reply(user, self.replies.close_selection_reprompt())
            return
        ticket_id = session.existing_tickets[index]["ticket_id"]
        updated = await self.gateway.update_status(ticket_id, STATUS_CLOSED, CLOSED_BY_USER_NOTE)
        await self.sessions.delete(user)
        await self._reply(user, self.replies.ticket_closed_by_user(ticket_id))
        if not updated:
            await self._reply(user, self.replies.record_update_failed(ticket_id))

    async def _on_stop_choice(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        if text == "1":
            await self._restart(user, session)
        elif text == "2":
            await self.sessions.delete(user)
            await self._reply(user, self.replies.farewell())
        else:
            await self._reply(user, self.replies.stop_choice_reprompt())

    async def _on_numeric_confirmation(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        if text == "1":
            updated = await self.gateway.update_status(session.ticket_id, STATUS_CLOSED, session.resolution)
            await self.sessions.delete(user)
            await self._reply(user, self.replies.resolution_closed())
        elif text == "2":
            updated = await self.gateway.update_status(session.ticket_id, STATUS_REOPENED)
            session.stage = Stage.AWAIT_REOPEN_REASON
            await self.sessions.put(user, session)
            await self._reply(user, self.replies.ask_reopen_reason())
        else:
            await self._reply(user, self.replies.confirmation_reprompt())
            return
        if not updated:
            await self._reply(user, self.replies.record_update_failed(session.ticket_id))

    async def _on_reopen_reason(self, user: str, session: Session, message: InboundMessage, text: str) -> None:
        reason = message.body.strip()
        if not reason:
            await self._reply(user, self.replies.reopen_reason_empty())
            return
        recorded = await self.gateway.append_reopen_reason(
            session.ticket_id, reason, self.gateway.timestamp()
        )
        await self.sessions.delete(user)
        await self._reply(user, self.replies.reopen_recorded())
        if not recorded:
            await self._reply(user, self.replies.record_update_failed(session.ticket_id))


def build_session_store(settings: Settings) -> SessionStore:
    if settings.session_backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("SESSION_BACKEND=redis requires REDIS_URL")
        client = Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisSessionStore(client, ttl_seconds=settings.session_ttl_seconds)
    if settings.session_backend != "memory":
        raise RuntimeError(f"Unknown SESSION_BACKEND {settings.session_backend!r}")
    return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)


def build_conversation_service(settings: Settings) -> ConversationService:
    return ConversationService(
        sessions=build_session_store(settings),
        counter=TicketCounterStore(settings.ticket_state_path, prefix=settings.ticket_prefix),
        gateway=TicketGateway(
            str(settings.ticket_gateway_url) if settings.ticket_gateway_url else None,
            timeout=settings.gateway_timeout,
            timezone_name=settings.default_timezone,
        ),
        delivery=HttpDeliveryAdapter(
            str(settings.delivery_endpoint) if settings.delivery_endpoint else None,
            auth=settings.delivery_auth,
            timeout=settings.delivery_timeout,
        ),
        replies=Replies(
            support_name=settings.support_name,
            support_phone=settings.support_phone,
            support_email=settings.support_email,
        ),
        intro_image=settings.intro_image_path,
    )


@lru_cache
def get_conversation_service() -> ConversationService:
    return build_conversation_service(get_settings())
