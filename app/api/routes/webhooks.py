from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies.webhooks import require_webhook_secret
from app.core.logging import log_error
from app.schemas.messages import InboundMessage, MessageAcceptedResponse
from app.schemas.tickets import SupportResolutionPayload, TicketResolvedPayload, WebhookResult
from app.services.conversation import ConversationService, get_conversation_service
from app.services.delivery import DeliveryError
from app.services.ticket_counter import TicketStateError

router = APIRouter(
    prefix="/webhook",
    tags=["Webhooks"],
    dependencies=[Depends(require_webhook_secret)],
)


@router.post(
    "/messages",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=MessageAcceptedResponse,
)
async def receive_message(
    message: InboundMessage,
    service: ConversationService = Depends(get_conversation_service),
) -> MessageAcceptedResponse:
    try:
        await service.handle_message(message)
    except DeliveryError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except TicketStateError as exc:
        log_error("Ticket counter unavailable", sender=message.sender, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ticket counter unavailable",
        ) from exc
    return MessageAcceptedResponse()


@router.post("/ticket-resolved", response_model=WebhookResult)
async def ticket_resolved(
    payload: TicketResolvedPayload,
    service: ConversationService = Depends(get_conversation_service),
) -> WebhookResult:
    try:
        await service.ingest_resolution(payload.ticket_id, payload.user_phone, payload.resolution)
    except DeliveryError as exc:
        log_error(
            "Resolution notice could not be delivered",
            ticket_id=payload.ticket_id,
            user=payload.user_phone,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    return WebhookResult(success=True)


@router.post("/support-resolution", response_model=WebhookResult)
async def support_resolution(
    payload: SupportResolutionPayload,
    service: ConversationService = Depends(get_conversation_service),
) -> WebhookResult:
    success = await service.gateway.append_resolution(payload.ticket_id, payload.resolution)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add support resolution",
        )
    return WebhookResult(success=True, message="Support resolution added successfully")
