from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TicketResolvedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., min_length=1, validation_alias=AliasChoices("ticketId", "ticket_id"))
    user_phone: str = Field(..., min_length=1, validation_alias=AliasChoices("userPhone", "user_phone"))
    resolution: str = ""


class SupportResolutionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., min_length=1, validation_alias=AliasChoices("ticketId", "ticket_id"))
    resolution: str = Field(..., min_length=1)


class WebhookResult(BaseModel):
    success: bool
    message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime_seconds: float
    active_sessions: Optional[int] = None
