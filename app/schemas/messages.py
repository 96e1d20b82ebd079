from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

GROUP_SUFFIX = "@g.us"
BROADCAST_SENDER = "status@broadcast"


class InboundMedia(BaseModel):
    mimetype: str = Field(..., min_length=1)
    data: str = Field(..., min_length=1, description="Base64 encoded payload.")
    filename: Optional[str] = None


class InboundMessage(BaseModel):
    """Chat event forwarded by the transport bridge."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(..., min_length=1, validation_alias=AliasChoices("from", "sender"))
    body: str = ""
    has_media: bool = Field(default=False, validation_alias=AliasChoices("hasMedia", "has_media"))
    is_group: bool = Field(default=False, validation_alias=AliasChoices("isGroup", "is_group"))
    is_status: bool = Field(default=False, validation_alias=AliasChoices("isStatus", "is_status"))
    media: Optional[InboundMedia] = None
    media_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("mediaUrl", "media_url")
    )

    @property
    def is_group_or_broadcast_or_status(self) -> bool:
        return (
            self.is_group
            or self.is_status
            or GROUP_SUFFIX in self.sender
            or self.sender == BROADCAST_SENDER
        )


class MessageAcceptedResponse(BaseModel):
    status: str = "accepted"
