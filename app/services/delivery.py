from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import aiofiles
import httpx

from app.core.logging import log_error, log_info
from app.schemas.messages import InboundMessage


class DeliveryError(Exception):
    """Raised when the chat bridge does not accept an outbound message."""


class MediaDownloadError(Exception):
    """Raised when inbound media cannot be retrieved."""


@dataclass(slots=True)
class MediaPayload:
    mimetype: str
    data: str

    def as_data_url(self) -> str:
        return f"data:{self.mimetype};base64,{self.data}"


class DeliveryAdapter(Protocol):
    async def send_text(self, user_id: str, text: str) -> None: ...

    async def send_media(self, user_id: str, media_path: Path, caption: str) -> None: ...

    async def download_media(self, message: InboundMessage) -> MediaPayload: ...


class HttpDeliveryAdapter:
    """Deliver messages through the HTTP bridge in front of the chat network."""

    def __init__(
        self,
        endpoint: str | None,
        *,
        auth: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._endpoint = endpoint.rstrip("/") if endpoint else None
        self._auth = auth.strip() if isinstance(auth, str) and auth.strip() else None
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth:
            headers["Authorization"] = f"Bearer {self._auth}"
        return headers

    async def send_text(self, user_id: str, text: str) -> None:
        await self._dispatch(user_id, {"to": user_id, "text": text})

    async def send_media(self, user_id: str, media_path: Path, caption: str) -> None:
        path = Path(media_path)
        try:
            async with aiofiles.open(path, "rb") as handle:
                raw = await handle.read()
        except OSError as exc:
            raise DeliveryError(f"Unable to read media file {path}") from exc
        mimetype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        payload = {
            "to": user_id,
            "caption": caption,
            "media": {
                "mimetype": mimetype,
                "data": base64.b64encode(raw).decode("ascii"),
                "filename": path.name,
            },
        }
        await self._dispatch(user_id, payload)

    async def download_media(self, message: InboundMessage) -> MediaPayload:
        if message.media is not None:
            return MediaPayload(mimetype=message.media.mimetype, data=message.media.data)
        if not message.media_url:
            raise MediaDownloadError("Message does not carry media")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(message.media_url, headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MediaDownloadError(str(exc) or "Media download failed") from exc
        content_type = response.headers.get("content-type") or "application/octet-stream"
        mimetype = content_type.split(";", 1)[0].strip()
        return MediaPayload(
            mimetype=mimetype,
            data=base64.b64encode(response.content).decode("ascii"),
        )

    async def _dispatch(self, user_id: str, payload: dict) -> None:
        if not self._endpoint:
            raise DeliveryError("No delivery endpoint is configured")
        url = f"{self._endpoint}/messages"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            log_error("Message delivery failed", user=user_id, error=str(exc))
            raise DeliveryError(str(exc) or "Message delivery failed") from exc
        if response.status_code >= 400:
            log_error(
                "Message delivery rejected",
                user=user_id,
                status_code=response.status_code,
            )
            raise DeliveryError(f"Delivery bridge responded with {response.status_code}")
        log_info("Message delivered", user=user_id, media="media" in payload)
