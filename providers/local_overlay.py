"""Overlay rendering with the in-process Pillow compositor."""
from __future__ import annotations

import asyncio
import io
import uuid
from typing import Callable, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from image.compositor import CompositionError, compose_overlay
from shared.errors import ProviderTransportError
from shared.storage import SignedUpload, upload_bytes

from .base import (
    Failed,
    HttpProviderAdapter,
    OverlayRequest,
    PollResult,
    ProviderHandle,
    Succeeded,
)

Uploader = Callable[[str, bytes, str], SignedUpload]


def _default_uploader(key: str, payload: bytes, content_type: str) -> SignedUpload:
    return upload_bytes(key, payload, content_type=content_type)


class LocalOverlayProvider(HttpProviderAdapter[OverlayRequest]):
    """Downloads the background, composes the text and uploads the result.

    The render finishes inside ``submit``; layout problems are reported as a
    provider failure, download problems as transport errors.
    """

    name = "local"

    def __init__(
        self,
        *,
        uploader: Optional[Uploader] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(client)
        self._uploader = uploader or _default_uploader

    async def _download(self, url: str) -> bytes:
        try:
            response = await self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                f"Background download failed: {exc}", provider=self.name
            ) from exc
        return response.content

    def _render(self, background: bytes, request: OverlayRequest) -> bytes:
        with Image.open(io.BytesIO(background)) as image:
            composite, _ = compose_overlay(
                image,
                request.layout,
                headline=request.headline,
                eyebrow=request.eyebrow,
                cta=request.cta,
                accent_color=request.accent_color,
            )
        buffer = io.BytesIO()
        composite.save(buffer, format="PNG")
        return buffer.getvalue()

    async def submit(self, request: OverlayRequest) -> ProviderHandle:
        render_id = str(uuid.uuid4())
        background = await self._download(request.background_url)
        try:
            payload = await asyncio.to_thread(self._render, background, request)
        except (CompositionError, UnidentifiedImageError, OSError) as exc:
            return ProviderHandle(provider=self.name, id=render_id, settled=Failed(str(exc)))

        key = f"{request.key_prefix}/{request.spec.format.value}-{render_id}.png"
        upload = await asyncio.to_thread(self._uploader, key, payload, "image/png")
        return ProviderHandle(
            provider=self.name,
            id=render_id,
            settled=Succeeded((upload.signed_url,)),
            extra={"key": upload.key, "size": upload.size},
        )

    async def poll(self, handle: ProviderHandle) -> PollResult:
        if handle.settled is None:
            return Failed(f"Render {handle.id} is unknown to the local compositor")
        return handle.settled
