"""Text overlay rendering through Bannerbear templates."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from formats.specs import CreativeFormat
from shared.errors import ConfigurationError, InvalidResponse

from .base import (
    Failed,
    HttpProviderAdapter,
    InProgress,
    OverlayRequest,
    PollResult,
    ProviderHandle,
    ProviderStatus,
    Succeeded,
)

BANNERBEAR_API = "https://api.bannerbear.com/v2"
BANNERBEAR_SYNC_API = "https://sync.api.bannerbear.com/v2"
# The sync host answers 408 with the pending image when a render outlasts its wait.
SYNC_RENDER_PENDING = 408


def build_modifications(request: OverlayRequest) -> List[Dict[str, Any]]:
    """Layer overrides; the names match the layers of the format templates."""

    modifications: List[Dict[str, Any]] = [
        {"name": "background", "image_url": request.background_url},
    ]
    if request.eyebrow:
        modifications.append({"name": "eyebrow", "text": request.eyebrow})
    modifications.append({"name": "headline", "text": request.headline})
    if request.cta:
        modifications.append({"name": "cta", "text": request.cta})
    if request.accent_color:
        modifications.append({"name": "accent_color", "color": request.accent_color})
    return modifications


def parse_image(image: Dict[str, Any]) -> PollResult:
    status = str(image.get("status") or "").lower()
    if status == "completed":
        url = image.get("image_url") or image.get("image_url_png")
        return Succeeded((url,) if url else ())
    if status == "failed":
        return Failed(str(image.get("error") or f"Bannerbear render {image.get('uid')} failed"))
    if status == "pending":
        return InProgress(ProviderStatus.PROCESSING)
    raise InvalidResponse(f"Unknown Bannerbear status '{status}'", provider="bannerbear")


class BannerbearOverlayProvider(HttpProviderAdapter[OverlayRequest]):
    name = "bannerbear"

    def __init__(
        self,
        api_key: Optional[str],
        templates: Mapping[CreativeFormat, Optional[str]],
        *,
        synchronous: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Bannerbear API key is not configured")
        # synchronous renders block until the image exists
        super().__init__(client, timeout=120.0 if synchronous else 60.0)
        self.api_key = api_key
        self.templates = {fmt: uid for fmt, uid in templates.items() if uid}
        self.synchronous = synchronous

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def validate_formats(self, formats: Iterable[CreativeFormat]) -> None:
        missing = [fmt.value for fmt in formats if fmt not in self.templates]
        if missing:
            raise ConfigurationError(
                "Bannerbear template not configured for format(s): " + ", ".join(missing)
            )

    async def submit(self, request: OverlayRequest) -> ProviderHandle:
        self.validate_formats([request.spec.format])
        payload = {
            "template": self.templates[request.spec.format],
            "modifications": build_modifications(request),
        }
        if self.synchronous:
            image = await self._request(
                "POST",
                f"{BANNERBEAR_SYNC_API}/images",
                json=payload,
                headers=self.headers,
                accept_status=(SYNC_RENDER_PENDING,),
            )
            image.setdefault("status", "pending")
        else:
            image = await self._request("POST", f"{BANNERBEAR_API}/images", json=payload, headers=self.headers)
        uid = image.get("uid")
        if not uid:
            raise InvalidResponse("Bannerbear did not return an image uid", provider=self.name)
        initial = parse_image(image)
        settled = initial if isinstance(initial, (Succeeded, Failed)) else None
        return ProviderHandle(provider=self.name, id=str(uid), settled=settled)

    async def poll(self, handle: ProviderHandle) -> PollResult:
        if handle.settled is not None:
            return handle.settled
        image = await self._request("GET", f"{BANNERBEAR_API}/images/{handle.id}", headers=self.headers)
        return parse_image(image)
