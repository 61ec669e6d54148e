"""Style analysis through an OpenAI compatible vision model."""
from __future__ import annotations

import base64
import uuid
from typing import Any, Dict, Optional

import httpx

from shared.errors import ConfigurationError, InvalidResponse

from .base import Failed, HttpProviderAdapter, PollResult, ProviderHandle, Succeeded, VisionRequest

STYLE_PROMPT = (
    "Describe the visual style of this image for an art director in at most three sentences: "
    "dominant colors, typography feel, composition and mood. Do not describe text content."
)


def _message_text(payload: Dict[str, Any]) -> str:
    choices = payload.get("choices") or []
    if not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [part.get("text", "") for part in content if isinstance(part, dict)]
        return " ".join(p.strip() for p in parts if p.strip())
    return ""


class VisionStyleProvider(HttpProviderAdapter[VisionRequest]):
    """Single shot provider: the description is ready when ``submit`` returns."""

    name = "vision"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Vision API key is not configured")
        super().__init__(client)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def submit(self, request: VisionRequest) -> ProviderHandle:
        encoded = base64.b64encode(request.image).decode("ascii")
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{request.mime_type};base64,{encoded}"},
                        },
                    ],
                }
            ],
        }
        response = await self._request(
            "POST",
            f"{self.base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if response.get("error"):
            error = response["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            settled: Succeeded | Failed = Failed(str(message))
        else:
            text = _message_text(response)
            if not text:
                raise InvalidResponse("Vision model returned an empty description", provider=self.name)
            settled = Succeeded((text,))
        return ProviderHandle(
            provider=self.name, id=str(response.get("id") or uuid.uuid4()), settled=settled
        )

    async def poll(self, handle: ProviderHandle) -> PollResult:
        if handle.settled is None:
            raise InvalidResponse("Vision handle carries no result", provider=self.name)
        return handle.settled
