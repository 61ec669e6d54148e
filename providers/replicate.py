"""Text-to-image generation through the Replicate predictions API."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from shared.errors import ConfigurationError, InvalidResponse

from .base import (
    Failed,
    HttpProviderAdapter,
    ImageRequest,
    InProgress,
    PollResult,
    ProviderHandle,
    ProviderStatus,
    Succeeded,
)

REPLICATE_API = "https://api.replicate.com/v1"


def parse_prediction(prediction: Dict[str, Any]) -> PollResult:
    """Normalize a prediction payload into a poll result."""

    status = str(prediction.get("status") or "").lower()
    if status == "starting":
        return InProgress(ProviderStatus.STARTING)
    if status == "processing":
        return InProgress(ProviderStatus.PROCESSING)
    if status == "succeeded":
        output = prediction.get("output")
        if isinstance(output, str):
            urls = (output,)
        elif isinstance(output, list):
            urls = tuple(item for item in output if isinstance(item, str) and item)
        else:
            urls = ()
        return Succeeded(urls)
    if status in {"failed", "canceled"}:
        error = prediction.get("error") or f"Prediction {prediction.get('id')} {status}"
        return Failed(str(error))
    raise InvalidResponse(f"Unknown prediction status '{status}'", provider="replicate")


class ReplicateImageProvider(HttpProviderAdapter[ImageRequest]):
    name = "replicate"

    def __init__(
        self,
        api_token: Optional[str],
        model_version: str,
        *,
        base_url: str = REPLICATE_API,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_token:
            raise ConfigurationError("Replicate API token is not configured")
        super().__init__(client)
        self.api_token = api_token
        self.model_version = model_version
        self.base_url = base_url.rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def submit(self, request: ImageRequest) -> ProviderHandle:
        payload = {
            "version": self.model_version,
            "input": {
                "prompt": request.prompt,
                "aspect_ratio": request.spec.aspect_ratio,
                "width": request.spec.width,
                "height": request.spec.height,
                "output_format": request.output_format,
                "num_outputs": 1,
            },
        }
        prediction = await self._request(
            "POST", f"{self.base_url}/predictions", json=payload, headers=self.headers
        )
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise InvalidResponse("Replicate did not return a prediction id", provider=self.name)
        initial = parse_prediction(prediction)
        settled = initial if isinstance(initial, (Succeeded, Failed)) else None
        return ProviderHandle(provider=self.name, id=str(prediction_id), settled=settled)

    async def poll(self, handle: ProviderHandle) -> PollResult:
        if handle.settled is not None:
            return handle.settled
        prediction = await self._request(
            "GET", f"{self.base_url}/predictions/{handle.id}", headers=self.headers
        )
        return parse_prediction(prediction)
