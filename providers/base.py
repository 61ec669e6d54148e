"""Uniform contract over the external generation backends."""
from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, Generic, Optional, Tuple, TypeVar, Union

import httpx

from formats.layout import OverlayLayout
from formats.specs import FormatSpec
from shared.errors import InvalidResponse, ProviderTransportError


class ProviderStatus(str, enum.Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class InProgress:
    status: ProviderStatus = ProviderStatus.PROCESSING


@dataclass(frozen=True)
class Succeeded:
    output: Tuple[str, ...]

    @property
    def first(self) -> Optional[str]:
        return self.output[0] if self.output else None


@dataclass(frozen=True)
class Failed:
    error: str


PollResult = Union[InProgress, Succeeded, Failed]


@dataclass(frozen=True)
class ProviderHandle:
    """Opaque reference to work started on a provider.

    ``settled`` carries the terminal result when the provider finished the
    work within the submit round trip (synchronous render modes).
    """

    provider: str
    id: str
    settled: Optional[Union[Succeeded, Failed]] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    spec: FormatSpec
    output_format: str = "png"


@dataclass(frozen=True)
class OverlayRequest:
    background_url: str
    headline: str
    spec: FormatSpec
    layout: OverlayLayout
    eyebrow: Optional[str] = None
    cta: Optional[str] = None
    accent_color: Optional[str] = None
    key_prefix: str = "creatives"


@dataclass(frozen=True)
class VisionRequest:
    image: bytes
    prompt: str
    mime_type: str = "image/png"


RequestT = TypeVar("RequestT")


class ProviderAdapter(abc.ABC, Generic[RequestT]):
    """Submit/poll/result contract shared by every backend."""

    name: str

    @abc.abstractmethod
    async def submit(self, request: RequestT) -> ProviderHandle:
        """Start the work; never waits past the initial round trip."""

    @abc.abstractmethod
    async def poll(self, handle: ProviderHandle) -> PollResult:
        """Return the current state of the work behind ``handle``."""

    async def result(self, handle: ProviderHandle) -> str:
        outcome = await self.poll(handle)
        if not isinstance(outcome, Succeeded):
            raise InvalidResponse(
                f"{self.name} result requested before the work succeeded", provider=self.name
            )
        if not outcome.first:
            raise InvalidResponse(f"{self.name} returned no output", provider=self.name)
        return outcome.first

    async def aclose(self) -> None:
        return None


class HttpProviderAdapter(ProviderAdapter[RequestT]):
    """Adapter backed by an ``httpx.AsyncClient`` it owns unless one is injected."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, url: str, *, accept_status: Collection[int] = (), **kwargs: Any
    ) -> Dict[str, Any]:
        """JSON body of the response; statuses in ``accept_status`` are returned, not raised."""

        try:
            response = await self.client.request(method, url, **kwargs)
            if response.status_code not in accept_status:
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderTransportError(
                f"{self.name} returned HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                provider=self.name,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                f"{self.name} request failed: {exc}", provider=self.name
            ) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse(f"{self.name} returned a non-JSON body", provider=self.name) from exc
        if not isinstance(payload, dict):
            raise InvalidResponse(f"{self.name} returned an unexpected payload", provider=self.name)
        return payload
