"""Bounded submit and poll loops shared by every provider call."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from shared.errors import InvalidResponse, ProviderFailure, ProviderTimeout, ProviderTransportError

from .base import Failed, ProviderAdapter, ProviderHandle, Succeeded

RequestT = TypeVar("RequestT")
RetryHook = Callable[[ProviderTransportError, int], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float = 1.0
    max_attempts: int = 120
    submit_attempts: int = 3

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("Poll interval must be non-negative")
        if self.max_attempts < 1 or self.submit_attempts < 1:
            raise ValueError("Attempt budgets must be at least 1")


async def submit_with_retry(
    adapter: ProviderAdapter[RequestT],
    request: RequestT,
    policy: PollPolicy,
    *,
    on_retry: Optional[RetryHook] = None,
    sleep: Sleep = asyncio.sleep,
) -> ProviderHandle:
    """Submit ``request``, retrying transport failures within the submit budget."""

    last_error: Optional[ProviderTransportError] = None
    for attempt in range(1, policy.submit_attempts + 1):
        try:
            return await adapter.submit(request)
        except ProviderTransportError as exc:
            last_error = exc
            if on_retry is not None:
                await on_retry(exc, attempt)
            if attempt < policy.submit_attempts:
                await sleep(policy.interval_seconds * attempt)
    raise ProviderTimeout(
        f"{adapter.name} submit timed out after {policy.submit_attempts} attempts: {last_error}",
        provider=adapter.name,
    )


async def await_output(
    adapter: ProviderAdapter[RequestT],
    handle: ProviderHandle,
    policy: PollPolicy,
    *,
    on_retry: Optional[RetryHook] = None,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Poll ``handle`` at a fixed interval until it settles or the budget runs out.

    Returns the first output location.  A provider reported failure raises
    :class:`ProviderFailure` with the provider's own text, success without
    output raises :class:`InvalidResponse` and an exhausted budget raises
    :class:`ProviderTimeout`.  Transport errors only consume attempts.
    """

    for attempt in range(1, policy.max_attempts + 1):
        if handle.settled is None:
            await sleep(policy.interval_seconds)
        try:
            outcome = await adapter.poll(handle)
        except ProviderTransportError as exc:
            if on_retry is not None:
                await on_retry(exc, attempt)
            continue
        if isinstance(outcome, Failed):
            raise ProviderFailure(outcome.error or f"{adapter.name} reported a failure", provider=adapter.name)
        if isinstance(outcome, Succeeded):
            if not outcome.first:
                raise InvalidResponse(
                    f"{adapter.name} succeeded without returning an asset", provider=adapter.name
                )
            return outcome.first
    raise ProviderTimeout(
        f"{adapter.name} job {handle.id} timed out after {policy.max_attempts} poll attempts",
        provider=adapter.name,
    )
