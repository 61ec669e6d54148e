"""Error taxonomy shared by the generation pipeline and its callers."""
from __future__ import annotations

from typing import Optional


class CreativePipelineError(RuntimeError):
    """Base class for every error raised by the creative pipeline."""


class ConfigurationError(CreativePipelineError):
    """Raised when a provider credential or template identifier is missing."""


class InvalidRequestError(CreativePipelineError, ValueError):
    """Raised when a batch request cannot be accepted."""


class SourceAssetError(CreativePipelineError):
    """Raised when the source asset of a batch cannot be fetched or decoded."""


class InvalidTransition(CreativePipelineError):
    """Raised when a job status update would move the job backwards."""


class DispatchError(CreativePipelineError):
    """Raised when an accepted batch could not be handed to a runner."""


class JobNotFoundError(CreativePipelineError, KeyError):
    """Raised when a job (or batch) identifier is unknown to the store."""

    def __init__(self, identifier: str, *, kind: str = "job") -> None:
        super().__init__(identifier)
        self.identifier = identifier
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.capitalize()} {self.identifier} not found"


class ProviderError(CreativePipelineError):
    """Base class for failures attributed to an external provider."""

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderTransportError(ProviderError):
    """Network or HTTP level failure; retried within the attempt budget."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """The provider did not reach a terminal state within the attempt budget."""


class ProviderFailure(ProviderError):
    """The provider itself reported a terminal failure."""


class InvalidResponse(ProviderError):
    """The provider reported success without any usable output."""
