"""Build provider adapters from a :class:`gen.config.GenerationConfig`."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from shared.errors import ConfigurationError

from .bannerbear import BannerbearOverlayProvider
from .base import ImageRequest, OverlayRequest, ProviderAdapter, VisionRequest
from .local_overlay import LocalOverlayProvider
from .replicate import ReplicateImageProvider
from .vision import VisionStyleProvider

if TYPE_CHECKING:
    from gen.config import GenerationConfig


def build_image_provider(config: "GenerationConfig") -> ProviderAdapter[ImageRequest]:
    if config.image_provider == "replicate":
        return ReplicateImageProvider(config.replicate_api_token, config.replicate_model_version)
    raise ConfigurationError(f"Unknown image provider '{config.image_provider}'")


def build_overlay_provider(config: "GenerationConfig") -> ProviderAdapter[OverlayRequest]:
    if config.overlay_provider == "bannerbear":
        return BannerbearOverlayProvider(
            config.bannerbear_api_key,
            config.bannerbear_templates,
            synchronous=config.bannerbear_synchronous,
        )
    if config.overlay_provider == "local":
        return LocalOverlayProvider()
    raise ConfigurationError(f"Unknown overlay provider '{config.overlay_provider}'")


def build_vision_provider(config: "GenerationConfig") -> Optional[ProviderAdapter[VisionRequest]]:
    if not config.vision_enabled:
        return None
    return VisionStyleProvider(
        config.vision_api_key, config.vision_model, base_url=config.vision_base_url
    )
