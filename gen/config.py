"""Explicit configuration handed to the job orchestrator."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from formats.specs import CreativeFormat
from providers.polling import PollPolicy
from shared.config import Settings
from shared.errors import ConfigurationError

IMAGE_PROVIDERS = ("replicate",)
OVERLAY_PROVIDERS = ("bannerbear", "local")
DISPATCH_MODES = ("inline", "celery")

__all__ = ["GenerationConfig", "PollPolicy"]


@dataclass(frozen=True)
class GenerationConfig:
    image_provider: str = "replicate"
    overlay_provider: str = "bannerbear"
    replicate_api_token: Optional[str] = None
    replicate_model_version: str = "black-forest-labs/flux-1.1-pro"
    bannerbear_api_key: Optional[str] = None
    bannerbear_templates: Mapping[CreativeFormat, Optional[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    bannerbear_synchronous: bool = True
    vision_api_key: Optional[str] = None
    vision_base_url: str = "https://api.openai.com/v1"
    vision_model: str = "gpt-4o-mini"
    image_policy: PollPolicy = PollPolicy(interval_seconds=1.0, max_attempts=120)
    overlay_policy: PollPolicy = PollPolicy(interval_seconds=1.0, max_attempts=60)
    vision_policy: PollPolicy = PollPolicy(interval_seconds=1.0, max_attempts=30)
    palette_size: int = 5
    cache_url: Optional[str] = None
    cache_ttl_seconds: int = 60 * 60 * 24
    dispatch_mode: str = "inline"
    asset_key_prefix: str = "creatives"

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationConfig":
        templates = {
            CreativeFormat.FEED: settings.bannerbear_template_feed,
            CreativeFormat.STORY: settings.bannerbear_template_story,
            CreativeFormat.REEL: settings.bannerbear_template_reel,
        }
        return cls(
            image_provider=settings.image_provider,
            overlay_provider=settings.overlay_provider,
            replicate_api_token=settings.replicate_api_token,
            replicate_model_version=settings.replicate_model_version,
            bannerbear_api_key=settings.bannerbear_api_key,
            bannerbear_templates=MappingProxyType(templates),
            bannerbear_synchronous=settings.bannerbear_synchronous,
            vision_api_key=settings.vision_api_key,
            vision_base_url=settings.vision_base_url,
            vision_model=settings.vision_model,
            image_policy=PollPolicy(
                settings.image_poll_interval, settings.image_poll_attempts, settings.submit_attempts
            ),
            overlay_policy=PollPolicy(
                settings.overlay_poll_interval, settings.overlay_poll_attempts, settings.submit_attempts
            ),
            vision_policy=PollPolicy(
                settings.vision_poll_interval, settings.vision_poll_attempts, settings.submit_attempts
            ),
            palette_size=settings.palette_size,
            cache_url=settings.cache_url,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            dispatch_mode=settings.dispatch_mode,
        )

    @property
    def vision_enabled(self) -> bool:
        return bool(self.vision_api_key)

    def problems_for(self, formats: Iterable[CreativeFormat] = ()) -> List[str]:
        problems: List[str] = []
        if self.image_provider not in IMAGE_PROVIDERS:
            problems.append(f"Unknown image provider '{self.image_provider}'")
        elif not self.replicate_api_token:
            problems.append("Replicate API token is not configured")

        if self.overlay_provider not in OVERLAY_PROVIDERS:
            problems.append(f"Unknown overlay provider '{self.overlay_provider}'")
        elif self.overlay_provider == "bannerbear":
            if not self.bannerbear_api_key:
                problems.append("Bannerbear API key is not configured")
            for fmt in formats:
                if not self.bannerbear_templates.get(fmt):
                    problems.append(f"No Bannerbear template configured for format '{fmt.value}'")

        if self.dispatch_mode not in DISPATCH_MODES:
            problems.append(f"Unknown dispatch mode '{self.dispatch_mode}'")
        if self.palette_size < 1:
            problems.append("Palette size must be at least 1")
        return problems

    def validate_for(self, formats: Iterable[CreativeFormat] = ()) -> None:
        """Raise :class:`ConfigurationError` when ``formats`` cannot be generated."""

        problems = self.problems_for(formats)
        if problems:
            raise ConfigurationError("; ".join(problems))
