"""Derive a reusable design system from a campaign's source visual."""
from __future__ import annotations

import asyncio
import colorsys
import io
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from providers.base import ProviderAdapter, VisionRequest
from providers.polling import PollPolicy, await_output, submit_with_retry
from providers.vision import STYLE_PROMPT
from shared.errors import ProviderError, SourceAssetError
from shared.models import SourceKind

from .cache import DesignSystemCache
from .snapshot import SnapshotFetcher

logger = logging.getLogger(__name__)

WarningHook = Callable[[str, Dict[str, Any]], Awaitable[None]]
NEUTRALS = {"#000000", "#ffffff"}


@dataclass(frozen=True)
class DesignSystem:
    color_palette: Tuple[str, ...] = ()
    style_tags: Tuple[str, ...] = ()
    description: Optional[str] = None

    @classmethod
    def empty(cls) -> "DesignSystem":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.color_palette and not self.style_tags and not self.description

    @property
    def accent_color(self) -> Optional[str]:
        """First non black/white palette entry, used for CTA and eyebrow."""

        for color in self.color_palette:
            if color.lower() not in NEUTRALS:
                return color
        return self.color_palette[0] if self.color_palette else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "color_palette": list(self.color_palette),
            "style_tags": list(self.style_tags),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "DesignSystem":
        if not payload:
            return cls.empty()
        return cls(
            color_palette=tuple(payload.get("color_palette") or ()),
            style_tags=tuple(payload.get("style_tags") or ()),
            description=payload.get("description") or None,
        )


def extract_palette(content: bytes, size: int = 5) -> List[str]:
    """Dominant colors of an encoded image as ``#rrggbb``, most common first."""

    try:
        with Image.open(io.BytesIO(content)) as image:
            rgb = image.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise SourceAssetError(f"Source asset is not a decodable image: {exc}") from exc

    rgb.thumbnail((256, 256))
    quantized = rgb.quantize(colors=max(2, size))
    palette = quantized.getpalette() or []
    counts = sorted(quantized.getcolors() or [], reverse=True)

    colors: List[str] = []
    for _, index in counts:
        base = index * 3
        if base + 2 >= len(palette):
            continue
        r, g, b = palette[base], palette[base + 1], palette[base + 2]
        color = f"#{r:02x}{g:02x}{b:02x}"
        if color not in colors:
            colors.append(color)
        if len(colors) == size:
            break
    return colors


def _hls(color: str) -> Tuple[float, float, float]:
    cleaned = color.lstrip("#")
    r, g, b = (int(cleaned[i : i + 2], 16) / 255.0 for i in (0, 2, 4))
    return colorsys.rgb_to_hls(r, g, b)


def style_tags_for(palette: Sequence[str]) -> Tuple[str, ...]:
    """Brightness, saturation and temperature tags for a palette.

    Earlier colors are more dominant and weigh more.
    """

    if not palette:
        return ()
    weights = [len(palette) - index for index in range(len(palette))]
    total = float(sum(weights))
    values = [_hls(color) for color in palette]

    lightness = sum(w * l for w, (_, l, _) in zip(weights, values)) / total
    saturation = sum(w * s for w, (_, _, s) in zip(weights, values)) / total

    tags: List[str] = []
    if lightness < 0.35:
        tags.append("dark")
    elif lightness > 0.65:
        tags.append("light")
    else:
        tags.append("balanced")
    tags.append("vibrant" if saturation >= 0.45 else "muted")

    temperature = "neutral"
    for hue, light, sat in values:
        if sat < 0.15 or light < 0.08 or light > 0.95:
            continue
        degrees = hue * 360
        if degrees < 70 or degrees >= 300:
            temperature = "warm"
        elif 150 <= degrees < 270:
            temperature = "cool"
        break
    tags.append(temperature)
    return tuple(tags)


class DesignSystemExtractor:
    """Fetches the source visual and turns it into a :class:`DesignSystem`.

    Results are cached by source URL.  The vision description is optional:
    when the provider is missing the description stays empty, when it fails
    the failure goes to ``on_warning`` and the palette is still returned.
    """

    def __init__(
        self,
        fetcher: Optional[SnapshotFetcher] = None,
        *,
        vision: Optional[ProviderAdapter[VisionRequest]] = None,
        vision_policy: Optional[PollPolicy] = None,
        cache: Optional[DesignSystemCache] = None,
        palette_size: int = 5,
    ) -> None:
        self.fetcher = fetcher or SnapshotFetcher()
        self.vision = vision
        self.vision_policy = vision_policy or PollPolicy(max_attempts=30)
        self.cache = cache
        self.palette_size = palette_size

    async def aclose(self) -> None:
        await self.fetcher.aclose()
        if self.cache is not None:
            await self.cache.aclose()

    async def _describe(
        self, content: bytes, mime_type: str, on_warning: Optional[WarningHook]
    ) -> Optional[str]:
        if self.vision is None:
            return None
        request = VisionRequest(image=content, prompt=STYLE_PROMPT, mime_type=mime_type)
        try:
            handle = await submit_with_retry(self.vision, request, self.vision_policy)
            return await await_output(self.vision, handle, self.vision_policy)
        except ProviderError as exc:
            logger.warning("Vision description failed: %s", exc)
            if on_warning is not None:
                await on_warning(
                    "Style description unavailable, continuing with palette only",
                    {"provider": exc.provider, "error": str(exc)},
                )
            return None

    async def extract(
        self,
        source_url: Optional[str],
        kind: SourceKind = SourceKind.IMAGE,
        *,
        on_warning: Optional[WarningHook] = None,
    ) -> DesignSystem:
        if not source_url or kind is SourceKind.NONE:
            return DesignSystem.empty()

        if self.cache is not None:
            cached = await self.cache.get(source_url)
            if cached is not None:
                return DesignSystem.from_dict(cached)

        snapshot = await self.fetcher.fetch(source_url, kind)
        palette = await asyncio.to_thread(extract_palette, snapshot.content, self.palette_size)
        description = await self._describe(snapshot.content, snapshot.mime_type, on_warning)
        design = DesignSystem(
            color_palette=tuple(palette),
            style_tags=style_tags_for(palette),
            description=description,
        )

        # a missing description is retried on the next extraction
        if self.cache is not None and (description or self.vision is None):
            await self.cache.set(source_url, design.to_dict())
        return design
