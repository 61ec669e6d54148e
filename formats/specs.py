"""Static geometry for the supported output formats."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Union


class CreativeFormat(str, enum.Enum):
    FEED = "feed"
    STORY = "story"
    REEL = "reel"


@dataclass(frozen=True)
class SafeZones:
    """Fractional margins reserved for platform chrome.

    ``top`` and ``bottom`` are the bands covered by the platform UI (profile
    header, progress bars, reply box).  ``text_area_start`` and
    ``text_area_end`` bound the vertical band in which overlay text may be
    placed.  All values are fractions of the canvas height.
    """

    top: float
    bottom: float
    text_area_start: float
    text_area_end: float

    def __post_init__(self) -> None:
        for name in ("top", "bottom", "text_area_start", "text_area_end"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Safe zone {name} must be within [0, 1], got {value}")
        if self.top + self.bottom >= 1.0:
            raise ValueError("Safe zones leave no usable canvas")
        if not self.top <= self.text_area_start < self.text_area_end <= 1.0 - self.bottom:
            raise ValueError("Text area must sit between the top and bottom safe zones")


@dataclass(frozen=True)
class FormatSpec:
    format: CreativeFormat
    width: int
    height: int
    aspect_ratio: str
    safe_zones: SafeZones

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_dict(self) -> dict:
        return {
            "format": self.format.value,
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "safe_zones": {
                "top": self.safe_zones.top,
                "bottom": self.safe_zones.bottom,
                "text_area_start": self.safe_zones.text_area_start,
                "text_area_end": self.safe_zones.text_area_end,
            },
        }


FORMAT_SPECS: Mapping[CreativeFormat, FormatSpec] = MappingProxyType(
    {
        CreativeFormat.FEED: FormatSpec(
            format=CreativeFormat.FEED,
            width=1080,
            height=1080,
            aspect_ratio="1:1",
            safe_zones=SafeZones(top=0.05, bottom=0.05, text_area_start=0.08, text_area_end=0.92),
        ),
        # profile header on top, reply box at the bottom
        CreativeFormat.STORY: FormatSpec(
            format=CreativeFormat.STORY,
            width=1080,
            height=1920,
            aspect_ratio="9:16",
            safe_zones=SafeZones(top=0.14, bottom=0.20, text_area_start=0.18, text_area_end=0.66),
        ),
        # caption and audio attribution cover the lower third
        CreativeFormat.REEL: FormatSpec(
            format=CreativeFormat.REEL,
            width=1080,
            height=1920,
            aspect_ratio="9:16",
            safe_zones=SafeZones(top=0.25, bottom=0.30, text_area_start=0.28, text_area_end=0.45),
        ),
    }
)


def parse_format(value: Union[str, CreativeFormat]) -> CreativeFormat:
    if isinstance(value, CreativeFormat):
        return value
    try:
        return CreativeFormat(str(value).strip().lower())
    except ValueError:
        supported = ", ".join(fmt.value for fmt in CreativeFormat)
        raise ValueError(f"Unsupported format '{value}' (expected one of: {supported})") from None


def get_format_spec(value: Union[str, CreativeFormat]) -> FormatSpec:
    return FORMAT_SPECS[parse_format(value)]
