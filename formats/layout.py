"""Overlay geometry derived from a format's safe zones."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from .specs import FormatSpec

# Width of each text block as a fraction of the canvas width.
EYEBROW_WIDTH = 0.80
HEADLINE_WIDTH = 0.85
CTA_WIDTH = 0.70

# Font sizes as a fraction of the shorter canvas side.
EYEBROW_FONT = 0.04
HEADLINE_FONT = 0.08
CTA_FONT = 0.05

LINE_HEIGHT = 1.6
CTA_PADDING = 0.025
BLOCK_GAP = 0.02


@dataclass(frozen=True)
class Box:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.right, self.bottom)

    def to_list(self) -> List[int]:
        return list(self.as_tuple())


@dataclass(frozen=True)
class OverlayLayout:
    """Pixel boxes for the overlay text blocks of one format."""

    canvas: tuple[int, int]
    text_band: Box
    eyebrow: Box
    headline: Box
    cta: Box
    eyebrow_font_size: int
    headline_font_size: int
    cta_font_size: int

    def blocks(self) -> Dict[str, Box]:
        return {"eyebrow": self.eyebrow, "headline": self.headline, "cta": self.cta}

    def to_dict(self) -> Dict[str, object]:
        return {
            "canvas": list(self.canvas),
            "text_band": self.text_band.to_list(),
            "eyebrow": self.eyebrow.to_list(),
            "headline": self.headline.to_list(),
            "cta": self.cta.to_list(),
            "font_sizes": {
                "eyebrow": self.eyebrow_font_size,
                "headline": self.headline_font_size,
                "cta": self.cta_font_size,
            },
        }


def _centered(canvas_width: int, fraction: float, y: int, height: int) -> Box:
    width = int(round(canvas_width * fraction))
    return Box(x=(canvas_width - width) // 2, y=y, width=width, height=height)


def compute_overlay_layout(spec: FormatSpec) -> OverlayLayout:
    """Place eyebrow, headline and CTA inside the format's text band.

    The eyebrow sits at the top of the band, the CTA pill is anchored to the
    bottom of the band and the headline takes the space in between.  No box
    ever reaches into the top or bottom safe zone.
    """

    zones = spec.safe_zones
    band_top = int(round(spec.height * zones.text_area_start))
    band_bottom = int(round(spec.height * zones.text_area_end))
    band = Box(x=0, y=band_top, width=spec.width, height=band_bottom - band_top)

    base = min(spec.width, spec.height)
    eyebrow_size = int(base * EYEBROW_FONT)
    headline_size = int(base * HEADLINE_FONT)
    cta_size = int(base * CTA_FONT)
    gap = int(round(base * BLOCK_GAP))

    eyebrow_height = int(round(eyebrow_size * LINE_HEIGHT))
    cta_height = cta_size + 2 * int(round(base * CTA_PADDING))

    eyebrow = _centered(spec.width, EYEBROW_WIDTH, band_top, eyebrow_height)
    cta = _centered(spec.width, CTA_WIDTH, band_bottom - cta_height, cta_height)
    headline_top = eyebrow.bottom + gap
    headline_height = cta.y - gap - headline_top
    if headline_height <= 0:
        raise ValueError(f"Text band of {spec.format.value} is too small for an overlay")
    headline = _centered(spec.width, HEADLINE_WIDTH, headline_top, headline_height)

    return OverlayLayout(
        canvas=spec.size,
        text_band=band,
        eyebrow=eyebrow,
        headline=headline,
        cta=cta,
        eyebrow_font_size=eyebrow_size,
        headline_font_size=headline_size,
        cta_font_size=cta_size,
    )
