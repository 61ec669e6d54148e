from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest
from PIL import Image

from formats.layout import compute_overlay_layout
from formats.specs import get_format_spec
from image.compositor import (
    CompositionError,
    compose_overlay,
    contrast_ratio,
    hex_to_rgb,
    readable_on,
    rgb_to_hex,
)


def test_hex_helpers() -> None:
    assert hex_to_rgb("#fff") == (255, 255, 255)
    assert hex_to_rgb("ff3366") == (255, 51, 102)
    assert hex_to_rgb("#zzzzzz") is None
    assert hex_to_rgb(None) is None
    assert rgb_to_hex((300, -4, 16)) == "#ff0010"


def test_readable_text_color_follows_background() -> None:
    assert readable_on((10, 10, 10)) == (255, 255, 255)
    assert readable_on((245, 245, 245)) != (255, 255, 255)
    assert contrast_ratio((255, 255, 255), (0, 0, 0)) == pytest.approx(21.0)


@pytest.mark.parametrize("name", ["feed", "story", "reel"])
def test_composite_fills_the_format_canvas(name: str) -> None:
    spec = get_format_spec(name)
    layout = compute_overlay_layout(spec)
    background = Image.new("RGB", (640, 480), (30, 60, 90))

    composite, meta = compose_overlay(
        background,
        layout,
        headline="Fresh roast delivered",
        eyebrow="New",
        cta="Order now",
        accent_color="#ff3366",
    )

    assert composite.size == spec.size
    assert composite.mode == "RGB"
    assert meta["layout"]["canvas"] == list(spec.size)
    assert meta["headline"]["lines"]
    assert meta["cta"]["text"] == "ORDER NOW"
    assert meta["cta"]["contrast_ratio"] >= 4.5
    left, top, right, bottom = meta["cta"]["box"]
    assert top >= layout.text_band.y
    assert bottom <= layout.text_band.bottom


def test_cta_is_optional() -> None:
    layout = compute_overlay_layout(get_format_spec("feed"))

    _, meta = compose_overlay(Image.new("RGB", (1080, 1080), "white"), layout, headline="Quiet")

    assert "cta" not in meta
    assert "eyebrow" not in meta


def test_unbreakable_headline_that_cannot_fit_raises() -> None:
    layout = compute_overlay_layout(get_format_spec("reel"))

    with pytest.raises(CompositionError):
        compose_overlay(Image.new("RGB", (1080, 1920)), layout, headline="W" * 400)
