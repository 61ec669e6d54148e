"""Pillow compositor that draws overlay text inside a format's text band."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps, ImageStat

from formats.layout import Box, OverlayLayout

CONTRAST_THRESHOLD = 4.5
DEFAULT_ACCENT = (139, 92, 246)
DARK_TEXT = (20, 20, 24)
WHITE = (255, 255, 255)
MIN_FONT_SIZE = 18


class CompositionError(RuntimeError):
    """Raised when the overlay cannot be laid out legibly."""


def hex_to_rgb(value: Optional[str]) -> Optional[Tuple[int, int, int]]:
    if not value:
        return None
    cleaned = value.strip().lstrip("#")
    if len(cleaned) == 3:
        cleaned = "".join(ch * 2 for ch in cleaned)
    if len(cleaned) != 6:
        return None
    try:
        return (int(cleaned[0:2], 16), int(cleaned[2:4], 16), int(cleaned[4:6], 16))
    except ValueError:
        return None


def rgb_to_hex(color: Sequence[int]) -> str:
    r, g, b = [max(0, min(255, int(c))) for c in color[:3]]
    return f"#{r:02x}{g:02x}{b:02x}"


def relative_luminance(color: Sequence[float]) -> float:
    def channel(value: float) -> float:
        v = value / 255.0
        return v / 12.92 if v <= 0.03928 else ((v + 0.055) / 1.055) ** 2.4

    r, g, b = [channel(c) for c in color[:3]]
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(first: Sequence[float], second: Sequence[float]) -> float:
    l1 = relative_luminance(first)
    l2 = relative_luminance(second)
    lighter = max(l1, l2)
    darker = min(l1, l2)
    return (lighter + 0.05) / (darker + 0.05)


def readable_on(background: Sequence[float]) -> Tuple[int, int, int]:
    """Pick white or near-black text, whichever contrasts better."""

    if contrast_ratio(WHITE, background) >= contrast_ratio(DARK_TEXT, background):
        return WHITE
    return DARK_TEXT


def _font_candidates(bold: bool = False) -> Iterable[Path]:
    base_paths = [
        Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
        Path("/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf"),
    ]
    bold_paths = [
        Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
        Path("/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf"),
    ]
    yield from (bold_paths + base_paths) if bold else base_paths


def load_font(size: int, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for candidate in _font_candidates(bold=bold):
        if candidate.exists():
            try:
                return ImageFont.truetype(str(candidate), size=size)
            except OSError:  # pragma: no cover - font fallback
                continue
    return ImageFont.load_default(size=size)


def wrap_text(
    text: str, draw: ImageDraw.ImageDraw, font: ImageFont.ImageFont, max_width: int
) -> List[str]:
    lines: List[str] = []
    current: List[str] = []
    for word in text.split():
        candidate = " ".join(current + [word])
        bbox = draw.textbbox((0, 0), candidate, font=font)
        if bbox[2] - bbox[0] <= max_width or not current:
            current.append(word)
        else:
            lines.append(" ".join(current))
            current = [word]
    if current:
        lines.append(" ".join(current))
    return lines


def fit_text_block(
    text: str,
    draw: ImageDraw.ImageDraw,
    box: Box,
    max_size: int,
    *,
    bold: bool = False,
) -> Tuple[ImageFont.ImageFont, List[str], int]:
    """Largest font size at which ``text`` wraps inside ``box``."""

    cleaned = " ".join(text.split())
    if not cleaned:
        return load_font(max_size, bold=bold), [], 0
    for size in range(max_size, MIN_FONT_SIZE - 1, -2):
        font = load_font(size, bold=bold)
        lines = wrap_text(cleaned, draw, font, box.width)
        spacing = max(6, int(size * 0.2))
        widths: List[int] = []
        total_height = 0
        for index, line in enumerate(lines):
            bbox = draw.textbbox((0, 0), line, font=font)
            widths.append(bbox[2] - bbox[0])
            total_height += bbox[3] - bbox[1]
            if index < len(lines) - 1:
                total_height += spacing
        if total_height <= box.height and max(widths) <= box.width:
            return font, lines, total_height
    raise CompositionError(f"Text '{cleaned[:40]}' does not fit within {box.width}x{box.height}")


def fit_cover(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize and center-crop ``image`` so it fills ``size`` exactly."""

    return ImageOps.fit(image.convert("RGB"), size, Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def _draw_lines(
    draw: ImageDraw.ImageDraw,
    lines: List[str],
    font: ImageFont.ImageFont,
    box: Box,
    top: int,
    fill: Tuple[int, int, int],
) -> int:
    y = top
    size = getattr(font, "size", MIN_FONT_SIZE)
    spacing = max(6, int(size * 0.2))
    for index, line in enumerate(lines):
        bbox = draw.textbbox((0, 0), line, font=font)
        width = bbox[2] - bbox[0]
        x = box.x + (box.width - width) / 2
        # drop shadow
        draw.text((x + 2, y + 3), line, font=font, fill=(0, 0, 0, 160))
        draw.text((x, y), line, font=font, fill=fill)
        y += bbox[3] - bbox[1]
        if index < len(lines) - 1:
            y += spacing
    return y


def compose_overlay(
    image: Image.Image,
    layout: OverlayLayout,
    *,
    headline: str,
    eyebrow: Optional[str] = None,
    cta: Optional[str] = None,
    accent_color: Optional[str] = None,
) -> Tuple[Image.Image, Dict[str, Any]]:
    base = fit_cover(image, layout.canvas)
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    band = layout.text_band
    mean_color = ImageStat.Stat(base.crop(band.as_tuple())).mean
    text_color = readable_on(mean_color)
    scrim = (0, 0, 0, 110) if text_color == WHITE else (255, 255, 255, 120)
    draw.rectangle(band.as_tuple(), fill=scrim)
    scrim_rgb = tuple(
        int(c * (1 - scrim[3] / 255) + s * scrim[3] / 255) for c, s in zip(mean_color[:3], scrim[:3])
    )
    text_contrast = contrast_ratio(text_color, scrim_rgb)
    if text_contrast < CONTRAST_THRESHOLD:
        text_color = readable_on(scrim_rgb)
        text_contrast = contrast_ratio(text_color, scrim_rgb)

    accent = hex_to_rgb(accent_color) or DEFAULT_ACCENT
    meta: Dict[str, Any] = {"layout": layout.to_dict(), "text_color": rgb_to_hex(text_color)}

    if eyebrow:
        font, lines, height = fit_text_block(eyebrow, draw, layout.eyebrow, layout.eyebrow_font_size, bold=True)
        eyebrow_color = accent if contrast_ratio(accent, scrim_rgb) >= 3.0 else text_color
        top = layout.eyebrow.y + (layout.eyebrow.height - height) // 2
        _draw_lines(draw, lines, font, layout.eyebrow, top, eyebrow_color)
        meta["eyebrow"] = {"lines": lines, "font_size": getattr(font, "size", None)}

    font, lines, height = fit_text_block(headline, draw, layout.headline, layout.headline_font_size, bold=True)
    top = layout.headline.y + (layout.headline.height - height) // 2
    _draw_lines(draw, lines, font, layout.headline, top, text_color)
    meta["headline"] = {"lines": lines, "font_size": getattr(font, "size", None)}

    if cta:
        label = cta.strip().upper()
        cta_font = None
        pill_width = 0
        for size in range(layout.cta_font_size, MIN_FONT_SIZE - 1, -2):
            candidate = load_font(size, bold=True)
            bbox = draw.textbbox((0, 0), label, font=candidate)
            pill_width = bbox[2] - bbox[0] + 2 * max(24, layout.cta.height - size)
            if pill_width <= layout.cta.width:
                cta_font = candidate
                break
        if cta_font is None:
            raise CompositionError("CTA does not fit within the safe area")
        pill_x = layout.cta.x + (layout.cta.width - pill_width) // 2
        pill = (pill_x, layout.cta.y, pill_x + pill_width, layout.cta.bottom)
        pill_fill = accent
        cta_text_color = readable_on(pill_fill)
        if contrast_ratio(cta_text_color, pill_fill) < CONTRAST_THRESHOLD:
            # mid-luminance accent, darken the pill for white text
            pill_fill = tuple(int(c * 0.6) for c in accent)
            cta_text_color = WHITE
        cta_contrast = contrast_ratio(cta_text_color, pill_fill)
        draw.rounded_rectangle(pill, radius=layout.cta.height // 2, fill=(*pill_fill, 240))
        bbox = draw.textbbox((0, 0), label, font=cta_font)
        text_x = pill_x + (pill_width - (bbox[2] - bbox[0])) / 2 - bbox[0]
        text_y = layout.cta.y + (layout.cta.height - (bbox[3] - bbox[1])) / 2 - bbox[1]
        draw.text((text_x, text_y), label, font=cta_font, fill=cta_text_color)
        meta["cta"] = {
            "text": label,
            "box": list(pill),
            "background": rgb_to_hex(pill_fill),
            "contrast_ratio": round(cta_contrast, 2),
        }

    meta["contrast_ratio"] = round(text_contrast, 2)
    composite = base.convert("RGBA")
    composite.alpha_composite(overlay)
    return composite.convert("RGB"), meta
