"""Background image prompts for the generation provider."""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from design.extractor import DesignSystem
from formats.specs import CreativeFormat, FormatSpec

FORMAT_DIRECTIONS: Dict[CreativeFormat, str] = {
    CreativeFormat.FEED: "square social feed ad, subject centered with breathing room on every edge",
    CreativeFormat.STORY: (
        "vertical full screen story ad, keep the top and bottom of the frame calm "
        "for interface chrome"
    ),
    CreativeFormat.REEL: (
        "vertical reel cover, strong subject in the middle third, top and bottom "
        "thirds clear of detail"
    ),
}

GENERIC_STYLE = "clean modern commercial photography, natural light, premium feel"
TEXT_FREE = "no text, no letters, no logos, no watermarks"


def _sanitize_sentence(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip().rstrip(".")


def _style_clause(design: DesignSystem) -> str:
    if design.is_empty:
        return GENERIC_STYLE
    parts: List[str] = []
    if design.color_palette:
        parts.append("color palette " + ", ".join(design.color_palette))
    if design.style_tags:
        parts.append(" ".join(design.style_tags) + " mood")
    description = _sanitize_sentence(design.description)
    if description:
        parts.append(description)
    return "; ".join(parts)


def build_image_prompt(
    design: DesignSystem,
    spec: FormatSpec,
    *,
    headline: str,
    eyebrow: Optional[str] = None,
    cta: Optional[str] = None,
    direction: Optional[str] = None,
) -> str:
    """Compose the background prompt for one format.

    The copy is only used as thematic context; the rendered image must stay
    free of text because the overlay is composited afterwards.
    """

    theme = " / ".join(
        dict.fromkeys(p for p in (_sanitize_sentence(eyebrow), _sanitize_sentence(headline)) if p)
    )
    sections = [
        f"Advertising background image, {FORMAT_DIRECTIONS[spec.format]}",
        f"Theme: {theme}" if theme else "",
        f"Creative direction: {_sanitize_sentence(direction)}" if _sanitize_sentence(direction) else "",
        f"Visual style: {_style_clause(design)}",
        f"Leave space for a call to action reading '{_sanitize_sentence(cta)}'" if _sanitize_sentence(cta) else "",
        f"Aspect ratio {spec.aspect_ratio}, {spec.width}x{spec.height}",
        TEXT_FREE,
    ]
    return ". ".join(section for section in sections if section) + "."
