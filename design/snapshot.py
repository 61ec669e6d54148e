"""Fetch the visual a design system is extracted from."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from shared.errors import SourceAssetError
from shared.models import SourceKind

META_IMAGE_KEYS = ("og:image", "og:image:secure_url", "twitter:image")
SKIPPED_IMAGE_HINTS = ("logo", "icon", "sprite", "pixel", "tracking", ".svg", "data:")


@dataclass(frozen=True)
class SourceSnapshot:
    url: str
    image_url: str
    content: bytes
    mime_type: str


def hero_image_candidates(page_url: str, markup: str) -> List[str]:
    """Hero image candidates of a landing page, best first."""

    soup = BeautifulSoup(markup, "html.parser")
    candidates: List[str] = []
    for meta in soup.find_all("meta"):
        name = (meta.get("property") or meta.get("name") or "").lower()
        content = meta.get("content")
        if name in META_IMAGE_KEYS and content and content.strip():
            candidates.append(content.strip())
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src or any(hint in src.lower() for hint in SKIPPED_IMAGE_HINTS):
            continue
        candidates.append(src)

    return list(dict.fromkeys(urljoin(page_url, candidate) for candidate in candidates))


class SnapshotFetcher:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                headers={"User-Agent": "creatives-design-extractor/0.1"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceAssetError(f"Could not fetch source asset {url}: {exc}") from exc
        return response

    async def fetch(self, url: str, kind: SourceKind) -> SourceSnapshot:
        response = await self._get(url)
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if kind is SourceKind.IMAGE or content_type.startswith("image/"):
            return SourceSnapshot(url, url, response.content, content_type or "image/png")

        for candidate in hero_image_candidates(str(response.url), response.text):
            try:
                image_response = await self._get(candidate)
            except SourceAssetError:
                continue
            image_type = image_response.headers.get("content-type", "").split(";")[0].strip()
            if image_type.startswith("image/"):
                return SourceSnapshot(url, candidate, image_response.content, image_type)
        raise SourceAssetError(f"No usable hero image found on {url}")
