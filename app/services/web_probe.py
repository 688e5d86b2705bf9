"""
Lightweight checks against the open web: link liveness, YouTube oEmbed
verification and optional Firecrawl article scraping.

None of these methods raise on network trouble; they return ``False`` /
``None`` and log instead, because a failed probe only means "do not trust
this link".
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.utils.helpers import extract_youtube_id, truncate_text, youtube_thumbnail

logger = logging.getLogger(__name__)

# Hosts whose pages are not worth scraping for article text
_UNSCRAPABLE_HOSTS = ("youtube.com", "youtu.be", "amazon.", "spotify.com")


class WebProbe:
    """HTTP probes used to verify AI-suggested resources."""

    MAX_ARTICLE_CHARS: int = 5000
    MIN_ARTICLE_CHARS: int = 100

    def __init__(
        self,
        timeout: float = settings.URL_VALIDATION_TIMEOUT,
        firecrawl_api_key: str = settings.FIRECRAWL_API_KEY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.firecrawl_api_key = firecrawl_api_key
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def validate_url(self, url: Optional[str]) -> bool:
        """HEAD *url*; True when it answers with a non-error status."""
        if not url or not url.startswith(("http://", "https://")):
            return False
        try:
            async with self._client() as client:
                resp = await client.head(url)
            return resp.status_code < 400
        except httpx.HTTPError as exc:
            logger.warning("URL validation failed for %s: %s", url, exc)
            return False

    async def verify_youtube_video(self, url: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Confirm a YouTube video exists via the public oEmbed endpoint.

        Returns ``{"video_id", "title", "author", "thumbnail_url"}`` or None.
        """
        video_id = extract_youtube_id(url)
        if not video_id:
            return None
        try:
            async with self._client() as client:
                resp = await client.get(
                    "https://www.youtube.com/oembed",
                    params={"url": f"https://www.youtube.com/watch?v={video_id}", "format": "json"},
                )
            if resp.status_code != 200:
                logger.info("YouTube video %s not available (HTTP %d)", video_id, resp.status_code)
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("YouTube verification failed for %s: %s", video_id, exc)
            return None

        return {
            "video_id": video_id,
            "title": data.get("title"),
            "author": data.get("author_name"),
            "thumbnail_url": youtube_thumbnail(video_id),
        }

    async def scrape_article(self, url: Optional[str]) -> Optional[str]:
        """Markdown body of an article via Firecrawl, or None when unavailable."""
        if not self.firecrawl_api_key or not url:
            return None
        if any(host in url for host in _UNSCRAPABLE_HOSTS):
            return None
        try:
            async with self._client(timeout=30.0) as client:
                resp = await client.post(
                    f"{settings.FIRECRAWL_BASE_URL}/v1/scrape",
                    headers={"Authorization": f"Bearer {self.firecrawl_api_key}"},
                    json={"url": url, "formats": ["markdown"], "onlyMainContent": True},
                )
            if resp.status_code != 200:
                logger.info("Firecrawl returned HTTP %d for %s", resp.status_code, url)
                return None
            markdown = (resp.json().get("data") or {}).get("markdown") or ""
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Firecrawl scrape failed for %s: %s", url, exc)
            return None

        if len(markdown) <= self.MIN_ARTICLE_CHARS:
            return None
        return truncate_text(markdown, self.MAX_ARTICLE_CHARS)
