"""
MetadataWorker - best-effort title/channel/duration lookup for a video.

Providers are tried in order: YouTube Data API v3 (only with an API key),
oEmbed (title and channel, never duration), then yt-dlp (duration and
description). The worker never raises; on total failure it returns empty
metadata and the pipeline carries on without a duration check.
"""

import asyncio
import re
from typing import Any, Dict, Optional

import httpx
import yt_dlp

from config import Settings, get_settings
from core.models import VideoMetadata
from core.url_parser import YouTubeURLParser
from workers.base import BaseWorker

DATA_API_URL = "https://www.googleapis.com/youtube/v3/videos"
OEMBED_URL = "https://www.youtube.com/oembed"

ISO_DURATION = re.compile(
    r'^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$'
)


def parse_iso_duration(value: Optional[str]) -> Optional[int]:
    """Convert an ISO-8601 duration such as PT1H4M13S to seconds."""
    if not value:
        return None
    match = ISO_DURATION.match(value)
    if not match:
        return None
    parts = {k: int(v) for k, v in match.groupdict().items() if v}
    return (
        parts.get('days', 0) * 86400
        + parts.get('hours', 0) * 3600
        + parts.get('minutes', 0) * 60
        + parts.get('seconds', 0)
    )


class MetadataWorker(BaseWorker):
    """Extracts VideoMetadata for a URL from the first provider that has it."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__("metadata", log_level=self.settings.log_level.value)
        self._client = client
        self._parser = YouTubeURLParser()

    async def extract(self, url: str) -> VideoMetadata:
        video_id = self._parser.extract_video_id(url)
        if not video_id:
            self.log_with_context("No video id in URL, skipping metadata", level="WARNING",
                                  extra_context={"url": url})
            return VideoMetadata()

        best = VideoMetadata(video_id=video_id)

        if self.settings.youtube_api_key:
            try:
                found = await self._from_data_api(video_id)
                if found and found.duration_seconds is not None:
                    return found
                if found:
                    best = found.merged_with(best)
            except Exception as e:
                self.log_with_context(f"Data API lookup failed, falling back to oEmbed: {e}",
                                      level="WARNING", extra_context={"video_id": video_id})

        try:
            best = best.merged_with(await self._from_oembed(video_id))
        except Exception as e:
            self.log_with_context(f"oEmbed lookup failed: {e}", level="WARNING",
                                  extra_context={"video_id": video_id})

        if best.duration_seconds is None:
            try:
                found = await asyncio.to_thread(self._from_yt_dlp, self._parser.get_video_url(video_id))
                # Prefer yt-dlp for everything it returned, keep oEmbed for gaps
                best = found.merged_with(best)
            except Exception as e:
                self.log_with_context(f"yt-dlp metadata extraction failed: {e}", level="WARNING",
                                      extra_context={"video_id": video_id})

        if best.is_empty:
            self.log_with_context("All metadata providers failed", level="WARNING",
                                  extra_context={"video_id": video_id})
        return best

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            response = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient(timeout=self.settings.metadata_timeout) as client:
                response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def _from_data_api(self, video_id: str) -> Optional[VideoMetadata]:
        data = await self._get_json(DATA_API_URL, {
            "id": video_id,
            "part": "snippet,contentDetails",
            "key": self.settings.youtube_api_key,
        })
        items = data.get("items") or []
        if not items:
            return None
        snippet = items[0].get("snippet", {})
        details = items[0].get("contentDetails", {})
        return VideoMetadata(
            video_id=video_id,
            title=snippet.get("title"),
            channel=snippet.get("channelTitle"),
            description=snippet.get("description"),
            duration_seconds=parse_iso_duration(details.get("duration")),
        )

    async def _from_oembed(self, video_id: str) -> VideoMetadata:
        data = await self._get_json(OEMBED_URL, {
            "url": self._parser.get_video_url(video_id),
            "format": "json",
        })
        return VideoMetadata(
            video_id=video_id,
            title=data.get("title"),
            channel=data.get("author_name"),
        )

    def _from_yt_dlp(self, url: str) -> VideoMetadata:
        ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'skip_download': True,
            'http_headers': {'User-Agent': self.settings.youtube_user_agent},
        }
        if self.settings.youtube_cookie_file:
            ydl_opts['cookiefile'] = self.settings.youtube_cookie_file

        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)

        duration = info.get('duration')
        return VideoMetadata(
            video_id=info.get('id'),
            title=info.get('title'),
            channel=info.get('channel') or info.get('uploader'),
            description=info.get('description'),
            duration_seconds=int(duration) if duration is not None else None,
        )
