"""
CaptionWorker - fetches published or auto-generated caption tracks.

Uses youtube-transcript-api. Transient failures are retried a few times with
a linearly growing delay; a video without captions fails immediately with
the no_captions reason.
"""

import asyncio
from typing import List, Optional

from youtube_transcript_api import (
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from config import Settings, get_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason
from core.models import TranscriptRequest, TranscriptResult
from workers.base import BaseWorker

PERMANENT_CAPTION_ERRORS = (TranscriptsDisabled, NoTranscriptFound, VideoUnavailable)


class _TransientCaptionError(Exception):
    pass


class CaptionWorker(BaseWorker):
    """Transcript strategy backed by the video's caption tracks."""

    strategy_name = "captions"

    def __init__(self, settings: Optional[Settings] = None, api: Optional[YouTubeTranscriptApi] = None):
        self.settings = settings or get_settings()
        super().__init__(
            "captions",
            max_retries=self.settings.caption_max_attempts,
            retry_delay=self.settings.caption_retry_delay,
            log_level=self.settings.log_level.value,
        )
        self.api = api or YouTubeTranscriptApi()

    async def fetch(self, request: TranscriptRequest) -> TranscriptResult:
        if not request.video_id:
            raise AcquisitionFailed("Captions need a video id", AcquisitionReason.NO_CAPTIONS)

        preferred = self._preferred_languages(request.language_code)
        try:
            text, language = await self.retry_with_backoff(
                self._attempt, request.video_id, preferred,
                backoff="linear",
                retry_on=(_TransientCaptionError,),
            )
        except PERMANENT_CAPTION_ERRORS as e:
            raise AcquisitionFailed(
                f"No captions available: {type(e).__name__}", AcquisitionReason.NO_CAPTIONS
            ) from e
        except _TransientCaptionError as e:
            raise AcquisitionFailed(
                f"Caption fetch failed after {self.max_retries} attempts: {e}",
                AcquisitionReason.NO_CAPTIONS,
            ) from e

        if not text:
            raise AcquisitionFailed("Caption track is empty", AcquisitionReason.NO_CAPTIONS)

        self.log_with_context("Found captions", extra_context={
            "video_id": request.video_id, "language": language, "chars": len(text)
        })
        return TranscriptResult(text=text, source=self.strategy_name, language=language)

    async def _attempt(self, video_id: str, preferred: List[str]):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_sync, video_id, preferred),
                timeout=self.settings.caption_timeout,
            )
        except PERMANENT_CAPTION_ERRORS:
            raise
        except asyncio.TimeoutError:
            raise _TransientCaptionError("Caption fetch timeout") from None
        except Exception as e:
            raise _TransientCaptionError(str(e)) from e

    def _fetch_sync(self, video_id: str, preferred: List[str]):
        transcript_list = self.api.list(video_id)
        try:
            transcript = transcript_list.find_transcript(preferred)
        except NoTranscriptFound:
            # Any track beats none; the analysis prompt follows its language
            transcript = next(iter(transcript_list), None)
            if transcript is None:
                raise
        fetched = transcript.fetch()
        text = " ".join(snippet.text.strip() for snippet in fetched if snippet.text).strip()
        return text, transcript.language_code

    @staticmethod
    def _preferred_languages(language_code: str) -> List[str]:
        languages = [language_code] if language_code else []
        if "en" not in languages:
            languages.append("en")
        return languages
