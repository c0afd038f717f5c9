"""
TranscriptChain - ordered transcript strategies with a cache in front.

The cached Video transcript is always consulted first. After that each
configured strategy is tried in order under its own time limit; the first
success wins and the last failure is kept for the error message. A
ContentTooLong from any tier stops the chain immediately.
"""

from typing import Dict, List, Optional, Protocol

from config import Settings, get_settings
from core.error_handling import (
    AcquisitionFailed, AcquisitionReason, ContentTooLong, PipelineError, PipelineTimeout
)
from core.models import TranscriptRequest, TranscriptResult
from core.stores import JobStore
from core.timeouts import Deadline, bounded
from workers.base import BaseWorker
from workers.captions import CaptionWorker
from workers.remote_transcriber import RemoteTranscriberWorker
from workers.transcriber import LocalAudioTranscriber

CACHE_SOURCE = "cache"

UNEXPECTED_FAILURE_REASONS: Dict[str, AcquisitionReason] = {
    "captions": AcquisitionReason.NO_CAPTIONS,
    "remote_worker": AcquisitionReason.WORKER_FAILED,
    "local_audio": AcquisitionReason.TRANSCRIPTION_FAILED,
}


class TranscriptStrategy(Protocol):
    strategy_name: str

    async def fetch(self, request: TranscriptRequest) -> TranscriptResult:
        ...


def build_strategies(settings: Optional[Settings] = None) -> List[TranscriptStrategy]:
    """Instantiate the strategies named in settings.transcript_strategies, in order."""
    settings = settings or get_settings()
    factories = {
        "captions": CaptionWorker,
        "remote_worker": RemoteTranscriberWorker,
        "local_audio": LocalAudioTranscriber,
    }
    return [factories[name](settings) for name in settings.transcript_strategies]


class TranscriptChain(BaseWorker):
    """Runs transcript strategies until one produces text."""

    def __init__(
        self,
        store: JobStore,
        strategies: List[TranscriptStrategy],
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__("transcript_chain", log_level=self.settings.log_level.value)
        self.store = store
        self.strategies = strategies

    def timeout_for(self, strategy_name: str) -> float:
        if strategy_name == "captions":
            attempts = self.settings.caption_max_attempts
            backoff = sum(self.settings.caption_retry_delay * n for n in range(1, attempts))
            return self.settings.caption_timeout * attempts + backoff
        if strategy_name == "remote_worker":
            return self.settings.remote_worker_timeout
        return self.settings.local_audio_timeout

    async def cached(self, url: str) -> Optional[TranscriptResult]:
        video = await self.store.get_video(url)
        if video and video.transcript:
            return TranscriptResult(text=video.transcript, source=CACHE_SOURCE)
        return None

    async def acquire(self, request: TranscriptRequest, deadline: Optional[Deadline] = None) -> TranscriptResult:
        """
        Return a transcript for request.url.

        Raises:
            ContentTooLong: a tier found the content over its ceiling
            AcquisitionFailed: every tier failed; carries the last tier's reason
            PipelineTimeout: the run deadline expired while a tier was working
        """
        hit = await self.cached(request.url)
        if hit:
            self.log_with_context("Using cached transcript", extra_context={"url": request.url})
            return hit

        last_error: Optional[AcquisitionFailed] = None

        for strategy in self.strategies:
            name = strategy.strategy_name
            self.log_with_context(f"Trying transcript strategy {name}", extra_context={"url": request.url})
            try:
                result = await bounded(strategy.fetch(request), self.timeout_for(name), name, deadline)
            except ContentTooLong:
                raise
            except AcquisitionFailed as e:
                last_error = e
            except PipelineTimeout as e:
                if deadline is not None and deadline.expired:
                    raise
                last_error = AcquisitionFailed(e.message, AcquisitionReason.TRANSCRIPTION_TIMEOUT)
            except PipelineError:
                raise
            except Exception as e:
                last_error = AcquisitionFailed(f"{name} failed: {e}", UNEXPECTED_FAILURE_REASONS.get(
                    name, AcquisitionReason.TRANSCRIPTION_FAILED))
            else:
                if result.text and result.text.strip():
                    self.log_with_context(f"Transcript obtained via {name}",
                                          extra_context={"chars": len(result.text)})
                    return result
                last_error = AcquisitionFailed(f"{name} returned an empty transcript",
                                               UNEXPECTED_FAILURE_REASONS.get(
                                                   name, AcquisitionReason.TRANSCRIPTION_FAILED))

            self.log_with_context(f"Strategy {name} failed: {last_error.message}", level="WARNING",
                                  extra_context={"reason": last_error.reason.value})

        if last_error is None:
            raise AcquisitionFailed("No transcript strategies are configured", AcquisitionReason.NOT_CONFIGURED)
        raise AcquisitionFailed(
            f"All transcript strategies failed. Last error: {last_error.message}",
            last_error.reason,
        )
