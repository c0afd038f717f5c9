"""
LocalAudioTranscriber - download, shrink, split and transcribe in-process.

The last transcript tier. Everything it writes lives in one temporary
directory that is removed on every exit path.

Steps:
    1. Download the smallest viable audio stream
    2. Upload directly when it fits the transcription size limit
    3. Otherwise re-encode to a small mono MP3
    4. Otherwise split into fixed-length parts and transcribe them concurrently,
       joining the texts in playback order
"""

import asyncio
import tempfile
from pathlib import Path
from typing import List, Optional

from config import Settings, get_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason
from core.models import TranscriptRequest, TranscriptResult
from workers.ai_backend import AIBackend
from workers.audio_downloader import AudioDownloadWorker
from workers.audio_processing import FFmpegError, compress_audio, segment_audio
from workers.base import BaseWorker


class LocalAudioTranscriber(BaseWorker):
    """Transcript strategy that transcribes downloaded audio itself."""

    strategy_name = "local_audio"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        downloader: Optional[AudioDownloadWorker] = None,
        backend: Optional[AIBackend] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__("local_transcriber", log_level=self.settings.log_level.value)
        self.downloader = downloader or AudioDownloadWorker(self.settings)
        self.backend = backend or AIBackend(self.settings)

    async def fetch(self, request: TranscriptRequest) -> TranscriptResult:
        if not self.backend.is_configured:
            raise AcquisitionFailed("Local transcription needs an OpenAI API key",
                                    AcquisitionReason.NOT_CONFIGURED)

        with tempfile.TemporaryDirectory(prefix="trustcheck-") as temp_dir:
            work_dir = Path(temp_dir)
            audio = await self.downloader.download(request.url, work_dir)
            language = request.language_code or None

            with self._execution_timer("Local transcription"):
                if audio.size_bytes <= self.settings.max_upload_bytes:
                    self.log_with_context("Uploading audio directly",
                                          extra_context={"bytes": audio.size_bytes})
                    text = await self.backend.transcribe_file(audio.path, language)
                else:
                    text = await self._transcribe_oversized(audio.path, work_dir, language)

        if not text:
            raise AcquisitionFailed("Transcription returned no text", AcquisitionReason.TRANSCRIPTION_FAILED)
        return TranscriptResult(text=text, source=self.strategy_name, language=language)

    async def _transcribe_oversized(self, source: Path, work_dir: Path, language: Optional[str]) -> str:
        try:
            compressed = await compress_audio(source, work_dir)
            size = compressed.stat().st_size
            if size <= self.settings.max_upload_bytes:
                self.log_with_context("Uploading compressed audio", extra_context={"bytes": size})
                return await self.backend.transcribe_file(compressed, language)

            parts = await segment_audio(compressed, work_dir, self.settings.segment_seconds)
        except FFmpegError as e:
            raise AcquisitionFailed(f"Audio processing failed: {e}",
                                    AcquisitionReason.TRANSCRIPTION_FAILED) from e

        self.log_with_context(f"Transcribing {len(parts)} segments",
                              extra_context={"concurrency": self.settings.transcribe_concurrency})
        texts = await self.transcribe_parts(parts, language)
        return "\n".join(text for text in texts if text)

    async def transcribe_parts(self, parts: List[Path], language: Optional[str]) -> List[str]:
        """Transcribe parts with bounded concurrency; results keep input order."""
        semaphore = asyncio.Semaphore(max(self.settings.transcribe_concurrency, 1))

        async def transcribe(part: Path) -> str:
            async with semaphore:
                return await self.backend.transcribe_file(part, language)

        return list(await asyncio.gather(*(transcribe(part) for part in parts)))
