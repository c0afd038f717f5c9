"""
Tests for the in-process download/compress/segment/transcribe strategy.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from conftest import VIDEO_ID, VIDEO_URL, make_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason
from core.models import TranscriptRequest
from workers.audio_downloader import DownloadedAudio
from workers.audio_processing import FFmpegError
from workers.transcriber import LocalAudioTranscriber

MB = 1024 * 1024


class FakeDownloader:
    def __init__(self, size_bytes):
        self.size_bytes = size_bytes
        self.dest_dirs = []

    async def download(self, url, dest_dir):
        self.dest_dirs.append(Path(dest_dir))
        path = Path(dest_dir) / "audio.m4a"
        path.write_bytes(b"audio")
        return DownloadedAudio(path=path, size_bytes=self.size_bytes, format="140")


class FakeBackend:
    is_configured = True

    def __init__(self, delay=0.0):
        self.delay = delay
        self.files = []
        self.active = 0
        self.max_active = 0

    async def transcribe_file(self, path, language=None):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.files.append(Path(path).name)
            return f"text of {Path(path).stem}"
        finally:
            self.active -= 1


def make_parts(count):
    async def segment(source, dest_dir, segment_seconds):
        parts_dir = Path(dest_dir) / "parts"
        parts_dir.mkdir(exist_ok=True)
        parts = []
        for index in range(count):
            part = parts_dir / f"part-{index:03d}.mp3"
            part.write_bytes(b"part")
            parts.append(part)
        return parts

    return segment


def big_compressed(size):
    async def compress(source, dest_dir):
        target = Path(dest_dir) / "audio-compressed.mp3"
        target.write_bytes(b"\0" * size)
        return target

    return compress


class TestLocalAudioTranscriber:

    @pytest.fixture
    def request_en(self):
        return TranscriptRequest(url=VIDEO_URL, video_id=VIDEO_ID, language_code="en")

    @pytest.fixture
    def settings(self):
        return make_settings(max_upload_bytes=1 * MB, transcribe_concurrency=2, segment_seconds=600)

    def test_small_audio_uploaded_directly(self, settings, request_en):
        downloader, backend = FakeDownloader(512), FakeBackend()
        transcriber = LocalAudioTranscriber(settings, downloader=downloader, backend=backend)

        with patch("workers.transcriber.compress_audio", new=AsyncMock()) as compress:
            result = asyncio.run(transcriber.fetch(request_en))

        assert result.text == "text of audio"
        assert result.source == "local_audio"
        assert backend.files == ["audio.m4a"]
        compress.assert_not_called()
        assert not downloader.dest_dirs[0].exists()

    def test_compression_when_it_fits(self, settings, request_en):
        backend = FakeBackend()
        transcriber = LocalAudioTranscriber(settings, downloader=FakeDownloader(3 * MB), backend=backend)

        with patch("workers.transcriber.compress_audio", new=big_compressed(1000)), \
                patch("workers.transcriber.segment_audio", new=AsyncMock()) as segment:
            result = asyncio.run(transcriber.fetch(request_en))

        assert result.text == "text of audio-compressed"
        segment.assert_not_called()

    def test_segments_transcribed_concurrently_in_order(self, settings, request_en):
        backend = FakeBackend(delay=0.02)
        downloader = FakeDownloader(30 * MB)
        transcriber = LocalAudioTranscriber(settings, downloader=downloader, backend=backend)

        with patch("workers.transcriber.compress_audio", new=big_compressed(2 * MB)), \
                patch("workers.transcriber.segment_audio", new=make_parts(5)):
            result = asyncio.run(transcriber.fetch(request_en))

        assert result.text.split("\n") == [f"text of part-{index:03d}" for index in range(5)]
        assert backend.max_active == 2
        assert not downloader.dest_dirs[0].exists()

    def test_ffmpeg_failure(self, settings, request_en):
        transcriber = LocalAudioTranscriber(settings, downloader=FakeDownloader(3 * MB), backend=FakeBackend())

        with patch("workers.transcriber.compress_audio", new=AsyncMock(side_effect=FFmpegError("ffmpeg is not installed"))):
            with pytest.raises(AcquisitionFailed) as exc_info:
                asyncio.run(transcriber.fetch(request_en))
        assert exc_info.value.reason == AcquisitionReason.TRANSCRIPTION_FAILED

    def test_not_configured(self, request_en):
        backend = FakeBackend()
        backend.is_configured = False
        downloader = FakeDownloader(512)
        transcriber = LocalAudioTranscriber(make_settings(), downloader=downloader, backend=backend)

        with pytest.raises(AcquisitionFailed) as exc_info:
            asyncio.run(transcriber.fetch(request_en))
        assert exc_info.value.reason == AcquisitionReason.NOT_CONFIGURED
        assert downloader.dest_dirs == []

    def test_temp_dir_removed_on_failure(self, settings, request_en):
        downloader = FakeDownloader(512)
        backend = FakeBackend()
        backend.transcribe_file = AsyncMock(side_effect=AcquisitionFailed(
            "Transcription failed", AcquisitionReason.TRANSCRIPTION_FAILED))
        transcriber = LocalAudioTranscriber(settings, downloader=downloader, backend=backend)

        with pytest.raises(AcquisitionFailed):
            asyncio.run(transcriber.fetch(request_en))
        assert not downloader.dest_dirs[0].exists()
