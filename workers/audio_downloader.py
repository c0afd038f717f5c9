"""
AudioDownloadWorker - downloads the smallest viable audio stream of a video.

Format choice cascades from the smallest discovered audio-only format through
a fixed list of yt-dlp format selectors. A progress hook aborts any attempt
whose size passes the byte ceiling, and each attempt has its own time limit.
"""

import asyncio
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yt_dlp

from config import Settings, get_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason
from workers.base import BaseWorker

FALLBACK_FORMATS = [
    "worstaudio",
    "bestaudio[filesize<10M]",
    "bestaudio[filesize<15M]",
    "bestaudio[filesize<20M]",
    "bestaudio[ext=m4a][filesize<10M]",
    "bestaudio[ext=mp3][filesize<10M]",
    "bestaudio[ext=m4a][filesize<15M]",
    "bestaudio[ext=mp3][filesize<15M]",
    "bestaudio[ext=m4a][filesize<20M]",
    "bestaudio[ext=mp3][filesize<20M]",
    "bestaudio",
    "best[filesize<10M]",
    "best[filesize<15M]",
    "best[filesize<20M]",
    "best",
]


@dataclass
class DownloadedAudio:
    path: Path
    size_bytes: int
    format: str


class DownloadTooLarge(Exception):
    pass


class DownloadAborted(Exception):
    pass


class _AttemptState:
    """Shared between the download thread and the awaiting coroutine."""

    def __init__(self):
        self.cancelled = threading.Event()
        self.too_large = False


class AudioDownloadWorker(BaseWorker):
    """Downloads audio into a caller-owned directory."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        super().__init__("audio_downloader", log_level=self.settings.log_level.value)

    @property
    def max_bytes(self) -> int:
        return self.settings.max_audio_bytes

    async def download(self, url: str, dest_dir: Path) -> DownloadedAudio:
        """
        Try every format option in order until one downloads under the ceiling.

        Raises:
            AcquisitionFailed: download_too_large when no format fits,
                download_failed when every attempt errored
        """
        dest_dir = Path(dest_dir)
        formats = list(FALLBACK_FORMATS)
        try:
            discovered = await asyncio.to_thread(self.discover_format, url)
        except DownloadTooLarge as e:
            raise AcquisitionFailed(str(e), AcquisitionReason.DOWNLOAD_TOO_LARGE) from e
        except Exception as e:
            self.log_with_context(f"Format discovery failed: {e}", level="WARNING")
            discovered = None
        if discovered:
            formats.insert(0, discovered)

        last_error: Optional[Exception] = None
        all_too_large = True

        for index, fmt in enumerate(formats, start=1):
            self.log_with_context(f"Trying download with format {fmt}",
                                  extra_context={"attempt": index, "of": len(formats)})
            try:
                return await self._attempt(url, fmt, dest_dir)
            except DownloadTooLarge as e:
                last_error = e
            except Exception as e:
                all_too_large = False
                last_error = e
                self.log_with_context(f"Format {fmt} failed: {e}", level="WARNING")
            self._clear(dest_dir)
            if index < len(formats) and self.settings.download_retry_delay:
                await asyncio.sleep(self.settings.download_retry_delay)

        if all_too_large:
            raise AcquisitionFailed(
                f"Video too large: no audio format available under {self.max_bytes // (1024 * 1024)}MB",
                AcquisitionReason.DOWNLOAD_TOO_LARGE,
            )
        raise AcquisitionFailed(
            f"All download attempts failed. Last error: {last_error}",
            AcquisitionReason.DOWNLOAD_FAILED,
        )

    def discover_format(self, url: str) -> Optional[str]:
        """
        Pick the smallest audio-only format whose size is known and fits.

        Returns None when nothing can be decided from the format list.
        Raises DownloadTooLarge when sizes are known and none fits.
        """
        with yt_dlp.YoutubeDL(self._base_options()) as ydl:
            info = ydl.extract_info(url, download=False)

        audio_formats = [
            f for f in info.get("formats") or []
            if f.get("vcodec") == "none" and f.get("acodec") not in (None, "none")
        ]
        sized = sorted(
            (f for f in audio_formats if self._format_size(f)),
            key=self._format_size,
        )
        if not sized:
            return None
        for fmt in sized:
            if self._format_size(fmt) <= self.max_bytes:
                self.log_with_context(
                    f"Selected format {fmt['format_id']} ({self._format_size(fmt) // (1024 * 1024)}MB)"
                )
                return fmt["format_id"]
        raise DownloadTooLarge(
            f"Video too large: no audio format available under {self.max_bytes // (1024 * 1024)}MB"
        )

    async def _attempt(self, url: str, fmt: str, dest_dir: Path) -> DownloadedAudio:
        state = _AttemptState()
        try:
            path = await asyncio.wait_for(
                asyncio.to_thread(self._download_sync, url, fmt, dest_dir, state),
                timeout=self.settings.download_attempt_timeout,
            )
        except asyncio.CancelledError:
            # Stop the thread before the caller removes dest_dir
            state.cancelled.set()
            raise
        except asyncio.TimeoutError:
            state.cancelled.set()
            raise DownloadAborted(
                f"Download timed out after {self.settings.download_attempt_timeout:.0f}s"
            ) from None
        except Exception:
            if state.too_large:
                raise DownloadTooLarge(
                    f"File too large during download (limit: {self.max_bytes // (1024 * 1024)}MB)"
                ) from None
            raise

        size = path.stat().st_size
        if size > self.max_bytes:
            raise DownloadTooLarge(f"Downloaded file is {size} bytes, over the {self.max_bytes} limit")
        self.log_with_context("Audio downloaded", extra_context={"format": fmt, "bytes": size})
        return DownloadedAudio(path=path, size_bytes=size, format=fmt)

    def _download_sync(self, url: str, fmt: str, dest_dir: Path, state: _AttemptState) -> Path:
        def progress_hook(progress: Dict[str, Any]) -> None:
            if state.cancelled.is_set():
                raise DownloadAborted("Download cancelled")
            total = progress.get("total_bytes") or progress.get("total_bytes_estimate") or 0
            downloaded = progress.get("downloaded_bytes") or 0
            if total > self.max_bytes or downloaded > self.max_bytes:
                state.too_large = True
                raise DownloadTooLarge("File too large during download")

        ydl_opts = self._base_options()
        ydl_opts.update({
            'format': fmt,
            'outtmpl': str(dest_dir / 'audio.%(ext)s'),
            'noplaylist': True,
            'progress_hooks': [progress_hook],
        })
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            ydl.download([url])

        files = [p for p in dest_dir.glob('audio.*') if not p.name.endswith(('.part', '.ytdl'))]
        if not files:
            raise DownloadAborted("Download finished but produced no audio file")
        return files[0]

    def _base_options(self) -> Dict[str, Any]:
        ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'http_headers': {'User-Agent': self.settings.youtube_user_agent},
        }
        if self.settings.youtube_cookie_file:
            ydl_opts['cookiefile'] = self.settings.youtube_cookie_file
        return ydl_opts

    @staticmethod
    def _format_size(fmt: Dict[str, Any]) -> int:
        return fmt.get("filesize") or fmt.get("filesize_approx") or 0

    @staticmethod
    def _clear(dest_dir: Path) -> None:
        for leftover in dest_dir.glob('audio.*'):
            leftover.unlink(missing_ok=True)
