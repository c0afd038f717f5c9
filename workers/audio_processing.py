"""
ffmpeg helpers for shrinking and splitting audio before transcription.
"""

import asyncio
import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class FFmpegError(Exception):
    """Raised when an ffmpeg command fails."""
    pass


async def _run_ffmpeg(args: List[str], timeout: float) -> None:
    cmd = ['ffmpeg', '-y', '-hide_banner', '-loglevel', 'error', *args]
    logger.debug(f"Running {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FFmpegError("ffmpeg is not installed") from e

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise FFmpegError(f"ffmpeg timed out after {timeout:.0f}s") from None

    if process.returncode != 0:
        raise FFmpegError(f"ffmpeg exited with {process.returncode}: {stderr.decode(errors='replace')[-500:]}")


async def compress_audio(source: Path, dest_dir: Path, timeout: float = 120) -> Path:
    """Re-encode to mono 16 kHz 48 kbps MP3."""
    target = Path(dest_dir) / "audio-compressed.mp3"
    await _run_ffmpeg([
        '-i', str(source),
        '-vn',
        '-ac', '1',
        '-ar', '16000',
        '-b:a', '48k',
        '-c:a', 'libmp3lame',
        str(target),
    ], timeout)
    return target


async def segment_audio(source: Path, dest_dir: Path, segment_seconds: int, timeout: float = 120) -> List[Path]:
    """
    Split audio into fixed-length parts.

    Returns the part files in playback order (part-000.mp3, part-001.mp3, ...).
    """
    parts_dir = Path(dest_dir) / "parts"
    parts_dir.mkdir(exist_ok=True)
    await _run_ffmpeg([
        '-i', str(source),
        '-f', 'segment',
        '-segment_time', str(segment_seconds),
        '-reset_timestamps', '1',
        '-c', 'copy',
        str(parts_dir / 'part-%03d.mp3'),
    ], timeout)
    parts = sorted(parts_dir.glob('part-*.mp3'))
    if not parts:
        raise FFmpegError("Segmentation produced no parts")
    return parts
