"""
RemoteTranscriberWorker - out-of-process speech recognition over HTTP.

Calls ``POST {remote_worker_url}/v1/analyze`` with the video id and a source
language hint. An entity-too-large answer is reported as ContentTooLong, the
same failure the metadata duration check produces.
"""

from typing import Any, Dict, Optional

import httpx

from config import Settings, get_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason, ContentTooLong
from core.models import TranscriptRequest, TranscriptResult
from workers.base import BaseWorker

TOO_LARGE_MARKERS = ("entity too large", "too large", "too long")


class RemoteTranscriberWorker(BaseWorker):
    """Transcript strategy backed by the remote transcription worker."""

    strategy_name = "remote_worker"

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        super().__init__("remote_transcriber", log_level=self.settings.log_level.value)
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.remote_worker_url)

    async def fetch(self, request: TranscriptRequest) -> TranscriptResult:
        if not self.is_configured:
            raise AcquisitionFailed("Remote transcription worker is not configured",
                                    AcquisitionReason.WORKER_UNAVAILABLE)
        if not request.video_id:
            raise AcquisitionFailed("Remote transcription needs a video id",
                                    AcquisitionReason.WORKER_FAILED)

        ceiling = self.settings.remote_worker_max_duration_minutes
        duration = request.metadata.duration_seconds
        if duration is not None and duration > ceiling * 60:
            raise ContentTooLong(
                f"Video duration ({duration // 60} minutes) exceeds the {ceiling}-minute "
                f"limit of the transcription worker"
            )

        payload = {
            "video_id": request.video_id,
            "force_asr": False,
            "asr_lang": request.language_code,
            "prefer_langs": list(dict.fromkeys([request.language_code, "en"])),
        }
        self.log_with_context("Calling remote transcription worker", extra_context={
            "video_id": request.video_id, "asr_lang": request.language_code
        })

        with self._execution_timer("Remote transcription"):
            response = await self._post(payload)

        if response.status_code == 413 or (
            response.status_code >= 400 and self._looks_too_large(response.text)
        ):
            raise ContentTooLong("Video is too large for the transcription worker")
        if response.status_code in (502, 503, 504):
            raise AcquisitionFailed(
                f"Transcription worker unavailable: {response.status_code}",
                AcquisitionReason.WORKER_UNAVAILABLE,
            )
        if response.status_code >= 400:
            raise AcquisitionFailed(
                f"Transcription worker request failed: {response.status_code} - {response.text[:200]}",
                AcquisitionReason.WORKER_FAILED,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AcquisitionFailed("Transcription worker returned invalid JSON",
                                    AcquisitionReason.WORKER_FAILED) from e

        text = self._extract_text(data)
        if not text:
            raise AcquisitionFailed("Transcription worker returned an empty transcript",
                                    AcquisitionReason.WORKER_FAILED)

        self.log_with_context("Remote transcription finished", extra_context={
            "source": data.get("source"), "language": data.get("language"), "chars": len(text)
        })
        return TranscriptResult(text=text, source=self.strategy_name, language=data.get("language"))

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        url = f"{self.settings.remote_worker_url.rstrip('/')}/v1/analyze"
        headers = {"Content-Type": "application/json"}
        if self.settings.remote_worker_token:
            headers["Authorization"] = f"Bearer {self.settings.remote_worker_token}"
        try:
            if self._client is not None:
                return await self._client.post(url, json=payload, headers=headers)
            async with httpx.AsyncClient(timeout=self.settings.remote_worker_timeout) as client:
                return await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise AcquisitionFailed("Transcription worker timed out",
                                    AcquisitionReason.TRANSCRIPTION_TIMEOUT) from e
        except httpx.TransportError as e:
            raise AcquisitionFailed(f"Transcription worker unreachable: {e}",
                                    AcquisitionReason.WORKER_UNAVAILABLE) from e

    @staticmethod
    def _looks_too_large(body: str) -> bool:
        lowered = (body or "").lower()
        return any(marker in lowered for marker in TOO_LARGE_MARKERS)

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        text = (data.get("text") or "").strip()
        if text:
            return text
        segments = data.get("segments") or []
        return " ".join(
            segment.get("text", "").strip() for segment in segments if segment.get("text")
        ).strip()
