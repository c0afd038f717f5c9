"""
Tests for the remote transcription worker client, using httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from conftest import VIDEO_ID, VIDEO_URL, make_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason, ContentTooLong
from core.models import TranscriptRequest, VideoMetadata
from workers.remote_transcriber import RemoteTranscriberWorker

WORKER_URL = "https://asr.example.test"


def fetch_with(handler, request=None, **overrides):
    settings = make_settings(remote_worker_url=WORKER_URL, remote_worker_token="secret", **overrides)
    request = request or TranscriptRequest(
        url=VIDEO_URL, video_id=VIDEO_ID, metadata=VideoMetadata(duration_seconds=600), language_code="vi"
    )

    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await RemoteTranscriberWorker(settings, client=client).fetch(request)

    return asyncio.run(main())


class TestRemoteTranscriberWorker:

    def test_success_sends_language_hint_and_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"text": " Xin chào ", "language": "vi", "source": "asr"})

        result = fetch_with(handler)
        assert result.text == "Xin chào"
        assert result.source == "remote_worker"
        assert result.language == "vi"
        assert seen["url"] == f"{WORKER_URL}/v1/analyze"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {
            "video_id": VIDEO_ID, "force_asr": False, "asr_lang": "vi", "prefer_langs": ["vi", "en"]
        }

    def test_segments_are_joined_when_text_missing(self):
        def handler(request):
            return httpx.Response(200, json={"segments": [{"text": "one "}, {"text": ""}, {"text": "two"}]})

        assert fetch_with(handler).text == "one two"

    def test_not_configured(self):
        worker = RemoteTranscriberWorker(make_settings(remote_worker_url=None))
        request = TranscriptRequest(url=VIDEO_URL, video_id=VIDEO_ID)
        with pytest.raises(AcquisitionFailed) as exc_info:
            asyncio.run(worker.fetch(request))
        assert exc_info.value.reason == AcquisitionReason.WORKER_UNAVAILABLE

    def test_duration_over_worker_ceiling_skips_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"text": "unused"})

        request = TranscriptRequest(url=VIDEO_URL, video_id=VIDEO_ID,
                                    metadata=VideoMetadata(duration_seconds=4 * 3600))
        with pytest.raises(ContentTooLong):
            fetch_with(handler, request=request, remote_worker_max_duration_minutes=180)
        assert calls == []

    @pytest.mark.parametrize("status,body", [
        (413, "Payload Too Large"),
        (500, "Request entity too large for ASR"),
    ])
    def test_too_large_maps_to_content_too_long(self, status, body):
        with pytest.raises(ContentTooLong):
            fetch_with(lambda request: httpx.Response(status, text=body))

    @pytest.mark.parametrize("status,reason", [
        (502, AcquisitionReason.WORKER_UNAVAILABLE),
        (503, AcquisitionReason.WORKER_UNAVAILABLE),
        (504, AcquisitionReason.WORKER_UNAVAILABLE),
        (500, AcquisitionReason.WORKER_FAILED),
        (401, AcquisitionReason.WORKER_FAILED),
    ])
    def test_error_statuses(self, status, reason):
        with pytest.raises(AcquisitionFailed) as exc_info:
            fetch_with(lambda request: httpx.Response(status, text="boom"))
        assert exc_info.value.reason == reason

    def test_empty_transcript_is_a_failure(self):
        with pytest.raises(AcquisitionFailed) as exc_info:
            fetch_with(lambda request: httpx.Response(200, json={"text": "  "}))
        assert exc_info.value.reason == AcquisitionReason.WORKER_FAILED

    def test_invalid_json(self):
        with pytest.raises(AcquisitionFailed, match="invalid JSON"):
            fetch_with(lambda request: httpx.Response(200, text="<html>"))

    def test_unreachable_worker(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AcquisitionFailed) as exc_info:
            fetch_with(handler)
        assert exc_info.value.reason == AcquisitionReason.WORKER_UNAVAILABLE

    def test_worker_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(AcquisitionFailed) as exc_info:
            fetch_with(handler)
        assert exc_info.value.reason == AcquisitionReason.TRANSCRIPTION_TIMEOUT
