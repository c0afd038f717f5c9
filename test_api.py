"""
HTTP API tests using FastAPI's TestClient against an in-memory store and
fake pipeline adapters.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.services import build_services
from conftest import TRANSCRIPT, VIDEO_ID, VIDEO_URL, FakeStrategy, Pipeline, make_settings, no_captions
from core.error_handling import AnalysisFailed, AnalysisFailure
from core.job_state import JobStatus
from core.stores import MANUAL_FAILURE_MESSAGE

TERMINAL = {"COMPLETED", "FAILED"}


def client_for(pipeline):
    services = build_services(
        pipeline.settings,
        store=pipeline.store,
        orchestrator=pipeline.orchestrator,
        metadata_worker=pipeline.metadata,
    )
    return TestClient(create_app(pipeline.settings, services=services))


def wait_for_result(client, job_id, timeout=5.0):
    """Poll until the job reaches a terminal status."""
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/result/{job_id}").json()
        if body["status"] in TERMINAL or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


def seed(store, *steps):
    async def apply():
        for step in steps:
            await step(store)

    asyncio.run(apply())


def pending(job_id=VIDEO_ID, url=VIDEO_URL):
    return lambda store: store.reset_job_pending(job_id, url)


def move(source, target, message=None, job_id=VIDEO_ID):
    return lambda store: store.transition(job_id, source, target, message)


class TestAnalyzeEndpoint:

    def test_submit_and_poll(self, settings):
        pipeline = Pipeline(settings)
        with client_for(pipeline) as client:
            response = client.post("/api/analyze", json={"url": VIDEO_URL})
            assert response.status_code == 202
            assert response.json() == {"jobId": VIDEO_ID, "status": "PENDING"}

            result = wait_for_result(client, VIDEO_ID)

        assert result["status"] == "COMPLETED"
        assert result["jobId"] == VIDEO_ID
        assert result["url"] == VIDEO_URL
        assert result["transcript"] == TRANSCRIPT
        assert result["videoMetadata"]["title"] == "Sleep and memory"
        assert result["analysis"]["trustScore"] == 72
        assert result["analysis"]["bulletPoints"][0] == "Point 1"
        assert result["analysis"]["claims"][0]["spotChecks"][0]["verdict"] == "supported"
        assert result["errorMessage"] is None
        assert result["createdAt"].endswith("Z")
        assert result["elapsedTime"] >= 0

    def test_resubmitting_completed_job(self, settings):
        pipeline = Pipeline(settings)
        with client_for(pipeline) as client:
            client.post("/api/analyze", json={"url": VIDEO_URL})
            wait_for_result(client, VIDEO_ID)
            response = client.post("/api/analyze", json={"url": f"https://youtu.be/{VIDEO_ID}"})

        assert response.status_code == 202
        assert response.json()["status"] == "COMPLETED"
        assert len(pipeline.analyzer.calls) == 1

    @pytest.mark.parametrize("body, detail", [
        ({}, "URL is required"),
        ({"url": ""}, "URL is required"),
        ({"url": "https://example.com/watch?v=x"}, "Invalid YouTube URL"),
    ])
    def test_invalid_input(self, settings, body, detail):
        with client_for(Pipeline(settings)) as client:
            response = client.post("/api/analyze", json=body)
        assert response.status_code == 400
        assert response.json() == {"detail": detail}

    def test_missing_api_key(self):
        pipeline = Pipeline(make_settings(openai_api_key=None))
        with client_for(pipeline) as client:
            response = client.post("/api/analyze", json={"url": VIDEO_URL})
        assert response.status_code == 500
        assert "API key" in response.json()["detail"]

    def test_failed_job_reports_error(self, settings):
        pipeline = Pipeline(settings, strategies=[FakeStrategy("captions", error=no_captions())])
        with client_for(pipeline) as client:
            client.post("/api/analyze", json={"url": VIDEO_URL})
            result = wait_for_result(client, VIDEO_ID)

        assert result["status"] == "FAILED"
        assert result["errorKind"] == "acquisition_failed"
        assert result["errorMessage"].startswith("acquisition_failed: [no_captions]")
        assert result["analysis"] is None
        assert result["transcript"] is None


class TestResultEndpoint:

    def test_unknown_job(self, settings):
        with client_for(Pipeline(settings)) as client:
            response = client.get("/api/result/does-not-exist")
        assert response.status_code == 404

    def test_pending_job_has_no_analysis(self, settings):
        pipeline = Pipeline(settings)
        seed(pipeline.store, pending())
        with client_for(pipeline) as client:
            result = client.get(f"/api/result/{VIDEO_ID}").json()
        assert result["status"] == "PENDING"
        assert result["analysis"] is None
        assert result["errorKind"] is None


class TestRetryEndpoint:

    def test_retry_completed_job(self, settings):
        pipeline = Pipeline(settings)
        with client_for(pipeline) as client:
            client.post("/api/analyze", json={"url": VIDEO_URL})
            wait_for_result(client, VIDEO_ID)
            response = client.post("/api/analyze/retry", json={"jobId": VIDEO_ID})

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "jobId": VIDEO_ID, "language": "English", "languageCode": "en", "trustScore": 72
        }
        assert pipeline.acquisition_calls == 1
        assert len(pipeline.analyzer.calls) == 2

    def test_retry_failure_keeps_result(self, settings):
        pipeline = Pipeline(settings)
        with client_for(pipeline) as client:
            client.post("/api/analyze", json={"url": VIDEO_URL})
            wait_for_result(client, VIDEO_ID)
            pipeline.analyzer.error = AnalysisFailed("OpenAI API quota exceeded.", AnalysisFailure.QUOTA_EXCEEDED)
            response = client.post("/api/analyze/retry", json={"jobId": VIDEO_ID})
            result = client.get(f"/api/result/{VIDEO_ID}").json()

        assert response.status_code == 500
        assert response.json()["detail"] == "analysis_failed: OpenAI API quota exceeded."
        assert result["status"] == "COMPLETED"
        assert result["analysis"]["trustScore"] == 72

    def test_retry_unknown_job(self, settings):
        with client_for(Pipeline(settings)) as client:
            response = client.post("/api/analyze/retry", json={"jobId": "missing"})
        assert response.status_code == 404

    def test_retry_running_job(self, settings):
        pipeline = Pipeline(settings)
        seed(pipeline.store, pending(), move(JobStatus.PENDING, JobStatus.RUNNING))
        with client_for(pipeline) as client:
            response = client.post("/api/analyze/retry", json={"jobId": VIDEO_ID})
        assert response.status_code == 409

    def test_retry_without_transcript(self, settings):
        pipeline = Pipeline(settings)
        seed(pipeline.store, pending(), move(JobStatus.PENDING, JobStatus.RUNNING),
             move(JobStatus.RUNNING, JobStatus.FAILED, "timeout: metadata"))
        with client_for(pipeline) as client:
            response = client.post("/api/analyze/retry", json={"jobId": VIDEO_ID})
        assert response.status_code == 400
        assert response.json() == {"detail": "No transcript available for retry"}

    def test_retry_requires_job_id(self, settings):
        with client_for(Pipeline(settings)) as client:
            response = client.post("/api/analyze/retry", json={})
        assert response.status_code == 422


class TestHealthEndpoints:

    def test_healthz(self, settings):
        with client_for(Pipeline(settings)) as client:
            body = client.get("/healthz").json()
        assert body["status"] == "healthy"
        assert body["store"] == "memory"
        assert body["queue"]["max_size"] == settings.queue_max_size

    def test_stuck_jobs_report_and_mark_failed(self):
        settings = make_settings(stale_running_minutes=0, stale_pending_minutes=0)
        pipeline = Pipeline(settings)
        seed(
            pipeline.store,
            pending("stuck-run", "https://youtu.be/stuck-run"),
            move(JobStatus.PENDING, JobStatus.RUNNING, job_id="stuck-run"),
            pending("stuck-wait", "https://youtu.be/stuck-wait"),
        )
        time.sleep(0.01)
        with client_for(pipeline) as client:
            report = client.get("/api/jobs/health").json()
            action = client.post("/api/jobs/health", json={"action": "mark_failed", "jobIds": ["stuck-run"]})
            after = client.get("/api/result/stuck-run").json()

        assert [job["jobId"] for job in report["stuckRunning"]] == ["stuck-run"]
        assert [job["jobId"] for job in report["stuckPending"]] == ["stuck-wait"]
        assert report["totalStuck"] == 2
        assert report["counts"]["RUNNING"] == 1
        assert action.json() == {"success": True, "updated": 1, "message": "Marked 1 jobs as failed"}
        assert after["status"] == "FAILED"
        assert after["errorMessage"] == MANUAL_FAILURE_MESSAGE

    def test_mark_failed_rejects_unknown_action(self, settings):
        with client_for(Pipeline(settings)) as client:
            response = client.post("/api/jobs/health", json={"action": "delete", "jobIds": ["x"]})
        assert response.status_code == 422

    def test_docs_hidden_in_production(self):
        with client_for(Pipeline(make_settings(deployment_mode="production"))) as client:
            assert client.get("/docs").status_code == 404
        with client_for(Pipeline(make_settings())) as client:
            assert client.get("/docs").status_code == 200
