"""FastAPI server - submit, poll and retry trust analyses of YouTube videos"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import (
    AnalyzeRequest, AnalyzeResponse, JobHealthAction, JobHealthActionResponse, RetryRequest, RetryResponse
)
from api.services import Services, build_services
from config import DeploymentMode, Settings, get_settings
from core.error_handling import InvalidInput, JobBusy, JobNotFound, PipelineError
from core.maintenance import mark_jobs_failed, stuck_jobs_report
from core.queue import QueueSaturated

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application; tests pass their own services."""
    settings = settings or get_settings()
    configure_logging(settings.log_level.value)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(settings)
        await app.state.services.start()
        try:
            yield
        finally:
            await app.state.services.stop()

    app = FastAPI(
        title="YouTube Trust Check API",
        description="Summaries, trust scores and claim spot-checks for YouTube videos",
        version="1.0.0",
        docs_url=None if settings.deployment_mode == DeploymentMode.PRODUCTION else "/docs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.get("/healthz")
    async def healthz(request: Request):
        svc: Services = request.app.state.services
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "store": svc.store.name,
            "queue": asdict(svc.queue.get_stats()),
        }

    @app.post("/api/analyze", status_code=202, response_model=AnalyzeResponse, response_model_by_alias=True)
    async def analyze(body: AnalyzeRequest, request: Request):
        """Accept a URL and return the job id to poll."""
        svc: Services = request.app.state.services
        if not svc.settings.openai_api_key:
            logger.error("Analysis requested but the OpenAI API key is not configured")
            raise HTTPException(status_code=500, detail="OpenAI API key is not configured")
        try:
            submission = await svc.gateway.submit(body.url)
        except QueueSaturated as e:
            raise HTTPException(status_code=503, detail=str(e))
        return AnalyzeResponse(job_id=submission.job_id, status=submission.status.value)

    @app.get("/api/result/{job_id}")
    async def get_result(job_id: str, request: Request):
        svc: Services = request.app.state.services
        result = await svc.reader.get_result(job_id)
        if result is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return result

    @app.post("/api/analyze/retry", response_model=RetryResponse, response_model_by_alias=True)
    async def retry_analysis(body: RetryRequest, request: Request):
        """Re-run the analysis on the cached transcript of a finished job."""
        svc: Services = request.app.state.services
        try:
            analysis = await svc.orchestrator.retry_analysis(body.job_id)
        except JobNotFound:
            raise HTTPException(status_code=404, detail="Job not found")
        except JobBusy as e:
            raise HTTPException(status_code=409, detail=str(e))
        except InvalidInput:
            raise
        except PipelineError as e:
            raise HTTPException(status_code=500, detail=e.to_job_message())
        return RetryResponse(
            job_id=body.job_id,
            language=analysis.language,
            language_code=analysis.language_code,
            trust_score=analysis.trust_score,
        )

    @app.get("/api/jobs/health")
    async def jobs_health(request: Request):
        svc: Services = request.app.state.services
        return await stuck_jobs_report(
            svc.store, svc.settings.stale_running_minutes, svc.settings.stale_pending_minutes
        )

    @app.post("/api/jobs/health", response_model=JobHealthActionResponse)
    async def jobs_health_action(body: JobHealthAction, request: Request):
        svc: Services = request.app.state.services
        updated = await mark_jobs_failed(svc.store, body.job_ids)
        return JobHealthActionResponse(
            success=True, updated=updated, message=f"Marked {updated} jobs as failed"
        )

    return app


app = create_app()
