"""
PipelineOrchestrator - drives one job from PENDING to a terminal status.

Stages run strictly in order:
    1. Metadata (best effort, degrades to empty)
    2. Duration check against the configured limit
    3. Transcript acquisition through the TranscriptChain
    4. LLM analysis
    5. Persistence of video, analysis and COMPLETED status in one transaction

The whole run is bounded by the job timeout and every stage by its own budget,
never more than what remains of the run. Whatever happens, the job ends in
COMPLETED or FAILED; a transcript obtained before a failure is still cached on
the Video row so the next submission does not pay for it again.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from config import Settings, get_settings
from core.error_handling import (
    AcquisitionFailed, AcquisitionReason, AnalysisFailed, ContentTooLong, InvalidInput,
    JobBusy, JobNotFound, PersistenceFailed, PipelineError, PipelineTimeout
)
from core.job_state import JobStatus
from core.language import detect_language
from core.models import AnalysisResult, TranscriptRequest, TranscriptResult, VideoMetadata
from core.stores import JobStore
from core.timeouts import Deadline, bounded
from core.url_parser import get_video_id
from workers.base import BaseWorker
from workers.metadata import MetadataWorker
from workers.summarizer import Analyzer
from workers.transcript_chain import CACHE_SOURCE, TranscriptChain


@dataclass
class PipelineRun:
    """Mutable state of one run, kept so the failure path knows what was obtained."""
    job_id: str
    url: str
    stage: str = "start"
    metadata: VideoMetadata = field(default_factory=VideoMetadata)
    transcript: Optional[TranscriptResult] = None


def _wrap_unexpected(stage: str, error: Exception) -> PipelineError:
    """Give an unexpected exception the error kind of the stage it escaped from."""
    message = f"Unexpected error during {stage}: {error}"
    if stage == "transcript":
        return AcquisitionFailed(message, AcquisitionReason.TRANSCRIPTION_FAILED)
    if stage == "persistence":
        return PersistenceFailed(message)
    return AnalysisFailed(message)


class PipelineOrchestrator(BaseWorker):
    """Runs submitted jobs and analysis retries."""

    def __init__(
        self,
        store: JobStore,
        transcript_chain: TranscriptChain,
        analyzer: Analyzer,
        metadata_worker: Optional[MetadataWorker] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__("orchestrator", log_level=self.settings.log_level.value)
        self.store = store
        self.transcript_chain = transcript_chain
        self.analyzer = analyzer
        self.metadata_worker = metadata_worker or MetadataWorker(self.settings)

    async def run(self, job_id: str, url: str) -> Optional[JobStatus]:
        """
        Execute the pipeline for a PENDING job.

        Returns the job's final status, or None when the job could not be
        claimed (missing, or already picked up by another run).
        """
        if not await self.store.transition(job_id, JobStatus.PENDING, JobStatus.RUNNING):
            self.log_with_context("Job not claimable, skipping", level="WARNING",
                                  extra_context={"job_id": job_id})
            job = await self.store.get_job(job_id)
            return job.status if job else None

        run = PipelineRun(job_id=job_id, url=url)
        timeout = self.settings.job_timeout_seconds
        deadline = Deadline(timeout)
        self.log_with_context("Job started", extra_context={"job_id": job_id, "url": url})

        try:
            with self._execution_timer(f"Job {job_id}"):
                await bounded(self._run_stages(run, deadline), timeout, "job")
        except PipelineTimeout as e:
            if e.stage == "job":
                e = PipelineTimeout(f"Job exceeded the {timeout:.0f}s time limit during {run.stage}",
                                    stage=run.stage)
            await self._fail(run, e)
        except PipelineError as e:
            await self._fail(run, e)
        except Exception as e:
            self.logger.exception(f"Unexpected failure in job {job_id}")
            await self._fail(run, _wrap_unexpected(run.stage, e))

        job = await self.store.get_job(job_id)
        return job.status if job else None

    async def _run_stages(self, run: PipelineRun, deadline: Deadline) -> None:
        run.stage = "metadata"
        run.metadata = await self._extract_metadata(run.url, deadline)
        self._check_duration(run.metadata)

        run.stage = "transcript"
        hint = detect_language("", run.metadata.title, run.metadata.description)
        request = TranscriptRequest(
            url=run.url,
            video_id=run.metadata.video_id or get_video_id(run.url),
            metadata=run.metadata,
            language_code=hint.language_code,
        )
        run.transcript = await self.transcript_chain.acquire(request, deadline)

        run.stage = "analysis"
        analysis = await bounded(
            self.analyzer.analyze(run.transcript.text, run.url, run.metadata.title, run.metadata.description),
            self.settings.analysis_timeout, "analysis", deadline,
        )

        run.stage = "persistence"
        try:
            saved = await bounded(
                self.store.save_completed_run(run.job_id, run.url, run.metadata, run.transcript.text, analysis),
                self.settings.persistence_timeout, "persistence", deadline,
            )
        except PipelineError:
            raise
        except Exception as e:
            raise PersistenceFailed(f"Failed to save analysis: {e}") from e

        if saved:
            self.log_with_context("Job completed", extra_context={
                "job_id": run.job_id, "source": run.transcript.source, "trust_score": analysis.trust_score
            })
        else:
            self.log_with_context("Job left RUNNING before results were saved", level="WARNING",
                                  extra_context={"job_id": run.job_id})

    async def _extract_metadata(self, url: str, deadline: Deadline) -> VideoMetadata:
        try:
            return await bounded(self.metadata_worker.extract(url), self.settings.metadata_timeout,
                                 "metadata", deadline)
        except PipelineTimeout:
            if deadline.expired:
                raise
            self.log_with_context("Metadata lookup timed out, continuing without it", level="WARNING")
        except Exception as e:
            self.log_with_context(f"Metadata lookup failed, continuing without it: {e}", level="WARNING")
        return VideoMetadata(video_id=get_video_id(url))

    def _check_duration(self, metadata: VideoMetadata) -> None:
        duration = metadata.duration_seconds
        if duration is None:
            return
        if duration > self.settings.max_video_duration_seconds:
            raise ContentTooLong(
                f"Video duration ({duration // 60} minutes) exceeds the "
                f"{self.settings.max_video_duration_minutes}-minute limit"
            )

    async def _fail(self, run: PipelineRun, error: PipelineError) -> None:
        self.log_with_context(f"Job failed in {run.stage}: {error.message}", level="ERROR",
                              extra_context={"job_id": run.job_id, "kind": error.kind.value})
        await self._keep_transcript(run)
        try:
            moved = await self.store.transition(run.job_id, JobStatus.RUNNING, JobStatus.FAILED,
                                                error.to_job_message())
        except Exception as e:
            self.logger.exception(f"Could not record failure for job {run.job_id}: {e}")
            return
        if not moved:
            self.log_with_context("Job already terminal, failure not recorded", level="WARNING",
                                  extra_context={"job_id": run.job_id})

    async def _keep_transcript(self, run: PipelineRun) -> None:
        """Cache a freshly obtained transcript even though the run failed."""
        if run.transcript is None or run.transcript.source == CACHE_SOURCE:
            return
        try:
            await asyncio.wait_for(
                self.store.upsert_video(run.url, run.metadata.title, run.metadata.channel, run.transcript.text),
                timeout=self.settings.persistence_timeout,
            )
            self.log_with_context("Transcript cached after failure", extra_context={"url": run.url})
        except Exception as e:
            self.log_with_context(f"Could not cache transcript: {e}", level="WARNING",
                                  extra_context={"url": run.url})

    async def retry_analysis(self, job_id: str) -> AnalysisResult:
        """
        Re-run only the analysis stage on the cached transcript.

        Raises:
            JobNotFound: no such job
            JobBusy: the job is PENDING or RUNNING
            InvalidInput: there is no cached transcript to analyze
            PipelineError: analysis or persistence failed; the previous result is kept
        """
        view = await self.store.get_job_view(job_id)
        if view is None:
            raise JobNotFound(job_id)
        if view.job.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise JobBusy(f"Job {job_id} is {view.job.status.value}")
        if view.video is None or not view.video.transcript:
            raise InvalidInput("No transcript available for retry")

        previous = view.job.status
        if not await self.store.claim_for_retry(job_id, previous):
            raise JobBusy(f"Job {job_id} changed status during retry")

        video = view.video
        had_analysis = view.analysis is not None
        deadline = Deadline(self.settings.job_timeout_seconds)
        self.log_with_context("Retrying analysis", extra_context={"job_id": job_id})

        try:
            analysis = await bounded(
                self.analyzer.analyze(video.transcript, view.job.url, video.title),
                self.settings.analysis_timeout, "analysis", deadline,
            )
            if had_analysis:
                saved = await bounded(self.store.replace_analysis(job_id, analysis),
                                      self.settings.persistence_timeout, "persistence", deadline)
            else:
                metadata = VideoMetadata(video_id=get_video_id(view.job.url), title=video.title,
                                         channel=video.channel)
                saved = await bounded(
                    self.store.save_completed_run(job_id, view.job.url, metadata, video.transcript, analysis),
                    self.settings.persistence_timeout, "persistence", deadline,
                )
            if not saved:
                raise PersistenceFailed("Job left RUNNING before the new analysis was saved")
        except Exception as e:
            error = e if isinstance(e, PipelineError) else _wrap_unexpected("analysis", e)
            await self._restore_after_retry(job_id, had_analysis, error)
            if error is e:
                raise
            raise error from e

        self.log_with_context("Analysis retry completed", extra_context={
            "job_id": job_id, "trust_score": analysis.trust_score
        })
        return analysis

    async def _restore_after_retry(self, job_id: str, had_analysis: bool, error: PipelineError) -> None:
        if had_analysis:
            restored = await self.store.transition(job_id, JobStatus.RUNNING, JobStatus.COMPLETED)
        else:
            restored = await self.store.transition(job_id, JobStatus.RUNNING, JobStatus.FAILED,
                                                   error.to_job_message())
        self.log_with_context(f"Analysis retry failed: {error.message}", level="WARNING",
                              extra_context={"job_id": job_id, "restored": restored})
