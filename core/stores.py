"""
Job, Video and Result stores.

JobStore is the single source of truth for job status. Two implementations are
provided and selected through settings: MemoryJobStore (process lifetime only)
and DatabaseJobStore (SQLAlchemy async). Status changes are compare-and-set on
the current status, so a terminal state written by the global run timer can
never be overwritten by a late stage finishing afterwards.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select, update, func
from sqlalchemy.orm import selectinload

from config import Settings, StoreBackend
from core.database import Analysis, ClaimRow, DatabaseManager, Job, SpotCheckRow, Video
from core.job_state import ACTIVE_STATUSES, JobStatus, check_transition
from core.models import (
    AnalysisResult, Claim, JobRecord, JobView, SpotCheck, VideoMetadata, VideoRecord, utcnow
)

logger = logging.getLogger(__name__)

StatusSpec = Union[JobStatus, Iterable[JobStatus]]

MANUAL_FAILURE_MESSAGE = "Manually marked as failed due to being stuck"


def _as_status_set(expected: StatusSpec) -> frozenset:
    if isinstance(expected, JobStatus):
        return frozenset({expected})
    return frozenset(expected)


class JobStore(ABC):
    """Storage contract shared by the gateway, orchestrator and read path."""

    name = "abstract"

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        pass

    @abstractmethod
    async def reset_job_pending(self, job_id: str, url: str) -> JobRecord:
        """Create the job in PENDING, or move an existing terminal job back to PENDING."""

    @abstractmethod
    async def transition(
        self,
        job_id: str,
        expected: StatusSpec,
        target: JobStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Move a job to target if its current status is one of expected.

        Returns False (and changes nothing) when the job is missing or its
        status no longer matches. Raises InvalidTransition when the edge
        itself is not allowed.
        """

    @abstractmethod
    async def claim_for_retry(self, job_id: str, previous: JobStatus) -> bool:
        """
        Move a finished job from previous through PENDING to RUNNING in one step.

        No other writer observes the intermediate PENDING status. Returns
        False when the job's status is no longer previous.
        """

    @abstractmethod
    async def get_video(self, url: str) -> Optional[VideoRecord]:
        pass

    @abstractmethod
    async def upsert_video(
        self,
        url: str,
        title: Optional[str] = None,
        channel: Optional[str] = None,
        transcript: Optional[str] = None,
    ) -> VideoRecord:
        """Last-writer-wins upsert. None never erases an existing value."""

    @abstractmethod
    async def get_analysis(self, job_id: str) -> Optional[AnalysisResult]:
        pass

    async def has_analysis(self, job_id: str) -> bool:
        return await self.get_analysis(job_id) is not None

    @abstractmethod
    async def save_completed_run(
        self,
        job_id: str,
        url: str,
        metadata: VideoMetadata,
        transcript: str,
        analysis: AnalysisResult,
    ) -> bool:
        """
        Persist a finished run in one transaction: upsert the video, write the
        analysis (replacing claims wholesale) and mark RUNNING -> COMPLETED.

        Returns False without writing the analysis if the job is no longer
        RUNNING.
        """

    @abstractmethod
    async def replace_analysis(self, job_id: str, analysis: AnalysisResult) -> bool:
        """Retry path: overwrite the analysis of a RUNNING job and complete it."""

    @abstractmethod
    async def get_job_view(self, job_id: str) -> Optional[JobView]:
        pass

    @abstractmethod
    async def find_stale_jobs(self, status: JobStatus, older_than: datetime) -> List[JobRecord]:
        """RUNNING jobs are aged by updated_at, PENDING jobs by created_at."""

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        pass

    @abstractmethod
    async def mark_failed(self, job_ids: List[str], message: str = MANUAL_FAILURE_MESSAGE) -> int:
        """Force PENDING/RUNNING jobs to FAILED. Returns the number changed."""


# ========================================
# In-memory store
# ========================================

class MemoryJobStore(JobStore):
    """Dict-backed store. Lost on restart; suitable for tests and single runs."""

    name = StoreBackend.MEMORY.value

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._videos: Dict[str, VideoRecord] = {}
        self._analyses: Dict[str, AnalysisResult] = {}
        self._analysis_video: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.copy() if job else None

    async def reset_job_pending(self, job_id: str, url: str) -> JobRecord:
        async with self._lock:
            now = utcnow()
            job = self._jobs.get(job_id)
            if job is None:
                job = JobRecord(job_id=job_id, url=url, created_at=now, updated_at=now)
            else:
                check_transition(job.status, JobStatus.PENDING)
                job = job.copy(url=url, status=JobStatus.PENDING, error_message=None, updated_at=now)
            self._jobs[job_id] = job
            return job.copy()

    async def transition(self, job_id, expected, target, error_message=None) -> bool:
        expected = _as_status_set(expected)
        async with self._lock:
            return self._transition_locked(job_id, expected, target, error_message)

    async def claim_for_retry(self, job_id, previous) -> bool:
        async with self._lock:
            if not self._transition_locked(job_id, {previous}, JobStatus.PENDING, None):
                return False
            return self._transition_locked(job_id, {JobStatus.PENDING}, JobStatus.RUNNING, None)

    def _transition_locked(self, job_id, expected, target, error_message) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status not in expected:
            return False
        check_transition(job.status, target)
        self._jobs[job_id] = job.copy(status=target, error_message=error_message, updated_at=utcnow())
        return True

    async def get_video(self, url: str) -> Optional[VideoRecord]:
        video = self._videos.get(url)
        return copy.copy(video) if video else None

    async def upsert_video(self, url, title=None, channel=None, transcript=None) -> VideoRecord:
        async with self._lock:
            return copy.copy(self._upsert_video_locked(url, title, channel, transcript))

    def _upsert_video_locked(self, url, title, channel, transcript) -> VideoRecord:
        video = self._videos.get(url) or VideoRecord(url=url)
        video.title = title or video.title
        video.channel = channel or video.channel
        video.transcript = transcript or video.transcript
        video.updated_at = utcnow()
        self._videos[url] = video
        return video

    async def get_analysis(self, job_id: str) -> Optional[AnalysisResult]:
        analysis = self._analyses.get(job_id)
        return copy.deepcopy(analysis) if analysis else None

    async def save_completed_run(self, job_id, url, metadata, transcript, analysis) -> bool:
        async with self._lock:
            self._upsert_video_locked(url, metadata.title, metadata.channel, transcript)
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            self._analyses[job_id] = copy.deepcopy(analysis)
            self._analysis_video[job_id] = url
            return self._transition_locked(job_id, {JobStatus.RUNNING}, JobStatus.COMPLETED, None)

    async def replace_analysis(self, job_id, analysis) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING or job_id not in self._analyses:
                return False
            self._analyses[job_id] = copy.deepcopy(analysis)
            return self._transition_locked(job_id, {JobStatus.RUNNING}, JobStatus.COMPLETED, None)

    async def get_job_view(self, job_id: str) -> Optional[JobView]:
        job = await self.get_job(job_id)
        if job is None:
            return None
        video_url = self._analysis_video.get(job_id, job.url)
        return JobView(
            job=job,
            analysis=await self.get_analysis(job_id),
            video=await self.get_video(video_url),
        )

    async def find_stale_jobs(self, status, older_than) -> List[JobRecord]:
        def age_of(job: JobRecord) -> datetime:
            return job.updated_at if status == JobStatus.RUNNING else job.created_at

        stale = [job.copy() for job in self._jobs.values()
                 if job.status == status and age_of(job) < older_than]
        return sorted(stale, key=age_of)

    async def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for job in self._jobs.values():
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return counts

    async def mark_failed(self, job_ids, message=MANUAL_FAILURE_MESSAGE) -> int:
        affected = 0
        async with self._lock:
            for job_id in job_ids:
                if self._transition_locked(job_id, ACTIVE_STATUSES, JobStatus.FAILED, message):
                    affected += 1
        return affected


# ========================================
# Database store
# ========================================

def _job_record(row: Job) -> JobRecord:
    return JobRecord(
        job_id=row.id,
        url=row.url,
        status=JobStatus(row.status),
        error_message=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _video_record(row: Video) -> VideoRecord:
    return VideoRecord(
        url=row.url,
        title=row.title,
        channel=row.channel,
        transcript=row.transcript,
        updated_at=row.updated_at,
    )


def _analysis_result(row: Analysis) -> AnalysisResult:
    return AnalysisResult(
        one_liner=row.one_liner,
        bullet_points=list(row.bullet_points or []),
        outline=list(row.outline or []),
        trust_score=row.trust_score,
        trust_signals=list(row.trust_signals or []),
        claims=[
            Claim(
                text=claim.text,
                confidence=claim.confidence,
                spot_checks=[
                    SpotCheck(url=check.url, summary=check.summary, verdict=check.verdict)
                    for check in claim.spot_checks
                ],
            )
            for claim in row.claims
        ],
        language=row.language,
        language_code=row.language_code,
        model=row.model,
    )


def _claim_rows(claims: List[Claim]) -> List[ClaimRow]:
    return [
        ClaimRow(
            position=index,
            text=claim.text,
            confidence=claim.confidence,
            spot_checks=[
                SpotCheckRow(position=check_index, url=check.url, summary=check.summary, verdict=check.verdict)
                for check_index, check in enumerate(claim.spot_checks)
            ],
        )
        for index, claim in enumerate(claims)
    ]


def _analysis_query(job_id: str):
    return (
        select(Analysis)
        .where(Analysis.job_id == job_id)
        .options(selectinload(Analysis.claims).selectinload(ClaimRow.spot_checks))
    )


class DatabaseJobStore(JobStore):
    """SQLAlchemy-backed store; every public method runs in its own session."""

    name = StoreBackend.DATABASE.value

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def initialize(self) -> None:
        await self.db_manager.initialize()

    async def close(self) -> None:
        await self.db_manager.close()

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        async with self.db_manager.get_session() as session:
            row = await session.get(Job, job_id)
            return _job_record(row) if row else None

    async def reset_job_pending(self, job_id: str, url: str) -> JobRecord:
        async with self.db_manager.get_session() as session:
            row = await session.get(Job, job_id)
            now = utcnow()
            if row is None:
                row = Job(id=job_id, url=url, status=JobStatus.PENDING.value, created_at=now, updated_at=now)
                session.add(row)
            else:
                check_transition(JobStatus(row.status), JobStatus.PENDING)
                row.url = url
                row.status = JobStatus.PENDING.value
                row.error_message = None
                row.updated_at = now
            await session.flush()
            return _job_record(row)

    async def transition(self, job_id, expected, target, error_message=None) -> bool:
        expected = _as_status_set(expected)
        async with self.db_manager.get_session() as session:
            return await self._transition(session, job_id, expected, target, error_message)

    async def claim_for_retry(self, job_id, previous) -> bool:
        async with self.db_manager.get_session() as session:
            if not await self._transition(session, job_id, {previous}, JobStatus.PENDING, None):
                return False
            return await self._transition(session, job_id, {JobStatus.PENDING}, JobStatus.RUNNING, None)

    async def _transition(self, session, job_id, expected, target, error_message) -> bool:
        for status in expected:
            check_transition(status, target)
        result = await session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status.in_([status.value for status in expected]))
            .values(status=target.value, error_message=error_message, updated_at=utcnow())
        )
        return result.rowcount > 0

    async def get_video(self, url: str) -> Optional[VideoRecord]:
        async with self.db_manager.get_session() as session:
            row = await session.scalar(select(Video).where(Video.url == url))
            return _video_record(row) if row else None

    async def upsert_video(self, url, title=None, channel=None, transcript=None) -> VideoRecord:
        async with self.db_manager.get_session() as session:
            row = await self._upsert_video(session, url, title, channel, transcript)
            return _video_record(row)

    async def _upsert_video(self, session, url, title, channel, transcript) -> Video:
        row = await session.scalar(select(Video).where(Video.url == url))
        if row is None:
            row = Video(url=url)
            session.add(row)
        row.title = title or row.title
        row.channel = channel or row.channel
        row.transcript = transcript or row.transcript
        row.updated_at = utcnow()
        await session.flush()
        return row

    async def get_analysis(self, job_id: str) -> Optional[AnalysisResult]:
        async with self.db_manager.get_session() as session:
            row = await session.scalar(_analysis_query(job_id))
            return _analysis_result(row) if row else None

    async def has_analysis(self, job_id: str) -> bool:
        async with self.db_manager.get_session() as session:
            found = await session.scalar(select(Analysis.id).where(Analysis.job_id == job_id))
            return found is not None

    async def save_completed_run(self, job_id, url, metadata, transcript, analysis) -> bool:
        async with self.db_manager.get_session() as session:
            video = await self._upsert_video(session, url, metadata.title, metadata.channel, transcript)
            if not await self._transition(session, job_id, {JobStatus.RUNNING}, JobStatus.COMPLETED, None):
                logger.warning(f"Job {job_id} is no longer RUNNING, result not saved")
                return False
            await self._write_analysis(session, job_id, video.id, analysis)
            return True

    async def replace_analysis(self, job_id, analysis) -> bool:
        async with self.db_manager.get_session() as session:
            existing = await session.scalar(_analysis_query(job_id))
            if existing is None:
                return False
            if not await self._transition(session, job_id, {JobStatus.RUNNING}, JobStatus.COMPLETED, None):
                return False
            await self._write_analysis(session, job_id, existing.video_id, analysis, existing)
            return True

    async def _write_analysis(self, session, job_id, video_id, analysis, row=None) -> None:
        if row is None:
            row = await session.scalar(_analysis_query(job_id))
        if row is None:
            row = Analysis(job_id=job_id, claims=[])
            session.add(row)
        row.video_id = video_id
        row.one_liner = analysis.one_liner
        row.bullet_points = list(analysis.bullet_points)
        row.outline = list(analysis.outline)
        row.trust_score = analysis.trust_score
        row.trust_signals = list(analysis.trust_signals)
        row.language = analysis.language
        row.language_code = analysis.language_code
        row.model = analysis.model
        row.updated_at = utcnow()
        # delete-orphan removes the previous claims and their spot checks
        row.claims.clear()
        await session.flush()
        row.claims.extend(_claim_rows(analysis.claims))
        await session.flush()

    async def get_job_view(self, job_id: str) -> Optional[JobView]:
        async with self.db_manager.get_session() as session:
            job = await session.get(Job, job_id)
            if job is None:
                return None
            analysis = await session.scalar(
                _analysis_query(job_id).options(selectinload(Analysis.video))
            )
            if analysis is not None:
                video = analysis.video
            else:
                video = await session.scalar(select(Video).where(Video.url == job.url))
            return JobView(
                job=_job_record(job),
                analysis=_analysis_result(analysis) if analysis else None,
                video=_video_record(video) if video else None,
            )

    async def find_stale_jobs(self, status, older_than) -> List[JobRecord]:
        column = Job.updated_at if status == JobStatus.RUNNING else Job.created_at
        async with self.db_manager.get_session() as session:
            rows = await session.scalars(
                select(Job).where(Job.status == status.value, column < older_than).order_by(column)
            )
            return [_job_record(row) for row in rows]

    async def count_by_status(self) -> Dict[str, int]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(Job.status, func.count(Job.id)).group_by(Job.status))
            return {status: count for status, count in result.all()}

    async def mark_failed(self, job_ids, message=MANUAL_FAILURE_MESSAGE) -> int:
        if not job_ids:
            return 0
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id.in_(list(job_ids)),
                       Job.status.in_([status.value for status in ACTIVE_STATUSES]))
                .values(status=JobStatus.FAILED.value, error_message=message, updated_at=utcnow())
            )
            return result.rowcount


def create_store(settings: Settings) -> JobStore:
    """Build the store selected by settings.store_backend."""
    if settings.store_backend == StoreBackend.MEMORY:
        return MemoryJobStore()
    return DatabaseJobStore(DatabaseManager(settings.database_url))
