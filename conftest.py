"""
Shared fixtures and fake adapters for the test suite.

The fakes record their calls so tests can assert which pipeline tiers ran.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config import Settings, StoreBackend
from core.error_handling import AcquisitionFailed, AcquisitionReason
from core.models import AnalysisResult, Claim, SpotCheck, TranscriptRequest, TranscriptResult, VideoMetadata
from core.stores import MemoryJobStore
from workers.orchestrator import PipelineOrchestrator
from workers.transcript_chain import TranscriptChain

VIDEO_URL = "https://youtube.com/watch?v=ABC123"
VIDEO_ID = "ABC123"
TRANSCRIPT = "Today we look at how sleep affects memory. Studies show that eight hours helps recall."


def make_settings(**overrides) -> Settings:
    values = dict(
        store_backend=StoreBackend.MEMORY,
        openai_api_key="sk-test",
        host_execution_ceiling_seconds=30.0,
        timeout_buffer_seconds=5.0,
        metadata_timeout=1.0,
        caption_timeout=1.0,
        caption_retry_delay=0.0,
        remote_worker_timeout=2.0,
        local_audio_timeout=2.0,
        analysis_timeout=2.0,
        persistence_timeout=2.0,
        enrichment_timeout=0.5,
        download_retry_delay=0.0,
        worker_concurrency=2,
        queue_max_size=10,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sample_analysis(trust_score: int = 72, one_liner: str = "Sleep helps memory.") -> AnalysisResult:
    return AnalysisResult(
        one_liner=one_liner,
        bullet_points=[f"Point {n}" for n in range(1, 6)],
        outline=["Intro: why sleep matters", "Evidence: two studies"],
        trust_score=trust_score,
        trust_signals=["Cites peer-reviewed research"],
        claims=[
            Claim(
                text="Eight hours of sleep improves recall",
                confidence=80,
                spot_checks=[
                    SpotCheck(url="https://example.org/a", summary="Large cohort study", verdict="supported"),
                    SpotCheck(url="https://example.org/b", summary="Meta-analysis", verdict="supported"),
                ],
            ),
            Claim(
                text="Naps replace night sleep",
                confidence=30,
                spot_checks=[
                    SpotCheck(url="https://example.org/c", summary="No evidence", verdict="disputed"),
                    SpotCheck(url="https://example.org/d", summary="Small sample", verdict="unverified"),
                ],
            ),
        ],
        language="English",
        language_code="en",
        model="gpt-4o-mini",
    )


class FakeMetadataWorker:
    def __init__(self, metadata: Optional[VideoMetadata] = None, delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.metadata = metadata or VideoMetadata(
            video_id=VIDEO_ID, title="Sleep and memory", channel="Science Now", duration_seconds=300
        )
        self.delay = delay
        self.error = error
        self.calls: List[str] = []

    async def extract(self, url: str) -> VideoMetadata:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.metadata


class FakeStrategy:
    """Transcript strategy returning fixed text or raising a fixed error."""

    def __init__(self, name: str, text: Optional[str] = None, error: Optional[Exception] = None,
                 delay: float = 0.0, log: Optional[List[str]] = None):
        self.strategy_name = name
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: List[TranscriptRequest] = []
        self.log = log

    async def fetch(self, request: TranscriptRequest) -> TranscriptResult:
        self.calls.append(request)
        if self.log is not None:
            self.log.append(self.strategy_name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return TranscriptResult(text=self.text, source=self.strategy_name)


class FakeAnalyzer:
    def __init__(self, result: Optional[AnalysisResult] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.result = result or sample_analysis()
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def analyze(self, transcript, url, title=None, description=None) -> AnalysisResult:
        self.calls.append(transcript)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def no_captions() -> AcquisitionFailed:
    return AcquisitionFailed("No captions available for this video", AcquisitionReason.NO_CAPTIONS)


class Pipeline:
    """Orchestrator wired to fakes, with handles to each fake."""

    def __init__(self, settings: Settings, store=None, strategies=None, analyzer=None, metadata=None):
        self.settings = settings
        self.store = store or MemoryJobStore()
        self.strategies = strategies if strategies is not None else [FakeStrategy("captions", text=TRANSCRIPT)]
        self.analyzer = analyzer or FakeAnalyzer()
        self.metadata = metadata or FakeMetadataWorker()
        self.chain = TranscriptChain(self.store, self.strategies, settings)
        self.orchestrator = PipelineOrchestrator(
            self.store, self.chain, self.analyzer, metadata_worker=self.metadata, settings=settings
        )

    @property
    def acquisition_calls(self) -> int:
        return sum(len(strategy.calls) for strategy in self.strategies)

    async def submit_and_run(self, url: str = VIDEO_URL, job_id: str = VIDEO_ID):
        await self.store.reset_job_pending(job_id, url)
        return await self.orchestrator.run(job_id, url)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return MemoryJobStore()
