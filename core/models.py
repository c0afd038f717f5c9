"""
Plain data records passed between the pipeline, the stores and the API.

These are storage-agnostic: the database store maps them to SQLAlchemy rows,
the memory store keeps them as-is.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional

from core.job_state import JobStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class VideoMetadata:
    """Best-effort description of a source video. Every field may be missing."""
    video_id: Optional[str] = None
    title: Optional[str] = None
    channel: Optional[str] = None
    duration_seconds: Optional[int] = None
    description: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any([self.title, self.channel, self.duration_seconds, self.description])

    def merged_with(self, other: "VideoMetadata") -> "VideoMetadata":
        """Fill missing fields from another metadata record."""
        return VideoMetadata(
            video_id=self.video_id or other.video_id,
            title=self.title or other.title,
            channel=self.channel or other.channel,
            duration_seconds=self.duration_seconds if self.duration_seconds is not None else other.duration_seconds,
            description=self.description or other.description,
        )


@dataclass
class TranscriptResult:
    text: str
    source: str
    language: Optional[str] = None


@dataclass
class SpotCheck:
    url: str
    summary: str
    verdict: str


@dataclass
class Claim:
    text: str
    confidence: int
    spot_checks: List[SpotCheck] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Structured output of the LLM analysis for one transcript."""
    one_liner: str
    bullet_points: List[str]
    outline: List[str]
    trust_score: int
    trust_signals: List[str]
    claims: List[Claim]
    language: str = "English"
    language_code: str = "en"
    model: Optional[str] = None


@dataclass
class JobRecord:
    job_id: str
    url: str
    status: JobStatus = JobStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self, **changes) -> "JobRecord":
        return replace(self, **changes)


@dataclass
class VideoRecord:
    """Cached per-URL video row shared by every job for that URL."""
    url: str
    title: Optional[str] = None
    channel: Optional[str] = None
    transcript: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class JobView:
    """Everything the poll endpoint needs about one job."""
    job: JobRecord
    analysis: Optional[AnalysisResult] = None
    video: Optional[VideoRecord] = None


@dataclass
class TranscriptRequest:
    """Input handed to every transcript strategy."""
    url: str
    video_id: Optional[str] = None
    metadata: VideoMetadata = field(default_factory=VideoMetadata)
    language_code: str = "en"
