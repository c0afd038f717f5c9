"""
Read path for polling clients.

Composes the job, its analysis and the cached video into one dictionary in the
API's camelCase shape. Missing title/channel are looked up again from the
source URL, but that lookup is bounded and its failure never fails the read.
"""

import asyncio
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

from core.error_handling import split_job_message
from core.job_state import JobStatus
from core.models import AnalysisResult, JobView, VideoMetadata, utcnow
from core.stores import JobStore

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def elapsed_ms(created_at: datetime, now: Optional[datetime] = None) -> int:
    """Milliseconds since the job was created."""
    now = now or utcnow()
    return max(int((now - created_at).total_seconds() * 1000), 0)


def analysis_to_dict(analysis: AnalysisResult) -> Dict[str, Any]:
    return {
        "oneLiner": analysis.one_liner,
        "bulletPoints": list(analysis.bullet_points),
        "outline": list(analysis.outline),
        "trustScore": analysis.trust_score,
        "trustSignals": list(analysis.trust_signals),
        "language": analysis.language,
        "languageCode": analysis.language_code,
        "model": analysis.model,
        "claims": [
            {
                "text": claim.text,
                "confidence": claim.confidence,
                "spotChecks": [asdict(check) for check in claim.spot_checks],
            }
            for claim in analysis.claims
        ],
    }


class ResultReader:
    """Builds poll responses from the store."""

    def __init__(self, store: JobStore, metadata_worker=None, enrichment_timeout: float = 5.0):
        self.store = store
        self.metadata_worker = metadata_worker
        self.enrichment_timeout = enrichment_timeout

    async def get_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Poll view for job_id, or None if the job does not exist."""
        view = await self.store.get_job_view(job_id)
        if view is None:
            return None
        metadata = await self._video_metadata(view)
        return self.render(view, metadata)

    def render(self, view: JobView, metadata: VideoMetadata, now: Optional[datetime] = None) -> Dict[str, Any]:
        job = view.job
        kind, _ = split_job_message(job.error_message)
        result: Dict[str, Any] = {
            "jobId": job.job_id,
            "url": job.url,
            "status": job.status.value,
            "createdAt": _iso(job.created_at),
            "updatedAt": _iso(job.updated_at),
            "elapsedTime": elapsed_ms(job.created_at, now),
            "transcript": view.video.transcript if view.video else None,
            "videoMetadata": {
                "title": metadata.title,
                "channel": metadata.channel,
                "durationSeconds": metadata.duration_seconds,
            },
            "analysis": None,
            "errorMessage": None,
            "errorKind": None,
        }
        if job.status == JobStatus.COMPLETED and view.analysis is not None:
            result["analysis"] = analysis_to_dict(view.analysis)
        if job.status == JobStatus.FAILED:
            result["errorMessage"] = job.error_message
            result["errorKind"] = kind.value if kind else None
        return result

    async def _video_metadata(self, view: JobView) -> VideoMetadata:
        stored = VideoMetadata(
            title=view.video.title if view.video else None,
            channel=view.video.channel if view.video else None,
        )
        if (stored.title and stored.channel) or self.metadata_worker is None:
            return stored
        try:
            fetched = await asyncio.wait_for(self.metadata_worker.extract(view.job.url),
                                             timeout=self.enrichment_timeout)
        except Exception as e:
            logger.warning(f"Metadata enrichment failed for {view.job.job_id}: {e}")
            return stored
        return stored.merged_with(fetched)
