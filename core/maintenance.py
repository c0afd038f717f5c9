"""
Operational checks for jobs that will never finish on their own.

There is no lease or heartbeat on a RUNNING job, so a crashed process leaves
it RUNNING forever. These helpers report such jobs and force them to FAILED.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List

from core.job_state import JobStatus
from core.models import JobRecord, utcnow
from core.stores import MANUAL_FAILURE_MESSAGE, JobStore

logger = logging.getLogger(__name__)


def _describe(job: JobRecord, reference: str) -> Dict[str, Any]:
    since = job.updated_at if reference == "updated" else job.created_at
    return {
        "jobId": job.job_id,
        "url": job.url,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat() + "Z",
        "updatedAt": job.updated_at.isoformat() + "Z",
        "stuckForMinutes": round((utcnow() - since).total_seconds() / 60, 1),
    }


async def stuck_jobs_report(
    store: JobStore,
    stale_running_minutes: int = 15,
    stale_pending_minutes: int = 5,
) -> Dict[str, Any]:
    """RUNNING jobs not updated and PENDING jobs not started within their thresholds."""
    now = utcnow()
    running = await store.find_stale_jobs(JobStatus.RUNNING, now - timedelta(minutes=stale_running_minutes))
    pending = await store.find_stale_jobs(JobStatus.PENDING, now - timedelta(minutes=stale_pending_minutes))
    counts = await store.count_by_status()

    if running or pending:
        logger.warning(f"Found {len(running)} stuck RUNNING and {len(pending)} stuck PENDING jobs")

    return {
        "stuckRunning": [_describe(job, "updated") for job in running],
        "stuckPending": [_describe(job, "created") for job in pending],
        "totalStuck": len(running) + len(pending),
        "counts": {status.value: counts.get(status.value, 0) for status in JobStatus},
        "thresholds": {
            "runningMinutes": stale_running_minutes,
            "pendingMinutes": stale_pending_minutes,
        },
    }


async def mark_jobs_failed(store: JobStore, job_ids: List[str], message: str = MANUAL_FAILURE_MESSAGE) -> int:
    """Force the given PENDING/RUNNING jobs to FAILED; returns how many changed."""
    if not job_ids:
        return 0
    updated = await store.mark_failed(list(job_ids), message)
    logger.info(f"Marked {updated} of {len(job_ids)} jobs as failed")
    return updated
