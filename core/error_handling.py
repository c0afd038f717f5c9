"""
Error taxonomy for the analysis pipeline.

Every failure that can reach a job record is a PipelineError subclass carrying
an explicit ErrorKind. The stored job message is "<kind>: <message>" so that
clients can branch on the leading token instead of matching free text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Top-level failure categories surfaced to polling clients."""
    INVALID_INPUT = "invalid_input"
    CONTENT_TOO_LONG = "content_too_long"
    ACQUISITION_FAILED = "acquisition_failed"
    ANALYSIS_FAILED = "analysis_failed"
    TIMEOUT = "timeout"
    PERSISTENCE_FAILED = "persistence_failed"


class AcquisitionReason(Enum):
    """Why a transcript tier gave up."""
    NO_CAPTIONS = "no_captions"
    WORKER_UNAVAILABLE = "worker_unavailable"
    WORKER_FAILED = "worker_failed"
    DOWNLOAD_FAILED = "download_failed"
    DOWNLOAD_TOO_LARGE = "download_too_large"
    TRANSCRIPTION_FAILED = "transcription_failed"
    TRANSCRIPTION_TIMEOUT = "transcription_timeout"
    NOT_CONFIGURED = "not_configured"


class AnalysisFailure(Enum):
    """Sub-cases of a failed LLM analysis."""
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVER_ERROR = "server_error"
    UNAVAILABLE = "unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    INCOMPLETE_RESULT = "incomplete_result"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """Base class for all failures recorded against a job."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_job_message(self) -> str:
        return f"{self.kind.value}: {self.message}"


class InvalidInput(PipelineError):
    kind = ErrorKind.INVALID_INPUT


class ContentTooLong(PipelineError):
    kind = ErrorKind.CONTENT_TOO_LONG


class AcquisitionFailed(PipelineError):
    """A transcript tier (or the whole chain) failed."""

    kind = ErrorKind.ACQUISITION_FAILED

    def __init__(self, message: str, reason: AcquisitionReason):
        super().__init__(message)
        self.reason = reason

    def to_job_message(self) -> str:
        return f"{self.kind.value}: [{self.reason.value}] {self.message}"


class AnalysisFailed(PipelineError):
    kind = ErrorKind.ANALYSIS_FAILED

    def __init__(self, message: str, failure: AnalysisFailure = AnalysisFailure.UNKNOWN):
        super().__init__(message)
        self.failure = failure


class PipelineTimeout(PipelineError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class PersistenceFailed(PipelineError):
    kind = ErrorKind.PERSISTENCE_FAILED


class InvalidTransition(Exception):
    """Raised when a job status change is not allowed by the state machine."""

    def __init__(self, current, target):
        super().__init__(f"Illegal job transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def split_job_message(message: Optional[str]):
    """Split a stored "<kind>: <text>" message into (ErrorKind | None, text)."""
    if not message:
        return None, message
    head, sep, rest = message.partition(": ")
    if sep:
        for kind in ErrorKind:
            if kind.value == head:
                return kind, rest
    return None, message


class JobNotFound(LookupError):
    """No job exists with the requested identifier."""


class JobBusy(Exception):
    """The job is PENDING or RUNNING and cannot be changed right now."""
