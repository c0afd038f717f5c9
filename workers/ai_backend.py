"""
AI Backend - OpenAI access for analysis and speech-to-text.

Chat completions fall back once to a cheaper model when the primary model
reports an exhausted quota. Provider errors are mapped to AnalysisFailed with
a specific failure kind and a user-facing message.
"""

from pathlib import Path
from typing import Optional, Tuple

import openai

from config import Settings, get_settings
from core.error_handling import AcquisitionFailed, AcquisitionReason, AnalysisFailed, AnalysisFailure
from workers.base import BaseWorker

QUOTA_MESSAGE = (
    "OpenAI API quota exceeded. Please check your billing details and try again later. "
    "For more information, visit: https://platform.openai.com/docs/guides/error-codes/api-errors"
)


def is_quota_error(error: Exception) -> bool:
    return (
        isinstance(error, openai.RateLimitError)
        and getattr(error, "code", None) == "insufficient_quota"
    )


def map_openai_error(error: Exception) -> AnalysisFailed:
    """Translate an OpenAI client exception into an AnalysisFailed."""
    if isinstance(error, openai.RateLimitError):
        if is_quota_error(error):
            return AnalysisFailed(QUOTA_MESSAGE, AnalysisFailure.QUOTA_EXCEEDED)
        if getattr(error, "code", None) == "rate_limit_exceeded":
            return AnalysisFailed("OpenAI API rate limit exceeded. Please wait a moment and try again.",
                                  AnalysisFailure.RATE_LIMITED)
        return AnalysisFailed("OpenAI API rate limit exceeded. Please try again later.",
                              AnalysisFailure.RATE_LIMITED)
    if isinstance(error, openai.AuthenticationError):
        return AnalysisFailed("OpenAI API authentication failed. Please check your API key configuration.",
                              AnalysisFailure.AUTHENTICATION)
    if isinstance(error, openai.APIStatusError):
        if error.status_code == 503:
            return AnalysisFailed("OpenAI API service temporarily unavailable. Please try again later.",
                                  AnalysisFailure.UNAVAILABLE)
        if error.status_code >= 500:
            return AnalysisFailed("OpenAI API server error. Please try again later.",
                                  AnalysisFailure.SERVER_ERROR)
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return AnalysisFailed("OpenAI API service temporarily unavailable. Please try again later.",
                              AnalysisFailure.UNAVAILABLE)
    return AnalysisFailed(f"OpenAI API error: {error}", AnalysisFailure.UNKNOWN)


class AIBackend(BaseWorker):
    """Thin async wrapper around the OpenAI client."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[openai.AsyncOpenAI] = None):
        self.settings = settings or get_settings()
        super().__init__("ai_backend", log_level=self.settings.log_level.value)
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.settings.openai_api_key)

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise AnalysisFailed("OpenAI API key is not configured", AnalysisFailure.NOT_CONFIGURED)
            self._client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def complete_json(self, system: str, user: str) -> Tuple[str, str]:
        """
        Request a JSON object completion.

        Returns:
            Tuple of (raw content, model that produced it)
        """
        try:
            return await self._complete(self.settings.ai_model, system, user)
        except openai.OpenAIError as e:
            if not is_quota_error(e) or not self.settings.ai_fallback_model:
                raise map_openai_error(e) from e
            self.log_with_context(
                f"Quota exceeded on {self.settings.ai_model}, retrying with {self.settings.ai_fallback_model}",
                level="WARNING",
            )
        try:
            return await self._complete(self.settings.ai_fallback_model, system, user)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

    async def _complete(self, model: str, system: str, user: str) -> Tuple[str, str]:
        with self._execution_timer(f"Completion with {model}"):
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                temperature=self.settings.ai_temperature,
            )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AnalysisFailed("No content received from OpenAI", AnalysisFailure.MALFORMED_RESPONSE)
        return content, model

    async def transcribe_file(self, path: Path, language: Optional[str] = None) -> str:
        """Speech-to-text for one audio file."""
        try:
            with open(path, "rb") as audio_file:
                kwargs = {"model": self.settings.transcription_model, "file": audio_file,
                          "response_format": "text"}
                if language:
                    kwargs["language"] = language
                result = await self.client.audio.transcriptions.create(**kwargs)
        except AnalysisFailed as e:
            raise AcquisitionFailed(e.message, AcquisitionReason.NOT_CONFIGURED) from e
        except openai.APITimeoutError as e:
            raise AcquisitionFailed(f"Transcription of {Path(path).name} timed out",
                                    AcquisitionReason.TRANSCRIPTION_TIMEOUT) from e
        except openai.OpenAIError as e:
            raise AcquisitionFailed(f"Transcription failed: {map_openai_error(e).message}",
                                    AcquisitionReason.TRANSCRIPTION_FAILED) from e
        text = result if isinstance(result, str) else getattr(result, "text", "")
        return (text or "").strip()
