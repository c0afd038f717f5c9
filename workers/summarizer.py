"""
Analyzer - summary, trust score and claim spot-checks for a transcript.

The transcript is cut to a fixed character budget, the prompt is chosen for
the detected language, and the JSON answer is validated before use: a result
without a one-liner, bullet points or trust score is a failure, never a
partial success.
"""

import json
import math
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import Settings, get_settings
from core.error_handling import AnalysisFailed, AnalysisFailure
from core.language import LanguageInfo, detect_language
from core.models import AnalysisResult, Claim, SpotCheck
from core.prompt_templates import PromptTemplateEngine
from workers.ai_backend import AIBackend
from workers.base import BaseWorker

MAX_BULLET_POINTS = 7
MAX_CLAIMS = 5
MAX_SPOT_CHECKS = 3


def _clamp_score(value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise ValueError("score must be a number")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("score must be finite")
    return max(0, min(100, round(number)))


def _as_text(item: Any) -> str:
    """Flatten list entries the model sometimes returns as objects."""
    if isinstance(item, dict):
        title = item.get("title") or item.get("section") or item.get("heading") or ""
        body = item.get("summary") or item.get("content") or item.get("points") or ""
        if isinstance(body, list):
            body = "; ".join(str(part) for part in body)
        return f"{title}: {body}".strip(": ") if title and body else str(title or body)
    return str(item).strip()


class SpotCheckPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = ""
    summary: str = ""
    verdict: str = "unverified"


class ClaimPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str
    confidence: int = 50
    spot_checks: List[SpotCheckPayload] = Field(default_factory=list, alias="spotChecks")

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            return _clamp_score(value)
        except (TypeError, ValueError):
            return 50


class AnalysisPayload(BaseModel):
    """Shape of the JSON object requested from the model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    one_liner: str = Field(alias="oneLiner", min_length=1)
    bullet_points: List[str] = Field(alias="bulletPoints", min_length=1)
    outline: List[str] = Field(default_factory=list)
    trust_score: int = Field(alias="trustScore")
    trust_signals: List[str] = Field(default_factory=list, alias="trustSignals")
    claims: List[ClaimPayload] = Field(default_factory=list)

    @field_validator("trust_score", mode="before")
    @classmethod
    def _clamp_trust(cls, value):
        return _clamp_score(value)

    @field_validator("one_liner", mode="before")
    @classmethod
    def _strip_one_liner(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("bullet_points", "outline", "trust_signals", mode="before")
    @classmethod
    def _flatten(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [text for text in (_as_text(item) for item in value) if text]


class Analyzer(BaseWorker):
    """Runs the LLM analysis for one transcript."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[AIBackend] = None,
        templates: Optional[PromptTemplateEngine] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__("analyzer", log_level=self.settings.log_level.value)
        self.backend = backend or AIBackend(self.settings)
        self.templates = templates or PromptTemplateEngine()

    async def analyze(
        self,
        transcript: str,
        url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AnalysisResult:
        language = detect_language(transcript, title, description)
        budget = self.settings.transcript_char_budget
        excerpt = transcript[:budget]
        if len(transcript) > budget:
            self.log_with_context(f"Transcript truncated from {len(transcript)} to {budget} chars",
                                  extra_context={"url": url})

        prompt = self.templates.render_analysis_prompt(language, excerpt, title or "")
        self.log_with_context("Requesting analysis", extra_context={
            "url": url, "language": language.language_code, "chars": len(excerpt)
        })
        content, model = await self.backend.complete_json(prompt.system, prompt.user)
        return self.parse(content, language, model)

    def parse(self, content: str, language: LanguageInfo, model: Optional[str] = None) -> AnalysisResult:
        """Validate raw model output into an AnalysisResult."""
        try:
            data = json.loads(content)
        except (TypeError, json.JSONDecodeError) as e:
            raise AnalysisFailed(f"Failed to parse AI response as JSON: {e}",
                                 AnalysisFailure.MALFORMED_RESPONSE) from e
        if not isinstance(data, dict):
            raise AnalysisFailed("AI response is not a JSON object", AnalysisFailure.MALFORMED_RESPONSE)

        try:
            payload = AnalysisPayload.model_validate(data)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise AnalysisFailed(
                f"Invalid analysis result: missing or invalid fields ({', '.join(fields)})",
                AnalysisFailure.INCOMPLETE_RESULT,
            ) from e

        return AnalysisResult(
            one_liner=payload.one_liner.strip(),
            bullet_points=payload.bullet_points[:MAX_BULLET_POINTS],
            outline=payload.outline,
            trust_score=payload.trust_score,
            trust_signals=payload.trust_signals,
            claims=[
                Claim(
                    text=claim.text,
                    confidence=claim.confidence,
                    spot_checks=[
                        SpotCheck(url=check.url, summary=check.summary, verdict=check.verdict)
                        for check in claim.spot_checks[:MAX_SPOT_CHECKS]
                    ],
                )
                for claim in payload.claims[:MAX_CLAIMS]
            ],
            language=language.language,
            language_code=language.language_code,
            model=model,
        )
