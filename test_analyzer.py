"""
Tests for the analyzer and the OpenAI backend wrapper.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from conftest import TRANSCRIPT, VIDEO_URL, make_settings
from core.error_handling import AnalysisFailed, AnalysisFailure
from core.language import LanguageInfo
from core.prompt_templates import PromptTemplateEngine
from workers.ai_backend import QUOTA_MESSAGE, AIBackend, map_openai_error
from workers.summarizer import MAX_BULLET_POINTS, MAX_CLAIMS, MAX_SPOT_CHECKS, Analyzer

ENGLISH = LanguageInfo("English", "en", 0.7)


def payload(**overrides):
    data = {
        "oneLiner": "Sleep helps memory.",
        "bulletPoints": ["One", "Two", "Three", "Four", "Five"],
        "outline": ["Intro", "Evidence"],
        "trustScore": 72,
        "trustSignals": ["Cites studies"],
        "claims": [
            {"text": "Sleep improves recall", "confidence": 80,
             "spotChecks": [{"url": "https://example.org/a", "summary": "Study", "verdict": "supported"}]},
        ],
    }
    data.update(overrides)
    return json.dumps(data)


def api_error(cls, status, code=None):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("error", response=response, body={"code": code} if code else None)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeBackend:
    def __init__(self, content, model="gpt-4o-mini"):
        self.content = content
        self.model = model
        self.prompts = []

    async def complete_json(self, system, user):
        self.prompts.append((system, user))
        return self.content, self.model


class TestAnalyzerParse:

    @pytest.fixture
    def analyzer(self):
        return Analyzer(make_settings(), backend=FakeBackend(payload()))

    def test_valid_payload(self, analyzer):
        result = analyzer.parse(payload(), ENGLISH, "gpt-4o-mini")
        assert result.one_liner == "Sleep helps memory."
        assert result.trust_score == 72
        assert result.claims[0].spot_checks[0].verdict == "supported"
        assert result.language_code == "en"
        assert result.model == "gpt-4o-mini"

    def test_scores_are_clamped(self, analyzer):
        result = analyzer.parse(payload(trustScore=140, claims=[{"text": "x", "confidence": -3}]), ENGLISH)
        assert result.trust_score == 100
        assert result.claims[0].confidence == 0

    def test_lists_are_truncated(self, analyzer):
        checks = [{"url": f"https://example.org/{n}", "summary": "s"} for n in range(6)]
        content = payload(
            bulletPoints=[f"Point {n}" for n in range(12)],
            claims=[{"text": f"Claim {n}", "spotChecks": checks} for n in range(9)],
        )
        result = analyzer.parse(content, ENGLISH)
        assert len(result.bullet_points) == MAX_BULLET_POINTS
        assert len(result.claims) == MAX_CLAIMS
        assert len(result.claims[0].spot_checks) == MAX_SPOT_CHECKS
        assert result.claims[0].spot_checks[0].verdict == "unverified"

    def test_outline_objects_are_flattened(self, analyzer):
        content = payload(outline=[{"title": "Intro", "summary": "Why sleep matters"}, "Evidence"])
        assert analyzer.parse(content, ENGLISH).outline == ["Intro: Why sleep matters", "Evidence"]

    def test_malformed_json(self, analyzer):
        with pytest.raises(AnalysisFailed) as exc_info:
            analyzer.parse("Sure! Here is your summary", ENGLISH)
        assert exc_info.value.failure == AnalysisFailure.MALFORMED_RESPONSE

    def test_non_object_json(self, analyzer):
        with pytest.raises(AnalysisFailed) as exc_info:
            analyzer.parse("[1, 2]", ENGLISH)
        assert exc_info.value.failure == AnalysisFailure.MALFORMED_RESPONSE

    @pytest.mark.parametrize("missing", ["oneLiner", "bulletPoints", "trustScore"])
    def test_missing_required_field(self, analyzer, missing):
        data = json.loads(payload())
        del data[missing]
        with pytest.raises(AnalysisFailed) as exc_info:
            analyzer.parse(json.dumps(data), ENGLISH)
        assert exc_info.value.failure == AnalysisFailure.INCOMPLETE_RESULT
        assert missing in exc_info.value.message

    @pytest.mark.parametrize("score", [float("inf"), float("-inf"), float("nan"), "1e999"])
    def test_non_finite_trust_score_rejected(self, analyzer, score):
        with pytest.raises(AnalysisFailed) as exc_info:
            analyzer.parse(payload(trustScore=score), ENGLISH)
        assert exc_info.value.failure == AnalysisFailure.INCOMPLETE_RESULT
        assert "trustScore" in exc_info.value.message

    def test_non_finite_confidence_falls_back(self, analyzer):
        content = payload(claims=[{"text": "x", "confidence": float("inf")}])
        assert analyzer.parse(content, ENGLISH).claims[0].confidence == 50

    @pytest.mark.parametrize("one_liner", ["", "   ", "\n\t"])
    def test_blank_one_liner_rejected(self, analyzer, one_liner):
        with pytest.raises(AnalysisFailed) as exc_info:
            analyzer.parse(payload(oneLiner=one_liner), ENGLISH)
        assert exc_info.value.failure == AnalysisFailure.INCOMPLETE_RESULT
        assert "oneLiner" in exc_info.value.message

    def test_one_liner_is_trimmed(self, analyzer):
        assert analyzer.parse(payload(oneLiner="  Sleep helps memory.  "), ENGLISH).one_liner == "Sleep helps memory."

    def test_empty_bullets_rejected(self, analyzer):
        with pytest.raises(AnalysisFailed):
            analyzer.parse(payload(bulletPoints=[]), ENGLISH)


class TestAnalyzerPrompting:

    def test_english_transcript(self):
        backend = FakeBackend(payload())
        result = asyncio.run(Analyzer(make_settings(), backend=backend).analyze(TRANSCRIPT, VIDEO_URL, "Sleep"))
        system, user = backend.prompts[0]
        assert "Return JSON" in system
        assert "Video title: Sleep" in user
        assert TRANSCRIPT in user
        assert result.language == "English"

    def test_dedicated_language_template(self):
        backend = FakeBackend(payload())
        result = asyncio.run(Analyzer(make_settings(), backend=backend).analyze(
            "Hola a todos, hoy hablamos de la ciencia del sueño", VIDEO_URL))
        system, _ = backend.prompts[0]
        assert system.startswith("Eres un asistente")
        assert result.language_code == "es"

    def test_language_without_template_asks_for_that_language(self):
        backend = FakeBackend(payload())
        result = asyncio.run(Analyzer(make_settings(), backend=backend).analyze(
            "Привет всем, сегодня мы говорим о сне", VIDEO_URL))
        system, _ = backend.prompts[0]
        assert "Write every text value in Russian." in system
        assert result.language_code == "ru"

    def test_transcript_budget(self):
        backend = FakeBackend(payload())
        analyzer = Analyzer(make_settings(transcript_char_budget=100), backend=backend)
        asyncio.run(analyzer.analyze("a" * 500, VIDEO_URL))
        _, user = backend.prompts[0]
        assert "a" * 100 in user
        assert "a" * 101 not in user

    def test_keys_stay_english_across_templates(self):
        engine = PromptTemplateEngine()
        prompt = engine.render_analysis_prompt(LanguageInfo("German", "de", 0.8), "Hallo", "")
        assert "oneLiner" in prompt.user
        assert "Videotitel" not in prompt.user


class TestAIBackend:

    def client_with(self, *outcomes):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=list(outcomes))
        return client

    def test_returns_content_and_model(self):
        client = self.client_with(completion('{"ok": true}'))
        content, model = asyncio.run(AIBackend(make_settings(), client=client).complete_json("s", "u"))
        assert content == '{"ok": true}'
        assert model == "gpt-4o-mini"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_quota_falls_back_once(self):
        client = self.client_with(api_error(openai.RateLimitError, 429, "insufficient_quota"), completion("{}"))
        settings = make_settings(ai_fallback_model="gpt-3.5-turbo")
        _, model = asyncio.run(AIBackend(settings, client=client).complete_json("s", "u"))
        assert model == "gpt-3.5-turbo"
        assert client.chat.completions.create.await_count == 2

    def test_quota_on_fallback_is_reported(self):
        quota = api_error(openai.RateLimitError, 429, "insufficient_quota")
        client = self.client_with(quota, quota)
        with pytest.raises(AnalysisFailed) as exc_info:
            asyncio.run(AIBackend(make_settings(), client=client).complete_json("s", "u"))
        assert exc_info.value.failure == AnalysisFailure.QUOTA_EXCEEDED
        assert exc_info.value.message == QUOTA_MESSAGE

    def test_rate_limit_does_not_fall_back(self):
        client = self.client_with(api_error(openai.RateLimitError, 429, "rate_limit_exceeded"))
        with pytest.raises(AnalysisFailed) as exc_info:
            asyncio.run(AIBackend(make_settings(), client=client).complete_json("s", "u"))
        assert exc_info.value.failure == AnalysisFailure.RATE_LIMITED
        assert client.chat.completions.create.await_count == 1

    def test_empty_content(self):
        client = self.client_with(completion(None))
        with pytest.raises(AnalysisFailed) as exc_info:
            asyncio.run(AIBackend(make_settings(), client=client).complete_json("s", "u"))
        assert exc_info.value.failure == AnalysisFailure.MALFORMED_RESPONSE

    def test_missing_key(self):
        backend = AIBackend(make_settings(openai_api_key=None))
        assert not backend.is_configured
        with pytest.raises(AnalysisFailed) as exc_info:
            asyncio.run(backend.complete_json("s", "u"))
        assert exc_info.value.failure == AnalysisFailure.NOT_CONFIGURED

    @pytest.mark.parametrize("error, failure", [
        (api_error(openai.AuthenticationError, 401), AnalysisFailure.AUTHENTICATION),
        (api_error(openai.InternalServerError, 503), AnalysisFailure.UNAVAILABLE),
        (api_error(openai.InternalServerError, 500), AnalysisFailure.SERVER_ERROR),
        (api_error(openai.BadRequestError, 400), AnalysisFailure.UNKNOWN),
    ])
    def test_error_mapping(self, error, failure):
        assert map_openai_error(error).failure == failure
