"""
Prompt templates for transcript analysis.

Templates are Jinja2 strings keyed by language name. Languages without a
dedicated template use the English one plus an explicit instruction to answer
in the detected language.
"""

from dataclasses import dataclass
from typing import Any, Dict

import jinja2
from jinja2 import Environment

from core.language import LanguageInfo

JSON_KEYS = (
    "oneLiner, bulletPoints (5-7), outline (sections), trustScore (0-100), "
    "trustSignals (array), claims (2-5, each {text, confidence 0-100, "
    "spotChecks: 2-3 items {url, summary, verdict}})"
)

LANGUAGE_TEMPLATES: Dict[str, Dict[str, str]] = {
    "English": {
        "system": (
            "You are an assistant that summarizes YouTube videos and evaluates "
            "trustworthiness. Return JSON. Avoid markdown."
            "{% if respond_in %} Write every text value in {{ respond_in }}.{% endif %}"
        ),
        "user": (
            "{% if title %}Video title: {{ title }}\n\n{% endif %}"
            "Transcript:\n{{ transcript }}\n\n"
            "Return a JSON with keys: {{ keys }}. Consider web spot-checks using "
            "general knowledge, include plausible URLs to reputable sources if unsure."
        ),
    },
    "Spanish": {
        "system": "Eres un asistente que resume videos de YouTube y evalúa la confiabilidad. Devuelve JSON. Evita markdown.",
        "user": (
            "{% if title %}Título del video: {{ title }}\n\n{% endif %}"
            "Transcripción:\n{{ transcript }}\n\n"
            "Devuelve un JSON con claves: {{ keys }}. Considera verificaciones web usando "
            "conocimiento general, incluye URLs plausibles a fuentes confiables si no estás seguro."
        ),
    },
    "French": {
        "system": "Vous êtes un assistant qui résume les vidéos YouTube et évalue la fiabilité. Retournez JSON. Évitez markdown.",
        "user": (
            "{% if title %}Titre de la vidéo: {{ title }}\n\n{% endif %}"
            "Transcription:\n{{ transcript }}\n\n"
            "Retournez un JSON avec les clés: {{ keys }}. Considérez les vérifications web en "
            "utilisant les connaissances générales, incluez des URLs plausibles vers des sources "
            "réputées si vous n'êtes pas sûr."
        ),
    },
    "German": {
        "system": (
            "Sie sind ein Assistent, der YouTube-Videos zusammenfasst und die Vertrauenswürdigkeit "
            "bewertet. Geben Sie JSON zurück. Vermeiden Sie Markdown."
        ),
        "user": (
            "{% if title %}Videotitel: {{ title }}\n\n{% endif %}"
            "Transkript:\n{{ transcript }}\n\n"
            "Geben Sie ein JSON mit Schlüsseln zurück: {{ keys }}. Berücksichtigen Sie "
            "Web-Überprüfungen mit allgemeinem Wissen, fügen Sie plausible URLs zu seriösen "
            "Quellen hinzu, wenn Sie unsicher sind."
        ),
    },
    "Chinese": {
        "system": "你是一个助手，负责总结YouTube视频并评估可信度。返回JSON格式。避免使用markdown。",
        "user": (
            "{% if title %}视频标题: {{ title }}\n\n{% endif %}"
            "转录文本:\n{{ transcript }}\n\n"
            "返回一个JSON，包含以下键: {{ keys }}。考虑使用一般知识进行网络验证，"
            "如果不确定，请包含指向可靠来源的合理URL。"
        ),
    },
    "Japanese": {
        "system": "あなたはYouTube動画を要約し、信頼性を評価するアシスタントです。JSONを返してください。Markdownは避けてください。",
        "user": (
            "{% if title %}動画タイトル: {{ title }}\n\n{% endif %}"
            "転写:\n{{ transcript }}\n\n"
            "以下のキーを持つJSONを返してください: {{ keys }}。一般的な知識を使用したウェブ検証を考慮し、"
            "不明な場合は信頼できるソースへの妥当なURLを含めてください。"
        ),
    },
    "Korean": {
        "system": "당신은 YouTube 동영상을 요약하고 신뢰성을 평가하는 어시스턴트입니다. JSON을 반환하세요. Markdown을 피하세요.",
        "user": (
            "{% if title %}동영상 제목: {{ title }}\n\n{% endif %}"
            "전사:\n{{ transcript }}\n\n"
            "다음 키를 가진 JSON을 반환하세요: {{ keys }}. 일반 지식을 사용한 웹 검증을 고려하고, "
            "확실하지 않은 경우 신뢰할 수 있는 소스에 대한 합리적인 URL을 포함하세요."
        ),
    },
    "Vietnamese": {
        "system": "Bạn là một trợ lý tóm tắt video YouTube và đánh giá độ tin cậy. Trả về JSON. Tránh markdown.",
        "user": (
            "{% if title %}Tiêu đề video: {{ title }}\n\n{% endif %}"
            "Bản ghi:\n{{ transcript }}\n\n"
            "Trả về JSON với các khóa: {{ keys }}. Xem xét việc kiểm tra web bằng kiến thức chung, "
            "bao gồm các URL hợp lý đến các nguồn đáng tin cậy nếu không chắc chắn."
        ),
    },
}


@dataclass
class RenderedPrompt:
    system: str
    user: str


class PromptTemplateEngine:
    """
    Renders the analysis prompts for a detected language.

    JSON key names stay in English in every template so that the response
    parser does not depend on the prompt language.
    """

    def __init__(self):
        self.env = Environment(
            autoescape=False,  # We're not generating HTML
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined  # Fail on undefined variables
        )

    def render(self, template_str: str, variables: Dict[str, Any]) -> str:
        try:
            return self.env.from_string(template_str).render(**variables)
        except jinja2.UndefinedError as e:
            raise ValueError(f"Missing required template variable: {e}")
        except jinja2.TemplateSyntaxError as e:
            raise ValueError(f"Template syntax error: {e}")

    def has_template(self, language: str) -> bool:
        return language in LANGUAGE_TEMPLATES

    def render_analysis_prompt(
        self,
        language: LanguageInfo,
        transcript: str,
        title: str = "",
    ) -> RenderedPrompt:
        """Build the system/user prompt pair for one analysis call."""
        if self.has_template(language.language):
            templates = LANGUAGE_TEMPLATES[language.language]
            respond_in = ""
        else:
            templates = LANGUAGE_TEMPLATES["English"]
            respond_in = language.language

        variables = {
            "transcript": transcript,
            "title": title or "",
            "keys": JSON_KEYS,
            "respond_in": respond_in,
        }
        return RenderedPrompt(
            system=self.render(templates["system"], variables),
            user=self.render(templates["user"], variables),
        )

