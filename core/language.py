"""
Heuristic language detection for transcripts.

A fixed script/diacritic table is checked in order; the first match wins.
Nothing matching means English at low confidence.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

TRANSCRIPT_SAMPLE_CHARS = 5000


@dataclass(frozen=True)
class LanguageInfo:
    language: str
    language_code: str
    confidence: float


DEFAULT_LANGUAGE = LanguageInfo("English", "en", 0.7)
FALLBACK_LANGUAGE = LanguageInfo("English", "en", 0.5)

# Order matters: Vietnamese diacritics overlap with several Latin languages,
# and the accented Latin classes overlap with each other.
LANGUAGE_PATTERNS = [
    (re.compile(r'[ạảãâầấậẩẫăằắặẳẵệểễịỉĩọỏõôồốộổỗơờớợởỡụủũưừứựửữỵỷỹđ]', re.IGNORECASE),
     LanguageInfo("Vietnamese", "vi", 0.9)),
    (re.compile(r'[\u4e00-\u9fff]'), LanguageInfo("Chinese", "zh", 0.9)),
    (re.compile(r'[\u3040-\u309f\u30a0-\u30ff]'), LanguageInfo("Japanese", "ja", 0.9)),
    (re.compile(r'[\uac00-\ud7af]'), LanguageInfo("Korean", "ko", 0.9)),
    (re.compile(r'[\u0600-\u06ff]'), LanguageInfo("Arabic", "ar", 0.9)),
    (re.compile(r'[\u0900-\u097f]'), LanguageInfo("Hindi", "hi", 0.9)),
    (re.compile(r'[а-яё]', re.IGNORECASE), LanguageInfo("Russian", "ru", 0.9)),
    (re.compile(r'[ñáéíóúü]', re.IGNORECASE), LanguageInfo("Spanish", "es", 0.8)),
    (re.compile(r'[àâäéèêëïîôöùûüÿç]', re.IGNORECASE), LanguageInfo("French", "fr", 0.8)),
    (re.compile(r'[äöüß]', re.IGNORECASE), LanguageInfo("German", "de", 0.8)),
    (re.compile(r'[àèéìíîòóù]', re.IGNORECASE), LanguageInfo("Italian", "it", 0.8)),
    (re.compile(r'[ãõç]', re.IGNORECASE), LanguageInfo("Portuguese", "pt", 0.8)),
]


def detect_language(
    text: Optional[str],
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> LanguageInfo:
    """
    Detect the language of a transcript plus its video title and description.

    Only the first few thousand transcript characters are inspected.
    """
    try:
        sample = (text or "")[:TRANSCRIPT_SAMPLE_CHARS]
        combined = " ".join(part for part in (sample, title, description) if part)
        for pattern, info in LANGUAGE_PATTERNS:
            if pattern.search(combined):
                return info
        return DEFAULT_LANGUAGE
    except Exception as e:
        logger.error(f"Language detection failed: {e}")
        return FALLBACK_LANGUAGE
