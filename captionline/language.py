"""
captionline.language - Language names and lightweight source detection.

Detection is a character-class heuristic over transcript text; it only needs
to pick among the configured catalog languages, not identify arbitrary text.
"""

from __future__ import annotations

import re

LANGUAGE_NAMES: dict[str, str] = {
    "ar": "Arabic",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "it": "Italian",
    "pt": "Portuguese",
}

_ARABIC = re.compile(r"[؀-ۿ]")
_FRENCH = re.compile(r"[âçèêëîïôûùüÿæœ]", re.IGNORECASE)
_SPANISH = re.compile(r"[ñ¿¡]", re.IGNORECASE)
_ITALIAN = re.compile(r"\b(?:il|della|perché|però|anche|sono)\b|[ìò]", re.IGNORECASE)
_SPANISH_WORDS = re.compile(r"\b(?:el|los|las|que|está|pero|también)\b", re.IGNORECASE)
_LATIN = re.compile(r"[A-Za-z]")


def language_name(code: str) -> str:
    """Return a human-readable name for a language code."""
    return LANGUAGE_NAMES.get(code.lower(), code)


def detect_text_language(text: str) -> str | None:
    """Guess the language of ``text``.

    Returns a language code, or None when the text gives no signal.
    """
    if not text.strip():
        return None
    if _ARABIC.search(text):
        return "ar"
    if _SPANISH.search(text):
        return "es"
    if _FRENCH.search(text):
        return "fr"
    if _ITALIAN.search(text):
        return "it"
    if _SPANISH_WORDS.search(text):
        return "es"
    if _LATIN.search(text):
        return "en"
    return None


def detect_source_language(text: str, default: str = "en") -> str:
    """Detect the spoken language of a transcript, falling back to ``default``."""
    return detect_text_language(text) or default
