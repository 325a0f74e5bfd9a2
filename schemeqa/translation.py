"""Language translation through the Azure Translator v3 REST API.

Provides:
- Translator: injected-client wrapper that translates document text and
  questions into the canonical working language and answers back into the
  user's language.
- TranslationResult: outcome of a translation to the canonical language.

Translation is an enhancement: when the provider is not configured or fails,
the input text is returned unchanged and the failure is logged.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from schemeqa.config import settings
from schemeqa.text import detect_language

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES: Dict[str, str] = {
    "en": "English",
    "mr": "Marathi",
    "hi": "Hindi",
    "gu": "Gujarati",
    "bn": "Bengali",
    "ta": "Tamil",
    "te": "Telugu",
    "kn": "Kannada",
    "ml": "Malayalam",
    "pa": "Punjabi",
}


@dataclass
class TranslationResult:
    text: str
    detected_language: str
    translated: bool = False


class Translator:
    """Azure Translator client.

    Args:
        session: HTTP session used for provider calls. ``None`` disables the
            provider; every translation is then the identity.
        api_key: Azure Translator subscription key.
        region: Azure resource region.
        endpoint: Translator endpoint base URL.
        canonical_language: Working language for embeddings and generation.
        source_language: Language reported for Devanagari text by the
            heuristic detector.
        timeout: Per-request timeout in seconds.
        max_chars: Maximum characters sent in one request; longer text is
            split at paragraph boundaries.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        api_key: str = "",
        region: str = "",
        endpoint: str = settings.AZURE_TRANSLATOR_ENDPOINT,
        canonical_language: str = settings.CANONICAL_LANGUAGE,
        source_language: str = settings.SOURCE_LANGUAGE,
        timeout: float = settings.TRANSLATION_TIMEOUT_SECONDS,
        max_chars: int = settings.TRANSLATION_MAX_CHARS,
    ):
        self.session = session
        self.api_key = api_key
        self.region = region
        self.endpoint = endpoint.rstrip("/")
        self.canonical_language = canonical_language
        self.source_language = source_language
        self.timeout = timeout
        self.max_chars = max_chars
        self._calls = 0
        self._failures = 0
        self._characters = 0

    def is_available(self) -> bool:
        return self.session is not None and bool(self.api_key)

    def supported_languages(self) -> Dict[str, str]:
        return dict(SUPPORTED_LANGUAGES)

    def stats(self) -> Dict[str, object]:
        return {
            "available": self.is_available(),
            "provider": "azure" if self.is_available() else None,
            "requests": self._calls,
            "failures": self._failures,
            "charactersTranslated": self._characters,
        }

    def translate(self, text: str, source: Optional[str], target: str) -> str:
        """Translate ``text`` from ``source`` to ``target``.

        Args:
            text: Text to translate.
            source: Source language code, or None to let the provider detect it.
            target: Target language code.

        Returns:
            str: The translated text, or ``text`` unchanged when the languages
            match, the text is blank, the provider is not configured or the
            provider call fails.
        """
        if not text or not text.strip():
            return text
        if source == target:
            return text
        if not self.is_available():
            logger.debug("Translator not configured; returning text unchanged")
            return text

        try:
            parts = [self._translate_segment(seg, source, target) for seg in self._segments(text)]
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
            self._failures += 1
            logger.warning("Translation %s->%s failed, using original text: %s", source or "auto", target, exc)
            return text
        return "\n\n".join(parts)

    def detect(self, text: str) -> str:
        """Detect the language of ``text`` via the provider, else the script heuristic."""
        fallback = detect_language(text, self.canonical_language, self.source_language)
        if not text or not text.strip() or not self.is_available():
            return fallback
        try:
            resp = self.session.post(
                f"{self.endpoint}/detect",
                params={"api-version": "3.0"},
                headers=self._headers(),
                json=[{"text": text[:1000]}],
                timeout=self.timeout,
            )
            resp.raise_for_status()
            language = resp.json()[0]["language"]
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
            self._failures += 1
            logger.warning("Language detection failed, using script heuristic: %s", exc)
            return fallback
        return language or fallback

    def to_canonical(self, text: str, hint: Optional[str] = None) -> TranslationResult:
        """Translate ``text`` into the canonical language.

        Args:
            text: Document or query text.
            hint: Known source language, if any.

        Returns:
            TranslationResult: The canonical-language text and detected language.
        """
        detected = hint or detect_language(text, self.canonical_language, self.source_language)
        if detected == self.canonical_language:
            return TranslationResult(text=text, detected_language=detected)

        # Mixed text goes through provider-side detection.
        source = None if detected == "mixed" else detected
        translated = self.translate(text, source, self.canonical_language)
        return TranslationResult(text=translated, detected_language=detected, translated=translated != text)

    def from_canonical(self, text: str, target: str) -> str:
        return self.translate(text, self.canonical_language, target)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Ocp-Apim-Subscription-Key": self.api_key,
            "Content-Type": "application/json",
        }
        if self.region:
            headers["Ocp-Apim-Subscription-Region"] = self.region
        return headers

    def _translate_segment(self, segment: str, source: Optional[str], target: str) -> str:
        params = {"api-version": "3.0", "to": target}
        if source:
            params["from"] = source
        resp = self.session.post(
            f"{self.endpoint}/translate",
            params=params,
            headers=self._headers(),
            json=[{"text": segment}],
            timeout=self.timeout,
        )
        self._calls += 1
        resp.raise_for_status()
        translated = resp.json()[0]["translations"][0]["text"]
        self._characters += len(segment)
        return translated

    def _segments(self, text: str) -> List[str]:
        """Split ``text`` into request-sized segments at paragraph boundaries."""
        if len(text) <= self.max_chars:
            return [text]

        segments: List[str] = []
        current = ""
        for paragraph in re.split(r"\n\s*\n", text):
            while len(paragraph) > self.max_chars:
                # A single oversized paragraph is cut at the last space in range.
                cut = paragraph.rfind(" ", 0, self.max_chars)
                if cut <= 0:
                    cut = self.max_chars
                if current:
                    segments.append(current)
                    current = ""
                segments.append(paragraph[:cut].strip())
                paragraph = paragraph[cut:].strip()
            candidate = f"{current}\n\n{paragraph}" if current else paragraph
            if len(candidate) > self.max_chars:
                segments.append(current)
                current = paragraph
            else:
                current = candidate
        if current:
            segments.append(current)
        return [s for s in segments if s]
