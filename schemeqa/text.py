"""Text normalization and script-based language detection.

This module provides:
- normalize: clean raw PDF text (line endings, smart punctuation, control
  characters, layout spacing artifacts) while keeping the line structure the
  chunker's heading detection relies on
- detect_language: Devanagari/Latin script-ratio heuristic
- count_words / ends_sentence: small helpers shared by the chunker and
  the answer refinement
"""
import re
from typing import Optional

_SMART_PUNCTUATION = {
    "\u00a0": " ",
    "\u2013": "-",
    "\u2014": "-",
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2026": "...",
}
_SMART_RE = re.compile("|".join(map(re.escape, _SMART_PUNCTUATION)))

# C0 controls except \t and \n, DEL, and anything outside the BMP
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]|[^\u0000-\uffff]")

_SPACING_FIXES = (
    (re.compile(r"([a-z])([A-Z])"), r"\1 \2"),  # camelCase joins
    (re.compile(r"([.!?])([A-Z])"), r"\1 \2"),  # missing space after sentence end
    (re.compile(r"([a-z])(\d)"), r"\1 \2"),  # letter followed by digit
    (re.compile(r"(\d)([A-Z])"), r"\1 \2"),  # digit followed by capital
)

DEVANAGARI_RE = re.compile(r"[\u0900-\u097f]")
LATIN_RE = re.compile(r"[A-Za-z]")
SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*$")

MIXED_RATIO = 0.3
SOURCE_RATIO = 0.1


def normalize(raw_text: Optional[str]) -> str:
    """Clean text extracted from a PDF.

    Args:
        raw_text: Raw extracted text, possibly None.

    Returns:
        str: Text with normalized punctuation and whitespace. Lines are trimmed
        and runs of blank lines collapse to a single blank line.
    """
    if not raw_text:
        return ""

    text = raw_text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
    text = _SMART_RE.sub(lambda m: _SMART_PUNCTUATION[m.group(0)], text)
    text = _NON_PRINTABLE_RE.sub(" ", text)

    for pattern, repl in _SPACING_FIXES:
        text = pattern.sub(repl, text)

    text = re.sub(r"[ \t]+", " ", text)
    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def detect_language(text: Optional[str], canonical: str = "en", source: str = "mr") -> str:
    """Guess the language of ``text`` from its script mix.

    Args:
        text: Text to analyze.
        canonical: Language code returned for Latin or ambiguous text.
        source: Language code returned for predominantly Devanagari text.

    Returns:
        str: ``source``, ``canonical`` or ``"mixed"`` when both scripts make
        up a substantial share of the letters.
    """
    if not text:
        return canonical
    letters = sum(1 for ch in text if not ch.isspace())
    if letters == 0:
        return canonical

    devanagari_ratio = len(DEVANAGARI_RE.findall(text)) / letters
    latin_ratio = len(LATIN_RE.findall(text)) / letters

    if devanagari_ratio > MIXED_RATIO and latin_ratio > MIXED_RATIO:
        return "mixed"
    if devanagari_ratio > SOURCE_RATIO and devanagari_ratio >= latin_ratio:
        return source
    return canonical


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


def ends_sentence(word: str) -> bool:
    """True when ``word`` closes a sentence (``done.``, ``"why?"``, ``(see above).``)."""
    return bool(SENTENCE_END_RE.search(word))
