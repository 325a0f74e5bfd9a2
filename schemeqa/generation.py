"""Answer synthesis over retrieved context using OpenAI chat completions.

Provides:
- PdfChunkSource / SchemeInfoSource: the two kinds of context an answer can be
  grounded on (``Source`` is their union).
- refine_answer: post-processing of raw model output (markdown stripping,
  bullet normalization, emphasis of key terms, length capping).
- fallback_answer: non-generative answer built from the best context excerpt.
- AnswerSynthesizer: prompt building, a single model call, refinement and
  translation into the user's language.

The chat client and translator are injected; configuration defaults come from
schemeqa.config.settings.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from schemeqa.config import settings
from schemeqa.obs import Trace
from schemeqa.router import QuestionProfile, classify_question
from schemeqa.translation import Translator

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
FALLBACK_EXCERPT_CHARS = 500
SNIPPET_CHARS = 150

EMPHASIS_TERMS = (
    "benefit", "eligibility", "required", "document", "fee", "cost", "deadline",
    "amount", "percentage", "age", "income", "criteria", "process", "step",
    "contact", "helpline", "website", "office", "address", "phone", "email",
)
_EMPHASIS_RE = re.compile(r"\b(?:%s)s?\b" % "|".join(EMPHASIS_TERMS), re.IGNORECASE)
_BOLD_SPAN_RE = re.compile(r"(\*\*.+?\*\*)", re.DOTALL)
_HEADING_MARK_RE = re.compile(r"^[ \t]*#{1,6}[ \t]*", re.MULTILINE)
_BULLET_RE = re.compile(r"^[ \t]*(?:[-•●▪]|\*(?!\*))[ \t]+", re.MULTILINE)
_SENTENCE_SPLIT_RE = re.compile(r"((?<=[.!?])[ \t]+|\n+)")

NOT_FOUND_ANSWER = (
    "I couldn't find information about that in the available scheme documents. "
    "Please try rephrasing your question, or contact the relevant government office directly for assistance."
)
UNAVAILABLE_ANSWER = (
    "I apologize, but I'm currently unable to process your question about government schemes. "
    "Please try again later or contact the relevant government office directly for assistance."
)


@dataclass(frozen=True)
class PdfChunkSource:
    """A retrieved chunk of a scheme's PDF."""
    chunk_id: str
    scheme_id: str
    text: str
    relevance_score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchemeInfoSource:
    """Basic scheme metadata offered to the model as extra context."""
    scheme_id: str
    title: str
    category: str = ""
    description: str = ""
    relevance_score: float = 1.0

    @property
    def text(self) -> str:
        return f"Scheme Title: {self.title}\nCategory: {self.category}\nDescription: {self.description}"


Source = Union[PdfChunkSource, SchemeInfoSource]


def source_text(source: Source) -> str:
    match source:
        case PdfChunkSource(text=text):
            return text
        case SchemeInfoSource():
            return source.text
        case _:
            raise TypeError(f"Unsupported source type: {type(source).__name__}")


def source_to_dict(source: Source) -> Dict[str, Any]:
    """Public representation of a source attached to an answer."""
    match source:
        case PdfChunkSource():
            snippet = source.text[:SNIPPET_CHARS] + ("..." if len(source.text) > SNIPPET_CHARS else "")
            return {
                "type": "pdf_chunk",
                "chunkId": source.chunk_id,
                "schemeId": source.scheme_id,
                "relevanceScore": source.relevance_score,
                "snippet": snippet,
                "metadata": dict(source.metadata),
            }
        case SchemeInfoSource():
            return {
                "type": "scheme_info",
                "schemeId": source.scheme_id,
                "title": source.title,
                "category": source.category,
                "relevanceScore": source.relevance_score,
            }
        case _:
            raise TypeError(f"Unsupported source type: {type(source).__name__}")


@dataclass
class Answer:
    answer: str
    confidence: float
    sources: List[Dict[str, Any]]
    question_type: str
    language: str = "en"
    fallback: bool = False
    not_found: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "confidence": self.confidence,
            "sources": self.sources,
            "questionType": self.question_type,
            "language": self.language,
            "fallback": self.fallback,
            "notFound": self.not_found,
        }


def heuristic_confidence(context: Sequence[Source]) -> float:
    """Coarse confidence from context size; NOT a calibrated probability.

    ``0.35 + 0.3 * min(avg_len / 1000, 1) + 0.3 * min(n / 5, 1)``, capped at
    0.95. Always above the fallback confidence when context exists, and
    non-decreasing in both the number and the length of excerpts.
    """
    if not context:
        return 0.0
    avg_len = sum(len(source_text(s)) for s in context) / len(context)
    score = 0.35 + 0.3 * min(avg_len / 1000.0, 1.0) + 0.3 * min(len(context) / 5.0, 1.0)
    return round(min(MAX_CONFIDENCE, score), 2)


def _emphasize(text: str) -> str:
    # leave spans that are already bold untouched
    parts = _BOLD_SPAN_RE.split(text)
    for i, part in enumerate(parts):
        if i % 2 == 0:
            parts[i] = _EMPHASIS_RE.sub(lambda m: f"**{m.group(0)}**", part)
    return "".join(parts)


def _truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` at a sentence boundary, keeping line breaks."""
    if len(text) <= max_chars:
        return text
    # sentence, separator, sentence, separator, ...
    parts = _SENTENCE_SPLIT_RE.split(text)
    kept = parts[0] if len(parts[0]) <= max_chars else ""
    if kept:
        for i in range(1, len(parts) - 1, 2):
            candidate = kept + parts[i] + parts[i + 1]
            if len(candidate) > max_chars:
                break
            kept = candidate
        return kept.rstrip()

    # no complete sentence fits
    cut = text.rfind(" ", 0, max_chars - 3)
    if cut <= 0:
        cut = max_chars - 3
    kept = text[:cut].rstrip()
    if kept.count("**") % 2:
        idx = kept.rfind("**")
        kept = kept[:idx] + kept[idx + 2:]
    return kept + "..."


def refine_answer(raw: str, max_chars: int) -> str:
    """Clean up raw model output.

    Steps, in order: strip markdown heading and code markers, normalize bullets
    to ``- ``, collapse spaces and blank lines, emphasize key domain terms with
    ``**`` and cap the length at a sentence boundary.

    Args:
        raw: Model output.
        max_chars: Length budget for the answer.

    Returns:
        str: Refined answer text.
    """
    text = (raw or "").replace("\r\n", "\n")
    text = text.replace("```", "").replace("`", "")
    text = _HEADING_MARK_RE.sub("", text)
    text = _BULLET_RE.sub("- ", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    text = _emphasize(text)
    text = text.replace("****", "")
    return _truncate(text, max_chars)


def fallback_answer(context: Sequence[Source]) -> str:
    """Answer built from the highest-scoring document chunk, without a model.

    Scheme metadata is only used when no chunk is available.
    """
    if not context:
        return UNAVAILABLE_ANSWER
    chunks = [s for s in context if isinstance(s, PdfChunkSource)]
    best = max(chunks or context, key=lambda s: s.relevance_score)
    text = source_text(best)
    excerpt = text[:FALLBACK_EXCERPT_CHARS]
    if len(text) > FALLBACK_EXCERPT_CHARS:
        excerpt = excerpt.rstrip() + "..."
    return (
        "Based on the available information about government schemes, here's what I found:\n\n"
        f"{excerpt}\n\n"
        "Note: This is a simplified response. For more detailed information, "
        "please contact the relevant government office directly."
    )


SYSTEM_PROMPT = (
    "You are a helpful government scheme assistant for Indian citizens. Your role is to provide accurate, "
    "helpful, and easy-to-understand information about government schemes and programs. "
    "Use ONLY the provided context to answer. If the answer is not in the context, clearly state that you "
    "don't have that specific information."
)


def build_prompt(question: str, context: Sequence[Source], profile: QuestionProfile) -> str:
    """Create the user prompt: numbered context excerpts, question, type and formatting rules."""
    excerpts = "\n\n".join(f"[Source {i}]: {source_text(s)}" for i, s in enumerate(context, start=1))
    return (
        f"Context Information:\n{excerpts}\n\n"
        f"User Question: {question}\n"
        f"Question Type: {profile.type}\n\n"
        "Instructions:\n"
        "1. Respond in English.\n"
        "2. Provide accurate information based only on the context provided.\n"
        "3. Be helpful and explain things in simple terms.\n"
        f"4. {profile.guideline}\n"
        "5. Format the response with bullet points using dashes (-), one per line, and highlight important "
        "details like amounts, deadlines and requirements.\n"
        "6. Start with a brief introduction if needed, then the main points, then any additional details.\n"
        f"7. Keep the answer concise (under {profile.max_chars} characters) and focused on what was asked.\n"
    )


class AnswerSynthesizer:
    """Generate grounded answers with a fallback when the model is unavailable.

    Args:
        client: OpenAI-compatible client exposing ``chat.completions.create``;
            None always produces the fallback answer.
        translator: Translates answers into the user's language.
        model: Chat model name.
        max_tokens: Output token cap.
        temperature: Sampling temperature.
        canonical_language: Language answers are generated in.
    """

    def __init__(
        self,
        client: Any,
        translator: Optional[Translator] = None,
        model: str = settings.OPENAI_MODEL,
        max_tokens: int = settings.MAX_OUTPUT_TOKENS,
        temperature: float = settings.GENERATION_TEMPERATURE,
        canonical_language: str = settings.CANONICAL_LANGUAGE,
    ):
        self.client = client
        self.translator = translator
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.canonical_language = canonical_language

    def answer(
        self,
        query: str,
        context: Sequence[Source],
        user_language: str = "en",
        trace: Optional[Trace] = None,
    ) -> Answer:
        """Answer ``query`` from ``context``.

        Args:
            query: Question in the canonical language.
            context: Sources ordered by relevance.
            user_language: Language the final answer is translated into.
            trace: Optional trace receiving the generation record.

        Returns:
            Answer: The refined answer. ``fallback`` is set (confidence 0.3)
            when the model call failed; ``not_found`` (confidence 0) when
            there was no context to answer from.
        """
        profile = classify_question(query)
        if not context:
            return self.not_found(user_language, profile)

        sources = [source_to_dict(s) for s in context]
        prompt = build_prompt(query, context, profile)
        try:
            raw = self._generate(prompt)
        except Exception as exc:  # network, quota, malformed response: all degrade the same way
            logger.warning("Answer generation failed, using fallback answer: %s", exc)
            text = self._to_user_language(fallback_answer(context), user_language)
            return Answer(
                answer=text,
                confidence=FALLBACK_CONFIDENCE,
                sources=sources,
                question_type=profile.type,
                language=user_language,
                fallback=True,
            )

        if trace is not None:
            trace.generation("answer", prompt=prompt, output=raw, metadata={"sources": len(context)}, model=self.model)
        refined = refine_answer(raw, profile.max_chars)
        return Answer(
            answer=self._to_user_language(refined, user_language),
            confidence=heuristic_confidence(context),
            sources=sources,
            question_type=profile.type,
            language=user_language,
        )

    def not_found(self, user_language: str = "en", profile: Optional[QuestionProfile] = None) -> Answer:
        return Answer(
            answer=self._to_user_language(NOT_FOUND_ANSWER, user_language),
            confidence=0.0,
            sources=[],
            question_type=profile.type if profile else "general",
            language=user_language,
            not_found=True,
        )

    def _generate(self, prompt: str) -> str:
        if self.client is None:
            raise RuntimeError("no generation client configured")
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        content = (resp.choices[0].message.content or "").strip()
        if not content:
            raise ValueError("empty response from model")
        return content

    def _to_user_language(self, text: str, user_language: str) -> str:
        if self.translator is None or not user_language or user_language == self.canonical_language:
            return text
        return self.translator.from_canonical(text, user_language)
