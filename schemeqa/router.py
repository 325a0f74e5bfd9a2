"""Heuristic question classification for answer styling.

Defines:
- QuestionType: Literal type alias of the supported question types.
- QuestionProfile: Dataclass carrying the chosen type, rationale, answer length
  budget and the response guideline given to the model.
- classify_question: Keyword classifier producing a QuestionProfile.

The type selects how the answer is written (what to focus on) and how long it
may be: narrow factual asks get short answers, overviews get longer ones.
"""
from dataclasses import dataclass
from typing import Dict, Literal, Tuple

QuestionType = Literal[
    "benefits", "eligibility", "application", "documents", "fees", "contact", "timeline", "general"
]


@dataclass
class QuestionProfile:
    """Classification result for one question.

    Attributes:
        type: Coarse question type.
        reason: The keyword that triggered the type.
        max_chars: Answer length budget in characters.
        guideline: Response-style instruction for the model.
    """
    type: QuestionType
    reason: str
    max_chars: int
    guideline: str


MAX_ANSWER_CHARS: Dict[str, int] = {
    "benefits": 800,
    "eligibility": 600,
    "application": 1000,
    "documents": 500,
    "fees": 300,
    "contact": 400,
    "timeline": 400,
    "general": 1200,
}

GUIDELINES: Dict[str, str] = {
    "benefits": "Focus specifically on the benefits, advantages, and what users will receive from the scheme. "
    "List them clearly and concisely.",
    "eligibility": "Focus on who can apply, age requirements, income criteria, and other eligibility conditions. "
    "Be specific about requirements.",
    "application": "Focus on the step-by-step application process, where to apply, and how to apply. "
    "Include any online/offline options.",
    "documents": "Focus on the specific documents required for application. "
    "List them clearly and mention any format requirements.",
    "fees": "Focus on application fees, processing charges, and any other costs involved. "
    "Mention if the scheme is free.",
    "contact": "Focus on contact information, helpline numbers, office addresses, and where to get help.",
    "timeline": "Focus on important dates, deadlines, processing time, and duration of the scheme.",
    "general": "Provide a comprehensive overview of the scheme, including its purpose, key features, "
    "and main benefits.",
}

# Checked in order; the first matching keyword wins.
TYPE_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("benefits", ("benefit", "advantage", "what do i get")),
    ("eligibility", ("eligib", "who can apply", "qualif")),
    ("application", ("how to apply", "application process", "apply")),
    ("documents", ("document", "required", "need")),
    ("fees", ("fee", "cost", "charge")),
    ("contact", ("contact", "help", "support")),
    ("timeline", ("deadline", "last date", "when")),
)


def _profile(qtype: str, reason: str) -> QuestionProfile:
    return QuestionProfile(type=qtype, reason=reason, max_chars=MAX_ANSWER_CHARS[qtype], guideline=GUIDELINES[qtype])


def classify_question(question: str) -> QuestionProfile:
    """Classify a question by keyword matching.

    Args:
        question: The (canonical-language) question text.

    Returns:
        QuestionProfile: Type, matched keyword, length budget and guideline.
        Questions matching no keyword are ``general``.
    """
    ql = (question or "").strip().lower()
    for qtype, keywords in TYPE_KEYWORDS:
        for kw in keywords:
            if kw in ql:
                return _profile(qtype, f"matched '{kw}'")
    return _profile("general", "default")
