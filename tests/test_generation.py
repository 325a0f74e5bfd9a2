"""Tests for question routing, answer refinement and answer synthesis."""
from unittest.mock import MagicMock

import pytest

from schemeqa.generation import (
    FALLBACK_CONFIDENCE,
    NOT_FOUND_ANSWER,
    AnswerSynthesizer,
    PdfChunkSource,
    SchemeInfoSource,
    build_prompt,
    fallback_answer,
    heuristic_confidence,
    refine_answer,
    source_text,
    source_to_dict,
)
from schemeqa.router import MAX_ANSWER_CHARS, classify_question
from schemeqa.translation import Translator

from .conftest import FakeOpenAI


def _chunk(text: str, score: float = 0.8, chunk_id: str = "pm_chunk_0") -> PdfChunkSource:
    return PdfChunkSource(chunk_id=chunk_id, scheme_id="pm", text=text, relevance_score=score,
                          metadata={"section": "Benefits"})


@pytest.fixture
def context():
    return [
        _chunk("Each selected student receives an annual scholarship amount of 50000 rupees.", 0.82),
        SchemeInfoSource(scheme_id="pm", title="State Scholarship", category="Education", description="Support"),
    ]


class TestClassifyQuestion:
    @pytest.mark.parametrize(
        "question,expected",
        [
            ("What are the benefits of this scheme?", "benefits"),
            ("Who can apply for the scholarship?", "eligibility"),
            ("Am I eligible?", "eligibility"),
            ("How to apply online?", "application"),
            ("Which documents are needed?", "documents"),
            ("Is there any fee?", "fees"),
            ("Whom do I contact for help?", "contact"),
            ("When is the last date?", "timeline"),
            ("Tell me about the scheme", "general"),
            ("", "general"),
        ],
    )
    def test_types(self, question, expected):
        assert classify_question(question).type == expected

    def test_profile_carries_budget_and_guideline(self):
        profile = classify_question("How do I apply for it?")
        assert profile.type == "application"
        assert profile.max_chars == MAX_ANSWER_CHARS["application"]
        assert "application process" in profile.guideline
        assert profile.reason == "matched 'apply'"
        assert classify_question("What is the application fee?").type == "fees"


class TestRefineAnswer:
    def test_strips_markdown_and_normalizes_bullets(self):
        raw = "## Benefits\n\n\n* You get money\n• A waiver\n```\ncode\n```"
        refined = refine_answer(raw, 1000)

        assert "#" not in refined
        assert "`" not in refined
        assert "- You get money" in refined
        assert "- A waiver" in refined
        assert "\n\n\n" not in refined

    def test_emphasizes_key_terms_once(self):
        refined = refine_answer("**Eligibility** depends on income and age.", 1000)
        assert refined == "**Eligibility** depends on **income** and **age**."
        assert "****" not in refined

    def test_emphasis_matches_plurals(self):
        assert "**documents**" in refine_answer("Upload the documents.", 1000)

    def test_truncates_at_sentence_boundary(self):
        raw = " ".join(f"Sentence number {i} is here." for i in range(40))
        refined = refine_answer(raw, 100)
        assert len(refined) <= 100
        assert refined.endswith(".")

    def test_truncation_keeps_bullet_lines(self):
        raw = "- First rule applies.\n- Second rule applies.\n- Third rule applies.\n" + "- Filler rule applies.\n" * 40
        refined = refine_answer(raw, 300)

        assert len(refined) <= 300
        lines = refined.splitlines()
        assert lines[0] == "- First rule applies."
        assert lines[1] == "- Second rule applies."
        assert all(line.startswith("- ") for line in lines)
        assert "\n- " in refined

    def test_truncation_keeps_paragraph_breaks(self):
        raw = "Intro sentence here.\n\n" + "Detail sentence follows. " * 30
        refined = refine_answer(raw, 120)
        assert refined.startswith("Intro sentence here.\n\nDetail sentence follows.")
        assert len(refined) <= 120

    def test_truncates_long_sentence_with_ellipsis(self):
        refined = refine_answer("word " * 100, 50)
        assert len(refined) <= 50
        assert refined.endswith("...")


class TestSources:
    def test_source_text_and_dict(self, context):
        chunk, info = context
        assert source_text(chunk) == chunk.text
        assert "Scheme Title: State Scholarship" in source_text(info)

        as_dict = source_to_dict(chunk)
        assert as_dict["type"] == "pdf_chunk"
        assert as_dict["chunkId"] == "pm_chunk_0"
        assert as_dict["metadata"]["section"] == "Benefits"
        assert source_to_dict(info)["type"] == "scheme_info"

    def test_snippet_is_capped(self):
        as_dict = source_to_dict(_chunk("x" * 400))
        assert len(as_dict["snippet"]) == 153
        assert as_dict["snippet"].endswith("...")

    def test_unknown_source_type(self):
        with pytest.raises(TypeError):
            source_to_dict({"text": "plain dict"})

    def test_prompt_numbers_sources(self, context):
        prompt = build_prompt("What are the benefits?", context, classify_question("benefits"))
        assert "[Source 1]: Each selected student" in prompt
        assert "[Source 2]: Scheme Title: State Scholarship" in prompt
        assert "Question Type: benefits" in prompt


class TestConfidence:
    def test_empty_context(self):
        assert heuristic_confidence([]) == 0.0

    def test_above_fallback_and_capped(self):
        short = heuristic_confidence([_chunk("short text")])
        long_many = heuristic_confidence([_chunk("x" * 2000, chunk_id=f"c{i}") for i in range(10)])
        assert FALLBACK_CONFIDENCE < short < long_many
        assert long_many == 0.95

    def test_monotonic_in_count(self):
        one = heuristic_confidence([_chunk("a" * 300)])
        three = heuristic_confidence([_chunk("a" * 300, chunk_id=f"c{i}") for i in range(3)])
        assert three > one


class TestFallbackAnswer:
    def test_uses_highest_scoring_excerpt(self):
        answer = fallback_answer([_chunk("low relevance", 0.4), _chunk("high relevance", 0.9, "c1")])
        assert "high relevance" in answer
        assert "low relevance" not in answer

    def test_short_excerpt_has_no_ellipsis(self):
        answer = fallback_answer([_chunk("Residents of the state can apply.", 0.9)])
        assert "Residents of the state can apply.\n\n" in answer
        assert "..." not in answer

    def test_long_excerpt_is_cut_with_ellipsis(self):
        answer = fallback_answer([_chunk("word " * 200, 0.9)])
        assert "word..." in answer

    def test_no_context(self):
        assert "unable to process" in fallback_answer([])


class TestAnswerSynthesizer:
    def test_generates_refined_answer(self, context):
        fake = FakeOpenAI()
        synthesizer = AnswerSynthesizer(fake, model="gpt-4o-mini", max_tokens=300, temperature=0.2)

        answer = synthesizer.answer("Who is eligible?", context)

        assert not answer.fallback
        assert answer.question_type == "eligibility"
        assert answer.confidence == heuristic_confidence(context)
        assert answer.confidence > FALLBACK_CONFIDENCE
        assert "**income**" in answer.answer
        assert answer.sources[0]["type"] == "pdf_chunk"
        call = fake.completions.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["messages"][0]["role"] == "system"
        assert "[Source 1]" in call["messages"][1]["content"]

    def test_model_failure_returns_fallback(self, context):
        fake = FakeOpenAI()
        fake.completions.error = RuntimeError("quota exceeded")

        answer = AnswerSynthesizer(fake).answer("What are the benefits?", context)

        assert answer.fallback
        assert answer.confidence == FALLBACK_CONFIDENCE
        assert "50000 rupees" in answer.answer
        assert len(answer.sources) == 2

    def test_empty_model_output_returns_fallback(self, context):
        fake = FakeOpenAI()
        fake.completions.reply = "   "
        assert AnswerSynthesizer(fake).answer("What are the benefits?", context).fallback

    def test_no_client_returns_fallback(self, context):
        assert AnswerSynthesizer(None).answer("What are the benefits?", context).fallback

    def test_no_context_is_not_found_without_model_call(self):
        fake = FakeOpenAI()

        answer = AnswerSynthesizer(fake).answer("What is the capital of France?", [])

        assert answer.not_found
        assert answer.confidence == 0.0
        assert answer.sources == []
        assert answer.answer == NOT_FOUND_ANSWER
        assert fake.completions.calls == []

    def test_translates_into_user_language(self, context):
        translator = MagicMock(spec=Translator)
        translator.from_canonical.return_value = "उत्तर"

        answer = AnswerSynthesizer(FakeOpenAI(), translator=translator).answer("Who is eligible?", context, "mr")

        assert answer.answer == "उत्तर"
        assert answer.language == "mr"
        assert translator.from_canonical.call_args.args[1] == "mr"

    def test_trace_receives_generation(self, context):
        trace = MagicMock()
        AnswerSynthesizer(FakeOpenAI(), model="gpt-4o-mini").answer("Who is eligible?", context, trace=trace)
        assert trace.generation.call_args.kwargs["model"] == "gpt-4o-mini"
