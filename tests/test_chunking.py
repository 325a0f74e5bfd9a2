"""Tests for heading detection, section splitting and chunk enrichment."""
import pytest

from schemeqa.chunking import (
    Chunker,
    ChunkingOptions,
    assign_page_numbers,
    chunk_stats,
    content_type_of,
    extract_keywords,
    heading_level,
    is_heading,
    quality_score,
)

SCHEME_TEXT = """Eligibility Criteria
Applicants must be permanent residents of the state.
Annual family income must be below 250000 rupees.

Documents Required
- Income certificate
- Domicile certificate"""


@pytest.fixture
def chunker():
    return Chunker("en", "mr")


@pytest.fixture
def window_options():
    return ChunkingOptions(chunk_size=500, overlap=50, min_chunk_size=50, max_chunk_size=1000)


class TestHeadingHeuristic:
    @pytest.mark.parametrize(
        "line,next_line,expected",
        [
            ("Benefits", "Each student receives an annual grant.", True),
            ("Important", "Short.", True),
            ("1. Introduction", "Text", True),
            ("3.1 Income limits", "lower case continuation", True),
            ("Annexure", None, True),
            ("Note.", "A much longer line follows here", False),
            ("- Income certificate", "Longer following line of text", False),
            ("| Category | Fee |", "| General | 500 |", False),
            ("wrapped line", "Next line that is longer", False),
            ("Benefits", "continued on the next line", False),
            ("A fairly long line without punctuation", "Short", False),
            ("One two three four five six seven eight nine ten eleven twelve thirteen", None, False),
        ],
    )
    def test_is_heading(self, line, next_line, expected):
        assert is_heading(line, next_line) is expected

    def test_heading_level(self):
        assert heading_level("") == 0
        assert heading_level("2.1 Income") == 2
        assert heading_level("2. Income") == 1
        assert heading_level("Benefits") == 1
        assert heading_level("Detailed Guidelines For Application Review") == 2


class TestChunker:
    def test_sections_become_chunks(self, chunker):
        chunks = chunker.chunk(SCHEME_TEXT)

        assert [c.metadata.section for c in chunks] == ["Eligibility Criteria", "Documents Required"]
        assert [c.metadata.content_type for c in chunks] == ["paragraph", "list"]
        assert chunks[0].content.startswith("Applicants must be permanent residents")
        assert chunks[0].metadata.level == 1
        assert chunks[0].embedding_text.startswith("Eligibility Criteria: Applicants")

    def test_chunk_indices_are_dense(self, chunker):
        chunks = chunker.chunk(SCHEME_TEXT)
        assert [c.metadata.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_deterministic(self, chunker):
        assert chunker.chunk(SCHEME_TEXT) == chunker.chunk(SCHEME_TEXT)

    def test_heading_without_body_is_kept(self, chunker):
        chunks = chunker.chunk("Overview\nThe scheme helps students.\nAnnexure")

        assert len(chunks) == 2
        assert chunks[1].content == "Annexure"
        assert chunks[1].metadata.content_type == "heading"
        assert chunks[1].embedding_text == "Annexure"

    def test_table_section(self, chunker):
        text = "Fee Structure\n| Category | Fee |\n| General | 500 |\nFees are waived for reserved categories."
        chunks = chunker.chunk(text)

        assert len(chunks) == 1
        assert chunks[0].metadata.section == "Fee Structure"
        assert chunks[0].metadata.content_type == "table"

    def test_text_before_first_heading(self, chunker):
        chunks = chunker.chunk("this preamble has no heading at all.\nBenefits\nStudents receive support.")
        assert chunks[0].metadata.section == ""
        assert chunks[1].metadata.section == "Benefits"

    def test_empty_text(self, chunker):
        assert chunker.chunk("") == []
        assert chunker.chunk("   \n\n  ") == []

    def test_invalid_options(self, chunker):
        with pytest.raises(ValueError):
            chunker.chunk("text", ChunkingOptions(chunk_size=100, overlap=100))
        with pytest.raises(ValueError):
            ChunkingOptions(chunk_size=0).validate()
        with pytest.raises(ValueError):
            ChunkingOptions(chunk_size=500, max_chunk_size=100).validate()

    def test_devanagari_chunk_language(self, chunker):
        chunks = chunker.chunk("योजनेचे फायदे\nया योजनेअंतर्गत विद्यार्थ्यांना दरवर्षी शिष्यवृत्ती मिळते.")
        assert chunks[0].metadata.section == "योजनेचे फायदे"
        assert chunks[0].metadata.language == "mr"
        assert chunks[0].metadata.keywords


class TestWindows:
    def test_overlap_between_consecutive_windows(self, chunker, window_options):
        text = " ".join(f"w{i}" for i in range(1200))

        chunks = chunker.chunk(text, window_options)
        pieces = [c.content.split() for c in chunks]

        assert len(pieces) == 3
        assert all(len(p) <= 500 for p in pieces)
        for current, following in zip(pieces, pieces[1:]):
            assert current[-50:] == following[:50]
        assert pieces[0][0] == "w0"
        assert pieces[-1][-1] == "w1199"

    def test_window_ends_on_sentence_boundary(self, chunker, window_options):
        words = [f"w{i}." if i % 40 == 39 else f"w{i}" for i in range(1200)]

        chunks = chunker.chunk(" ".join(words), window_options)

        assert chunks[0].content.endswith("w479.")
        assert chunks[0].metadata.word_count == 480
        assert chunks[1].content.split()[0] == "w430"

    def test_long_words_are_never_dropped(self, chunker, window_options):
        words = [f"w{i:04d}abcdefghij" for i in range(600)]

        chunks = chunker.chunk(" ".join(words), window_options)
        pieces = [c.content.split() for c in chunks]

        assert all(len(c.content) <= window_options.max_chunk_chars for c in chunks)
        assert pieces[0][0] == words[0]
        assert pieces[-1][-1] == words[-1]
        stored = {w for p in pieces for w in p}
        assert stored == set(words)
        for current, following in zip(pieces, pieces[1:]):
            assert current[-50:] == following[:50]

    def test_small_section_kept_whole(self, chunker, window_options):
        text = " ".join(f"w{i}" for i in range(900))
        chunks = chunker.chunk(text, window_options)
        assert len(chunks) == 1
        assert chunks[0].metadata.word_count == 900


class TestEnrichment:
    def test_content_type_of(self):
        assert content_type_of(["- a", "- b"]) == "list"
        assert content_type_of(["1. First step.", "2. Second step."]) == "list"
        assert content_type_of(["intro", "| a | b |"]) == "table"
        assert content_type_of(["Para one.", "Para two.", "Para three.", "- item"]) == "mixed"
        assert content_type_of([]) == "paragraph"

    def test_keywords_skip_stop_words_short_words_and_numbers(self):
        keywords = extract_keywords("Scholarship scholarship students the and 2024 fee")
        assert keywords == ["scholarship", "students"]

    def test_quality_score(self):
        assert quality_score(200, "paragraph", "en", ["a", "b", "c"]) == 0.9
        assert quality_score(10, "heading", "mixed", []) == 0.6
        assert quality_score(700, "list", "en", [str(i) for i in range(10)]) == 0.7
        assert 0.0 <= quality_score(0, "paragraph", "mixed", []) <= 1.0

    def test_page_numbers(self, chunker):
        pages = ["Overview\nThe scheme helps students in need.", "Benefits\nStudents receive an annual grant."]
        chunks = chunker.chunk("\n\n".join(pages))

        assign_page_numbers(chunks, pages)

        assert [c.metadata.page_number for c in chunks] == [1, 2]
        assert chunks[1].metadata.to_dict()["pageNumber"] == 2

    def test_chunk_stats(self, chunker):
        chunks = chunker.chunk(SCHEME_TEXT)
        stats = chunk_stats(chunks)

        assert stats["totalChunks"] == 2
        assert stats["totalWords"] == sum(c.metadata.word_count for c in chunks)
        assert stats["languageDistribution"] == {"en": 2}
        assert stats["contentTypeDistribution"] == {"paragraph": 1, "list": 1}
        assert chunk_stats([])["totalChunks"] == 0
