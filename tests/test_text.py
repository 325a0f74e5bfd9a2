"""Tests for text normalization and language heuristics."""
from schemeqa.text import count_words, detect_language, ends_sentence, normalize


class TestNormalize:
    def test_empty_input(self):
        assert normalize(None) == ""
        assert normalize("") == ""

    def test_line_endings_and_form_feeds(self):
        assert normalize("Overview\r\nDetails\rMore\fEnd") == "Overview\nDetails\nMore\nEnd"

    def test_smart_punctuation(self):
        text = normalize("“Quoted” – it’s done…")
        assert text == "\"Quoted\" - it's done..."

    def test_control_characters_become_spaces(self):
        assert normalize("income" + chr(7) + "limit") == "income limit"

    def test_spacing_fixes(self):
        assert normalize("fromThe state") == "from The state"
        assert normalize("age18 years") == "age 18 years"
        assert normalize("ends.Next sentence") == "ends. Next sentence"

    def test_whitespace_collapsed_lines_kept(self):
        raw = "  Benefits   \n\n\n\n  Annual   amount\t\tpaid.  "
        assert normalize(raw) == "Benefits\n\nAnnual amount paid."


class TestDetectLanguage:
    def test_latin_text_is_canonical(self):
        assert detect_language("The scheme supports students.") == "en"

    def test_devanagari_text_is_source(self):
        assert detect_language("ही योजना विद्यार्थ्यांसाठी आहे") == "mr"

    def test_mixed_scripts(self):
        assert detect_language("scheme योजना apply अर्ज") == "mixed"

    def test_custom_codes_and_empty(self):
        assert detect_language("", canonical="hi") == "hi"
        assert detect_language("   ") == "en"
        assert detect_language("योजना", canonical="en", source="hi") == "hi"


def test_count_words():
    assert count_words(None) == 0
    assert count_words(" one  two\nthree ") == 3


def test_ends_sentence():
    assert ends_sentence("done.")
    assert ends_sentence('"why?"')
    assert ends_sentence("(above).")
    assert not ends_sentence("Rs")
    assert not ends_sentence("e.g,")
