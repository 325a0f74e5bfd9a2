"""Heading-aware chunking of normalized document text.

Provides:
- ChunkingOptions: word-count bounds for chunks (validated).
- ChunkMetadata / TextChunk: chunk content plus the enrichment stored with it
  (section, counts, language, content type, keywords, quality score).
- Chunker: partitions text into sections with a heading heuristic, keeps small
  sections whole and splits large ones into overlapping windows that end on a
  sentence boundary where possible.
- assign_page_numbers: map chunks back to the page their text starts on.
- chunk_stats: aggregate statistics over a chunk list.

Chunking is deterministic: the same text and options always produce the same
chunks.
"""
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from schemeqa.config import settings
from schemeqa.text import detect_language, ends_sentence

MAX_HEADING_CHARS = 100
MAX_HEADING_WORDS = 12
NUDGE_WINDOW = 0.7  # sentence nudging only inside the last 30% of a window
MAX_KEYWORDS = 10

NUMBERED_RE = re.compile(r"^\d+(\.\d+)*[.)]?\s+\S")
SUBNUMBERED_RE = re.compile(r"^\d+\.\d+")
TOP_NUMBERED_RE = re.compile(r"^\d+[.)]")
BULLET_RE = re.compile(r"^([-*+•●▪]|\(?[a-z]\))\s+")
TABLE_LINE_RE = re.compile(r"\|.*\|")
HEADING_TERMINATORS = (".", "!", "?", ",", ";")
TOKEN_RE = re.compile(r"[^\s.,;:!?()\[\]{}\"'`/|*#<>=+~-]+")

STOP_WORDS: Dict[str, frozenset] = {
    "en": frozenset(
        """
        the a an and or but in on at to for of with by is are was were be been have has had do does did
        will would could should may might must can this that these those i you he she it we they me him
        her us them from their there which also such shall under other into than then when where what
        your about each only more most some over
        """.split()
    ),
    "mr": frozenset(
        """
        आणि किंवा पण मध्ये वर खाली साठी च्या ने ला होते होतो होती आहे आहेत होईल होतील होतात मी तू तो ती
        आम्ही तुम्ही ते त्या मला तुला त्याला तिला आम्हाला तुम्हाला त्यांना हा ही हे या
        """.split()
    ),
}


def stop_words(language: str) -> frozenset:
    return STOP_WORDS.get(language, STOP_WORDS["en"])


@dataclass
class ChunkingOptions:
    """Chunk size bounds, in words.

    Attributes:
        chunk_size: Target window length when splitting an oversized section.
        overlap: Words shared by consecutive windows of one section.
        min_chunk_size: Shortest window a sentence nudge may produce.
        max_chunk_size: Largest section kept as a single chunk.
        max_chunk_chars: Character cap for a single chunk's content.
    """
    chunk_size: int = settings.CHUNK_SIZE
    overlap: int = settings.CHUNK_OVERLAP
    min_chunk_size: int = settings.MIN_CHUNK_SIZE
    max_chunk_size: int = settings.MAX_CHUNK_SIZE
    max_chunk_chars: int = settings.MAX_CHUNK_CHARS

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.overlap < self.chunk_size:
            raise ValueError("overlap must satisfy 0 <= overlap < chunk_size")
        if self.min_chunk_size < 0 or self.min_chunk_size > self.chunk_size:
            raise ValueError("min_chunk_size must be between 0 and chunk_size")
        if self.max_chunk_size < self.chunk_size:
            raise ValueError("max_chunk_size must be >= chunk_size")


@dataclass
class ChunkMetadata:
    section: str
    chunk_index: int
    word_count: int
    char_count: int
    language: str
    content_type: str
    level: int = 0
    keywords: List[str] = field(default_factory=list)
    quality_score: float = 0.5
    page_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "section": self.section,
            "chunkIndex": self.chunk_index,
            "wordCount": self.word_count,
            "charCount": self.char_count,
            "language": self.language,
            "contentType": self.content_type,
            "level": self.level,
            "keywords": list(self.keywords),
            "qualityScore": self.quality_score,
        }
        if self.page_number is not None:
            data["pageNumber"] = self.page_number
        return data


@dataclass
class TextChunk:
    content: str
    metadata: ChunkMetadata

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding model: the section label gives short
        chunks the context of the heading they sit under."""
        if self.metadata.section and self.metadata.section != self.content:
            return f"{self.metadata.section}: {self.content}"
        return self.content


@dataclass
class _Section:
    title: str
    level: int
    lines: List[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return "\n".join(self.lines).strip()


def is_heading(line: str, next_line: Optional[str]) -> bool:
    """Heading heuristic for one (stripped, non-empty) line.

    A heading is a short line that does not end like a sentence and is
    followed by a longer or sentence-terminated line (or ends the text).
    Numbered prefixes such as ``2.`` or ``3.1`` strengthen the signal;
    bulleted lines and table rows are never headings.
    """
    if len(line) >= MAX_HEADING_CHARS or len(line.split()) > MAX_HEADING_WORDS:
        return False
    if BULLET_RE.match(line) or TABLE_LINE_RE.search(line):
        return False
    if line.endswith(HEADING_TERMINATORS):
        return False
    if line[0].islower():
        return False
    if NUMBERED_RE.match(line):
        return True
    if next_line is None:
        return True
    if next_line[0].islower():
        # wrapped sentence continuing on the next line
        return False
    return len(next_line) > len(line) or ends_sentence(next_line)


def heading_level(title: str) -> int:
    if not title:
        return 0
    if SUBNUMBERED_RE.match(title):
        return 2
    if TOP_NUMBERED_RE.match(title):
        return 1
    if BULLET_RE.match(title):
        return 3
    if len(title) < 30:
        return 1
    if len(title) < 60:
        return 2
    return 3


def content_type_of(lines: Sequence[str]) -> str:
    """Classify a block of lines as paragraph, list, table or mixed."""
    lines = [ln for ln in lines if ln.strip()]
    if not lines:
        return "paragraph"
    bullets = sum(1 for ln in lines if BULLET_RE.match(ln) or NUMBERED_RE.match(ln))
    table_rows = sum(1 for ln in lines if TABLE_LINE_RE.search(ln))
    if bullets * 2 >= len(lines):
        return "list"
    if table_rows * 2 >= len(lines):
        return "table"
    if bullets or table_rows:
        return "mixed"
    return "paragraph"


def extract_keywords(text: str, language: str = "en", limit: int = MAX_KEYWORDS) -> List[str]:
    """Frequency-ranked content words after stop-word removal."""
    stop = stop_words(language)
    words = [
        w for w in TOKEN_RE.findall(text.lower())
        if len(w) > 3 and w not in stop and not w.isdigit()
    ]
    return [w for w, _ in Counter(words).most_common(limit)]


def quality_score(word_count: int, content_type: str, language: str, keywords: Sequence[str]) -> float:
    """Heuristic retrieval-worthiness in [0, 1]; a gating signal, not a probability."""
    score = 0.5
    if 100 <= word_count <= 500:
        score += 0.2
    elif 50 <= word_count <= 1000:
        score += 0.1
    if content_type == "heading":
        score += 0.1
    if language != "mixed":
        score += 0.1
    if 3 <= len(keywords) <= 8:
        score += 0.1
    return round(min(1.0, max(0.0, score)), 2)


class Chunker:
    """Split normalized text into enriched chunks.

    Args:
        canonical_language: Language tag for Latin-script text.
        source_language: Language tag for Devanagari text.
    """

    def __init__(
        self,
        canonical_language: str = settings.CANONICAL_LANGUAGE,
        source_language: str = settings.SOURCE_LANGUAGE,
    ):
        self.canonical_language = canonical_language
        self.source_language = source_language

    def chunk(self, text: str, options: Optional[ChunkingOptions] = None) -> List[TextChunk]:
        """Chunk ``text``.

        Args:
            text: Normalized document text.
            options: Size bounds; defaults come from settings.

        Returns:
            List[TextChunk]: Chunks with dense 0-based ``chunk_index`` values.

        Raises:
            ValueError: If the options are inconsistent.
        """
        options = options or ChunkingOptions()
        options.validate()
        if not text or not text.strip():
            return []

        chunks: List[TextChunk] = []
        for section in self._sections(text):
            body = section.body
            if not body:
                # heading with nothing under it; keep it so no text is lost
                chunks.append(self._make_chunk(section.title, section, "heading", len(chunks)))
                continue

            ctype = content_type_of(section.lines)
            for piece in self._split(body, options):
                chunks.append(self._make_chunk(piece, section, ctype, len(chunks)))
        return chunks

    def _sections(self, text: str) -> List[_Section]:
        lines = [ln.strip() for ln in text.split("\n")]
        non_empty = [i for i, ln in enumerate(lines) if ln]
        following = {i: (lines[non_empty[k + 1]] if k + 1 < len(non_empty) else None) for k, i in enumerate(non_empty)}

        sections: List[_Section] = []
        current = _Section(title="", level=0)
        for i, line in enumerate(lines):
            if not line:
                current.lines.append("")
                continue
            if is_heading(line, following[i]):
                if current.title or current.body:
                    sections.append(current)
                current = _Section(title=line, level=heading_level(line))
            else:
                current.lines.append(line)
        if current.title or current.body:
            sections.append(current)
        return sections

    def _split(self, body: str, options: ChunkingOptions) -> List[str]:
        words = body.split()
        if len(words) <= options.max_chunk_size and len(body) <= options.max_chunk_chars:
            return [body]

        pieces: List[str] = []
        n = len(words)
        start = 0
        while start < n:
            end = min(start + options.chunk_size, n)
            if end < n:
                end = self._nudge_to_sentence(words, start, end, options)
            end = self._fit_chars(words, start, end, options.max_chunk_chars)
            piece = " ".join(words[start:end])
            # only a single word longer than the cap is ever cut
            pieces.append(piece[: options.max_chunk_chars])
            if end >= n:
                break
            next_start = end - options.overlap
            if next_start <= start:
                next_start = end
            start = next_start
        return pieces

    @staticmethod
    def _fit_chars(words: List[str], start: int, end: int, max_chars: int) -> int:
        """Pull ``end`` back until the joined window fits in ``max_chars``."""
        length = len(" ".join(words[start:end]))
        while end - start > 1 and length > max_chars:
            end -= 1
            length -= len(words[end]) + 1
        return end

    @staticmethod
    def _nudge_to_sentence(words: List[str], start: int, end: int, options: ChunkingOptions) -> int:
        """Move ``end`` back to just after the last sentence end in the window's tail."""
        floor = start + int((end - start) * NUDGE_WINDOW)
        for k in range(end - 1, floor - 1, -1):
            if ends_sentence(words[k]):
                candidate = k + 1
                if candidate - start >= options.min_chunk_size:
                    return candidate
                break
        return end

    def _make_chunk(self, content: str, section: _Section, content_type: str, index: int) -> TextChunk:
        language = detect_language(content, self.canonical_language, self.source_language)
        keywords = extract_keywords(content, language)
        word_count = len(content.split())
        metadata = ChunkMetadata(
            section=section.title,
            chunk_index=index,
            word_count=word_count,
            char_count=len(content),
            language=language,
            content_type=content_type,
            level=section.level,
            keywords=keywords,
            quality_score=quality_score(word_count, content_type, language, keywords),
        )
        return TextChunk(content=content, metadata=metadata)


def assign_page_numbers(chunks: Sequence[TextChunk], pages: Sequence[str], lead_words: int = 8) -> None:
    """Set ``page_number`` on chunks whose opening words occur on a page.

    Args:
        chunks: Chunks produced from the pages' joined text.
        pages: Normalized per-page texts.
        lead_words: Number of leading words used to locate a chunk.
    """
    flattened = [" ".join(p.split()) for p in pages]
    for chunk in chunks:
        opening = " ".join(chunk.content.split()[:lead_words])
        if not opening:
            continue
        for number, page in enumerate(flattened, start=1):
            if opening in page:
                chunk.metadata.page_number = number
                break


def chunk_stats(chunks: Sequence[TextChunk]) -> Dict[str, Any]:
    """Totals plus language and content-type distributions for ``chunks``."""
    stats: Dict[str, Any] = {
        "totalChunks": len(chunks),
        "totalWords": 0,
        "totalChars": 0,
        "avgChunkSize": 0,
        "languageDistribution": {},
        "contentTypeDistribution": {},
    }
    if not chunks:
        return stats
    languages: Counter = Counter()
    types: Counter = Counter()
    for chunk in chunks:
        stats["totalWords"] += chunk.metadata.word_count
        stats["totalChars"] += chunk.metadata.char_count
        languages[chunk.metadata.language] += 1
        types[chunk.metadata.content_type] += 1
    stats["avgChunkSize"] = round(stats["totalWords"] / len(chunks))
    stats["languageDistribution"] = dict(languages)
    stats["contentTypeDistribution"] = dict(types)
    return stats
