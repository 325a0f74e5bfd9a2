"""
Shared test fixtures for the scheme QA test suite.

Provides: SQLite-backed Database, deterministic fake OpenAI client (embeddings
and chat), in-memory Redis stand-in, hand-built PDF documents and a fully
wired Services container.
"""
import os
import re
import time
import zlib
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

os.environ.setdefault("RUNNING_IN_DOCKER", "1")

from schemeqa.config import Settings  # noqa: E402
from schemeqa.db import Database  # noqa: E402
from schemeqa.service import build_services  # noqa: E402

EMBEDDING_DIM = 1024
_WORD_RE = re.compile(r"[a-z]+")
_IGNORED = frozenset(
    "what which when where there their this that with from must also have will does about into your".split()
)


def hashed_embedding(text: str, dim: int = EMBEDDING_DIM) -> List[float]:
    """Bag-of-words vector: one hashed bucket per content word, weighted by count."""
    vector = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        if len(word) < 4 or word in _IGNORED:
            continue
        vector[zlib.crc32(word.encode("utf-8")) % dim] += 1.0
    return vector


class StatusError(Exception):
    """Provider error carrying an HTTP status code, like openai.APIStatusError."""

    def __init__(self, status_code: int, message: str = "provider error"):
        super().__init__(message)
        self.status_code = status_code


class FakeEmbeddings:
    def __init__(self, dim: int = EMBEDDING_DIM):
        self.dim = dim
        self.calls = 0
        self.failures = 0
        self.error: Optional[Exception] = None

    def create(self, model: str, input: List[str]):
        self.calls += 1
        if self.error is not None and (self.failures is None or self.failures > 0):
            if self.failures is not None:
                self.failures -= 1
            raise self.error
        data = [SimpleNamespace(index=i, embedding=hashed_embedding(t, self.dim)) for i, t in enumerate(input)]
        return SimpleNamespace(data=data, model=model)


class FakeCompletions:
    def __init__(self):
        self.calls: List[Dict] = []
        self.reply = (
            "## Eligibility\n"
            "* Applicants must be permanent residents of the state.\n"
            "* Annual family income must be below 250000 rupees."
        )
        self.error: Optional[Exception] = None
        self.delay = 0.0

    def create(self, model, messages, temperature, max_tokens):
        self.calls.append({"model": model, "messages": messages})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


class FakeOpenAI:
    """Stands in for openai.OpenAI: ``embeddings.create`` and ``chat.completions.create``."""

    def __init__(self, dim: int = EMBEDDING_DIM):
        self.embeddings = FakeEmbeddings(dim)
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


class FakePipeline:
    def __init__(self, client: "FakeRedis"):
        self.client = client
        self.ops = []

    def setex(self, key, ttl, value):
        self.ops.append(("setex", key, ttl, value))
        return self

    def sadd(self, key, *members):
        self.ops.append(("sadd", key, members))
        return self

    def execute(self):
        for op in self.ops:
            if op[0] == "setex":
                self.client.setex(op[1], op[2], op[3])
            else:
                self.client.sadd(op[1], *op[2])
        self.ops = []


class FakeRedis:
    """Dict-backed subset of the redis client API used by AnswerCache."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.sets: Dict[str, set] = {}

    def get(self, key):
        return self.values.get(key)

    def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl
        return True

    def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.values:
                del self.values[key]
                removed += 1
            elif key in self.sets:
                del self.sets[key]
                removed += 1
        return removed

    def pipeline(self):
        return FakePipeline(self)


def _escape(line: str) -> str:
    return line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: List[List[str]]) -> bytes:
    """Build a minimal text PDF: one Helvetica line per entry, one page per list."""
    objects: Dict[int, bytes] = {}
    page_ids = [4 + 2 * i for i in range(len(pages))]
    objects[1] = b"<< /Type /Catalog /Pages 2 0 R >>"
    kids = " ".join(f"{pid} 0 R" for pid in page_ids)
    objects[2] = f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode("latin-1")
    objects[3] = b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>"
    for pid, lines in zip(page_ids, pages):
        ops = ["BT", "/F1 11 Tf", "72 760 Td"]
        for line in lines:
            ops.append(f"({_escape(line)}) Tj")
            ops.append("0 -16 Td")
        ops.append("ET")
        stream = "\n".join(ops).encode("latin-1")
        objects[pid] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {pid + 1} 0 R >>"
        ).encode("latin-1")
        objects[pid + 1] = b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream"

    out = bytearray(b"%PDF-1.4\n")
    offsets: Dict[int, int] = {}
    for oid in sorted(objects):
        offsets[oid] = len(out)
        out += f"{oid} 0 obj\n".encode("latin-1") + objects[oid] + b"\nendobj\n"
    xref = len(out)
    size = max(objects) + 1
    out += f"xref\n0 {size}\n".encode("latin-1")
    out += b"0000000000 65535 f \n"
    for oid in range(1, size):
        out += f"{offsets[oid]:010d} 00000 n \n".encode("latin-1")
    out += f"trailer\n<< /Size {size} /Root 1 0 R >>\nstartxref\n{xref}\n%%EOF\n".encode("latin-1")
    return bytes(out)


SCHOLARSHIP_PAGES = [
    [
        "Scholarship Scheme Overview",
        "The state scholarship scheme supports meritorious students from low income families.",
        "It is administered by the Department of Higher Education.",
        "Benefits",
        "Each selected student receives an annual scholarship amount of 50000 rupees.",
        "The scholarship also covers tuition reimbursement for the full course duration.",
    ],
    [
        "Eligibility Criteria",
        "The eligibility criteria require the applicant to be a permanent resident of the state.",
        "Eligibility criteria also require an annual family income below 250000 rupees.",
        "Students must meet the eligibility criteria of minimum sixty percent marks.",
        "Documents Required",
        "Applicants must upload an income certificate, a domicile certificate and mark sheets.",
        "How to Apply",
        "Applications are submitted online through the state scholarship portal before the deadline.",
    ],
]

REVISED_PAGES = [
    [
        "Revised Guidelines",
        "From the next academic year the scholarship is paid in two equal instalments.",
        "Renewal Conditions",
        "Renewal requires satisfactory attendance and passing every semester examination.",
    ],
]


@pytest.fixture
def scholarship_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "scholarship.pdf"
    path.write_bytes(build_pdf(SCHOLARSHIP_PAGES))
    return path


@pytest.fixture
def revised_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "scholarship-v2.pdf"
    path.write_bytes(build_pdf(REVISED_PAGES))
    return path


@pytest.fixture
def corrupt_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"%PDF-1.4\n" + b"\x00\x13garbage-without-objects " * 20)
    return path


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        OPENAI_API_KEY="",
        DATABASE_URL=f"sqlite:///{tmp_path / 'schemeqa.db'}",
        REDIS_URL="",
        CACHE_ENABLED=True,
        AZURE_TRANSLATOR_KEY="",
        EMBEDDING_MAX_ATTEMPTS=2,
        EMBEDDING_RATE_LIMIT_BASE_SECONDS=0.0,
        EMBEDDING_SERVER_ERROR_BASE_SECONDS=0.0,
        EMBEDDING_RETRY_DELAY_SECONDS=0.0,
        PDF_FETCH_RETRY_DELAY_SECONDS=0.0,
        DEV_SIMULATED_EMBEDDINGS=False,
        ASK_TIMEOUT_SECONDS=30.0,
        TOP_K=5,
        MIN_SIMILARITY=0.3,
        MIN_QUALITY_SCORE=0.5,
    )


@pytest.fixture
def database(test_settings: Settings):
    db = Database(test_settings.DATABASE_URL)
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def services(test_settings, database, fake_openai, fake_redis):
    """Every component wired against SQLite, the fake OpenAI client and the fake Redis."""
    built = build_services(
        test_settings,
        database=database,
        embedding_client=fake_openai,
        chat_client=fake_openai,
        redis_client=fake_redis,
    )
    yield built
    built.close()


@pytest.fixture
def scheme(services):
    return services.store.upsert_scheme(
        "pm-scholarship",
        title="State Scholarship Scheme",
        category="Education",
        description="Annual scholarship for meritorious students from low income families.",
    )


@pytest.fixture
def ingested(services, scheme, scholarship_pdf):
    """The scholarship PDF ingested as the chunk set of ``pm-scholarship``."""
    report = services.pipeline.ingest(scheme.id, str(scholarship_pdf))
    assert report.success, report.error
    return report
