"""Error taxonomy for the ingestion and question-answering paths.

Categories:
- Fatal: the specific operation aborts and the caller gets a clear error kind
  (EmptyQueryError, SchemeNotFoundError, ExtractionError, PdfFetchError).
- Provider: an external provider failed after bounded retries
  (EmbeddingError) or returned vectors that cannot share one index
  (EmbeddingDimensionError).
- Timeout: the ask path exceeded its budget (QueryTimeoutError).

Degraded-but-continuable conditions (translation unavailable, image-only PDFs,
generation failures) are handled in place and never raise.
"""
from typing import Any, Dict, Optional


class SchemeQAError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error.
        kind: Stable machine-readable error kind reported to callers.
    """

    kind = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class EmptyQueryError(SchemeQAError):
    kind = "empty_query"

    def __init__(self, message: str = "Query is required and must be a non-empty string"):
        super().__init__(message)


class SchemeNotFoundError(SchemeQAError):
    kind = "scheme_not_found"

    def __init__(self, scheme_id: str):
        super().__init__(f"Scheme not found: {scheme_id}", {"scheme_id": scheme_id})
        self.scheme_id = scheme_id


class ExtractionError(SchemeQAError):
    """Raised when the PDF source itself cannot be read (not for unparseable content)."""

    kind = "extraction_failed"


class PdfFetchError(ExtractionError):
    kind = "pdf_fetch_failed"


class EmbeddingError(SchemeQAError):
    """Embedding provider failed after exhausting retries."""

    kind = "embedding_failed"


class EmbeddingDimensionError(SchemeQAError):
    """Vectors of different dimensions would be mixed within one scheme."""

    kind = "embedding_dimension_mismatch"


class QueryTimeoutError(SchemeQAError):
    kind = "query_timeout"

    def __init__(self, timeout: float):
        super().__init__(
            f"The question could not be answered within {timeout:.0f} seconds. Please try again.",
            {"timeout_seconds": timeout},
        )
        self.timeout = timeout


class JobNotFoundError(SchemeQAError):
    kind = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__(f"Ingestion job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id
