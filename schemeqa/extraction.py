"""PDF text extraction for scheme documents.

Provides:
- PdfExtractor: read a PDF from a local path or HTTP(S) URL, parse it with
  progressively looser pypdf configurations, normalize the text and optionally
  translate it into the canonical language.
- ExtractionOptions / ExtractionResult: inputs and transient output consumed by
  the chunker.
- extract_many: batch extraction over several sources.

Documents that cannot be parsed (corrupt, encrypted, image-only, out of size
bounds) produce a fallback extraction rather than an error so ingestion always
has something to store. Only an unreadable source (missing file, exhausted
remote fetch) raises.
"""
import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import requests
from pypdf import PdfReader
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from schemeqa.config import settings
from schemeqa.errors import ExtractionError, PdfFetchError
from schemeqa.text import normalize
from schemeqa.translation import Translator

logger = logging.getLogger(__name__)

USER_AGENT = "Govt-Scheme-QNA/1.0"
PDF_SIGNATURE = b"%PDF-"
FALLBACK_WARNING = "This PDF could not be processed normally. A fallback extraction was created."


@dataclass
class ExtractionOptions:
    """Per-call extraction options.

    Attributes:
        file_name: Display name for the document; derived from the source when omitted.
        translate: Translate the extracted text into the canonical language.
        source_language: Known document language, skipping detection.
    """
    file_name: Optional[str] = None
    translate: bool = True
    source_language: Optional[str] = None


@dataclass
class ExtractionResult:
    success: bool
    text: str = ""
    original_text: str = ""
    pages: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    warning: Optional[str] = None
    error: Optional[str] = None

    @property
    def fallback(self) -> bool:
        return bool(self.metadata.get("fallbackExtraction"))


def _parse_standard(data: bytes) -> Tuple[PdfReader, List[str]]:
    reader = PdfReader(io.BytesIO(data))
    return reader, [page.extract_text() or "" for page in reader.pages]


def _parse_layout(data: bytes) -> Tuple[PdfReader, List[str]]:
    # Layout mode rebuilds whitespace from glyph positions; helps with PDFs
    # whose fonts lack proper space characters.
    reader = PdfReader(io.BytesIO(data), strict=False)
    pages = [
        page.extract_text(extraction_mode="layout", layout_mode_space_vertically=False) or ""
        for page in reader.pages
    ]
    return reader, pages


def _parse_minimal(data: bytes) -> Tuple[PdfReader, List[str]]:
    reader = PdfReader(io.BytesIO(data), strict=False)
    pages = []
    for number, page in enumerate(reader.pages, start=1):
        try:
            pages.append(page.extract_text(orientations=(0,)) or "")
        except Exception as exc:  # pypdf raises a wide range of errors on broken pages
            logger.warning("Minimal parser skipped page %d: %s", number, exc)
            pages.append("")
    return reader, pages


PARSER_TIERS: List[Tuple[str, Callable[[bytes], Tuple[PdfReader, List[str]]]]] = [
    ("standard", _parse_standard),
    ("layout", _parse_layout),
    ("minimal", _parse_minimal),
]


def _document_info(reader: PdfReader) -> Dict[str, Optional[str]]:
    try:
        info = reader.metadata
    except Exception as exc:
        logger.debug("Could not read PDF document info: %s", exc)
        info = None
    if not info:
        return {}
    return {
        "title": info.title,
        "author": info.author,
        "subject": info.subject,
        "creator": info.creator,
        "producer": info.producer,
    }


def _is_remote(source: str) -> bool:
    return urlparse(str(source)).scheme in ("http", "https")


def _file_name_from_url(url: str) -> str:
    name = unquote(urlparse(url).path.rstrip("/").split("/")[-1])
    return name or "document.pdf"


class PdfExtractor:
    """Extract normalized text from scheme PDFs.

    Args:
        session: HTTP session for remote sources.
        translator: Optional translator; when present extracted text is
            translated into the canonical language.
        max_bytes: Upper size bound; larger documents fall back.
        min_bytes: Lower size bound; smaller documents fall back.
        fetch_timeout: Remote fetch timeout in seconds.
        fetch_attempts: Remote fetch attempts before giving up.
        fetch_retry_delay: Fixed delay between fetch attempts in seconds.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        translator: Optional[Translator] = None,
        max_bytes: int = settings.PDF_MAX_BYTES,
        min_bytes: int = settings.PDF_MIN_BYTES,
        fetch_timeout: float = settings.PDF_FETCH_TIMEOUT_SECONDS,
        fetch_attempts: int = settings.PDF_FETCH_ATTEMPTS,
        fetch_retry_delay: float = settings.PDF_FETCH_RETRY_DELAY_SECONDS,
    ):
        self.session = session or requests.Session()
        self.translator = translator
        self.max_bytes = max_bytes
        self.min_bytes = min_bytes
        self.fetch_timeout = fetch_timeout
        self.fetch_attempts = fetch_attempts
        self.fetch_retry_delay = fetch_retry_delay

    def extract(self, source: str, options: Optional[ExtractionOptions] = None) -> ExtractionResult:
        """Extract text from a local path or HTTP(S) URL.

        Args:
            source: Filesystem path or remote URL of the PDF.
            options: Extraction options.

        Returns:
            ExtractionResult: Parsed text or a fallback extraction.

        Raises:
            ExtractionError: If a local file does not exist or cannot be read.
            PdfFetchError: If a remote fetch fails after all attempts.
        """
        options = options or ExtractionOptions()
        started = time.perf_counter()
        source = str(source)

        if _is_remote(source):
            file_name = options.file_name or _file_name_from_url(source)
            data = self._fetch(source)
        else:
            path = Path(source)
            file_name = options.file_name or path.name
            data = self._read_local(path)

        result = self._extract_bytes(data, file_name, options)
        result.metadata["source"] = source
        result.metadata["extractionTime"] = round(time.perf_counter() - started, 3)
        return result

    def extract_bytes(self, data: bytes, file_name: str, options: Optional[ExtractionOptions] = None) -> ExtractionResult:
        """Extract text from an in-memory PDF (e.g. an upload body)."""
        return self._extract_bytes(data, file_name, options or ExtractionOptions())

    def _read_local(self, path: Path) -> bytes:
        if not path.exists():
            raise ExtractionError(f"PDF file not found: {path}", {"path": str(path)})
        if path.suffix.lower() != ".pdf":
            logger.warning("File %s does not have a .pdf extension; attempting extraction anyway", path)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ExtractionError(f"Failed to read PDF file: {path}", {"path": str(path), "reason": str(exc)}) from exc

    def _fetch(self, url: str) -> bytes:
        """Download ``url`` with a fixed backoff between attempts.

        Freshly uploaded objects can take a moment to appear on the storage
        CDN, so 404s are retried like any other failure.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.fetch_attempts),
            wait=wait_fixed(self.fetch_retry_delay),
            retry=retry_if_exception_type(requests.RequestException),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    logger.info(
                        "Fetching PDF %s (attempt %d/%d)", url, attempt.retry_state.attempt_number, self.fetch_attempts
                    )
                    resp = self.session.get(url, timeout=self.fetch_timeout, headers={"User-Agent": USER_AGENT})
                    resp.raise_for_status()
                    return resp.content
        except requests.RequestException as exc:
            raise PdfFetchError(
                f"Failed to download PDF after {self.fetch_attempts} attempts",
                {"url": url, "reason": str(exc)},
            ) from exc
        raise PdfFetchError("Failed to download PDF", {"url": url})

    def _extract_bytes(self, data: bytes, file_name: str, options: ExtractionOptions) -> ExtractionResult:
        size = len(data)
        if size > self.max_bytes:
            logger.warning("PDF %s is too large (%d bytes > %d)", file_name, size, self.max_bytes)
            return self._fallback(file_name, size, f"PDF exceeds the maximum size of {self.max_bytes} bytes")
        if size < self.min_bytes:
            logger.warning("PDF %s is too small to be valid (%d bytes)", file_name, size)
            return self._fallback(file_name, size, f"PDF is smaller than {self.min_bytes} bytes")
        if not data.startswith(PDF_SIGNATURE):
            logger.warning("File %s does not start with a PDF header; attempting extraction anyway", file_name)

        for tier, parse in PARSER_TIERS:
            try:
                reader, raw_pages = parse(data)
            except Exception as exc:  # pypdf raises a wide range of errors on malformed files
                logger.warning("PDF parser tier '%s' failed for %s: %s", tier, file_name, exc)
                continue

            pages = [normalize(p) for p in raw_pages]
            text = "\n\n".join(p for p in pages if p)
            if not text.strip():
                logger.warning("PDF parser tier '%s' found no text in %s", tier, file_name)
                continue

            logger.info("Extracted %d pages from %s with the %s parser", len(pages), file_name, tier)
            return self._build_result(text, pages, reader, tier, file_name, size, options)

        return self._fallback(file_name, size, "No extractable text (the PDF may be scanned, encrypted or corrupted)")

    def _build_result(
        self,
        text: str,
        pages: List[str],
        reader: PdfReader,
        tier: str,
        file_name: str,
        size: int,
        options: ExtractionOptions,
    ) -> ExtractionResult:
        original_text = text
        metadata: Dict[str, Any] = {
            "numPages": len(pages),
            "fileSize": size,
            "fileName": file_name,
            "parser": tier,
            "info": _document_info(reader),
            "processedAt": datetime.utcnow().isoformat(),
        }

        if self.translator is not None and options.translate:
            translation = self.translator.to_canonical(text, hint=options.source_language)
            text = translation.text
            metadata["detectedLanguage"] = translation.detected_language
            metadata["translated"] = translation.translated

        metadata.update(
            {
                "wordCount": len(text.split()),
                "lineCount": text.count("\n") + 1,
                "textLength": len(text),
            }
        )
        return ExtractionResult(success=True, text=text, original_text=original_text, pages=pages, metadata=metadata)

    def _fallback(self, file_name: str, size: int, reason: str) -> ExtractionResult:
        logger.warning("Creating fallback extraction for %s: %s", file_name, reason)
        uploaded = datetime.utcnow()
        text = (
            f"[PDF Document: {file_name}]\n\n"
            "This PDF document could not be processed for text extraction. The file may be corrupted, "
            "password-protected, or in an unsupported format.\n\n"
            "File Information:\n"
            f"- File Name: {file_name}\n"
            f"- File Size: {size} bytes\n"
            f"- Upload Date: {uploaded.strftime('%Y-%m-%d')}\n\n"
            "Please contact the administrator if you need assistance with this document."
        )
        metadata = {
            "numPages": 0,
            "fileSize": size,
            "fileName": file_name,
            "parser": None,
            "fallbackExtraction": True,
            "fallbackReason": reason,
            "wordCount": len(text.split()),
            "lineCount": text.count("\n") + 1,
            "textLength": len(text),
            "processedAt": uploaded.isoformat(),
        }
        return ExtractionResult(success=True, text=text, original_text=text, metadata=metadata, warning=FALLBACK_WARNING)


def extract_many(
    extractor: PdfExtractor,
    sources: List[str],
    options: Optional[ExtractionOptions] = None,
    batch_size: int = 3,
) -> List[ExtractionResult]:
    """Extract several sources, ``batch_size`` at a time.

    Args:
        extractor: Configured extractor.
        sources: Paths or URLs.
        options: Options applied to every source (``file_name`` is ignored).
        batch_size: Number of sources extracted concurrently.

    Returns:
        List[ExtractionResult]: One result per source, in input order. Sources
        that cannot be read yield ``success=False`` with the error message.
    """
    base = options or ExtractionOptions()
    per_source = ExtractionOptions(translate=base.translate, source_language=base.source_language)

    def _one(source: str) -> ExtractionResult:
        try:
            return extractor.extract(source, per_source)
        except ExtractionError as exc:
            logger.error("Extraction failed for %s: %s", source, exc)
            return ExtractionResult(success=False, error=exc.message, metadata={"source": str(source)})

    results: List[ExtractionResult] = []
    with ThreadPoolExecutor(max_workers=max(1, batch_size)) as pool:
        for start in range(0, len(sources), batch_size):
            results.extend(pool.map(_one, sources[start:start + batch_size]))
    return results
