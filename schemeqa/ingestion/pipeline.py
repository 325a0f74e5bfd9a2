"""Ingestion pipeline: PDF -> normalized/translated text -> chunks -> embeddings -> store.

Provides:
- IngestOptions: chunking and extraction options for one run.
- IngestReport: outcome of an ingestion (counts, distributions, error kind).
- SchemeLocks: per-scheme lock registry serializing runs on the same scheme.
- IngestionPipeline: ``ingest`` and ``reprocess`` entry points.

A scheme's chunk set is replaced wholesale. The new document is extracted and
chunked before the old chunks are touched; once new chunks are written any
failure deletes them again, so a scheme is never left half-ingested.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from schemeqa.cache import AnswerCache
from schemeqa.chunking import Chunker, ChunkingOptions, TextChunk, assign_page_numbers, chunk_stats
from schemeqa.config import settings
from schemeqa.embedding import Embedder
from schemeqa.errors import EmbeddingDimensionError, SchemeQAError
from schemeqa.extraction import ExtractionOptions, PdfExtractor
from schemeqa.obs import span
from schemeqa.store import ChunkStore

logger = logging.getLogger(__name__)


@dataclass
class IngestOptions:
    """Options for one ingestion run.

    Attributes:
        chunk_size: Window size in words for oversized sections.
        overlap: Words shared by consecutive windows.
        min_chunk_size: Smallest window a sentence nudge may produce.
        max_chunk_size: Largest section kept whole, in words.
        file_name: Display name of the document.
        source_language: Known document language, skipping detection.
        translate: Translate the document into the canonical language.
    """
    chunk_size: int = settings.CHUNK_SIZE
    overlap: int = settings.CHUNK_OVERLAP
    min_chunk_size: int = settings.MIN_CHUNK_SIZE
    max_chunk_size: int = settings.MAX_CHUNK_SIZE
    file_name: Optional[str] = None
    source_language: Optional[str] = None
    translate: bool = True

    def chunking(self) -> ChunkingOptions:
        return ChunkingOptions(
            chunk_size=self.chunk_size,
            overlap=self.overlap,
            min_chunk_size=min(self.min_chunk_size, self.chunk_size),
            max_chunk_size=max(self.max_chunk_size, self.chunk_size),
        )

    def extraction(self) -> ExtractionOptions:
        return ExtractionOptions(file_name=self.file_name, translate=self.translate, source_language=self.source_language)


@dataclass
class IngestReport:
    scheme_id: str
    success: bool
    chunks_created: int = 0
    total_words: int = 0
    total_chars: int = 0
    language_distribution: Dict[str, int] = field(default_factory=dict)
    content_type_distribution: Dict[str, int] = field(default_factory=dict)
    fallback_extraction: bool = False
    embedding_model: Optional[str] = None
    embedding_dim: Optional[int] = None
    simulated_embeddings: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "schemeId": self.scheme_id,
            "success": self.success,
            "chunksCreated": self.chunks_created,
            "totalWords": self.total_words,
            "totalChars": self.total_chars,
            "languageDistribution": self.language_distribution,
            "contentTypeDistribution": self.content_type_distribution,
            "fallbackExtraction": self.fallback_extraction,
            "embeddingModel": self.embedding_model,
            "embeddingDim": self.embedding_dim,
            "simulatedEmbeddings": self.simulated_embeddings,
            "durationSeconds": self.duration_seconds,
        }
        if self.warning:
            data["warning"] = self.warning
        if self.error:
            data["error"] = self.error
            data["errorKind"] = self.error_kind
        return data


class SchemeLocks:
    """Registry of one lock per scheme id."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, scheme_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(scheme_id)
            if lock is None:
                lock = self._locks[scheme_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, scheme_id: str) -> Iterator[None]:
        lock = self.lock_for(scheme_id)
        if not lock.acquire(blocking=False):
            logger.info("Waiting for running ingestion of scheme %s to finish", scheme_id)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()


class IngestionPipeline:
    """Turn a scheme's PDF into stored, embedded chunks.

    Args:
        store: Chunk store.
        extractor: PDF extractor (with its translator, if any).
        chunker: Chunker.
        embedder: Embedder for chunk texts.
        cache: Answer cache invalidated after every run.
        batch_size: Chunks embedded per provider request.
        locks: Shared per-scheme lock registry.
    """

    def __init__(
        self,
        store: ChunkStore,
        extractor: PdfExtractor,
        chunker: Chunker,
        embedder: Embedder,
        cache: Optional[AnswerCache] = None,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
        locks: Optional[SchemeLocks] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.cache = cache
        self.batch_size = max(1, batch_size)
        self.locks = locks or SchemeLocks()

    def ingest(self, scheme_id: str, source: str, options: Optional[IngestOptions] = None) -> IngestReport:
        """Ingest ``source`` as the chunk set of ``scheme_id``.

        Args:
            scheme_id: Existing, active scheme.
            source: Local PDF path or HTTP(S) URL.
            options: Run options.

        Returns:
            IngestReport: ``success`` is False with ``error``/``error_kind``
            when extraction or embedding failed; no chunks remain in that case.

        Raises:
            SchemeNotFoundError: If the scheme does not exist or is inactive.
        """
        return self._run(scheme_id, source, options or IngestOptions(), reprocess=False)

    def reprocess(self, scheme_id: str, source: str, options: Optional[IngestOptions] = None) -> IngestReport:
        """Replace a scheme's chunk set with chunks from ``source``."""
        return self._run(scheme_id, source, options or IngestOptions(), reprocess=True)

    def _run(self, scheme_id: str, source: str, options: IngestOptions, reprocess: bool) -> IngestReport:
        self.store.require_scheme(scheme_id)
        started = time.perf_counter()
        with self.locks.hold(scheme_id), span("ingest", {"scheme_id": scheme_id, "reprocess": reprocess}):
            try:
                report = self._ingest_locked(scheme_id, source, options, reprocess)
            except SchemeQAError as exc:
                logger.error("Ingestion of scheme %s failed (%s): %s", scheme_id, exc.kind, exc)
                report = IngestReport(scheme_id=scheme_id, success=False, error=exc.message, error_kind=exc.kind)
            finally:
                if self.cache is not None:
                    self.cache.invalidate_scheme(scheme_id)
        report.duration_seconds = round(time.perf_counter() - started, 3)
        return report

    def _ingest_locked(self, scheme_id: str, source: str, options: IngestOptions, reprocess: bool) -> IngestReport:
        logger.info("%s scheme %s from %s", "Reprocessing" if reprocess else "Ingesting", scheme_id, source)
        chunking = options.chunking()
        chunking.validate()

        extraction = self.extractor.extract(source, options.extraction())
        chunks = self.chunker.chunk(extraction.text, chunking)
        if extraction.pages and not extraction.metadata.get("translated"):
            assign_page_numbers(chunks, extraction.pages)
        if not chunks:
            return IngestReport(
                scheme_id=scheme_id,
                success=False,
                error="Document produced no chunks",
                error_kind="no_content",
            )

        removed = self.store.delete_for_scheme(scheme_id)
        if removed and not reprocess:
            logger.warning("Scheme %s already had %d chunks; replacing them", scheme_id, removed)

        extra = {"fileName": extraction.metadata.get("fileName")}
        if extraction.fallback:
            extra["fallbackExtraction"] = True

        try:
            chunk_ids = self.store.save(scheme_id, chunks, extra)
            model, dimension, simulated = self._embed(chunk_ids, chunks)
            self.store.record_embedding_version(scheme_id, model, dimension)
        except Exception:
            deleted = self.store.delete_for_scheme(scheme_id)
            self.store.record_embedding_version(scheme_id, None, None)
            logger.exception("Embedding failed for scheme %s; removed %d partial chunks", scheme_id, deleted)
            raise

        stats = chunk_stats(chunks)
        logger.info(
            "Ingested scheme %s: %d chunks, %d words (fallback=%s)",
            scheme_id, stats["totalChunks"], stats["totalWords"], extraction.fallback,
        )
        return IngestReport(
            scheme_id=scheme_id,
            success=True,
            chunks_created=stats["totalChunks"],
            total_words=stats["totalWords"],
            total_chars=stats["totalChars"],
            language_distribution=stats["languageDistribution"],
            content_type_distribution=stats["contentTypeDistribution"],
            fallback_extraction=extraction.fallback,
            embedding_model=model,
            embedding_dim=dimension,
            simulated_embeddings=simulated,
            warning=extraction.warning,
        )

    def _embed(self, chunk_ids: List[str], chunks: List[TextChunk]):
        """Embed chunks batch by batch, marking each batch completed."""
        model: Optional[str] = None
        dimension: Optional[int] = None
        simulated = False
        texts = [c.embedding_text for c in chunks]
        for start in range(0, len(texts), self.batch_size):
            end = start + self.batch_size
            batch = self.embedder.embed(texts[start:end])
            if dimension is None:
                model, dimension = batch.model, batch.dimension
            elif batch.dimension != dimension:
                raise EmbeddingDimensionError(
                    "Embedding dimension changed within one scheme's chunk set",
                    {"expected": dimension, "received": batch.dimension},
                )
            simulated = simulated or batch.simulated
            self.store.mark_completed(chunk_ids[start:end], batch.vectors, batch.model, batch.dimension)
            logger.debug("Embedded chunks %d-%d of %d", start, min(end, len(texts)) - 1, len(texts))
        return model, dimension, simulated
