"""Service wiring and the ask-a-question orchestration.

Provides:
- AskResult: answer payload returned to the chat layer.
- SchemeQAService.ask: cache -> semantic search -> context assembly -> answer
  synthesis, bounded by ASK_TIMEOUT_SECONDS.
- Services / build_services: explicit construction of every component with its
  clients (OpenAI, HTTP session, Redis, database) injected.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import redis
import requests
from openai import OpenAI

from schemeqa.cache import AnswerCache
from schemeqa.chunking import Chunker
from schemeqa.config import Settings, settings
from schemeqa.db import Database
from schemeqa.embedding import Embedder
from schemeqa.errors import EmptyQueryError, QueryTimeoutError
from schemeqa.extraction import PdfExtractor
from schemeqa.generation import Answer, AnswerSynthesizer, PdfChunkSource, SchemeInfoSource, Source
from schemeqa.ingestion.jobs import IngestionJobRunner
from schemeqa.ingestion.pipeline import IngestionPipeline, SchemeLocks
from schemeqa.obs import Trace, span
from schemeqa.retrieval import SearchOptions, SemanticSearchEngine
from schemeqa.router import classify_question
from schemeqa.store import ChunkStore
from schemeqa.translation import Translator

logger = logging.getLogger(__name__)


@dataclass
class AskResult:
    answer: str
    confidence: float
    sources: List[Dict[str, Any]] = field(default_factory=list)
    question_type: str = "general"
    language: str = "en"
    fallback: bool = False
    not_found: bool = False
    stale_chunks: int = 0
    used_cache: bool = False
    latency_ms: int = 0

    @classmethod
    def from_answer(cls, answer: Answer, stale_chunks: int = 0) -> "AskResult":
        return cls(
            answer=answer.answer,
            confidence=answer.confidence,
            sources=answer.sources,
            question_type=answer.question_type,
            language=answer.language,
            fallback=answer.fallback,
            not_found=answer.not_found,
            stale_chunks=stale_chunks,
        )

    def cache_payload(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "confidence": self.confidence,
            "sources": self.sources,
            "question_type": self.question_type,
            "language": self.language,
            "not_found": self.not_found,
        }


class SchemeQAService:
    """Answer questions about one scheme or all active schemes.

    Args:
        store: Chunk store (scheme lookups).
        search: Semantic search engine.
        synthesizer: Answer synthesizer.
        cache: Optional answer cache.
        timeout: End-to-end budget for one question, in seconds.
        search_options: Ranking options for the retrieval step.
    """

    def __init__(
        self,
        store: ChunkStore,
        search: SemanticSearchEngine,
        synthesizer: AnswerSynthesizer,
        cache: Optional[AnswerCache] = None,
        timeout: float = settings.ASK_TIMEOUT_SECONDS,
        search_options: Optional[SearchOptions] = None,
    ):
        self.store = store
        self.search = search
        self.synthesizer = synthesizer
        self.cache = cache
        self.timeout = timeout
        self.search_options = search_options or SearchOptions()
        self._executor = ThreadPoolExecutor(thread_name_prefix="ask")

    def ask(self, message: str, scheme_id: Optional[str] = None, language: str = "en") -> AskResult:
        """Answer ``message``.

        Args:
            message: User question in any supported language.
            scheme_id: Scheme to answer about; all active schemes when None.
            language: Language of the returned answer.

        Returns:
            AskResult: Answer, heuristic confidence and sources. When no chunk
            is relevant enough the answer says so, with no sources and
            confidence 0, and no model call is made.

        Raises:
            EmptyQueryError: If the message is empty.
            SchemeNotFoundError: If ``scheme_id`` is unknown or inactive.
            QueryTimeoutError: If answering takes longer than the timeout.
            EmbeddingError: If the question cannot be embedded.
        """
        t0 = time.time()
        if not message or not message.strip():
            raise EmptyQueryError()
        language = language or "en"
        if scheme_id is not None:
            self.store.require_scheme(scheme_id)

        trace = Trace("ask", input={"message": message, "scheme_id": scheme_id, "language": language})

        cached = self.cache.get(message, scheme_id, language) if self.cache else None
        if cached:
            latency_ms = int((time.time() - t0) * 1000)
            trace.event("cache_hit", {"latency_ms": latency_ms})
            trace.end(output={"used_cache": True, "latency_ms": latency_ms})
            return AskResult(**cached, used_cache=True, latency_ms=latency_ms)

        future = self._executor.submit(self._answer, message, scheme_id, language, trace)
        try:
            result = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.error("Question timed out after %.0fs (scheme=%s)", self.timeout, scheme_id or "*")
            trace.end(output={"timeout": True})
            raise QueryTimeoutError(self.timeout)

        result.latency_ms = int((time.time() - t0) * 1000)
        trace.end(output={"used_cache": False, "latency_ms": result.latency_ms, "fallback": result.fallback})
        if self.cache and not result.fallback:
            self.cache.set(message, scheme_id, language, result.cache_payload())
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _answer(self, message: str, scheme_id: Optional[str], language: str, trace: Trace) -> AskResult:
        with span("retrieve", {"scheme_id": scheme_id}):
            found = self.search.search(message, scheme_id, self.search_options)
        trace.event(
            "retrieval_result",
            {
                "total_chunks": found.total_chunks,
                "returned": len(found.results),
                "stale_chunks": found.stale_chunks,
                "top_score": found.results[0].similarity_score if found.results else 0.0,
            },
        )

        if not found.results:
            profile = classify_question(found.canonical_query)
            trace.event("not_found", {"question_type": profile.type})
            return AskResult.from_answer(self.synthesizer.not_found(language, profile), found.stale_chunks)

        context: List[Source] = [
            PdfChunkSource(
                chunk_id=hit.chunk_id,
                scheme_id=hit.scheme_id,
                text=hit.content,
                relevance_score=hit.similarity_score,
                metadata=hit.metadata,
            )
            for hit in found.results
        ]
        if scheme_id is not None:
            scheme = self.store.get_scheme(scheme_id)
            if scheme is not None:
                context.append(
                    SchemeInfoSource(
                        scheme_id=scheme.id,
                        title=scheme.title,
                        category=scheme.category or "",
                        description=scheme.description or "",
                    )
                )

        with span("generate", {"sources": len(context)}):
            answer = self.synthesizer.answer(found.canonical_query, context, language, trace=trace)
        return AskResult.from_answer(answer, found.stale_chunks)


@dataclass
class Services:
    """Explicitly constructed components shared by the API and the CLI."""
    config: Settings
    database: Database
    store: ChunkStore
    translator: Translator
    extractor: PdfExtractor
    chunker: Chunker
    embedder: Embedder
    search: SemanticSearchEngine
    synthesizer: AnswerSynthesizer
    cache: AnswerCache
    pipeline: IngestionPipeline
    jobs: IngestionJobRunner
    qa: SchemeQAService

    def status(self, scheme_id: str) -> Dict[str, Any]:
        return self.store.status(scheme_id, self.search.active_dimension)

    def close(self) -> None:
        self.jobs.shutdown(wait=True)
        self.qa.close()
        self.search.close()
        self.database.dispose()


def build_services(
    config: Settings = settings,
    database: Optional[Database] = None,
    embedding_client: Any = None,
    chat_client: Any = None,
    http_session: Optional[requests.Session] = None,
    redis_client: Optional[redis.Redis] = None,
) -> Services:
    """Construct every component from ``config``.

    Clients that are not passed in are created here: one OpenAI client (only
    when an API key is configured), one HTTP session shared by the extractor
    and translator, and one Redis client when caching is enabled.
    """
    database = database or Database(config.DATABASE_URL)
    http_session = http_session or requests.Session()

    if embedding_client is None or chat_client is None:
        openai_client = (
            OpenAI(api_key=config.OPENAI_API_KEY, timeout=config.OPENAI_TIMEOUT_SECONDS)
            if config.OPENAI_API_KEY
            else None
        )
        embedding_client = embedding_client or openai_client
        chat_client = chat_client or openai_client
    if redis_client is None and config.CACHE_ENABLED and config.REDIS_URL:
        redis_client = redis.from_url(config.REDIS_URL, decode_responses=True)

    store = ChunkStore(database)
    translator = Translator(
        session=http_session if config.AZURE_TRANSLATOR_KEY else None,
        api_key=config.AZURE_TRANSLATOR_KEY,
        region=config.AZURE_TRANSLATOR_REGION,
        endpoint=config.AZURE_TRANSLATOR_ENDPOINT,
        canonical_language=config.CANONICAL_LANGUAGE,
        source_language=config.SOURCE_LANGUAGE,
        timeout=config.TRANSLATION_TIMEOUT_SECONDS,
        max_chars=config.TRANSLATION_MAX_CHARS,
    )
    extractor = PdfExtractor(
        session=http_session,
        translator=translator,
        max_bytes=config.PDF_MAX_BYTES,
        min_bytes=config.PDF_MIN_BYTES,
        fetch_timeout=config.PDF_FETCH_TIMEOUT_SECONDS,
        fetch_attempts=config.PDF_FETCH_ATTEMPTS,
        fetch_retry_delay=config.PDF_FETCH_RETRY_DELAY_SECONDS,
    )
    chunker = Chunker(config.CANONICAL_LANGUAGE, config.SOURCE_LANGUAGE)
    embedder = Embedder(
        embedding_client,
        model=config.OPENAI_EMBEDDING_MODEL,
        max_attempts=config.EMBEDDING_MAX_ATTEMPTS,
        rate_limit_base=config.EMBEDDING_RATE_LIMIT_BASE_SECONDS,
        server_error_base=config.EMBEDDING_SERVER_ERROR_BASE_SECONDS,
        retry_delay=config.EMBEDDING_RETRY_DELAY_SECONDS,
        allow_simulated=config.DEV_SIMULATED_EMBEDDINGS,
        simulated_dim=config.EMBEDDING_DIM,
    )
    if config.DEV_SIMULATED_EMBEDDINGS:
        logger.warning("DEV_SIMULATED_EMBEDDINGS is enabled; do not ingest production documents")
    search = SemanticSearchEngine(store, embedder, translator)
    synthesizer = AnswerSynthesizer(
        chat_client,
        translator=translator,
        model=config.OPENAI_MODEL,
        max_tokens=config.MAX_OUTPUT_TOKENS,
        temperature=config.GENERATION_TEMPERATURE,
        canonical_language=config.CANONICAL_LANGUAGE,
    )
    cache = AnswerCache(redis_client, ttl_seconds=config.CACHE_TTL_SECONDS)
    pipeline = IngestionPipeline(
        store, extractor, chunker, embedder, cache=cache, batch_size=config.EMBEDDING_BATCH_SIZE, locks=SchemeLocks()
    )
    jobs = IngestionJobRunner(pipeline, max_workers=config.INGEST_MAX_WORKERS)
    qa = SchemeQAService(
        store,
        search,
        synthesizer,
        cache=cache,
        timeout=config.ASK_TIMEOUT_SECONDS,
        search_options=SearchOptions(
            top_k=config.TOP_K, min_similarity=config.MIN_SIMILARITY, min_quality=config.MIN_QUALITY_SCORE
        ),
    )
    return Services(
        config=config,
        database=database,
        store=store,
        translator=translator,
        extractor=extractor,
        chunker=chunker,
        embedder=embedder,
        search=search,
        synthesizer=synthesizer,
        cache=cache,
        pipeline=pipeline,
        jobs=jobs,
        qa=qa,
    )
