"""Semantic search over stored chunk embeddings.

This module implements:
- cosine_similarity: bounded cosine similarity, 0 for zero vectors and for
  vectors of different dimensions
- SemanticSearchEngine.search: translate -> embed -> load eligible chunks ->
  score -> threshold -> sort -> top-k -> record usage
- search_across_schemes and suggest helpers

Scoring is a brute-force scan over the eligible chunk set loaded into memory;
there is no approximate-nearest-neighbour index. Chunks whose embedding
dimension differs from the query vector (left behind by an embedding provider
change) are counted as stale and reported rather than silently dropped.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np

from schemeqa.config import settings
from schemeqa.embedding import Embedder
from schemeqa.errors import EmptyQueryError, SchemeNotFoundError
from schemeqa.models import Chunk
from schemeqa.store import ChunkFilter, ChunkStore
from schemeqa.translation import Translator

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clipped to [-1, 1].

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        float: Similarity, or 0.0 when either vector has zero magnitude or the
        dimensions differ.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0.0 or nb == 0.0 or not (np.isfinite(na) and np.isfinite(nb)):
        return 0.0
    score = float(np.dot(va, vb) / (na * nb))
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, -1.0, 1.0))


@dataclass
class SearchOptions:
    top_k: int = settings.TOP_K
    min_similarity: float = settings.MIN_SIMILARITY
    min_quality: float = settings.MIN_QUALITY_SCORE
    language: Optional[str] = None
    content_type: Optional[str] = None
    record_usage: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topK": self.top_k,
            "minSimilarity": self.min_similarity,
            "minQuality": self.min_quality,
            "language": self.language,
            "contentType": self.content_type,
        }


@dataclass
class SearchHit:
    chunk_id: str
    scheme_id: str
    content: str
    similarity_score: float
    metadata: Dict[str, Any]

    @property
    def section(self) -> str:
        return self.metadata.get("section") or ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "schemeId": self.scheme_id,
            "content": self.content,
            "similarityScore": self.similarity_score,
            "metadata": self.metadata,
        }


@dataclass
class SearchResult:
    query: str
    canonical_query: str
    detected_language: str
    results: List[SearchHit] = field(default_factory=list)
    total_chunks: int = 0
    relevant_chunks: int = 0
    stale_chunks: int = 0
    search_params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "canonicalQuery": self.canonical_query,
            "detectedLanguage": self.detected_language,
            "results": [h.to_dict() for h in self.results],
            "totalChunks": self.total_chunks,
            "relevantChunks": self.relevant_chunks,
            "staleChunks": self.stale_chunks,
            "searchParams": self.search_params,
        }


class SemanticSearchEngine:
    """Rank a scheme's (or all active schemes') chunks against a query.

    Args:
        store: Chunk store to read candidates from and write usage to.
        embedder: Embedder for query vectors.
        translator: Optional translator bringing queries to the canonical language.
        usage_executor: Executor for background usage-statistic writes; one is
            created (and owned) when omitted.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: Embedder,
        translator: Optional[Translator] = None,
        usage_executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.translator = translator
        self._owns_executor = usage_executor is None
        self._executor = usage_executor or ThreadPoolExecutor(
            max_workers=settings.USAGE_STATS_WORKERS, thread_name_prefix="usage-stats"
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self.usage_failures = 0
        self.active_dimension: Optional[int] = None

    def search(self, query: str, scheme_id: Optional[str] = None, options: Optional[SearchOptions] = None) -> SearchResult:
        """Search chunks for ``query``.

        Args:
            query: User query in any supported language.
            scheme_id: Restrict to one scheme; all active schemes when None.
            options: Ranking options.

        Returns:
            SearchResult: Hits sorted by descending similarity plus provenance.

        Raises:
            EmptyQueryError: If the query is empty or whitespace.
            SchemeNotFoundError: If ``scheme_id`` does not name an active scheme.
            EmbeddingError: If the query cannot be embedded.
        """
        options = options or SearchOptions()
        if not query or not query.strip():
            raise EmptyQueryError()
        if scheme_id is not None:
            self.store.require_scheme(scheme_id)

        canonical, detected, vector = self._prepare_query(query)
        flt = ChunkFilter(
            scheme_id=scheme_id,
            processing_status="completed",
            min_quality=options.min_quality,
            language=options.language,
            content_type=options.content_type,
            active_only=scheme_id is None,
        )
        return self._rank(query, canonical, detected, vector, flt, options, scheme_id)

    def search_across_schemes(
        self, query: str, scheme_ids: Sequence[str], options: Optional[SearchOptions] = None
    ) -> Dict[str, Any]:
        """Search several schemes separately, grouping the hits per scheme.

        Unknown or inactive schemes are skipped.
        """
        options = options or SearchOptions()
        if not query or not query.strip():
            raise EmptyQueryError()
        canonical, detected, vector = self._prepare_query(query)

        grouped: Dict[str, SearchResult] = {}
        total = 0
        for scheme_id in scheme_ids:
            try:
                self.store.require_scheme(scheme_id)
            except SchemeNotFoundError:
                logger.warning("Skipping unknown scheme %s in multi-scheme search", scheme_id)
                continue
            flt = ChunkFilter(
                scheme_id=scheme_id,
                processing_status="completed",
                min_quality=options.min_quality,
                language=options.language,
                content_type=options.content_type,
            )
            result = self._rank(query, canonical, detected, vector, flt, options, scheme_id)
            if result.results:
                grouped[scheme_id] = result
                total += len(result.results)

        return {
            "query": query,
            "results": grouped,
            "totalResults": total,
            "schemesSearched": len(scheme_ids),
            "schemesWithResults": len(grouped),
        }

    def suggest(self, partial: str, scheme_id: Optional[str] = None, limit: int = 5) -> List[str]:
        """Keyword and two-word phrase suggestions containing ``partial``."""
        if not partial or len(partial.strip()) < 2:
            return []
        needle = partial.strip().lower()
        chunks = self.store.find(
            ChunkFilter(
                scheme_id=scheme_id,
                processing_status="completed",
                contains=needle,
                active_only=scheme_id is None,
                limit=limit * 2,
            )
        )
        suggestions: List[str] = []
        seen: Set[str] = set()

        def _add(candidate: str) -> None:
            if candidate not in seen:
                seen.add(candidate)
                suggestions.append(candidate)

        for chunk in chunks:
            for keyword in chunk.keywords or []:
                if needle in keyword.lower():
                    _add(keyword)
            words = chunk.content.lower().split()
            for first, second in zip(words, words[1:]):
                phrase = f"{first} {second}"
                if needle in phrase:
                    _add(phrase)
        return suggestions[:limit]

    def flush_usage(self, timeout: Optional[float] = None) -> None:
        """Block until queued usage-statistic writes have finished."""
        with self._lock:
            pending = list(self._pending)
        for fut in pending:
            try:
                fut.result(timeout=timeout)
            except Exception:
                # already logged by the done-callback
                pass

    def close(self) -> None:
        self.flush_usage()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _prepare_query(self, query: str):
        if self.translator is not None:
            translation = self.translator.to_canonical(query.strip())
            canonical, detected = translation.text, translation.detected_language
        else:
            canonical, detected = query.strip(), settings.CANONICAL_LANGUAGE

        batch = self.embedder.embed_query(canonical)
        self.active_dimension = batch.dimension
        return canonical, detected, np.asarray(batch.vectors[0], dtype=float)

    def _rank(
        self,
        query: str,
        canonical: str,
        detected: str,
        vector: np.ndarray,
        flt: ChunkFilter,
        options: SearchOptions,
        scheme_id: Optional[str],
    ) -> SearchResult:
        candidates: List[Chunk] = self.store.find(flt)

        scored: List[SearchHit] = []
        stale = 0
        for chunk in candidates:
            if not chunk.embedding or len(chunk.embedding) != vector.shape[0]:
                stale += 1
                continue
            score = cosine_similarity(vector, chunk.embedding)
            if score < options.min_similarity:
                continue
            scored.append(
                SearchHit(
                    chunk_id=chunk.chunk_id,
                    scheme_id=chunk.scheme_id,
                    content=chunk.content,
                    similarity_score=score,
                    metadata=chunk.metadata_dict(),
                )
            )
        if stale:
            logger.warning(
                "%d chunks%s need re-embedding: stored dimension differs from query dimension %d",
                stale,
                f" of scheme {scheme_id}" if scheme_id else "",
                vector.shape[0],
            )

        # stable sort keeps document order among equal scores
        scored.sort(key=lambda h: h.similarity_score, reverse=True)
        hits = scored[: max(0, options.top_k)]

        if options.record_usage and hits:
            self._record_usage(hits)

        logger.info(
            "Search '%s' scheme=%s: %d candidates, %d relevant, %d returned",
            canonical[:80], scheme_id or "*", len(candidates), len(scored), len(hits),
        )
        params = options.to_dict()
        params["schemeId"] = scheme_id
        return SearchResult(
            query=query,
            canonical_query=canonical,
            detected_language=detected,
            results=hits,
            total_chunks=len(candidates),
            relevant_chunks=len(scored),
            stale_chunks=stale,
            search_params=params,
        )

    def _record_usage(self, hits: List[SearchHit]) -> None:
        for hit in hits:
            fut = self._executor.submit(self.store.update_usage_stats, hit.chunk_id, hit.similarity_score)
            with self._lock:
                self._pending.add(fut)
            fut.add_done_callback(self._usage_done)

    def _usage_done(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)
        exc = fut.exception()
        if exc is not None:
            self.usage_failures += 1
            logger.error("Usage statistics update failed: %s", exc)
