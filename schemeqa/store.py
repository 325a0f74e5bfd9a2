"""Persistence of schemes and their chunks.

Provides:
- ChunkFilter: composable AND filter over chunk columns.
- ChunkStore: bulk save/delete of a scheme's chunk set, filtered lookups,
  usage-statistic updates, processing status and scheme helpers.

A scheme's chunk set is only ever replaced wholesale (delete-all, then insert);
existing chunks are never patched apart from their usage statistics.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update

from schemeqa.chunking import TextChunk
from schemeqa.db import Database
from schemeqa.errors import SchemeNotFoundError
from schemeqa.models import MAX_CONTENT_CHARS, MAX_SECTION_CHARS, Chunk, Scheme

logger = logging.getLogger(__name__)


@dataclass
class ChunkFilter:
    """AND-composed chunk predicates; ``None`` fields are ignored."""
    scheme_id: Optional[str] = None
    scheme_ids: Optional[Sequence[str]] = None
    processing_status: Optional[str] = None
    language: Optional[str] = None
    content_type: Optional[str] = None
    min_quality: Optional[float] = None
    contains: Optional[str] = None
    active_only: bool = False
    limit: Optional[int] = None
    offset: int = 0

    def apply(self, stmt):
        if self.scheme_id is not None:
            stmt = stmt.where(Chunk.scheme_id == self.scheme_id)
        if self.scheme_ids is not None:
            stmt = stmt.where(Chunk.scheme_id.in_(list(self.scheme_ids)))
        if self.processing_status is not None:
            stmt = stmt.where(Chunk.processing_status == self.processing_status)
        if self.language is not None:
            stmt = stmt.where(Chunk.language == self.language)
        if self.content_type is not None:
            stmt = stmt.where(Chunk.content_type == self.content_type)
        if self.min_quality is not None:
            stmt = stmt.where(Chunk.quality_score >= self.min_quality)
        if self.contains:
            stmt = stmt.where(Chunk.content.ilike(f"%{self.contains}%"))
        if self.active_only:
            stmt = stmt.join(Scheme, Scheme.id == Chunk.scheme_id).where(
                Scheme.is_active.is_(True), Scheme.deleted_at.is_(None)
            )
        return stmt


class ChunkStore:
    """Chunk and scheme persistence over a Database.

    Args:
        database: Database owning the engine and session factory.
    """

    def __init__(self, database: Database):
        self.database = database

    # Schemes -----------------------------------------------------------------

    def upsert_scheme(
        self,
        scheme_id: str,
        title: str,
        category: str = "Other",
        description: Optional[str] = None,
        pdf_url: Optional[str] = None,
        pdf_filename: Optional[str] = None,
    ) -> Scheme:
        """Create or update the metadata the core needs for a scheme."""
        with self.database.session_scope() as s:
            scheme = s.get(Scheme, scheme_id)
            if scheme is None:
                scheme = Scheme(id=scheme_id, title=title)
                s.add(scheme)
            scheme.title = title
            scheme.category = category or "Other"
            scheme.description = description
            scheme.pdf_url = pdf_url
            scheme.pdf_filename = pdf_filename
            scheme.is_active = True
            scheme.deleted_at = None
            s.flush()
            return scheme

    def get_scheme(self, scheme_id: str) -> Optional[Scheme]:
        with self.database.session_scope() as s:
            return s.get(Scheme, scheme_id)

    def require_scheme(self, scheme_id: str) -> Scheme:
        """Return an active scheme or raise SchemeNotFoundError."""
        scheme = self.get_scheme(scheme_id)
        if scheme is None or not scheme.is_active or scheme.deleted_at is not None:
            raise SchemeNotFoundError(scheme_id)
        return scheme

    def active_scheme_ids(self) -> List[str]:
        with self.database.session_scope() as s:
            stmt = select(Scheme.id).where(Scheme.is_active.is_(True), Scheme.deleted_at.is_(None)).order_by(Scheme.id)
            return list(s.scalars(stmt))

    def record_embedding_version(self, scheme_id: str, model: Optional[str], dimension: Optional[int]) -> None:
        with self.database.session_scope() as s:
            s.execute(
                update(Scheme)
                .where(Scheme.id == scheme_id)
                .values(embedding_model=model, embedding_dim=dimension, updated_at=datetime.utcnow())
            )

    def delete_scheme(self, scheme_id: str, hard: bool = False) -> int:
        """Delete a scheme and cascade to its chunks.

        Args:
            scheme_id: Scheme to delete.
            hard: Remove the scheme row instead of deactivating it.

        Returns:
            int: Number of chunks removed.

        Raises:
            SchemeNotFoundError: If the scheme does not exist.
        """
        with self.database.session_scope() as s:
            scheme = s.get(Scheme, scheme_id)
            if scheme is None:
                raise SchemeNotFoundError(scheme_id)
            removed = s.execute(delete(Chunk).where(Chunk.scheme_id == scheme_id)).rowcount or 0
            if hard:
                s.delete(scheme)
            else:
                scheme.is_active = False
                scheme.deleted_at = datetime.utcnow()
                scheme.embedding_model = None
                scheme.embedding_dim = None
        logger.info("Deleted scheme %s (%s), removed %d chunks", scheme_id, "hard" if hard else "soft", removed)
        return removed

    # Chunks ------------------------------------------------------------------

    def save(self, scheme_id: str, chunks: Iterable[TextChunk], extra_metadata: Optional[Dict[str, Any]] = None) -> List[str]:
        """Bulk-insert chunks for a scheme with ``pending`` status.

        Args:
            scheme_id: Owning scheme.
            chunks: Chunks in index order.
            extra_metadata: Additional JSON metadata stored on every chunk.

        Returns:
            List[str]: The generated ``chunk_id`` values in input order.
        """
        rows = []
        for chunk in chunks:
            meta = chunk.metadata
            chunk_metadata = {"level": meta.level}
            chunk_metadata.update(extra_metadata or {})
            rows.append(
                Chunk(
                    scheme_id=scheme_id,
                    chunk_id=f"{scheme_id}_chunk_{meta.chunk_index}",
                    content=chunk.content[:MAX_CONTENT_CHARS],
                    section=(meta.section or "")[:MAX_SECTION_CHARS],
                    chunk_index=meta.chunk_index,
                    word_count=meta.word_count,
                    char_count=meta.char_count,
                    language=meta.language,
                    content_type=meta.content_type,
                    quality_score=meta.quality_score,
                    page_number=meta.page_number,
                    keywords=list(meta.keywords),
                    chunk_metadata=chunk_metadata,
                    processing_status="pending",
                )
            )
        with self.database.session_scope() as s:
            s.add_all(rows)
        logger.info("Saved %d chunks for scheme %s", len(rows), scheme_id)
        return [r.chunk_id for r in rows]

    def mark_completed(self, chunk_ids: Sequence[str], vectors: Sequence[Sequence[float]], model: str, dimension: int) -> None:
        """Attach embeddings to pending chunks and mark them completed."""
        if len(chunk_ids) != len(vectors):
            raise ValueError("chunk_ids and vectors must have the same length")
        now = datetime.utcnow()
        with self.database.session_scope() as s:
            rows = {c.chunk_id: c for c in s.scalars(select(Chunk).where(Chunk.chunk_id.in_(list(chunk_ids))))}
            for chunk_id, vector in zip(chunk_ids, vectors):
                row = rows.get(chunk_id)
                if row is None:
                    continue
                row.embedding = list(vector)
                row.embedding_model = model
                row.embedding_dim = dimension
                row.processing_status = "completed"
                row.processed_at = now
                row.error_info = None

    def get_for_scheme(self, scheme_id: str, filters: Optional[ChunkFilter] = None) -> List[Chunk]:
        """Chunks of one scheme ordered by ``chunk_index``."""
        return self.find(replace(filters or ChunkFilter(), scheme_id=scheme_id))

    def find(self, filters: Optional[ChunkFilter] = None) -> List[Chunk]:
        """Chunks matching ``filters`` ordered by scheme and ``chunk_index``."""
        flt = filters or ChunkFilter()
        stmt = flt.apply(select(Chunk)).order_by(Chunk.scheme_id, Chunk.chunk_index)
        if flt.offset:
            stmt = stmt.offset(flt.offset)
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)
        with self.database.session_scope() as s:
            return list(s.scalars(stmt))

    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        with self.database.session_scope() as s:
            return s.scalars(select(Chunk).where(Chunk.chunk_id == chunk_id)).first()

    def delete_for_scheme(self, scheme_id: str) -> int:
        """Delete every chunk of a scheme in one statement.

        Returns:
            int: Number of chunks deleted.
        """
        with self.database.session_scope() as s:
            removed = s.execute(delete(Chunk).where(Chunk.scheme_id == scheme_id)).rowcount or 0
        if removed:
            logger.info("Deleted %d chunks for scheme %s", removed, scheme_id)
        return removed

    def update_usage_stats(self, chunk_id: str, relevance_score: float) -> None:
        """Record one retrieval of a chunk.

        Read-modify-write of the running average
        ``(old_avg * old_count + score) / (old_count + 1)``. Concurrent updates
        may lose an increment.
        """
        with self.database.session_scope() as s:
            row = s.scalars(select(Chunk).where(Chunk.chunk_id == chunk_id)).first()
            if row is None:
                logger.debug("Usage update for unknown chunk %s ignored", chunk_id)
                return
            count = row.retrieval_count or 0
            previous = row.avg_relevance_score or 0.0
            row.avg_relevance_score = (previous * count + float(relevance_score)) / (count + 1)
            row.retrieval_count = count + 1
            row.last_retrieved_at = datetime.utcnow()

    def status(self, scheme_id: str, active_dimension: Optional[int] = None) -> Dict[str, Any]:
        """Processing status of a scheme's chunk set.

        Args:
            scheme_id: Scheme to report on.
            active_dimension: Dimension of the embedding provider currently
                used for queries; defaults to the scheme's recorded version.

        Returns:
            Dict[str, Any]: Counts per processing status, completion percentage
            and ``needsReembedding``: completed chunks whose embedding dimension
            differs from the active one. Such chunks cannot be matched against
            queries until the scheme is reprocessed.
        """
        with self.database.session_scope() as s:
            scheme = s.get(Scheme, scheme_id)
            if scheme is None:
                raise SchemeNotFoundError(scheme_id)
            counts = dict(
                s.execute(
                    select(Chunk.processing_status, func.count())
                    .where(Chunk.scheme_id == scheme_id)
                    .group_by(Chunk.processing_status)
                ).all()
            )
            stale = 0
            expected = active_dimension or scheme.embedding_dim
            if expected:
                stale = s.scalar(
                    select(func.count()).where(
                        Chunk.scheme_id == scheme_id,
                        Chunk.processing_status == "completed",
                        Chunk.embedding_dim != expected,
                    )
                ) or 0

        total = sum(counts.values())
        completed = counts.get("completed", 0)
        return {
            "schemeId": scheme_id,
            "totalChunks": total,
            "completed": completed,
            "pending": counts.get("pending", 0),
            "processing": counts.get("processing", 0),
            "failed": counts.get("failed", 0),
            "completionPercentage": round(completed / total * 100) if total else 0,
            "needsReembedding": stale,
            "embeddingModel": scheme.embedding_model,
            "embeddingDim": scheme.embedding_dim,
        }
