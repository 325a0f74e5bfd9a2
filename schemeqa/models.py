"""Database ORM models.

Defines persistent entities used by the ingestion and retrieval pipelines:
- Scheme: metadata mirrored from the external document store (title, category,
  description, PDF location, active flag) plus the embedding provider version
  of the scheme's current chunk set.
- Chunk: a semantically searchable content chunk with promoted filter columns,
  free-form metadata, usage statistics and an embedding vector.
- EmbeddingVector: column type storing vectors as pgvector ``vector`` on
  PostgreSQL and as JSON on other dialects (SQLite in tests).
"""
from datetime import datetime
from typing import Any, Dict

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from schemeqa.db import Base

PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")
CONTENT_TYPES = ("paragraph", "heading", "list", "table", "mixed")
MAX_CONTENT_CHARS = 5000
MAX_SECTION_CHARS = 200


class EmbeddingVector(TypeDecorator):
    """Dimension-agnostic embedding column.

    The pgvector column is declared without a dimension so chunks embedded by
    different providers can be stored side by side; dimension checks happen
    in the application (see schemeqa.retrieval).
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Vector())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return [float(x) for x in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        # pgvector returns numpy arrays
        return [float(x) for x in value]


class Scheme(Base):
    """Scheme document metadata.

    Only the fields the question-answering core consumes are stored; the
    authoritative record lives in the admin/document store.
    """
    __tablename__ = "schemes"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    category = Column(String(64), nullable=False, default="Other")
    description = Column(Text, nullable=True)
    pdf_url = Column(String(1024), nullable=True)
    pdf_filename = Column(String(512), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime, nullable=True)

    # Embedding provider version of the current chunk set
    embedding_model = Column(String(128), nullable=True)
    embedding_dim = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    chunks = relationship(
        "Chunk",
        back_populates="scheme",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("idx_schemes_active", "is_active"),)


class Chunk(Base):
    """Vector-embedded document chunk used for retrieval.

    Each row represents a chunk of a scheme's PDF along with:
    - chunk-level metadata promoted to columns for filtering (section, index,
      counts, language, content type, quality score, page number)
    - the remaining metadata as JSON (keywords, nesting level, fallback flag)
    - an embedding vector and the provider model/dimension that produced it
    - usage statistics maintained on every retrieval

    Notes:
        Chunks are immutable once ``processing_status`` is ``completed``,
        except for the usage statistics columns.
    """
    __tablename__ = "chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheme_id = Column(String(64), ForeignKey("schemes.id", ondelete="CASCADE"), nullable=False)
    chunk_id = Column(String(128), nullable=False, unique=True)  # {scheme_id}_chunk_{index}
    content = Column(Text, nullable=False)

    # Chunk-level metadata
    section = Column(String(MAX_SECTION_CHARS), nullable=True)
    chunk_index = Column(Integer, nullable=False)
    word_count = Column(Integer, nullable=False)
    char_count = Column(Integer, nullable=False)
    language = Column(String(16), nullable=False, default="en")
    content_type = Column(String(16), nullable=False, default="paragraph")
    quality_score = Column(Float, nullable=False, default=0.5)
    page_number = Column(Integer, nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    chunk_metadata = Column(JSON, nullable=False, default=dict)

    # Embedding vector
    embedding = Column(EmbeddingVector(), nullable=True)
    embedding_model = Column(String(128), nullable=True)
    embedding_dim = Column(Integer, nullable=True)

    processing_status = Column(String(16), nullable=False, default="pending")
    error_info = Column(String(500), nullable=True)
    processed_at = Column(DateTime, nullable=True)

    # Usage statistics
    retrieval_count = Column(Integer, nullable=False, default=0)
    last_retrieved_at = Column(DateTime, nullable=True)
    avg_relevance_score = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    scheme = relationship("Scheme", back_populates="chunks")

    __table_args__ = (
        Index("idx_chunks_scheme_index", "scheme_id", "chunk_index"),
        Index("idx_chunks_scheme_status", "scheme_id", "processing_status"),
        Index("idx_chunks_language", "language"),
        Index("idx_chunks_content_type", "content_type"),
    )

    def metadata_dict(self) -> Dict[str, Any]:
        """Public metadata view combining promoted columns and the JSON blob."""
        data: Dict[str, Any] = dict(self.chunk_metadata or {})
        data.update(
            {
                "schemeId": self.scheme_id,
                "section": self.section or "",
                "chunkIndex": self.chunk_index,
                "wordCount": self.word_count,
                "charCount": self.char_count,
                "language": self.language,
                "contentType": self.content_type,
                "keywords": list(self.keywords or []),
                "qualityScore": self.quality_score,
            }
        )
        if self.page_number is not None:
            data["pageNumber"] = self.page_number
        return data

    def usage_stats(self) -> Dict[str, Any]:
        return {
            "retrievalCount": self.retrieval_count or 0,
            "lastRetrievedAt": self.last_retrieved_at,
            "avgRelevanceScore": self.avg_relevance_score,
        }
