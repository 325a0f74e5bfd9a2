"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints:
- SchemeIn / SchemeOut: scheme metadata registered by the document store.
- IngestRequest / JobOut: ingestion triggers and background job records.
- StatusOut / ChunkOut: processing status and chunk listings.
- SearchRequest / SearchResponse: semantic search.
- AskRequest / AskResponse: question answering, with sources as a tagged union
  discriminated by ``type``.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from schemeqa.config import settings


class SchemeIn(BaseModel):
    """Scheme metadata mirrored from the document store."""
    id: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.:-]+$")
    title: str = Field(..., min_length=1, max_length=200)
    category: str = "Other"
    description: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_filename: Optional[str] = None


class SchemeOut(BaseModel):
    id: str
    title: str
    category: str
    description: Optional[str] = None
    pdf_url: Optional[str] = None
    is_active: bool
    embedding_model: Optional[str] = None
    embedding_dim: Optional[int] = None


class IngestRequest(BaseModel):
    """Request body for ingesting or reprocessing a scheme PDF.

    Attributes:
        source: Local path or HTTP(S) URL; defaults to the scheme's ``pdf_url``.
        chunk_size: Window size in words.
        overlap: Words shared by consecutive windows.
        language: Known document language, skipping detection.
    """
    source: Optional[str] = None
    chunk_size: int = Field(default=settings.CHUNK_SIZE, ge=50, le=2000)
    overlap: int = Field(default=settings.CHUNK_OVERLAP, ge=0, le=500)
    language: Optional[str] = None


class JobOut(BaseModel):
    id: str
    schemeId: str
    type: Literal["ingest", "reprocess"]
    source: str
    status: Literal["pending", "running", "completed", "failed"]
    createdAt: datetime
    startedAt: Optional[datetime] = None
    finishedAt: Optional[datetime] = None
    report: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    errorKind: Optional[str] = None
    retryOf: Optional[str] = None


class StatusOut(BaseModel):
    schemeId: str
    totalChunks: int
    completed: int
    pending: int
    processing: int
    failed: int
    completionPercentage: int
    needsReembedding: int
    embeddingModel: Optional[str] = None
    embeddingDim: Optional[int] = None


class ChunkOut(BaseModel):
    chunkId: str
    content: str
    processingStatus: str
    metadata: Dict[str, Any]
    usageStats: Dict[str, Any]


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Search query")
    scheme_id: Optional[str] = None
    top_k: int = Field(default=settings.TOP_K, ge=1, le=50)
    min_similarity: float = Field(default=settings.MIN_SIMILARITY, ge=-1.0, le=1.0)
    language: Optional[str] = None
    content_type: Optional[Literal["paragraph", "heading", "list", "table", "mixed"]] = None


class SearchHitOut(BaseModel):
    chunkId: str
    schemeId: str
    content: str
    similarityScore: float
    metadata: Dict[str, Any]


class SearchResponse(BaseModel):
    query: str
    canonicalQuery: str
    detectedLanguage: str
    results: List[SearchHitOut]
    totalChunks: int
    relevantChunks: int
    staleChunks: int
    searchParams: Dict[str, Any]


class AskRequest(BaseModel):
    """Request body for asking a question.

    Attributes:
        message: The user question.
        scheme_id: Scheme to ask about; all active schemes when omitted.
        language: Language of the answer.
    """
    message: str = Field(..., description="User question")
    scheme_id: Optional[str] = None
    language: str = Field(default="en", min_length=2, max_length=8)


class PdfChunkSourceOut(BaseModel):
    type: Literal["pdf_chunk"] = "pdf_chunk"
    chunkId: str
    schemeId: str
    relevanceScore: float
    snippet: str
    metadata: Dict[str, Any]


class SchemeInfoSourceOut(BaseModel):
    type: Literal["scheme_info"] = "scheme_info"
    schemeId: str
    title: str
    category: str = ""
    relevanceScore: float = 1.0


SourceOut = Annotated[Union[PdfChunkSourceOut, SchemeInfoSourceOut], Field(discriminator="type")]


class AskResponse(BaseModel):
    """Response body for a question.

    Attributes:
        answer: The answer text in the requested language.
        confidence: Heuristic confidence (not a probability); 0.3 marks the
            fallback answer, 0 an answer that found no relevant content.
        sources: Supporting sources.
        latency_ms: End-to-end latency for the request in milliseconds.
        used_cache: Whether the answer was served from cache.
    """
    answer: str
    confidence: float
    sources: List[SourceOut]
    question_type: str
    language: str
    fallback: bool = False
    not_found: bool = False
    stale_chunks: int = 0
    latency_ms: int
    used_cache: bool = False
