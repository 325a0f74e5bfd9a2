"""FastAPI application entrypoint and routes.

Exposes health, languages, scheme registration, ingestion, status, search and /ask
endpoints, configures CORS and maps service errors to HTTP status codes.
Components are built once per application by schemeqa.service.build_services
(or injected, e.g. in tests) and kept on ``app.state.services``.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from schemeqa.config import settings
from schemeqa.errors import (
    EmptyQueryError,
    JobNotFoundError,
    QueryTimeoutError,
    SchemeNotFoundError,
    SchemeQAError,
)
from schemeqa.ingestion.pipeline import IngestOptions
from schemeqa.retrieval import SearchOptions
from schemeqa.schemas import (
    AskRequest,
    AskResponse,
    ChunkOut,
    IngestRequest,
    JobOut,
    SchemeIn,
    SchemeOut,
    SearchRequest,
    SearchResponse,
    StatusOut,
)
from schemeqa.service import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    EmptyQueryError: 400,
    SchemeNotFoundError: 404,
    JobNotFoundError: 404,
    QueryTimeoutError: 504,
}


def _status_for(exc: SchemeQAError) -> int:
    for cls, code in ERROR_STATUS.items():
        if isinstance(exc, cls):
            return code
    return 502


def _services(request: Request) -> Services:
    return request.app.state.services


def _scheme_out(scheme) -> SchemeOut:
    return SchemeOut(
        id=scheme.id,
        title=scheme.title,
        category=scheme.category,
        description=scheme.description,
        pdf_url=scheme.pdf_url,
        is_active=scheme.is_active,
        embedding_model=scheme.embedding_model,
        embedding_dim=scheme.embedding_dim,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create the API application.

    Args:
        services: Pre-built components; built from settings at startup when None.

    Returns:
        FastAPI: The configured application.
    """
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    app = FastAPI(title="Scheme QA API", version="0.1.0")
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_credentials=True,
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup() -> None:
        """Build services if needed and ensure the database schema exists."""
        if app.state.services is None:
            app.state.services = build_services(settings)
        app.state.services.database.init()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        if app.state.services is not None:
            app.state.services.close()

    @app.exception_handler(SchemeQAError)
    def handle_service_error(request: Request, exc: SchemeQAError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request %s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc)
        return JSONResponse(status_code=status, content={"error": exc.kind, "detail": exc.message})

    @app.get("/health")
    def health():
        """Liveness probe endpoint.

        Returns:
            dict: {"status": "ok"} when the service is running.
        """
        return {"status": "ok"}

    @app.get("/languages")
    def languages(request: Request):
        """Languages questions can be asked and answered in, plus translator availability."""
        translator = _services(request).translator
        return {"languages": translator.supported_languages(), "translator": translator.stats()}

    @app.post("/schemes", response_model=SchemeOut, status_code=201)
    def register_scheme(body: SchemeIn, request: Request) -> SchemeOut:
        """Create or update the metadata of a scheme."""
        scheme = _services(request).store.upsert_scheme(
            body.id,
            title=body.title,
            category=body.category,
            description=body.description,
            pdf_url=body.pdf_url,
            pdf_filename=body.pdf_filename,
        )
        return _scheme_out(scheme)

    @app.get("/schemes/{scheme_id}", response_model=SchemeOut)
    def get_scheme(scheme_id: str, request: Request) -> SchemeOut:
        return _scheme_out(_services(request).store.require_scheme(scheme_id))

    @app.delete("/schemes/{scheme_id}")
    def delete_scheme(scheme_id: str, request: Request, hard: bool = False):
        """Soft (default) or hard delete a scheme; its chunks are always removed."""
        services = _services(request)
        removed = services.store.delete_scheme(scheme_id, hard=hard)
        services.cache.invalidate_scheme(scheme_id)
        return {"schemeId": scheme_id, "deletedChunks": removed, "hard": hard}

    def _start_job(scheme_id: str, body: Optional[IngestRequest], request: Request, reprocess: bool) -> JobOut:
        services = _services(request)
        scheme = services.store.require_scheme(scheme_id)
        body = body or IngestRequest()
        source = body.source or scheme.pdf_url
        if not source:
            raise HTTPException(status_code=400, detail="No PDF source given and the scheme has no pdf_url")
        options = IngestOptions(
            chunk_size=body.chunk_size,
            overlap=body.overlap,
            source_language=body.language,
            file_name=scheme.pdf_filename,
        )
        try:
            options.chunking().validate()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        job = services.jobs.submit(scheme_id, source, options, reprocess=reprocess)
        return JobOut(**job.to_dict())

    @app.post("/schemes/{scheme_id}/ingest", response_model=JobOut, status_code=202)
    def ingest(scheme_id: str, request: Request, body: Optional[IngestRequest] = None) -> JobOut:
        """Start ingesting the scheme's PDF in the background."""
        return _start_job(scheme_id, body, request, reprocess=False)

    @app.post("/schemes/{scheme_id}/reprocess", response_model=JobOut, status_code=202)
    def reprocess(scheme_id: str, request: Request, body: Optional[IngestRequest] = None) -> JobOut:
        """Start replacing the scheme's chunk set in the background."""
        return _start_job(scheme_id, body, request, reprocess=True)

    @app.get("/schemes/{scheme_id}/status", response_model=StatusOut)
    def status(scheme_id: str, request: Request) -> StatusOut:
        return StatusOut(**_services(request).status(scheme_id))

    @app.get("/schemes/{scheme_id}/chunks", response_model=List[ChunkOut])
    def list_chunks(
        scheme_id: str,
        request: Request,
        language: Optional[str] = None,
        content_type: Optional[str] = None,
        processing_status: Optional[str] = None,
        min_quality: Optional[float] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ChunkOut]:
        from schemeqa.store import ChunkFilter

        store = _services(request).store
        store.require_scheme(scheme_id)
        rows = store.get_for_scheme(
            scheme_id,
            ChunkFilter(
                language=language,
                content_type=content_type,
                processing_status=processing_status,
                min_quality=min_quality,
                limit=min(max(limit, 1), 1000),
                offset=max(offset, 0),
            ),
        )
        return [
            ChunkOut(
                chunkId=r.chunk_id,
                content=r.content,
                processingStatus=r.processing_status,
                metadata=r.metadata_dict(),
                usageStats=r.usage_stats(),
            )
            for r in rows
        ]

    @app.get("/schemes/{scheme_id}/jobs", response_model=List[JobOut])
    def list_jobs(scheme_id: str, request: Request) -> List[JobOut]:
        return [JobOut(**j.to_dict()) for j in _services(request).jobs.list_for_scheme(scheme_id)]

    @app.get("/jobs/{job_id}", response_model=JobOut)
    def get_job(job_id: str, request: Request) -> JobOut:
        return JobOut(**_services(request).jobs.get(job_id).to_dict())

    @app.post("/jobs/{job_id}/retry", response_model=JobOut, status_code=202)
    def retry_job(job_id: str, request: Request) -> JobOut:
        try:
            job = _services(request).jobs.retry(job_id)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return JobOut(**job.to_dict())

    @app.post("/search", response_model=SearchResponse)
    def search(body: SearchRequest, request: Request) -> SearchResponse:
        """Semantic search over one scheme or all active schemes."""
        services = _services(request)
        options = SearchOptions(
            top_k=body.top_k,
            min_similarity=body.min_similarity,
            min_quality=services.config.MIN_QUALITY_SCORE,
            language=body.language,
            content_type=body.content_type,
        )
        result = services.search.search(body.query, body.scheme_id, options)
        return SearchResponse(**result.to_dict())

    @app.get("/search/suggestions")
    def suggestions(request: Request, q: str, scheme_id: Optional[str] = None, limit: int = 5):
        return {"query": q, "suggestions": _services(request).search.suggest(q, scheme_id, min(max(limit, 1), 20))}

    @app.post("/ask", response_model=AskResponse)
    def ask(req: AskRequest, request: Request) -> AskResponse:
        """Answer a question about a scheme (or all active schemes).

        Workflow:
        - Reject empty questions and unknown schemes
        - Check the Redis cache keyed by question + scheme + language
        - Translate and embed the question, rank chunks by cosine similarity
        - Answer "not found" without a model call when nothing is relevant
        - Otherwise generate a grounded answer (fallback excerpt if the model fails)
        - Translate the answer to the requested language and cache it

        Args:
            req: AskRequest payload.

        Returns:
            AskResponse: Answer, confidence, sources, latency and cache flag.
        """
        result = _services(request).qa.ask(req.message, req.scheme_id, req.language)
        return AskResponse(
            answer=result.answer,
            confidence=result.confidence,
            sources=result.sources,
            question_type=result.question_type,
            language=result.language,
            fallback=result.fallback,
            not_found=result.not_found,
            stale_chunks=result.stale_chunks,
            latency_ms=result.latency_ms,
            used_cache=result.used_cache,
        )

    return app


app = create_app()
