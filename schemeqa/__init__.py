"""Question answering over government-scheme PDFs.

Submodules overview:
- main: FastAPI application bootstrap, routes and error mapping.
- config: Application settings and environment variable loading.
- errors: Error hierarchy shared by every component.
- db: Database engine/session management helpers.
- models: ORM models (schemes, chunks) and the embedding column type.
- schemas: Pydantic request/response models for API contracts.
- text: Text normalization and language heuristics.
- translation: Azure Translator client with identity fallback.
- extraction: PDF fetching and tiered text extraction with a fallback document.
- chunking: Structure-aware chunking and chunk quality scoring.
- embedding: OpenAI embedding calls with retry and dimension checks.
- store: Chunk and scheme persistence.
- retrieval: Semantic search over stored chunk embeddings.
- router: Question-type classification and answer guidelines.
- generation: Answer synthesis, refinement and fallback answers.
- cache: Redis answer cache with per-scheme invalidation.
- service: Component wiring and the ask-a-question orchestration.
- ingestion: Ingestion pipeline, background jobs and the PDF ingest CLI.
- obs: Observability utilities (tracing/spans).
"""
