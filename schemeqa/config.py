"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- API keys and model names (OpenAI chat + embeddings, Azure Translator)
- Data stores (PostgreSQL, Redis) and cache defaults
- PDF extraction limits and remote fetch behaviour
- Chunking parameters
- Embedding retry policy and the development-only simulated fallback
- Retrieval/generation knobs and the ask timeout
- Optional observability (Langfuse, OpenTelemetry console export)

A light-weight local safety warning is logged if OPENAI_API_KEY is not set when not running in Docker.
"""
import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

KNOWN_EMBEDDING_DIMS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")

    # Models
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://schemeqa:schemeqa@db:5432/schemeqa"
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 600

    # Languages
    CANONICAL_LANGUAGE: str = "en"
    SOURCE_LANGUAGE: str = "mr"  # language assumed for Devanagari text

    # Translation (Azure Translator v3)
    AZURE_TRANSLATOR_KEY: str = ""
    AZURE_TRANSLATOR_REGION: str = "eastus"
    AZURE_TRANSLATOR_ENDPOINT: str = "https://api.cognitive.microsofttranslator.com"
    TRANSLATION_TIMEOUT_SECONDS: float = 30.0
    TRANSLATION_MAX_CHARS: int = 50000

    # PDF extraction
    PDF_MAX_BYTES: int = 50 * 1024 * 1024
    PDF_MIN_BYTES: int = 100
    PDF_FETCH_TIMEOUT_SECONDS: float = 120.0
    PDF_FETCH_ATTEMPTS: int = 3
    PDF_FETCH_RETRY_DELAY_SECONDS: float = 3.0

    # Chunking (word counts)
    CHUNK_SIZE: int = 500
    CHUNK_OVERLAP: int = 50
    MIN_CHUNK_SIZE: int = 50
    MAX_CHUNK_SIZE: int = 1000
    MAX_CHUNK_CHARS: int = 5000

    # Embeddings
    EMBEDDING_BATCH_SIZE: int = 100
    EMBEDDING_MAX_ATTEMPTS: int = 3
    EMBEDDING_RATE_LIMIT_BASE_SECONDS: float = 4.0
    EMBEDDING_SERVER_ERROR_BASE_SECONDS: float = 2.0
    EMBEDDING_RETRY_DELAY_SECONDS: float = 1.0
    # Never enable outside local development: noise vectors poison the index.
    DEV_SIMULATED_EMBEDDINGS: bool = False

    # Retrieval/Generation
    TOP_K: int = 5
    MIN_SIMILARITY: float = 0.3
    MIN_QUALITY_SCORE: float = 0.5
    MAX_OUTPUT_TOKENS: int = 700
    GENERATION_TEMPERATURE: float = 0.3
    ASK_TIMEOUT_SECONDS: float = 120.0

    # Workers
    INGEST_MAX_WORKERS: int = 2
    USAGE_STATS_WORKERS: int = 2

    LOG_LEVEL: str = "INFO"

    # Observability (optional)
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    OTEL_CONSOLE_EXPORT: bool = False

    @property
    def EMBEDDING_DIM(self) -> int:
        """Vector size of OPENAI_EMBEDDING_MODEL (1536 for unknown models).

        Only the simulated development embeddings use this; real vectors carry
        their own dimension, which is recorded per scheme.
        """
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        for name, dim in KNOWN_EMBEDDING_DIMS.items():
            if name in model:
                return dim
        return 1536

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()

# Ingestion and /ask need a key; the API container always sets RUNNING_IN_DOCKER.
if os.environ.get("RUNNING_IN_DOCKER", "0") == "0" and not settings.OPENAI_API_KEY:
    logger.warning("OPENAI_API_KEY is not set; embeddings fail and /ask only returns fallback answers.")
