"""Embedding generation over an OpenAI-compatible embeddings API.

Provides:
- Embedder: batch embedding with error-aware retries (rate limits, server
  errors, other failures) and an opt-in simulated-vector mode for offline
  development.
- EmbeddingBatch: vectors plus the provider model and dimension that produced
  them.

The client is injected (normally ``openai.OpenAI``); nothing in this module
holds a global client.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import numpy as np
from tenacity import RetryCallState, Retrying, before_sleep_log, stop_after_attempt

from schemeqa.config import settings
from schemeqa.errors import EmbeddingDimensionError, EmbeddingError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingBatch:
    vectors: List[List[float]]
    model: str
    dimension: int
    simulated: bool = False


def _status_code(exc: Optional[BaseException]) -> Optional[int]:
    # openai.APIStatusError and requests' HTTPError responses both expose a status code
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


class Embedder:
    """Embed texts with bounded, error-aware retries.

    Args:
        client: OpenAI-compatible client exposing ``embeddings.create``.
        model: Embedding model name.
        max_attempts: Total attempts per request.
        rate_limit_base: First wait after a 429, doubled per attempt (seconds).
        server_error_base: First wait after a 5xx, doubled per attempt (seconds).
        retry_delay: Fixed wait after any other error (seconds).
        allow_simulated: Return random vectors tagged ``simulated`` when the
            provider is unreachable. Development only.
        simulated_dim: Dimension of simulated vectors.
    """

    def __init__(
        self,
        client: Any,
        model: str = settings.OPENAI_EMBEDDING_MODEL,
        max_attempts: int = settings.EMBEDDING_MAX_ATTEMPTS,
        rate_limit_base: float = settings.EMBEDDING_RATE_LIMIT_BASE_SECONDS,
        server_error_base: float = settings.EMBEDDING_SERVER_ERROR_BASE_SECONDS,
        retry_delay: float = settings.EMBEDDING_RETRY_DELAY_SECONDS,
        allow_simulated: bool = settings.DEV_SIMULATED_EMBEDDINGS,
        simulated_dim: int = settings.EMBEDDING_DIM,
    ):
        self.client = client
        self.model = model
        self.max_attempts = max_attempts
        self.rate_limit_base = rate_limit_base
        self.server_error_base = server_error_base
        self.retry_delay = retry_delay
        self.allow_simulated = allow_simulated
        self.simulated_dim = simulated_dim

    def _backoff(self, retry_state: RetryCallState) -> float:
        """Wait before the next attempt, chosen by the last error's status code."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        code = _status_code(exc)
        exponent = retry_state.attempt_number - 1
        if code == 429:
            return self.rate_limit_base * (2 ** exponent)
        if code is not None and code >= 500:
            return self.server_error_base * (2 ** exponent)
        return self.retry_delay

    def _create(self, texts: List[str]):
        return self.client.embeddings.create(model=self.model, input=texts)

    def embed(self, texts: List[str]) -> EmbeddingBatch:
        """Embed a batch of texts in one provider request.

        Args:
            texts: Input strings.

        Returns:
            EmbeddingBatch: One vector per input, in input order.

        Raises:
            EmbeddingError: If the provider keeps failing and simulated
                vectors are not allowed.
            EmbeddingDimensionError: If the provider returns vectors of
                different lengths.
        """
        if not texts:
            return EmbeddingBatch(vectors=[], model=self.model, dimension=0)
        if self.client is None:
            return self._unavailable(texts, RuntimeError("no embedding client configured"))

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._backoff,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            resp = retrying(self._create, texts)
        except Exception as exc:  # provider SDKs raise many unrelated error types
            return self._unavailable(texts, exc)

        data = sorted(resp.data, key=lambda d: getattr(d, "index", 0))
        vectors = [list(map(float, d.embedding)) for d in data]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                "Embedding provider returned the wrong number of vectors",
                {"expected": len(texts), "received": len(vectors)},
            )
        dims = {len(v) for v in vectors}
        if len(dims) != 1:
            raise EmbeddingDimensionError(
                "Embedding provider returned vectors of different dimensions", {"dimensions": sorted(dims)}
            )
        return EmbeddingBatch(vectors=vectors, model=getattr(resp, "model", None) or self.model, dimension=dims.pop())

    def embed_query(self, text: str) -> EmbeddingBatch:
        return self.embed([text])

    def _unavailable(self, texts: List[str], exc: BaseException) -> EmbeddingBatch:
        if not self.allow_simulated:
            raise EmbeddingError(
                f"Embedding provider failed after {self.max_attempts} attempts",
                {"model": self.model, "reason": str(exc), "status_code": _status_code(exc)},
            ) from exc

        logger.warning(
            "Embedding provider unavailable (%s); returning SIMULATED vectors. Never use this for real ingestion.",
            exc,
        )
        rng = np.random.default_rng()
        vectors = rng.uniform(-1.0, 1.0, size=(len(texts), self.simulated_dim))
        return EmbeddingBatch(
            vectors=vectors.tolist(), model=f"simulated-{self.simulated_dim}", dimension=self.simulated_dim, simulated=True
        )
