"""Tests for the embedder: retry classification, validation and simulated vectors."""
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from schemeqa.embedding import Embedder, _status_code
from schemeqa.errors import EmbeddingDimensionError, EmbeddingError

from .conftest import FakeOpenAI, StatusError


def _embedder(client, **kwargs):
    params = dict(
        model="text-embedding-3-small",
        max_attempts=3,
        rate_limit_base=0.0,
        server_error_base=0.0,
        retry_delay=0.0,
        allow_simulated=False,
        simulated_dim=8,
    )
    params.update(kwargs)
    return Embedder(client, **params)


def _retry_state(exc, attempt):
    return SimpleNamespace(outcome=SimpleNamespace(exception=lambda: exc), attempt_number=attempt)


class TestEmbed:
    def test_vectors_in_input_order(self):
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ],
            model="text-embedding-3-small",
        )

        batch = _embedder(client).embed(["first", "second"])

        assert batch.vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert batch.dimension == 2
        assert batch.model == "text-embedding-3-small"
        assert batch.simulated is False

    def test_empty_input_skips_provider(self):
        client = MagicMock()
        batch = _embedder(client).embed([])
        assert batch.vectors == []
        client.embeddings.create.assert_not_called()

    def test_rate_limit_is_retried(self):
        fake = FakeOpenAI(dim=16)
        fake.embeddings.error = StatusError(429, "rate limited")
        fake.embeddings.failures = 1

        batch = _embedder(fake).embed_query("scholarship eligibility")

        assert fake.embeddings.calls == 2
        assert batch.dimension == 16

    def test_exhausted_retries_raise(self):
        fake = FakeOpenAI()
        fake.embeddings.error = StatusError(503, "unavailable")
        fake.embeddings.failures = None

        with pytest.raises(EmbeddingError) as exc:
            _embedder(fake).embed(["text"])

        assert fake.embeddings.calls == 3
        assert exc.value.kind == "embedding_failed"
        assert exc.value.details["status_code"] == 503

    def test_wrong_vector_count(self):
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=0, embedding=[1.0])], model="m"
        )
        with pytest.raises(EmbeddingError):
            _embedder(client).embed(["a", "b"])

    def test_mixed_dimensions(self):
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=0, embedding=[1.0, 0.0]), SimpleNamespace(index=1, embedding=[1.0])],
            model="m",
        )
        with pytest.raises(EmbeddingDimensionError):
            _embedder(client).embed(["a", "b"])


class TestSimulated:
    def test_disabled_by_default_without_client(self):
        with pytest.raises(EmbeddingError):
            _embedder(None).embed(["text"])

    def test_simulated_vectors_are_tagged(self):
        fake = FakeOpenAI()
        fake.embeddings.error = StatusError(500)
        fake.embeddings.failures = None

        batch = _embedder(fake, allow_simulated=True).embed(["a", "b"])

        assert batch.simulated is True
        assert batch.model == "simulated-8"
        assert batch.dimension == 8
        assert len(batch.vectors) == 2
        assert all(-1.0 <= x <= 1.0 for v in batch.vectors for x in v)


class TestBackoff:
    def test_rate_limit_waits_double(self):
        embedder = _embedder(None, rate_limit_base=4.0, server_error_base=2.0, retry_delay=1.0)
        assert embedder._backoff(_retry_state(StatusError(429), 1)) == 4.0
        assert embedder._backoff(_retry_state(StatusError(429), 2)) == 8.0

    def test_server_errors_use_their_own_base(self):
        embedder = _embedder(None, rate_limit_base=4.0, server_error_base=2.0, retry_delay=1.0)
        assert embedder._backoff(_retry_state(StatusError(503), 1)) == 2.0
        assert embedder._backoff(_retry_state(StatusError(500), 3)) == 8.0

    def test_other_errors_wait_fixed_delay(self):
        embedder = _embedder(None, rate_limit_base=4.0, server_error_base=2.0, retry_delay=1.0)
        assert embedder._backoff(_retry_state(ConnectionError("reset"), 2)) == 1.0
        assert embedder._backoff(_retry_state(StatusError(400), 1)) == 1.0

    def test_status_code_from_response(self):
        exc = Exception("http")
        exc.response = SimpleNamespace(status_code=429)
        assert _status_code(exc) == 429
        assert _status_code(None) is None
