"""Tests for the Redis answer cache."""
from unittest.mock import MagicMock

import redis

from schemeqa.cache import AnswerCache, _index_key, _key_for_question

from .conftest import FakeRedis

PAYLOAD = {"answer": "Residents of the state can apply.", "confidence": 0.7}


def test_key_normalizes_question():
    a = _key_for_question("  What are the Benefits? ", "pm", "en")
    b = _key_for_question("what are   the benefits?", "pm", "en")
    assert a == b
    assert a.startswith("schemeqa:ask:v1:")


def test_key_separates_scheme_and_language():
    base = _key_for_question("benefits", "pm", "en")
    assert base != _key_for_question("benefits", "pm", "mr")
    assert base != _key_for_question("benefits", "other", "en")
    assert base != _key_for_question("benefits", None, "en")


class TestAnswerCache:
    def test_round_trip_with_ttl(self):
        client = FakeRedis()
        cache = AnswerCache(client, ttl_seconds=120)

        cache.set("What are the benefits?", "pm", "en", PAYLOAD)

        assert cache.get("what are the benefits?", "pm", "en") == PAYLOAD
        assert list(client.ttls.values()) == [120]
        assert client.smembers(_index_key("pm"))

    def test_miss(self):
        assert AnswerCache(FakeRedis()).get("unknown", "pm", "en") is None

    def test_disabled_without_client(self):
        cache = AnswerCache(None)
        assert not cache.enabled
        cache.set("q", "pm", "en", PAYLOAD)
        assert cache.get("q", "pm", "en") is None
        assert cache.invalidate_scheme("pm") == 0

    def test_invalidate_scheme_drops_scheme_and_global_answers(self):
        client = FakeRedis()
        cache = AnswerCache(client)
        cache.set("q1", "pm", "en", PAYLOAD)
        cache.set("q2", "pm", "mr", PAYLOAD)
        cache.set("q3", None, "en", PAYLOAD)
        cache.set("q4", "other", "en", PAYLOAD)

        removed = cache.invalidate_scheme("pm")

        assert removed == 3
        assert cache.get("q1", "pm", "en") is None
        assert cache.get("q3", None, "en") is None
        assert cache.get("q4", "other", "en") == PAYLOAD

    def test_redis_errors_are_misses(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("refused")
        client.pipeline.side_effect = redis.ConnectionError("refused")
        cache = AnswerCache(client)

        assert cache.get("q", "pm", "en") is None
        cache.set("q", "pm", "en", PAYLOAD)

    def test_undecodable_entry(self):
        client = FakeRedis()
        client.values[_key_for_question("q", "pm", "en")] = "{not json"
        assert AnswerCache(client).get("q", "pm", "en") is None
