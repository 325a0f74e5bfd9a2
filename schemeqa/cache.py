"""Caching of ask responses using Redis.

Provides:
- AnswerCache: JSON answer cache keyed by question + scheme + language with a
  TTL from settings.CACHE_TTL_SECONDS. Every cached key is also recorded in a
  per-scheme set so re-ingesting or deleting a scheme drops its answers.

Redis is an accelerator only: connection and command errors are logged and
treated as cache misses.
"""
import hashlib
import json
import logging
from typing import Any, Optional

import redis

from schemeqa.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "schemeqa:ask:v1"
ALL_SCHEMES = "*"


def _key_for_question(question: str, scheme_id: Optional[str], language: str) -> str:
    """Compute a stable cache key for a question within a scheme and language.

    Args:
        question: User question string.
        scheme_id: Scheme the question is about, None for all schemes.
        language: Answer language.

    Returns:
        str: Namespaced cache key.
    """
    norm_q = " ".join(question.strip().lower().split())
    h = hashlib.sha256(f"{norm_q}|scheme={scheme_id or ALL_SCHEMES}|lang={language}".encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{h}"


def _index_key(scheme_id: Optional[str]) -> str:
    return f"{KEY_PREFIX}:index:{scheme_id or ALL_SCHEMES}"


class AnswerCache:
    """Redis-backed answer cache.

    Args:
        client: Redis client created with ``decode_responses=True``; None
            disables caching.
        ttl_seconds: Lifetime of cached answers.
    """

    def __init__(self, client: Optional[redis.Redis], ttl_seconds: int = settings.CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, question: str, scheme_id: Optional[str], language: str) -> Optional[dict]:
        """Get a cached answer payload if present.

        Returns:
            Optional[dict]: Parsed JSON payload if found and valid; otherwise None.
        """
        if self.client is None:
            return None
        try:
            raw = self.client.get(_key_for_question(question, scheme_id, language))
        except redis.RedisError as exc:
            logger.warning("Answer cache read failed: %s", exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry")
            return None

    def set(self, question: str, scheme_id: Optional[str], language: str, value: dict) -> None:
        """Store an answer payload with TTL and index it under its scheme."""
        if self.client is None:
            return
        key = _key_for_question(question, scheme_id, language)
        try:
            pipe = self.client.pipeline()
            pipe.setex(key, self.ttl_seconds, json.dumps(value))
            pipe.sadd(_index_key(scheme_id), key)
            pipe.execute()
        except redis.RedisError as exc:
            logger.warning("Answer cache write failed: %s", exc)

    def invalidate_scheme(self, scheme_id: str) -> int:
        """Drop cached answers for ``scheme_id`` and for all-scheme questions.

        Returns:
            int: Number of cache entries removed.
        """
        if self.client is None:
            return 0
        removed = 0
        try:
            for index in (_index_key(scheme_id), _index_key(None)):
                keys = list(self.client.smembers(index))
                if keys:
                    removed += self.client.delete(*keys)
                self.client.delete(index)
        except redis.RedisError as exc:
            logger.warning("Answer cache invalidation for scheme %s failed: %s", scheme_id, exc)
            return removed
        if removed:
            logger.info("Invalidated %d cached answers for scheme %s", removed, scheme_id)
        return removed
