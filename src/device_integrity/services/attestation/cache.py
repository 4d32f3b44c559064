"""
In-memory TTL caches used around attestation verification.
"""

import secrets
import threading
from typing import Any, Dict
from cachetools import TTLCache
import logging

from .revocation import RevocationList, RevocationListSource

logger = logging.getLogger(__name__)


class CachedRevocationListSource(RevocationListSource):
    """
    Thread-safe, time-boxed cache in front of another revocation source.

    Uses cachetools.TTLCache so a stale list is refetched after ``ttl``
    seconds. Fetch failures are never cached.
    """

    _KEY = "revocation_list"

    def __init__(self, source: RevocationListSource, ttl: int = 300):
        """
        Args:
            source: The source to fetch from on a miss
            ttl: Time-to-live in seconds
        """
        self.source = source
        self._cache = TTLCache(maxsize=1, ttl=ttl)
        self._lock = threading.RLock()
        self._stats = {"hits": 0, "misses": 0}

        logger.info(f"Revocation list cache initialized - TTL: {ttl}s")

    def fetch(self) -> RevocationList:
        with self._lock:
            cached = self._cache.get(self._KEY)
            if cached is not None:
                self._stats["hits"] += 1
                logger.debug("Revocation list cache hit")
                return cached

            self._stats["misses"] += 1
            revocation_list = self.source.fetch()
            self._cache[self._KEY] = revocation_list
            return revocation_list

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            logger.info("Revocation list cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0

            return {
                "cached": self._KEY in self._cache,
                "ttl": self._cache.ttl,
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "hit_rate_percent": round(hit_rate, 2)
            }


class ChallengeStore:
    """
    Issues random challenges and accepts each one exactly once.

    Challenges expire after ``ttl`` seconds or when ``maxsize`` newer
    challenges push them out.
    """

    def __init__(self, maxsize: int = 10000, ttl: int = 300, nbytes: int = 32):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.RLock()
        self.nbytes = nbytes

    def issue(self) -> str:
        challenge = secrets.token_urlsafe(self.nbytes)
        with self._lock:
            self._cache[challenge] = True
        logger.debug(f"Issued challenge {challenge[:8]}...")
        return challenge

    def consume(self, challenge: str) -> bool:
        """Remove the challenge. True only if it was issued and still live."""
        if not challenge:
            return False
        with self._lock:
            return self._cache.pop(challenge, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
