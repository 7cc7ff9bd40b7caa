"""
Short-TTL page cache keyed by request fingerprint.

Pages are cached as their serialised JSON so a cache hit replays exactly the
bytes that were served the first time. Any backend failure is a cache error:
logged, counted and treated as a miss.
"""
import abc
import hashlib
import logging
import time
from collections import OrderedDict
from typing import Callable, Iterable, Optional, TypeVar

from feed_ranker.errors import CacheError
from feed_ranker.telemetry import FEED_CACHE_REQUESTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fingerprint(
    viewer_id: str,
    page_size: int,
    session_id: str,
    refresh_nonce: int,
    exclude_post_ids: Iterable[str] = (),
) -> str:
    parts = [
        viewer_id,
        str(page_size),
        session_id,
        str(refresh_nonce),
        ",".join(sorted(set(exclude_post_ids))),
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


class PageCache(abc.ABC):
    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    async def set(self, key: str, payload: str) -> None: ...

    async def close(self) -> None:
        pass


class MemoryPageCache(PageCache):
    """Process-local map with per-entry expiry; oldest entries evicted first."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return payload

    async def set(self, key: str, payload: str) -> None:
        self._entries[key] = (self._clock() + self._ttl, payload)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class SafePageCache:
    """Wraps a backend so that cache failures never reach the request."""

    def __init__(self, backend: PageCache) -> None:
        self.backend = backend

    async def get(self, key: str, decode: Callable[[str], T] = str) -> Optional[T]:
        """
        Fetch and decode an entry. An entry that fails to decode (stale
        schema, garbage) is a cache error like a backend failure: logged,
        counted and answered as a miss.
        """
        try:
            payload = await self.backend.get(key)
        except Exception as exc:
            self._log(CacheError(f"lookup failed: {exc}"))
            FEED_CACHE_REQUESTS.labels(result="error").inc()
            return None
        if payload is None:
            FEED_CACHE_REQUESTS.labels(result="miss").inc()
            return None
        try:
            value = decode(payload)
        except ValueError as exc:
            self._log(CacheError(f"undecodable entry {key[:12]}: {exc}"))
            FEED_CACHE_REQUESTS.labels(result="error").inc()
            return None
        FEED_CACHE_REQUESTS.labels(result="hit").inc()
        return value

    async def peek(self, key: str, decode: Callable[[str], T] = str) -> Optional[T]:
        """Like get, but not counted as a page lookup."""
        try:
            payload = await self.backend.get(key)
        except Exception as exc:
            self._log(CacheError(f"peek failed: {exc}"))
            return None
        if payload is None:
            return None
        try:
            return decode(payload)
        except ValueError as exc:
            self._log(CacheError(f"undecodable entry {key[:12]}: {exc}"))
            return None

    async def set(self, key: str, payload: str) -> None:
        try:
            await self.backend.set(key, payload)
        except Exception as exc:
            self._log(CacheError(f"store failed: {exc}"))

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as exc:
            self._log(CacheError(f"close failed: {exc}"))

    @staticmethod
    def _log(error: CacheError) -> None:
        logger.warning("Page cache bypassed: %s", error)
