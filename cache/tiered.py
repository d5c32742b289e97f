"""
cache/tiered.py -- Two-tier read-through cache in front of slow origins.

Avoids redundant market-data provider calls. A fast in-process tier
(LocalCache) sits in front of a shared tier (Redis, see cache/redis_tier.py)
which sits in front of the origin fetch function supplied per call.

Read path for get(key, ttl, origin):
    1. Local tier hit, not expired    -> return it.
    2. Shared tier hit                -> write back into the local tier, return it.
    3. origin(key)                    -> write through to both tiers, return it.
       Origin exceptions propagate and nothing is cached.

The shared tier is optional and best-effort: any exception from it, or an
undecodable payload, is logged as a warning and treated as a miss (reads)
or a no-op (writes). It never fails a get() or set().

The local tier copies values on the way in and on the way out, and the shared
tier stores JSON bytes, so no caller ever holds a reference to a cached
entry. The tiers can disagree for up to one TTL; a local hit always wins.

Concurrent misses on the same key are NOT coalesced. Two cold callers may
both run the origin; the second write simply overwrites the first.

Usage:
    cache = TieredCache(LocalCache(), RedisTier.from_settings(settings))
    quote = cache.get("quote:AAPL", 60, lambda key: fetch_quote("AAPL"))
    cache.set("search:apple", results, 120)
    cache.local.purge_expired()   # periodic maintenance, off the request path
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

logger = logging.getLogger("stockfolio.cache")

_MISSING = object()


# ---------------------------------------------------------------------------
# Local tier
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LocalCache:
    """Process-local key -> entry map guarded by a lock.

    Expiry is lazy: every read compares the entry's absolute expiry with the
    clock and drops it if stale. purge_expired() exists for periodic
    maintenance so keys that are never read again do not accumulate.

    clock defaults to time.monotonic so wall-clock jumps cannot resurrect or
    prematurely expire entries. Tests pass a fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the live value for key, or default when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return default
            value = entry.value
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store a private copy of value, replacing any existing entry."""
        entry = CacheEntry(key=key, value=copy.deepcopy(value), inserted_at=self._clock(), ttl=ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Shared tier contract
# ---------------------------------------------------------------------------


class SharedTier(Protocol):
    """Key -> bytes store with native TTL. Implementations may raise freely."""

    def get(self, key: str) -> Optional[bytes]: ...

    def set_with_ttl(self, key: str, data: bytes, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def ping(self) -> bool: ...


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class TieredCache:
    """Local tier + optional shared tier in front of a per-call origin fetch."""

    def __init__(self, local: LocalCache, shared: Optional[SharedTier] = None) -> None:
        self.local = local
        self.shared = shared

    def get(self, key: str, ttl_seconds: int, origin_fetch: Callable[[str], Any]) -> Any:
        """Return the value for key, consulting local, shared, then origin.

        A None result from the origin means "no such item": it is returned
        but not cached, so a later call retries the origin.
        """
        value = self.local.get(key, _MISSING)
        if value is not _MISSING:
            return value

        value = self._shared_get(key)
        if value is not _MISSING:
            self.local.set(key, value, ttl_seconds)
            return value

        value = origin_fetch(key)
        if value is not None:
            self.set(key, value, ttl_seconds)
        return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Write value into both tiers unconditionally."""
        self.local.set(key, value, ttl_seconds)
        self._shared_set(key, value, ttl_seconds)

    def invalidate(self, key: str) -> None:
        self.local.delete(key)
        if self.shared is None:
            return
        try:
            self.shared.delete(key)
        except Exception as exc:
            logger.warning("Shared cache delete failed for %s: %s", key, exc)

    def ping(self) -> bool:
        """Return True if the shared tier answers, or if there is none."""
        if self.shared is None:
            return True
        try:
            return bool(self.shared.ping())
        except Exception as exc:
            logger.warning("Shared cache ping failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Shared tier helpers -- every failure degrades to miss / no-op
    # ------------------------------------------------------------------

    def _shared_get(self, key: str) -> Any:
        if self.shared is None:
            return _MISSING
        try:
            raw = self.shared.get(key)
        except Exception as exc:
            logger.warning("Shared cache read failed for %s, treating as miss: %s", key, exc)
            return _MISSING
        if raw is None:
            return _MISSING
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding undecodable shared cache entry %s: %s", key, exc)
            return _MISSING

    def _shared_set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self.shared is None:
            return
        try:
            data = json.dumps(value).encode("utf-8")
            self.shared.set_with_ttl(key, data, max(1, int(ttl_seconds)))
        except Exception as exc:
            logger.warning("Shared cache write failed for %s: %s", key, exc)
