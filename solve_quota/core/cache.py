"""
Client-facing usage cache.

A short-TTL read-through cache in front of the ledger for the calling tier.
It is an optimisation only: correctness lives in the counter store, and a
mutation always replaces the cached entry with the ledger's fresh answer.
"""

import time
from threading import Lock
from typing import Callable, Optional, Tuple

from cachetools import TTLCache

from .identity import Identity
from .ledger import DEFAULT_FEATURE, QuotaLedger, UsageSnapshot, UseResult

# (identity key, feature, usage day)
CacheKey = Tuple[str, str, str]

DEFAULT_MAXSIZE = 10_000


class UsageCache:
    """Read-through cache of usage snapshots keyed by identity, feature and day.

    Entitled identities are never cached: the ledger answers them from the
    entitlement decision alone, without touching the counter store.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        ttl_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = DEFAULT_MAXSIZE
    ):
        self.ledger = ledger
        self.ttl_seconds = ttl_seconds
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=clock)
        self._lock = Lock()

    def get_usage(self, identity: Identity, feature: str = DEFAULT_FEATURE) -> UsageSnapshot:
        """Return a fresh-enough snapshot, reading through to the ledger on a miss."""
        if self.ledger.gate.is_entitled(identity):
            return self.ledger.check(identity, feature)

        key = self._key(identity, feature)
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return cached

        snapshot = self.ledger.check(identity, feature)
        with self._lock:
            self._entries[key] = snapshot
        return snapshot

    def use(self, identity: Identity, feature: str = DEFAULT_FEATURE) -> UseResult:
        """Consume one unit through the ledger and overwrite the cached entry.

        Never answered from the cache. If the ledger raises, the cached
        entry is dropped so the next read goes back to the store.
        """
        if self.ledger.gate.is_entitled(identity):
            return self.ledger.use(identity, feature)

        key = self._key(identity, feature)
        try:
            result = self.ledger.use(identity, feature)
        except Exception:
            with self._lock:
                self._entries.pop(key, None)
            raise

        with self._lock:
            self._entries[key] = result.snapshot
        return result

    def invalidate(self, identity: Optional[Identity] = None) -> None:
        """Drop cached entries for one identity, or everything."""
        with self._lock:
            if identity is None:
                self._entries.clear()
                return
            for key in [k for k in list(self._entries.keys()) if k[0] == identity.key]:
                self._entries.pop(key, None)

    def size(self) -> int:
        """Number of live (unexpired) entries."""
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def _key(self, identity: Identity, feature: str) -> CacheKey:
        return (identity.key, feature, self.ledger.today())
