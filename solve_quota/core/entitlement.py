"""
Entitlement gate.

Decides whether an identity holds unlimited access. Only verified users can
be premium; device identities never reach the entitlement store. Lookups
are cached per process for a short TTL to absorb bursts of checks.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Optional, Protocol

from cachetools import TTLCache

from .errors import DependencyUnavailable
from .identity import Identity

logger = logging.getLogger(__name__)

# Remaining count reported to entitled identities
UNLIMITED = -1

DEFAULT_MAXSIZE = 10_000


class EntitlementStore(Protocol):
    """Read access to the premium flag keyed by user id."""

    def is_premium(self, user_id: str) -> bool:
        ...


class Entitlement(Enum):
    """Outcome of the entitlement decision.

    This is the one place that knows what an entitled identity looks like
    to the rest of the quota path.
    """
    FREE = "free"
    UNLIMITED = "unlimited"

    @property
    def is_unlimited(self) -> bool:
        return self is Entitlement.UNLIMITED

    def remaining(self, cap: int, used: int) -> int:
        """Remaining allowance under this entitlement."""
        if self.is_unlimited:
            return UNLIMITED
        return max(0, cap - used)

    def used(self, used: int) -> int:
        """Usage reported under this entitlement; entitled usage is not counted."""
        return 0 if self.is_unlimited else used


class EntitlementGate:
    """Entitlement lookups with a process-local TTL cache.

    Store failures are never cached and never turned into a grant: they
    propagate as DependencyUnavailable.
    """

    def __init__(
        self,
        store: EntitlementStore,
        ttl_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = DEFAULT_MAXSIZE
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=clock)
        self._lock = Lock()

    def entitlement_for(self, identity: Identity) -> Entitlement:
        """Resolve the entitlement of an identity."""
        return Entitlement.UNLIMITED if self.is_entitled(identity) else Entitlement.FREE

    def is_entitled(self, identity: Identity) -> bool:
        """Return True if the identity currently holds unlimited access.

        Raises:
            DependencyUnavailable: If the entitlement store cannot be read
        """
        if not identity.is_user:
            return False

        user_id = identity.value
        cached = self._cached(user_id)
        if cached is not None:
            return cached

        try:
            is_premium = bool(self.store.is_premium(user_id))
        except DependencyUnavailable:
            raise
        except Exception as e:
            logger.error(f"Entitlement lookup failed for {user_id}: {e}")
            raise DependencyUnavailable(f"entitlement_store unavailable: {e}", "entitlement_store") from e

        with self._lock:
            self._cache[user_id] = is_premium
        return is_premium

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop one cached entitlement, or all of them."""
        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)

    def size(self) -> int:
        """Number of live (unexpired) entries."""
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def _cached(self, user_id: str) -> Optional[bool]:
        with self._lock:
            return self._cache.get(user_id)
