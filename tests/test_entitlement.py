"""
Tests for the entitlement gate.
"""
from unittest.mock import Mock

import pytest

from solve_quota.core.entitlement import UNLIMITED, Entitlement, EntitlementGate
from solve_quota.core.errors import DependencyUnavailable
from solve_quota.core.identity import Identity


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestEntitlementGate:
    """Test entitlement decisions and caching."""

    def setup_method(self):
        self.store = Mock()
        self.store.is_premium.return_value = True
        self.clock = FakeClock()
        self.gate = EntitlementGate(self.store, ttl_seconds=15, clock=self.clock)

    def test_device_never_entitled(self):
        """Device identities are never premium and never looked up."""
        assert self.gate.is_entitled(Identity.device("d1")) is False
        self.store.is_premium.assert_not_called()

    def test_premium_user_entitled(self):
        assert self.gate.is_entitled(Identity.user("u1")) is True
        self.store.is_premium.assert_called_once_with("u1")

    def test_free_user_not_entitled(self):
        self.store.is_premium.return_value = False
        assert self.gate.entitlement_for(Identity.user("u1")) == Entitlement.FREE

    def test_cache_hit_within_ttl(self):
        """Repeated checks inside the TTL hit the store once."""
        for _ in range(5):
            self.gate.is_entitled(Identity.user("u1"))
            self.clock.now += 2

        assert self.store.is_premium.call_count == 1

    def test_cache_expires_after_ttl(self):
        """An expired entry triggers a fresh read."""
        self.gate.is_entitled(Identity.user("u1"))
        self.store.is_premium.return_value = False
        self.clock.now += 15

        assert self.gate.is_entitled(Identity.user("u1")) is False
        assert self.store.is_premium.call_count == 2

    def test_cache_is_per_user(self):
        self.gate.is_entitled(Identity.user("u1"))
        self.gate.is_entitled(Identity.user("u2"))
        assert self.store.is_premium.call_count == 2

    def test_invalidate_forces_lookup(self):
        self.gate.is_entitled(Identity.user("u1"))
        self.gate.invalidate("u1")
        self.gate.is_entitled(Identity.user("u1"))
        assert self.store.is_premium.call_count == 2

    def test_store_failure_propagates(self):
        """An unreachable store is an error, never a grant."""
        self.store.is_premium.side_effect = ConnectionError("down")

        with pytest.raises(DependencyUnavailable) as excinfo:
            self.gate.is_entitled(Identity.user("u1"))

        assert excinfo.value.store == "entitlement_store"

    def test_store_failure_not_cached(self):
        """After a failure the next call retries the store."""
        self.store.is_premium.side_effect = [ConnectionError("down"), True]

        with pytest.raises(DependencyUnavailable):
            self.gate.is_entitled(Identity.user("u1"))

        assert self.gate.is_entitled(Identity.user("u1")) is True

    def test_dependency_error_passes_through(self):
        original = DependencyUnavailable("locked", "entitlement_store")
        self.store.is_premium.side_effect = original

        with pytest.raises(DependencyUnavailable) as excinfo:
            self.gate.is_entitled(Identity.user("u1"))

        assert excinfo.value is original

    def test_expired_entries_evicted(self):
        for i in range(200):
            self.gate.is_entitled(Identity.user(f"u{i}"))
        assert self.gate.size() == 200

        self.clock.now += 3600
        self.gate.is_entitled(Identity.user("late"))

        assert self.gate.size() == 1

    def test_maxsize_bounds_entries(self):
        gate = EntitlementGate(self.store, ttl_seconds=15, clock=self.clock, maxsize=2)
        for user_id in ("u1", "u2", "u3"):
            gate.is_entitled(Identity.user(user_id))

        assert gate.size() == 2


class TestEntitlement:
    """Test the entitlement result shape."""

    def test_unlimited_reports_unlimited(self):
        assert Entitlement.UNLIMITED.remaining(cap=5, used=5) == UNLIMITED
        assert Entitlement.UNLIMITED.used(3) == 0

    def test_free_clamps_remaining(self):
        assert Entitlement.FREE.remaining(cap=5, used=2) == 3
        assert Entitlement.FREE.remaining(cap=5, used=7) == 0
        assert Entitlement.FREE.used(3) == 3
