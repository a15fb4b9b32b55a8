"""
Quota ledger.

Tracks free-tier consumption per identity, feature and usage day.

Per (identity, feature, day) the counter moves through three states:
1. Unconsumed - no counter row yet
2. Partial - 0 < count < cap
3. Exhausted - count >= cap, terminal until the usage day advances

Entitled identities never touch the counter store. For everyone else the
increment is delegated to a single atomic conditional write, so the
persisted count never exceeds the cap however many callers race.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from solve_quota.config.loader import QuotaConfig
from solve_quota.storage.models import IncrementOutcome, UsageCounter

from .calendar import DayClock
from .entitlement import Entitlement, EntitlementGate
from .errors import InputError
from .identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_FEATURE = "solve"


class CounterStore(Protocol):
    """Counter persistence the ledger needs."""

    def get_counter(
        self, identity_kind: str, identity_value: str, feature: str, usage_day: str
    ) -> Optional[UsageCounter]:
        ...

    def try_increment(
        self,
        identity_kind: str,
        identity_value: str,
        feature: str,
        usage_day: str,
        cap: int,
        estimated_cost: float = 0.0
    ) -> IncrementOutcome:
        ...


@dataclass(frozen=True)
class UsageSnapshot:
    """Read-only view of an identity's allowance for one feature."""
    used: int
    remaining: int
    cap: int
    is_premium: bool = False

    @property
    def allowed(self) -> bool:
        return self.is_premium or self.remaining > 0

    def to_dict(self) -> Dict[str, object]:
        """Convert to the check-usage response body."""
        return {
            "canUse": self.allowed,
            "used": self.used,
            "remaining": self.remaining,
            "cap": self.cap,
            "isPremium": self.is_premium
        }


@dataclass(frozen=True)
class UseResult:
    """Outcome of a request to consume one unit."""
    success: bool
    used: int
    remaining: int
    cap: int
    is_premium: bool = False

    @property
    def snapshot(self) -> UsageSnapshot:
        return UsageSnapshot(
            used=self.used,
            remaining=self.remaining,
            cap=self.cap,
            is_premium=self.is_premium
        )

    def to_dict(self) -> Dict[str, object]:
        """Convert to the check-usage response body."""
        body = {
            "success": self.success,
            "used": self.used,
            "remaining": self.remaining,
            "cap": self.cap,
            "isPremium": self.is_premium
        }
        if not self.success:
            body["error"] = "Daily limit reached"
        return body


class QuotaLedger:
    """Check and consume daily free-tier allowances."""

    def __init__(
        self,
        config: QuotaConfig,
        store: CounterStore,
        gate: EntitlementGate,
        today: Optional[Callable[[], str]] = None
    ):
        """Initialize the ledger.

        Args:
            config: Caps and cost estimates per feature
            store: Counter store holding the per-day rows
            gate: Entitlement gate consulted before any counter access
            today: Usage day provider, defaults to a DayClock for the
                configured offset
        """
        self.config = config
        self.store = store
        self.gate = gate
        self.today = today or DayClock(config.utc_offset_hours)

    def check(self, identity: Optional[Identity], feature: str = DEFAULT_FEATURE) -> UsageSnapshot:
        """Report the current allowance without consuming anything.

        Raises:
            InputError: If no identity is given or the feature is unknown
            DependencyUnavailable: If a store cannot be read
        """
        identity, cap = self._validate(identity, feature)
        entitlement = self.gate.entitlement_for(identity)

        used = 0
        if not entitlement.is_unlimited:
            counter = self.store.get_counter(
                identity.kind.value, identity.value, feature, self.today()
            )
            if counter is not None:
                used, cap = counter.count, counter.cap

        return self._snapshot(entitlement, used, cap)

    def use(self, identity: Optional[Identity], feature: str = DEFAULT_FEATURE) -> UseResult:
        """Consume exactly one unit if the allowance permits it.

        A rejected call leaves the store untouched. Exhaustion is reported
        as ``success=False``, not raised.

        Raises:
            InputError: If no identity is given or the feature is unknown
            DependencyUnavailable: If a store cannot be read or written
        """
        identity, cap = self._validate(identity, feature)
        entitlement = self.gate.entitlement_for(identity)

        if entitlement.is_unlimited:
            return self._result(True, entitlement, 0, cap)

        day = self.today()
        outcome = self.store.try_increment(
            identity.kind.value,
            identity.value,
            feature,
            day,
            cap,
            estimated_cost=self.config.get_feature_config(feature).estimated_cost
        )

        if outcome.applied:
            logger.info(f"Quota used: {identity.key} {feature} day={day} -> {outcome.count}/{outcome.cap}")
        else:
            logger.info(f"Quota exhausted: {identity.key} {feature} day={day} ({outcome.count}/{outcome.cap})")

        return self._result(outcome.applied, entitlement, outcome.count, outcome.cap)

    def _validate(self, identity: Optional[Identity], feature: str):
        if identity is None:
            raise InputError("Must provide userId or deviceId")
        return identity, self.config.get_feature_config(feature).daily_cap

    @staticmethod
    def _snapshot(entitlement: Entitlement, used: int, cap: int) -> UsageSnapshot:
        return UsageSnapshot(
            used=entitlement.used(used),
            remaining=entitlement.remaining(cap, used),
            cap=cap,
            is_premium=entitlement.is_unlimited
        )

    @staticmethod
    def _result(success: bool, entitlement: Entitlement, used: int, cap: int) -> UseResult:
        return UseResult(
            success=success,
            used=entitlement.used(used),
            remaining=entitlement.remaining(cap, used),
            cap=cap,
            is_premium=entitlement.is_unlimited
        )
