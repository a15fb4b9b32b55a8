"""
Factory for wiring the quota components together.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from solve_quota.config.loader import QuotaConfig, default_quota_config
from solve_quota.core.cache import UsageCache
from solve_quota.core.entitlement import EntitlementGate, EntitlementStore
from solve_quota.core.ledger import CounterStore, QuotaLedger
from solve_quota.storage.repository import CounterRepository, SqliteEntitlementStore, initialize_schema


@dataclass
class QuotaService:
    """The wired quota path: gate, ledger and client-facing cache."""
    config: QuotaConfig
    counters: CounterStore
    gate: EntitlementGate
    ledger: QuotaLedger
    cache: UsageCache


def create_quota_service(
    config: Optional[QuotaConfig] = None,
    counters: Optional[CounterStore] = None,
    entitlements: Optional[EntitlementStore] = None,
    today: Optional[Callable[[], str]] = None,
    init_schema: bool = True
) -> QuotaService:
    """
    Create the quota service.

    Args:
        config: Quota configuration, defaults to the reference values
        counters: Counter store, defaults to SQLite at config.db_path
        entitlements: Entitlement store, defaults to SQLite at config.db_path
        today: Usage day provider override
        init_schema: Create the SQLite tables if they don't exist

    Returns:
        QuotaService bundling the configured components
    """
    config = config or default_quota_config()

    if init_schema and (counters is None or entitlements is None):
        initialize_schema(config.db_path)

    counters = counters or CounterRepository(config.db_path)
    entitlements = entitlements or SqliteEntitlementStore(config.db_path)

    gate = EntitlementGate(entitlements, ttl_seconds=config.entitlement_cache_ttl_seconds)
    ledger = QuotaLedger(config, counters, gate, today=today)
    cache = UsageCache(ledger, ttl_seconds=config.usage_cache_ttl_seconds)

    return QuotaService(
        config=config,
        counters=counters,
        gate=gate,
        ledger=ledger,
        cache=cache
    )
