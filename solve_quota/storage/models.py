"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class UsageCounter:
    """Consumption for one identity, feature and usage day.

    ``cap`` is frozen when the row is first created so a configuration
    change never moves the limit in the middle of a day.
    """
    identity_kind: str
    identity_value: str
    feature: str
    usage_day: str
    count: int
    cap: int


@dataclass(frozen=True)
class IncrementOutcome:
    """Result of one conditional increment against the counter store."""
    applied: bool
    count: int
    cap: int


@dataclass(frozen=True)
class EntitlementRecord:
    """Premium flag for a user, maintained by the billing workflow."""
    user_id: str
    is_premium: bool
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one granted unit of free-tier usage.

    Written in the same transaction as the counter increment it accounts
    for, and never modified afterwards.
    """
    timestamp: datetime
    usage_day: str
    feature: str
    identity_kind: str
    estimated_cost: float
