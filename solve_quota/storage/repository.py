"""
Repository pattern for data access.

Handles database operations and data persistence logic. Every SQLite
failure is reported as DependencyUnavailable so callers can fail closed.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from solve_quota.core.errors import DependencyUnavailable

from .db import DEFAULT_DB_PATH, get_connection
from .models import EntitlementRecord, IncrementOutcome, UsageCounter, UsageEvent

logger = logging.getLogger(__name__)

COUNTER_STORE = "counter_store"
ENTITLEMENT_STORE = "entitlement_store"


@contextmanager
def _store_connection(db_path: str, store: str) -> Iterator[sqlite3.Connection]:
    """Open a connection and translate SQLite errors for the given store."""
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        logger.error(f"Cannot open {store} at {db_path}: {e}")
        raise DependencyUnavailable(f"{store} unavailable: {e}", store) from e
    try:
        yield conn
    except sqlite3.Error as e:
        logger.error(f"{store} operation failed: {e}")
        raise DependencyUnavailable(f"{store} unavailable: {e}", store) from e
    finally:
        conn.close()


class CounterRepository:
    """Repository for the per-day usage counters and the usage event log.

    The increment is a single conditional upsert executed under
    BEGIN IMMEDIATE, so concurrent writers from any number of processes
    are serialised by the database and can never push a count past its cap.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def get_counter(
        self,
        identity_kind: str,
        identity_value: str,
        feature: str,
        usage_day: str
    ) -> Optional[UsageCounter]:
        """Read the counter row for one identity, feature and day.

        Returns:
            The counter, or None if nothing was consumed that day
        """
        with _store_connection(self.db_path, COUNTER_STORE) as conn:
            row = conn.execute("""
                SELECT count, cap FROM usage_counter
                WHERE identity_kind = ? AND identity_value = ?
                  AND feature = ? AND usage_day = ?
            """, (identity_kind, identity_value, feature, usage_day)).fetchone()

        if row is None:
            return None
        return UsageCounter(
            identity_kind=identity_kind,
            identity_value=identity_value,
            feature=feature,
            usage_day=usage_day,
            count=row[0],
            cap=row[1]
        )

    def try_increment(
        self,
        identity_kind: str,
        identity_value: str,
        feature: str,
        usage_day: str,
        cap: int,
        estimated_cost: float = 0.0,
        timestamp: Optional[datetime] = None
    ) -> IncrementOutcome:
        """Consume one unit if the day's count is still below its cap.

        Inserts the row with count=1 when absent, otherwise bumps the count
        only while it is below the cap stored on the row. A granted unit is
        logged to usage_event in the same transaction.

        Args:
            identity_kind: "user" or "device"
            identity_value: User id or device id
            feature: Metered feature name
            usage_day: Usage day the unit is charged to
            cap: Cap to freeze on the row if this creates it
            estimated_cost: Cost recorded on the usage event
            timestamp: Event time, defaults to now

        Returns:
            IncrementOutcome with the persisted count after the attempt

        Raises:
            ValueError: If cap is below 1
            DependencyUnavailable: If the store cannot be written
        """
        if cap < 1:
            raise ValueError("cap must be >= 1")

        with _store_connection(self.db_path, COUNTER_STORE) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "INSERT INTO usage_counter "
                    "(identity_kind, identity_value, feature, usage_day, count, cap) "
                    "VALUES (?, ?, ?, ?, 1, ?) "
                    "ON CONFLICT (identity_kind, identity_value, feature, usage_day) "
                    "DO UPDATE SET count = usage_counter.count + 1 "
                    "WHERE usage_counter.count < usage_counter.cap",
                    (identity_kind, identity_value, feature, usage_day, cap)
                )
                applied = cursor.rowcount > 0

                if applied:
                    conn.execute("""
                        INSERT INTO usage_event
                        (timestamp, usage_day, feature, identity_kind, estimated_cost)
                        VALUES (?, ?, ?, ?, ?)
                    """, (
                        (timestamp or datetime.now()).isoformat(),
                        usage_day,
                        feature,
                        identity_kind,
                        estimated_cost
                    ))

                count, row_cap = conn.execute("""
                    SELECT count, cap FROM usage_counter
                    WHERE identity_kind = ? AND identity_value = ?
                      AND feature = ? AND usage_day = ?
                """, (identity_kind, identity_value, feature, usage_day)).fetchone()
                conn.execute("COMMIT")
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

        return IncrementOutcome(applied=applied, count=count, cap=row_cap)

    def fetch_usage_events(
        self,
        feature: Optional[str] = None,
        usage_day: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageEvent]:
        """Fetch recent usage events, newest first.

        Args:
            feature: Optional filter for specific feature
            usage_day: Optional filter for one usage day
            limit: Maximum number of events to return
        """
        query = """
            SELECT timestamp, usage_day, feature, identity_kind, estimated_cost
            FROM usage_event
        """
        params = []
        conditions = []

        if feature:
            conditions.append("feature = ?")
            params.append(feature)
        if usage_day:
            conditions.append("usage_day = ?")
            params.append(usage_day)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with _store_connection(self.db_path, COUNTER_STORE) as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            UsageEvent(
                timestamp=datetime.fromisoformat(row[0]),
                usage_day=row[1],
                feature=row[2],
                identity_kind=row[3],
                estimated_cost=row[4]
            )
            for row in rows
        ]

    def get_usage_stats(self, since_day: str, until_day: Optional[str] = None) -> Dict[str, object]:
        """Aggregate granted usage between two usage days, inclusive.

        Args:
            since_day: First usage day to include
            until_day: Last usage day to include, defaults to since_day

        Returns:
            Dictionary with totals and a per-feature breakdown
        """
        until_day = until_day or since_day

        with _store_connection(self.db_path, COUNTER_STORE) as conn:
            per_feature_rows = conn.execute("""
                SELECT feature, COUNT(*), SUM(estimated_cost)
                FROM usage_event
                WHERE usage_day >= ? AND usage_day <= ?
                GROUP BY feature
                ORDER BY feature
            """, (since_day, until_day)).fetchall()

            identity_row = conn.execute("""
                SELECT COUNT(DISTINCT identity_kind || ':' || identity_value),
                       SUM(CASE WHEN count >= cap THEN 1 ELSE 0 END)
                FROM usage_counter
                WHERE usage_day >= ? AND usage_day <= ?
            """, (since_day, until_day)).fetchone()

        per_feature = {
            row[0]: {"uses": row[1], "estimated_cost": float(row[2] or 0)}
            for row in per_feature_rows
        }

        return {
            "since_day": since_day,
            "until_day": until_day,
            "total_uses": sum(f["uses"] for f in per_feature.values()),
            "total_cost": sum(f["estimated_cost"] for f in per_feature.values()),
            "distinct_identities": identity_row[0] or 0,
            "exhausted_counters": identity_row[1] or 0,
            "per_feature": per_feature
        }


class SqliteEntitlementStore:
    """Read side of the entitlement table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_record(self, user_id: str) -> Optional[EntitlementRecord]:
        with _store_connection(self.db_path, ENTITLEMENT_STORE) as conn:
            row = conn.execute(
                "SELECT is_premium, updated_at FROM entitlement WHERE user_id = ?",
                (user_id,)
            ).fetchone()

        if row is None:
            return None
        return EntitlementRecord(
            user_id=user_id,
            is_premium=bool(row[0]),
            updated_at=datetime.fromisoformat(row[1]) if row[1] else None
        )

    def is_premium(self, user_id: str) -> bool:
        """Return the premium flag, False when the user has no record."""
        record = self.get_record(user_id)
        return record.is_premium if record else False


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the counter, event and entitlement tables if they don't exist.

    usage_event is an append-only ledger. No UPDATE or DELETE should ever
    be performed on it, and counter rows are never deleted either.

    Args:
        db_path: Path to SQLite database file
    """
    with _store_connection(db_path, COUNTER_STORE) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_counter (
                identity_kind TEXT NOT NULL,
                identity_value TEXT NOT NULL,
                feature TEXT NOT NULL,
                usage_day TEXT NOT NULL,
                count INTEGER NOT NULL CHECK (count >= 0),
                cap INTEGER NOT NULL CHECK (cap >= 1),
                PRIMARY KEY (identity_kind, identity_value, feature, usage_day),
                CHECK (count <= cap)
            );

            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                usage_day TEXT NOT NULL,
                feature TEXT NOT NULL,
                identity_kind TEXT NOT NULL,
                estimated_cost REAL NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_usage_event_day
                ON usage_event (usage_day, feature);

            CREATE TABLE IF NOT EXISTS entitlement (
                user_id TEXT PRIMARY KEY,
                is_premium INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            );
        """)


def set_entitlement(user_id: str, is_premium: bool, db_path: str = DEFAULT_DB_PATH) -> None:
    """Write a user's premium flag.

    This is the billing workflow's side of the entitlement table; the
    quota path only ever reads it.

    Args:
        user_id: User to update
        is_premium: New premium flag
        db_path: Path to SQLite database file
    """
    if not user_id or not user_id.strip():
        raise ValueError("user_id is required and cannot be empty")

    with _store_connection(db_path, ENTITLEMENT_STORE) as conn:
        conn.execute("""
            INSERT INTO entitlement (user_id, is_premium, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                is_premium = excluded.is_premium,
                updated_at = excluded.updated_at
        """, (user_id, 1 if is_premium else 0, datetime.now().isoformat()))
    logger.info(f"Set entitlement for {user_id}: is_premium={is_premium}")
