"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from token_ledger.core.periods import to_day

from .db import DEFAULT_DB_PATH, get_connection
from .models import BillingCycle, Source, Subscription, UsageEvent

logger = logging.getLogger(__name__)

_SOURCE_COLUMNS = "source_id, display_name, group_tag, model, key_fragment, created_at"
_SUBSCRIPTION_COLUMNS = (
    "subscription_id, name, amount, billing_cycle, start_date, category, notes, created_at"
)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the source, usage_event and subscription tables if missing.

    usage_event has no unique key on (source_id, day): same-day merges
    are read-then-write and may leave duplicate rows, which readers sum.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS source (
                source_id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                group_tag TEXT NOT NULL,
                model TEXT NOT NULL DEFAULT '',
                key_fragment TEXT NOT NULL DEFAULT '',
                created_at TEXT
            );
            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_id TEXT NOT NULL
                    REFERENCES source(source_id) ON DELETE CASCADE,
                day TEXT NOT NULL,
                amount REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_usage_event_day
                ON usage_event (day);
            CREATE TABLE IF NOT EXISTS subscription (
                subscription_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                amount REAL NOT NULL,
                billing_cycle TEXT NOT NULL,
                start_date TEXT NOT NULL,
                category TEXT,
                notes TEXT,
                created_at TEXT
            );
        """)
        conn.commit()
    finally:
        conn.close()


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_source(row) -> Source:
    return Source(
        source_id=row[0],
        display_name=row[1],
        group_tag=row[2],
        model=row[3],
        key_fragment=row[4],
        created_at=_from_iso(row[5])
    )


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        subscription_id=row[0],
        name=row[1],
        amount=row[2],
        billing_cycle=BillingCycle(row[3]),
        start_date=date.fromisoformat(row[4]),
        category=row[5],
        notes=row[6],
        created_at=_from_iso(row[7])
    )


class UsageRepository:
    """Repository for sources, usage events and subscriptions.

    Every method opens its own short-lived connection, so one instance
    can be shared freely.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Sources

    def add_source(self, source: Source) -> None:
        """Register a new source.

        Raises:
            sqlite3.IntegrityError: If the source_id already exists
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO source ({_SOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    source.source_id,
                    source.display_name,
                    source.group_tag,
                    source.model,
                    source.key_fragment,
                    _to_iso(source.created_at)
                )
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Added source %s (%s)", source.source_id, source.group_tag)

    def update_source(self, source: Source) -> bool:
        """Overwrite the stored fields of an existing source.

        Returns:
            True if a source was updated
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE source
                SET display_name = ?, group_tag = ?, model = ?, key_fragment = ?
                WHERE source_id = ?
            """, (
                source.display_name,
                source.group_tag,
                source.model,
                source.key_fragment,
                source.source_id
            ))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def get_source(self, source_id: str) -> Optional[Source]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM source WHERE source_id = ?",
                (source_id,)
            ).fetchone()
            return _row_to_source(row) if row else None
        finally:
            conn.close()

    def list_sources(self, group_tag: Optional[str] = None) -> List[Source]:
        """List sources in registration order, optionally for one group."""
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_SOURCE_COLUMNS} FROM source"
            params = []
            if group_tag:
                query += " WHERE group_tag = ?"
                params.append(group_tag)
            query += " ORDER BY rowid"
            return [_row_to_source(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def delete_source(self, source_id: str) -> bool:
        """Delete a source together with all of its usage rows.

        Returns:
            True if a source was removed
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM source WHERE source_id = ?", (source_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        finally:
            conn.close()
        if removed:
            logger.info("Deleted source %s and its usage", source_id)
        return removed

    # Usage events

    def record_usage(self, source_id: str, day: date, amount: float) -> UsageEvent:
        """Merge an amount into the usage row for (source_id, day).

        Adds to the existing row when there is one, otherwise inserts.
        This is read-then-write; concurrent writers can still leave
        duplicate rows, which aggregation folds.

        Args:
            source_id: Source the usage belongs to
            day: Calendar day of the usage
            amount: Non-negative usage amount

        Returns:
            The merged event for that key

        Raises:
            ValueError: If amount is negative or the source is unknown
        """
        if amount < 0:
            raise ValueError("amount cannot be negative")
        day = to_day(day)

        conn = get_connection(self.db_path)
        try:
            known = conn.execute(
                "SELECT 1 FROM source WHERE source_id = ?", (source_id,)
            ).fetchone()
            if not known:
                raise ValueError(f"Unknown source: {source_id}")

            existing = conn.execute(
                "SELECT id, amount FROM usage_event WHERE source_id = ? AND day = ? "
                "ORDER BY id LIMIT 1",
                (source_id, day.isoformat())
            ).fetchone()

            if existing:
                merged = existing[1] + amount
                conn.execute(
                    "UPDATE usage_event SET amount = ? WHERE id = ?",
                    (merged, existing[0])
                )
            else:
                merged = amount
                conn.execute(
                    "INSERT INTO usage_event (source_id, day, amount) VALUES (?, ?, ?)",
                    (source_id, day.isoformat(), amount)
                )
            conn.commit()
        finally:
            conn.close()

        logger.info("Recorded %s for %s on %s (day total %s)", amount, source_id, day, merged)
        return UsageEvent(source_id=source_id, day=day, amount=merged)

    def insert_usage_events(self, events: Iterable[UsageEvent]) -> None:
        """Append raw usage rows atomically, without merging.

        Args:
            events: Events to store as-is
        """
        events = list(events)
        if not events:
            return

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            for event in events:
                conn.execute(
                    "INSERT INTO usage_event (source_id, day, amount) VALUES (?, ?, ?)",
                    (event.source_id, to_day(event.day).isoformat(), event.amount)
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_usage_events(
        self,
        source_ids: Optional[Iterable[str]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[UsageEvent]:
        """Fetch raw usage rows, optionally narrowed by source and day range.

        Args:
            source_ids: Only rows for these sources
            start: Earliest day, inclusive
            end: Latest day, inclusive

        Returns:
            Events ordered by day, then insertion
        """
        conn = get_connection(self.db_path)
        try:
            query = "SELECT source_id, day, amount FROM usage_event"
            params: list = []
            conditions = []

            if source_ids is not None:
                ids = list(source_ids)
                if not ids:
                    return []
                conditions.append(f"source_id IN ({', '.join('?' for _ in ids)})")
                params.extend(ids)
            if start is not None:
                conditions.append("day >= ?")
                params.append(to_day(start).isoformat())
            if end is not None:
                conditions.append("day <= ?")
                params.append(to_day(end).isoformat())

            if conditions:
                query += " WHERE " + " AND ".join(conditions)
            query += " ORDER BY day, id"

            return [
                UsageEvent(source_id=row[0], day=date.fromisoformat(row[1]), amount=row[2])
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()

    # Subscriptions

    def add_subscription(self, subscription: Subscription) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO subscription ({_SUBSCRIPTION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    subscription.subscription_id,
                    subscription.name,
                    subscription.amount,
                    subscription.billing_cycle.value,
                    to_day(subscription.start_date).isoformat(),
                    subscription.category,
                    subscription.notes,
                    _to_iso(subscription.created_at)
                )
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Added subscription %s", subscription.name)

    def update_subscription(self, subscription: Subscription) -> bool:
        """Overwrite the stored fields of an existing subscription.

        Returns:
            True if a subscription was updated
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE subscription
                SET name = ?, amount = ?, billing_cycle = ?, start_date = ?,
                    category = ?, notes = ?
                WHERE subscription_id = ?
            """, (
                subscription.name,
                subscription.amount,
                subscription.billing_cycle.value,
                to_day(subscription.start_date).isoformat(),
                subscription.category,
                subscription.notes,
                subscription.subscription_id
            ))
            conn.commit()
            updated = cursor.rowcount > 0
        finally:
            conn.close()
        if updated:
            logger.info("Updated subscription %s", subscription.subscription_id)
        return updated

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscription WHERE subscription_id = ?",
                (subscription_id,)
            ).fetchone()
            return _row_to_subscription(row) if row else None
        finally:
            conn.close()

    def list_subscriptions(self) -> List[Subscription]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscription ORDER BY start_date, rowid"
            ).fetchall()
            return [_row_to_subscription(row) for row in rows]
        finally:
            conn.close()

    def delete_subscription(self, subscription_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM subscription WHERE subscription_id = ?", (subscription_id,)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()


_repositories: Dict[str, UsageRepository] = {}


def get_repository(db_path: str = DEFAULT_DB_PATH) -> UsageRepository:
    """Get the shared repository instance for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of UsageRepository
    """
    if db_path not in _repositories:
        _repositories[db_path] = UsageRepository(db_path)
    return _repositories[db_path]
