"""
Repository pattern for data access.

Usage stores hold the per-user daily counters and expose a conditional
upsert so the quota guard can do an atomic read-modify-write. Feature
stores persist the structured output of each AI feature.
"""

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ai_usage_governor.core.features import Feature
from .db import DEFAULT_DB_PATH, get_connection
from .models import FeatureRecord, UsageRecord


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage and feature tables if they don't exist.

    ``ai_usage`` holds at most one row per user per day, enforced by a
    unique constraint.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                date TEXT NOT NULL,
                chat INTEGER NOT NULL DEFAULT 0,
                flashcards INTEGER NOT NULL DEFAULT 0,
                quiz INTEGER NOT NULL DEFAULT 0,
                summary INTEGER NOT NULL DEFAULT 0,
                total_requests INTEGER NOT NULL DEFAULT 0,
                last_request_at TEXT,
                created_at TEXT,
                updated_at TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                UNIQUE (user_id, date)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS feature_result (
                id TEXT PRIMARY KEY,
                feature TEXT NOT NULL,
                user_id TEXT,
                lookup_key TEXT,
                provider TEXT,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_feature_result_lookup
            ON feature_result (feature, lookup_key)
        """)
        conn.commit()
    finally:
        conn.close()


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteUsageStore:
    """Usage counters in SQLite.

    ``upsert`` is a single conditional statement, so two processes sharing
    the database file cannot both write over the same version.
    """

    _COLUMNS = (
        "user_id, date, chat, flashcards, quiz, summary, total_requests, "
        "last_request_at, created_at, updated_at, version"
    )

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def get(self, user_id: str, date: str) -> Optional[UsageRecord]:
        """Fetch the record for ``(user_id, date)`` if one exists."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {self._COLUMNS} FROM ai_usage WHERE user_id = ? AND date = ?",
                (user_id, date),
            )
            row = cursor.fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return UsageRecord(
            user_id=row[0],
            date=row[1],
            chat=row[2],
            flashcards=row[3],
            quiz=row[4],
            summary=row[5],
            total_requests=row[6],
            last_request_at=_from_iso(row[7]),
            created_at=_from_iso(row[8]),
            updated_at=_from_iso(row[9]),
            version=row[10],
        )

    def upsert(self, record: UsageRecord, expected_version: int) -> bool:
        """Write ``record`` only if the stored version equals ``expected_version``.

        An ``expected_version`` of 0 means "no row yet": the insert loses if
        another writer created the row first.

        Returns:
            True if the write happened, False on a version conflict
        """
        values = (
            record.chat,
            record.flashcards,
            record.quiz,
            record.summary,
            record.total_requests,
            _to_iso(record.last_request_at),
            _to_iso(record.created_at),
            _to_iso(record.updated_at),
            record.version,
        )
        conn = get_connection(self.db_path)
        try:
            if expected_version == 0:
                cursor = conn.execute(f"""
                    INSERT INTO ai_usage ({self._COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, date) DO NOTHING
                """, (record.user_id, record.date) + values)
            else:
                cursor = conn.execute("""
                    UPDATE ai_usage
                    SET chat = ?, flashcards = ?, quiz = ?, summary = ?,
                        total_requests = ?, last_request_at = ?,
                        created_at = ?, updated_at = ?, version = ?
                    WHERE user_id = ? AND date = ? AND version = ?
                """, values + (record.user_id, record.date, expected_version))
            conn.commit()
            return cursor.rowcount == 1
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class InMemoryUsageStore:
    """Process-local usage counters, mainly for tests and single-process use."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], UsageRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, date: str) -> Optional[UsageRecord]:
        with self._lock:
            return self._records.get((user_id, date))

    def upsert(self, record: UsageRecord, expected_version: int) -> bool:
        key = (record.user_id, record.date)
        with self._lock:
            current = self._records.get(key)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                return False
            self._records[key] = record
            return True


class SqliteFeatureStore:
    """Structured AI feature results for one feature, stored as JSON rows."""

    def __init__(self, feature: Feature, db_path: str = DEFAULT_DB_PATH):
        self.feature = feature
        self.db_path = db_path

    def save(self, result, user_id: Optional[str] = None) -> str:
        """Persist a feature result and return its new record id.

        The whole result is written as one row, so a batch of flashcards or
        quiz questions is stored all-or-nothing.
        """
        record_id = uuid.uuid4().hex
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO feature_result
                (id, feature, user_id, lookup_key, provider, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record_id,
                self.feature.value,
                user_id,
                result.lookup_key,
                result.provider,
                json.dumps(result.to_payload()),
                datetime.now(timezone.utc).isoformat(),
            ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return record_id

    def get(self, record_id: str) -> Optional[FeatureRecord]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, user_id, lookup_key, provider, payload, created_at
                FROM feature_result WHERE id = ? AND feature = ?
            """, (record_id, self.feature.value))
            row = cursor.fetchone()
        finally:
            conn.close()
        return self._to_record(row) if row else None

    def find_by_key(
        self,
        lookup_key: str,
        newest_first: bool = True,
        limit: int = 100
    ) -> List[FeatureRecord]:
        """Records sharing a session id or topic, ordered by creation time."""
        order = "DESC" if newest_first else "ASC"
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT id, user_id, lookup_key, provider, payload, created_at
                FROM feature_result
                WHERE feature = ? AND lookup_key = ?
                ORDER BY created_at {order}, rowid {order}
                LIMIT ?
            """, (self.feature.value, lookup_key, limit))
            return [self._to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _to_record(self, row) -> FeatureRecord:
        return FeatureRecord(
            record_id=row[0],
            feature=self.feature,
            user_id=row[1],
            lookup_key=row[2],
            provider=row[3],
            payload=json.loads(row[4]),
            created_at=datetime.fromisoformat(row[5]),
        )


class InMemoryFeatureStore:
    """Process-local feature results."""

    def __init__(self, feature: Feature):
        self.feature = feature
        self._records: List[FeatureRecord] = []
        self._lock = threading.Lock()

    def save(self, result, user_id: Optional[str] = None) -> str:
        record = FeatureRecord(
            record_id=uuid.uuid4().hex,
            feature=self.feature,
            payload=result.to_payload(),
            created_at=datetime.now(timezone.utc),
            lookup_key=result.lookup_key,
            user_id=user_id,
            provider=result.provider,
        )
        with self._lock:
            self._records.append(record)
        return record.record_id

    def get(self, record_id: str) -> Optional[FeatureRecord]:
        with self._lock:
            for record in self._records:
                if record.record_id == record_id:
                    return record
        return None

    def find_by_key(
        self,
        lookup_key: str,
        newest_first: bool = True,
        limit: int = 100
    ) -> List[FeatureRecord]:
        with self._lock:
            matches = [r for r in self._records if r.lookup_key == lookup_key]
        if newest_first:
            matches.reverse()
        return matches[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
