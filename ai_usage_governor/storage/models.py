"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from ai_usage_governor.core.features import Feature


@dataclass(frozen=True)
class UsageRecord:
    """Per-user, per-UTC-day AI usage counters.

    One record exists per ``(user_id, date)``. Records are immutable;
    ``consume`` returns the next state and the store swaps it in only if
    ``version`` still matches what is persisted.
    """
    user_id: str
    date: str  # YYYY-MM-DD, UTC
    chat: int = 0
    flashcards: int = 0
    quiz: int = 0
    summary: int = 0
    total_requests: int = 0
    last_request_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0  # 0 means never persisted

    @classmethod
    def empty(cls, user_id: str, date: str) -> "UsageRecord":
        """Zero record for a user's first request of the day."""
        return cls(user_id=user_id, date=date)

    def used(self, feature: Feature) -> int:
        """Requests already accepted today for a feature."""
        return getattr(self, feature.value)

    def consume(self, feature: Feature, now: datetime) -> "UsageRecord":
        """Return the record after accepting one more request for ``feature``."""
        changes: Dict[str, Any] = {
            feature.value: self.used(feature) + 1,
            "total_requests": self.total_requests + 1,
            "last_request_at": now,
            "created_at": self.created_at or now,
            "updated_at": now,
            "version": self.version + 1,
        }
        return replace(self, **changes)


@dataclass(frozen=True)
class FeatureRecord:
    """Persisted output of one AI feature call.

    ``lookup_key`` groups related records: the chat session id for chat,
    the topic for flashcards and quizzes.
    """
    record_id: str
    feature: Feature
    payload: Dict[str, Any]
    created_at: datetime
    lookup_key: Optional[str] = None
    user_id: Optional[str] = None
    provider: Optional[str] = None
