"""
Per-user daily quota and request throttle enforcement.

Enforcement Order:
1. Global kill-switch - AI features can be switched off for everyone
2. Rate limit - Minimum interval between any two accepted requests of a user
3. Daily limit - Per-feature cap on accepted requests per UTC day

The read-modify-write of a usage record is serialized per
``(user_id, date)`` with an in-process lock and guarded across processes by
the store's version-checked upsert.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Dict, Hashable, Iterator, List

from ai_usage_governor.config.loader import QuotaConfig
from ai_usage_governor.storage.models import UsageRecord
from .errors import ConcurrentUpdateError, DailyLimitExceeded, FeatureDisabled, RateLimited
from .features import Feature

logger = logging.getLogger(__name__)

# Version conflicts tolerated before giving up on one request.
MAX_UPDATE_ATTEMPTS = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_key(moment: datetime) -> str:
    """UTC calendar date used to key daily counters."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date().isoformat()


def next_utc_midnight(moment: datetime) -> datetime:
    """Start of the UTC day after ``moment``, when daily counters reset."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    tomorrow = moment.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


class KeyedLock:
    """A lock per key, created on demand and dropped when nobody holds it.

    Callers with different keys never wait on each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass(frozen=True)
class UsageStats:
    """Remaining quota for a user today."""
    remaining: Dict[Feature, int]
    total_requests_today: int

    def remaining_for(self, feature: Feature) -> int:
        return self.remaining[feature]


class QuotaGuard:
    """Decides whether a user may invoke an AI feature right now.

    The guard is the only writer of usage records.
    """

    def __init__(
        self,
        config: QuotaConfig,
        store,
        clock: Callable[[], datetime] = utc_now,
        max_update_attempts: int = MAX_UPDATE_ATTEMPTS
    ):
        """Initialize the guard.

        Args:
            config: Daily limits, throttle and kill-switch
            store: Usage store offering ``get`` and a conditional ``upsert``
            clock: Returns the current time; must be timezone-aware UTC
            max_update_attempts: Conflicting writes tolerated per request
        """
        self.config = config
        self.store = store
        self.clock = clock
        self.max_update_attempts = max_update_attempts
        self._locks = KeyedLock()

    def check_and_consume(self, user_id: str, feature: Feature) -> UsageRecord:
        """Admit one request for ``feature`` or raise why not.

        Args:
            user_id: Non-empty user identifier
            feature: Feature being invoked

        Returns:
            The usage record after counting this request

        Raises:
            ValueError: If user_id is empty or feature unknown
            FeatureDisabled: If AI features are switched off
            RateLimited: If the previous accepted request was too recent
            DailyLimitExceeded: If today's quota for the feature is used up
            ConcurrentUpdateError: If the record kept changing underneath us
        """
        _require_user(user_id)
        if not isinstance(feature, Feature):
            raise ValueError(f"Unknown feature: {feature!r}")
        if not self.config.enabled:
            logger.warning("AI disabled, rejecting %s request from %s", feature.value, user_id)
            raise FeatureDisabled()

        date = day_key(self.clock())
        attempts = 0
        while True:
            with self._locks.hold((user_id, date)):
                while attempts < self.max_update_attempts:
                    # Read the clock under the lock so accepted timestamps
                    # are ordered the same way the writes are.
                    now = self.clock()
                    if day_key(now) != date:
                        break
                    attempts += 1
                    record = self.store.get(user_id, date) or UsageRecord.empty(user_id, date)
                    self._check_rate(record, now)
                    self._check_daily_limit(record, feature, now)

                    updated = record.consume(feature, now)
                    if self.store.upsert(updated, expected_version=record.version):
                        logger.info(
                            "AI usage recorded - user: %s feature: %s total today: %d",
                            user_id, feature.value, updated.total_requests
                        )
                        return updated
                    logger.debug("Usage record for %s on %s changed concurrently, re-checking",
                                 user_id, date)
                else:
                    logger.error("Gave up recording usage for %s on %s after %d conflicts",
                                 user_id, date, self.max_update_attempts)
                    raise ConcurrentUpdateError(user_id, date, self.max_update_attempts)

            # The UTC day rolled over while waiting; count against the new day.
            logger.debug("UTC day changed to %s while %s waited, re-keying", day_key(now), user_id)
            date = day_key(now)

    def get_user_stats(self, user_id: str) -> UsageStats:
        """Remaining quota per feature for today. Never writes."""
        _require_user(user_id)
        date = day_key(self.clock())
        record = self.store.get(user_id, date) or UsageRecord.empty(user_id, date)
        return UsageStats(
            remaining={
                feature: self.config.limit_for(feature) - record.used(feature)
                for feature in Feature
            },
            total_requests_today=record.total_requests,
        )

    def _check_rate(self, record: UsageRecord, now: datetime) -> None:
        if record.last_request_at is None:
            return
        elapsed = (now - record.last_request_at).total_seconds()
        min_interval = self.config.min_interval_seconds
        if elapsed < min_interval:
            logger.warning("Rate limit exceeded for user: %s", record.user_id)
            raise RateLimited(record.user_id, retry_after_seconds=min_interval - max(elapsed, 0.0))

    def _check_daily_limit(self, record: UsageRecord, feature: Feature, now: datetime) -> None:
        limit = self.config.limit_for(feature)
        if record.used(feature) >= limit:
            logger.warning("Daily limit exceeded for user: %s feature: %s",
                           record.user_id, feature.value)
            raise DailyLimitExceeded(feature, limit, retry_at=next_utc_midnight(now))


def _require_user(user_id: str) -> None:
    if not user_id or not str(user_id).strip():
        raise ValueError("user_id is required and cannot be empty")
