"""
Error taxonomy for quota enforcement and provider failover.

Every error carries a machine-readable ``code`` and an HTTP-style
``status_code`` so request handlers can translate outcomes without
inspecting messages.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from .features import Feature


class GovernorError(Exception):
    """Base class for all user-visible governor outcomes."""
    code = "GOVERNOR_ERROR"
    status_code = 500


class QuotaError(GovernorError):
    """A request was refused before any provider was called."""
    status_code = 429


class FeatureDisabled(QuotaError):
    """AI features are switched off globally."""
    code = "AI_DISABLED"
    status_code = 503

    def __init__(self, message: str = "AI features are temporarily disabled"):
        super().__init__(message)


class RateLimited(QuotaError):
    """User sent requests faster than the minimum interval allows."""
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, user_id: str, retry_after_seconds: float):
        super().__init__(
            "Too many requests. Please wait a moment before trying again."
        )
        self.user_id = user_id
        self.retry_after_seconds = retry_after_seconds


class DailyLimitExceeded(QuotaError):
    """User exhausted today's quota for a feature."""
    code = "AI_LIMIT_EXCEEDED"

    def __init__(self, feature: Feature, limit: int, retry_at: Optional[datetime] = None):
        super().__init__(
            f"Daily limit reached for {feature.value}. "
            f"Limit: {limit} requests per day. Try again tomorrow!"
        )
        self.feature = feature
        self.limit = limit
        self.retry_at = retry_at


class ConcurrentUpdateError(GovernorError):
    """Usage record kept changing underneath us; gave up re-checking."""
    code = "USAGE_CONFLICT"
    status_code = 503

    def __init__(self, user_id: str, date: str, attempts: int):
        super().__init__(
            f"Could not record usage for {user_id} on {date} "
            f"after {attempts} conflicting updates"
        )
        self.user_id = user_id
        self.date = date
        self.attempts = attempts


class ProviderErrorKind(Enum):
    """Classification of a single failed provider call."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_REQUEST = "invalid_request"


# Switching vendors cannot fix a request we built wrong.
PERMANENT_KINDS = frozenset({ProviderErrorKind.INVALID_REQUEST})


class ProviderError(GovernorError):
    """One provider call failed."""
    code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(self, provider: str, kind: ProviderErrorKind, message: str):
        super().__init__(f"{provider} {kind.value}: {message}")
        self.provider = provider
        self.kind = kind
        self.reason = message

    @property
    def transient(self) -> bool:
        """Whether another provider might succeed where this one failed."""
        return self.kind not in PERMANENT_KINDS


class AllProvidersFailedError(GovernorError):
    """Every provider in the failover chain failed."""
    code = "AI_SERVICE_UNAVAILABLE"
    status_code = 503

    def __init__(self, failures: Sequence):
        self.failures = tuple(failures)
        self.last_error = self.failures[-1].error if self.failures else None
        tried = ", ".join(failure.provider for failure in self.failures)
        super().__init__(
            "AI service is temporarily unavailable. Please try again later. "
            f"(tried: {tried}; last error: {self.last_error})"
        )


class ResponseFormatError(GovernorError):
    """A provider answered but its payload did not match the expected shape."""
    code = "MALFORMED_AI_RESPONSE"
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
