"""
Wiring of quota guard, providers, orchestrators and stores from config.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from ai_usage_governor.config.loader import GovernorConfig
from ai_usage_governor.providers.openai_client import OpenAICompatibleClient
from ai_usage_governor.storage.repository import (
    SqliteFeatureStore,
    SqliteUsageStore,
    initialize_schema,
)
from .failover import FailoverInvoker
from .features import Feature
from .orchestrator import (
    ChatOrchestrator,
    FlashcardOrchestrator,
    QuizOrchestrator,
    SummaryOrchestrator,
)
from .quota import QuotaGuard, UsageStats, utc_now


@dataclass
class Governor:
    """Entry points for request handlers."""
    guard: QuotaGuard
    chat: ChatOrchestrator
    flashcards: FlashcardOrchestrator
    quiz: QuizOrchestrator
    summary: SummaryOrchestrator

    def get_user_stats(self, user_id: str) -> UsageStats:
        return self.guard.get_user_stats(user_id)


def build_governor(
    config: GovernorConfig,
    clients: Optional[Dict[str, object]] = None,
    usage_store=None,
    feature_stores: Optional[Dict[Feature, object]] = None,
    clock: Callable[[], datetime] = utc_now
) -> Governor:
    """Assemble a Governor.

    Missing collaborators default to OpenAI-compatible clients built from
    ``config.providers`` and SQLite stores at ``config.db_path`` (the
    schema is created if needed).

    Args:
        config: Validated governor configuration
        clients: Provider clients by provider name
        usage_store: Usage store for the quota guard
        feature_stores: Feature stores by feature
        clock: Current-time source for the quota guard

    Returns:
        Governor ready to serve requests
    """
    if clients is None:
        clients = {p.name: OpenAICompatibleClient.from_config(p) for p in config.providers}
    if usage_store is None or feature_stores is None:
        initialize_schema(config.db_path)
    if usage_store is None:
        usage_store = SqliteUsageStore(config.db_path)
    if feature_stores is None:
        feature_stores = {f: SqliteFeatureStore(f, config.db_path) for f in Feature}

    guard = QuotaGuard(config.quota, usage_store, clock=clock)
    invoker = FailoverInvoker()

    def providers_for(feature: Feature):
        return [clients[name] for name in config.provider_order(feature)]

    return Governor(
        guard=guard,
        chat=ChatOrchestrator(
            guard, providers_for(Feature.CHAT), feature_stores[Feature.CHAT], invoker
        ),
        flashcards=FlashcardOrchestrator(
            guard, providers_for(Feature.FLASHCARDS), feature_stores[Feature.FLASHCARDS], invoker
        ),
        quiz=QuizOrchestrator(
            guard, providers_for(Feature.QUIZ), feature_stores[Feature.QUIZ], invoker
        ),
        summary=SummaryOrchestrator(
            guard, providers_for(Feature.SUMMARY), feature_stores[Feature.SUMMARY], invoker
        ),
    )
