"""
Tests for the feature orchestrators.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from ai_usage_governor.config.loader import QuotaConfig
from ai_usage_governor.core.errors import (
    AllProvidersFailedError,
    DailyLimitExceeded,
    ProviderError,
    ProviderErrorKind,
    RateLimited,
    ResponseFormatError,
)
from ai_usage_governor.core.features import Feature
from ai_usage_governor.core.orchestrator import (
    ChatOrchestrator,
    FlashcardOrchestrator,
    QuizOrchestrator,
    SummaryOrchestrator,
)
from ai_usage_governor.core.parsers import Flashcard
from ai_usage_governor.core.quota import QuotaGuard
from ai_usage_governor.storage.repository import InMemoryFeatureStore, InMemoryUsageStore


class SteppingClock:
    """Moves a minute forward per read so the throttle stays out of the way."""

    def __init__(self):
        self.now = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now += timedelta(minutes=1)
        return current


class FakeProvider:
    def __init__(self, name, *answers):
        self.name = name
        self.answers = list(answers)
        self.prompts = []

    def complete(self, prompt, timeout=None):
        self.prompts.append(prompt)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def http_500(name):
    return ProviderError(name, ProviderErrorKind.SERVER_ERROR, "HTTP 500")


def quiz_json(options_per_question=(4, 4)):
    return json.dumps([
        {
            "question": f"Question {i}",
            "options": [f"opt{j}" for j in range(n)],
            "correctAnswerIndex": 0,
            "explanation": "because",
        }
        for i, n in enumerate(options_per_question)
    ])


class OrchestratorTestBase:
    """Shared guard and stores for orchestrator tests."""

    def setup_method(self):
        self.usage_store = InMemoryUsageStore()
        self.config = QuotaConfig(
            limits={
                Feature.CHAT: 3,
                Feature.FLASHCARDS: 2,
                Feature.QUIZ: 2,
                Feature.SUMMARY: 1,
            },
            requests_per_minute=5,
        )
        self.guard = QuotaGuard(self.config, self.usage_store, clock=SteppingClock())

    def remaining(self, user_id, feature):
        return self.guard.get_user_stats(user_id).remaining_for(feature)


class TestFlashcardOrchestrator(OrchestratorTestBase):
    """Test flashcard generation."""

    def test_falls_back_to_secondary_and_persists(self):
        """Primary returns HTTP 500, secondary returns three fenced cards."""
        cards = [{"question": f"Q{i}", "answer": f"A{i}"} for i in range(3)]
        primary = FakeProvider("primary", http_500("primary"))
        secondary = FakeProvider("secondary", "```json\n" + json.dumps(cards) + "\n```")
        store = InMemoryFeatureStore(Feature.FLASHCARDS)
        orchestrator = FlashcardOrchestrator(self.guard, [primary, secondary], store)

        result = orchestrator.generate("alice", "photosynthesis", count=3)

        assert result.provider == "secondary"
        assert result.cards == [Flashcard(f"Q{i}", f"A{i}") for i in range(3)]
        assert result.record_id is not None
        saved = store.get(result.record_id)
        assert saved.provider == "secondary"
        assert saved.user_id == "alice"
        assert saved.payload["cards"] == cards
        assert "photosynthesis" in primary.prompts[0]
        assert primary.prompts == secondary.prompts

    def test_found_by_topic(self):
        provider = FakeProvider("primary", '[{"question": "Q", "answer": "A"}]')
        store = InMemoryFeatureStore(Feature.FLASHCARDS)
        orchestrator = FlashcardOrchestrator(self.guard, [provider], store)

        result = orchestrator.generate("alice", "cells")

        assert [r.record_id for r in orchestrator.by_topic("cells")] == [result.record_id]
        assert orchestrator.by_topic("atoms") == []

    def test_malformed_json_is_not_retried(self):
        primary = FakeProvider("primary", "[{not json")
        secondary = FakeProvider("secondary", "[]")
        store = InMemoryFeatureStore(Feature.FLASHCARDS)
        orchestrator = FlashcardOrchestrator(self.guard, [primary, secondary], store)

        with pytest.raises(ResponseFormatError) as excinfo:
            orchestrator.generate("alice", "cells")

        assert excinfo.value.provider == "primary"
        assert secondary.prompts == []
        assert len(store) == 0

    @pytest.mark.parametrize("count", [0, -3])
    def test_invalid_count_rejected_before_quota(self, count):
        provider = FakeProvider("primary", "[]")
        orchestrator = FlashcardOrchestrator(
            self.guard, [provider], InMemoryFeatureStore(Feature.FLASHCARDS)
        )

        with pytest.raises(ValueError, match="count"):
            orchestrator.generate("alice", "cells", count=count)

        assert self.remaining("alice", Feature.FLASHCARDS) == 2
        assert provider.prompts == []


class TestQuizOrchestrator(OrchestratorTestBase):
    """Test quiz generation."""

    def test_valid_quiz_persisted(self):
        provider = FakeProvider("primary", quiz_json((4, 4)))
        store = InMemoryFeatureStore(Feature.QUIZ)
        orchestrator = QuizOrchestrator(self.guard, [provider], store)

        quiz = orchestrator.generate("bob", "geography", question_count=2)

        assert len(quiz.questions) == 2
        assert orchestrator.get(quiz.record_id).payload["questions"][0]["correctAnswerIndex"] == 0

    def test_three_options_fails_batch_and_persists_nothing(self):
        provider = FakeProvider("primary", quiz_json((4, 3, 4)))
        backup = FakeProvider("backup", quiz_json((4, 4, 4)))
        store = InMemoryFeatureStore(Feature.QUIZ)
        orchestrator = QuizOrchestrator(self.guard, [provider, backup], store)

        with pytest.raises(ResponseFormatError):
            orchestrator.generate("bob", "geography", question_count=3)

        assert len(store) == 0
        assert backup.prompts == []
        # The provider was paid for, so the quota unit stays spent.
        assert self.remaining("bob", Feature.QUIZ) == 1


class TestQuotaGate(OrchestratorTestBase):
    """Test that quota is checked before any provider call."""

    def test_quota_rejection_skips_provider(self):
        provider = FakeProvider("primary", "A summary.")
        store = InMemoryFeatureStore(Feature.SUMMARY)
        orchestrator = SummaryOrchestrator(self.guard, [provider], store)
        orchestrator.generate("carol", "Some long text.")

        with pytest.raises(DailyLimitExceeded) as excinfo:
            orchestrator.generate("carol", "More text.")

        assert excinfo.value.feature == Feature.SUMMARY
        assert len(provider.prompts) == 1
        assert len(store) == 1

    def test_rate_limit_propagates_untouched(self):
        class FrozenClock:
            def __call__(self):
                return datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

        guard = QuotaGuard(self.config, InMemoryUsageStore(), clock=FrozenClock())
        provider = FakeProvider("primary", "hello")
        orchestrator = ChatOrchestrator(guard, [provider], InMemoryFeatureStore(Feature.CHAT))
        orchestrator.generate("dave", "hi")

        with pytest.raises(RateLimited):
            orchestrator.generate("dave", "hi again")
        assert len(provider.prompts) == 1


class TestProviderOutage(OrchestratorTestBase):
    """Test behaviour when providers are down."""

    def test_all_providers_failed_persists_nothing(self):
        primary = FakeProvider("primary", http_500("primary"))
        secondary = FakeProvider(
            "secondary", ProviderError("secondary", ProviderErrorKind.NETWORK, "connection reset")
        )
        store = InMemoryFeatureStore(Feature.SUMMARY)
        orchestrator = SummaryOrchestrator(self.guard, [primary, secondary], store)

        with pytest.raises(AllProvidersFailedError) as excinfo:
            orchestrator.generate("erin", "Text to summarize.")

        assert excinfo.value.last_error.kind == ProviderErrorKind.NETWORK
        assert len(store) == 0

    def test_orchestrator_requires_providers(self):
        with pytest.raises(ValueError, match="providers is required"):
            ChatOrchestrator(self.guard, [], InMemoryFeatureStore(Feature.CHAT))


class TestChatAndSummary(OrchestratorTestBase):
    """Test the verbatim-text features."""

    def test_chat_reply_is_verbatim_and_session_created(self):
        provider = FakeProvider("gemini", "  Hello there!\n")
        store = InMemoryFeatureStore(Feature.CHAT)
        orchestrator = ChatOrchestrator(self.guard, [provider], store)

        reply = orchestrator.generate("frank", "Hi")

        assert reply.reply == "  Hello there!\n"
        assert reply.session_id
        assert reply.provider == "gemini"
        assert provider.prompts[0].endswith("User message: Hi")

    def test_chat_history_in_order(self):
        provider = FakeProvider("gemini", "first", "second")
        orchestrator = ChatOrchestrator(self.guard, [provider], InMemoryFeatureStore(Feature.CHAT))

        first = orchestrator.generate("frank", "one", session_id="s-1")
        second = orchestrator.generate("frank", "two", session_id="s-1")

        history = orchestrator.history("s-1")
        assert [r.record_id for r in history] == [first.record_id, second.record_id]
        assert [r.payload["reply"] for r in history] == ["first", "second"]

    def test_summary_is_verbatim(self):
        provider = FakeProvider("groq", "Short version.")
        orchestrator = SummaryOrchestrator(
            self.guard, [provider], InMemoryFeatureStore(Feature.SUMMARY)
        )

        summary = orchestrator.generate("grace", "A very long text.")

        assert summary.summarized_text == "Short version."
        assert summary.original_text == "A very long text."
        assert orchestrator.get(summary.record_id).payload["summarized_text"] == "Short version."

    def test_empty_message_rejected(self):
        orchestrator = ChatOrchestrator(
            self.guard, [FakeProvider("gemini", "x")], InMemoryFeatureStore(Feature.CHAT)
        )
        with pytest.raises(ValueError, match="message is required"):
            orchestrator.generate("grace", "   ")
        assert self.remaining("grace", Feature.CHAT) == 3
