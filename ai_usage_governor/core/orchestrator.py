"""
Feature orchestrators: quota check, provider failover, parsing, persistence.

Every feature follows the same pipeline:

    PENDING -> QUOTA_CHECKED -> PROVIDER_CALLED -> PARSED -> PERSISTED

with early exits REJECTED_BY_QUOTA, ALL_PROVIDERS_FAILED and
MALFORMED_RESPONSE. The quota is consumed before any provider is called,
and a malformed provider answer is never retried against another provider.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import AllProvidersFailedError, ProviderError, QuotaError, ResponseFormatError
from .failover import FailoverInvoker
from .features import Feature
from .parsers import Flashcard, QuizQuestion, parse_flashcards, parse_quiz
from .prompts import chat_prompt, flashcards_prompt, quiz_prompt, summary_prompt
from .quota import QuotaGuard

logger = logging.getLogger(__name__)

DEFAULT_FLASHCARD_COUNT = 5
DEFAULT_QUIZ_QUESTION_COUNT = 5


class Stage(Enum):
    """Where a feature request is in the pipeline."""
    PENDING = "pending"
    QUOTA_CHECKED = "quota_checked"
    PROVIDER_CALLED = "provider_called"
    PARSED = "parsed"
    PERSISTED = "persisted"
    REJECTED_BY_QUOTA = "rejected_by_quota"
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    MALFORMED_RESPONSE = "malformed_response"


@dataclass(frozen=True)
class ChatReply:
    session_id: str
    message: str
    reply: str
    provider: str
    record_id: Optional[str] = None

    @property
    def lookup_key(self) -> str:
        return self.session_id

    def to_payload(self) -> Dict[str, Any]:
        return {"session_id": self.session_id, "message": self.message, "reply": self.reply}


@dataclass(frozen=True)
class FlashcardSet:
    topic: str
    cards: List[Flashcard]
    provider: str
    record_id: Optional[str] = None

    @property
    def lookup_key(self) -> str:
        return self.topic

    def to_payload(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "cards": [{"question": c.question, "answer": c.answer} for c in self.cards],
        }


@dataclass(frozen=True)
class Quiz:
    topic: str
    questions: List[QuizQuestion]
    provider: str
    record_id: Optional[str] = None

    @property
    def lookup_key(self) -> str:
        return self.topic

    def to_payload(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "questions": [
                {
                    "question": q.question,
                    "options": list(q.options),
                    "correctAnswerIndex": q.correct_answer_index,
                    "explanation": q.explanation,
                }
                for q in self.questions
            ],
        }


@dataclass(frozen=True)
class Summary:
    original_text: str
    summarized_text: str
    provider: str
    record_id: Optional[str] = None

    @property
    def lookup_key(self) -> Optional[str]:
        return None

    def to_payload(self) -> Dict[str, Any]:
        return {"original_text": self.original_text, "summarized_text": self.summarized_text}


class FeatureOrchestrator:
    """Shared pipeline for one AI feature.

    Subclasses set ``feature`` and expose a ``generate`` method that builds
    the prompt and says how to turn the provider payload into a result.
    """

    feature: Feature

    def __init__(
        self,
        guard: QuotaGuard,
        providers: Sequence,
        store,
        invoker: Optional[FailoverInvoker] = None
    ):
        """Initialize the orchestrator.

        Args:
            guard: Quota guard consulted before any provider call
            providers: Provider clients in failover order
            store: Feature store that persists results
            invoker: Failover strategy (defaults to FailoverInvoker)
        """
        if not providers:
            raise ValueError("providers is required and cannot be empty")
        self.guard = guard
        self.providers = list(providers)
        self.store = store
        self.invoker = invoker or FailoverInvoker()

    def _run(self, user_id: str, prompt: str, build: Callable[[str, str], Any]) -> Any:
        """Run the pipeline and return the persisted result.

        ``build`` receives the raw payload and the answering provider's name
        and returns the structured result, raising ResponseFormatError if
        the payload has the wrong shape.
        """
        self._enter(Stage.PENDING, user_id)
        try:
            self.guard.check_and_consume(user_id, self.feature)
        except QuotaError:
            self._enter(Stage.REJECTED_BY_QUOTA, user_id)
            raise
        self._enter(Stage.QUOTA_CHECKED, user_id)

        try:
            result = self.invoker.invoke(lambda provider: provider.complete(prompt), self.providers)
        except (AllProvidersFailedError, ProviderError):
            self._enter(Stage.ALL_PROVIDERS_FAILED, user_id)
            raise
        self._enter(Stage.PROVIDER_CALLED, user_id)

        try:
            structured = build(result.payload, result.provider)
        except ResponseFormatError as e:
            self._enter(Stage.MALFORMED_RESPONSE, user_id)
            logger.error("Malformed %s response from %s: %s",
                         self.feature.value, result.provider, e)
            raise
        self._enter(Stage.PARSED, user_id)

        record_id = self.store.save(structured, user_id=user_id)
        self._enter(Stage.PERSISTED, user_id)
        logger.info("%s generated using %s", self.feature.value, result.provider)
        return replace(structured, record_id=record_id)

    def _enter(self, stage: Stage, user_id: str) -> None:
        logger.debug("%s request for %s: %s", self.feature.value, user_id, stage.value)


class ChatOrchestrator(FeatureOrchestrator):
    feature = Feature.CHAT

    def generate(self, user_id: str, message: str, session_id: Optional[str] = None) -> ChatReply:
        """Answer a chat message; starts a new session if none is given."""
        _require_text(message, "message")
        session_id = session_id or str(uuid.uuid4())
        return self._run(
            user_id,
            chat_prompt(message),
            lambda payload, provider: ChatReply(
                session_id=session_id, message=message, reply=payload, provider=provider
            ),
        )

    def history(self, session_id: str):
        """Messages of a chat session, oldest first."""
        return self.store.find_by_key(session_id, newest_first=False)


class FlashcardOrchestrator(FeatureOrchestrator):
    feature = Feature.FLASHCARDS

    def generate(self, user_id: str, topic: str, count: int = DEFAULT_FLASHCARD_COUNT) -> FlashcardSet:
        _require_text(topic, "topic")
        _require_count(count)
        return self._run(
            user_id,
            flashcards_prompt(topic, count),
            lambda payload, provider: FlashcardSet(
                topic=topic, cards=parse_flashcards(payload, provider), provider=provider
            ),
        )

    def by_topic(self, topic: str):
        return self.store.find_by_key(topic)


class QuizOrchestrator(FeatureOrchestrator):
    feature = Feature.QUIZ

    def generate(self, user_id: str, topic: str,
                 question_count: int = DEFAULT_QUIZ_QUESTION_COUNT) -> Quiz:
        _require_text(topic, "topic")
        _require_count(question_count)
        return self._run(
            user_id,
            quiz_prompt(topic, question_count),
            lambda payload, provider: Quiz(
                topic=topic, questions=parse_quiz(payload, provider), provider=provider
            ),
        )

    def by_topic(self, topic: str):
        return self.store.find_by_key(topic)

    def get(self, record_id: str):
        return self.store.get(record_id)


class SummaryOrchestrator(FeatureOrchestrator):
    feature = Feature.SUMMARY

    def generate(self, user_id: str, text: str) -> Summary:
        _require_text(text, "text")
        return self._run(
            user_id,
            summary_prompt(text),
            lambda payload, provider: Summary(
                original_text=text, summarized_text=payload, provider=provider
            ),
        )

    def get(self, record_id: str):
        return self.store.get(record_id)


def _require_text(value: str, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required and cannot be empty")


def _require_count(count: int) -> None:
    if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
        raise ValueError("count must be a positive integer")
