"""
Parsing of raw provider text into structured feature results.

Models often wrap JSON in a markdown code fence, so a leading
```` ``` ```` or ```` ```json ```` and a trailing ```` ``` ```` are stripped
before decoding. Parsing is all-or-nothing: one bad item fails the batch.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ResponseFormatError

QUIZ_OPTION_COUNT = 4


@dataclass(frozen=True)
class Flashcard:
    question: str
    answer: str


@dataclass(frozen=True)
class QuizQuestion:
    question: str
    options: List[str]
    correct_answer_index: int
    explanation: str


def strip_code_fence(text: str) -> str:
    """Remove one surrounding markdown code fence, if present."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_flashcards(text: str, provider: Optional[str] = None) -> List[Flashcard]:
    """Parse a JSON array of ``{question, answer}`` objects.

    The number of cards is whatever the provider returned.

    Raises:
        ResponseFormatError: If the payload is not such an array
    """
    items = _load_array(text, "flashcards", provider)
    cards = []
    for i, item in enumerate(items):
        _require_object(item, f"flashcard {i}", provider)
        cards.append(Flashcard(
            question=_require_str(item, "question", f"flashcard {i}", provider),
            answer=_require_str(item, "answer", f"flashcard {i}", provider),
        ))
    return cards


def parse_quiz(text: str, provider: Optional[str] = None) -> List[QuizQuestion]:
    """Parse a JSON array of multiple-choice questions.

    Each question needs a ``question`` string, exactly four string
    ``options``, an integer ``correctAnswerIndex`` in 0..3 and an
    ``explanation`` string.

    Raises:
        ResponseFormatError: If any question is missing or ill-typed
    """
    items = _load_array(text, "quiz", provider)
    questions = []
    for i, item in enumerate(items):
        where = f"quiz question {i}"
        _require_object(item, where, provider)
        question = _require_str(item, "question", where, provider)

        options = item.get("options")
        if (not isinstance(options, list)
                or len(options) != QUIZ_OPTION_COUNT
                or not all(isinstance(o, str) for o in options)):
            raise ResponseFormatError(
                f"{where}: 'options' must be a list of {QUIZ_OPTION_COUNT} strings",
                provider=provider,
            )

        index = item.get("correctAnswerIndex")
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < QUIZ_OPTION_COUNT:
            raise ResponseFormatError(
                f"{where}: 'correctAnswerIndex' must be an integer from 0 to {QUIZ_OPTION_COUNT - 1}",
                provider=provider,
            )

        questions.append(QuizQuestion(
            question=question,
            options=list(options),
            correct_answer_index=index,
            explanation=_require_str(item, "explanation", where, provider),
        ))
    return questions


def _load_array(text: str, what: str, provider: Optional[str]) -> List[Any]:
    if not isinstance(text, str):
        raise ResponseFormatError(f"Failed to parse {what}: payload is not text", provider=provider)
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise ResponseFormatError(f"Failed to parse {what}: {e}", provider=provider) from e
    if not isinstance(data, list):
        raise ResponseFormatError(
            f"Failed to parse {what}: expected a JSON array, got {type(data).__name__}",
            provider=provider,
        )
    return data


def _require_object(item: Any, where: str, provider: Optional[str]) -> None:
    if not isinstance(item, dict):
        raise ResponseFormatError(f"{where} must be a JSON object", provider=provider)


def _require_str(item: Dict[str, Any], key: str, where: str, provider: Optional[str]) -> str:
    value = item.get(key)
    if not isinstance(value, str):
        raise ResponseFormatError(f"{where}: '{key}' must be a string", provider=provider)
    return value
