"""
Unit tests for provider response parsing.
"""
import json

import pytest

from ai_usage_governor.core.errors import ResponseFormatError
from ai_usage_governor.core.parsers import (
    Flashcard,
    QuizQuestion,
    parse_flashcards,
    parse_quiz,
    strip_code_fence,
)


def quiz_item(**overrides):
    item = {
        "question": "What is 2 + 2?",
        "options": ["3", "4", "5", "22"],
        "correctAnswerIndex": 1,
        "explanation": "Basic arithmetic.",
    }
    item.update(overrides)
    return item


class TestStripCodeFence:
    """Test markdown fence removal."""

    @pytest.mark.parametrize("raw", [
        '[1, 2]',
        '```json\n[1, 2]\n```',
        '```\n[1, 2]\n```',
        '  ```json[1, 2]```  ',
    ])
    def test_fences_removed(self, raw):
        assert strip_code_fence(raw) == "[1, 2]"

    def test_inner_backticks_untouched(self):
        assert strip_code_fence('["use `x`"]') == '["use `x`"]'


class TestParseFlashcards:
    """Test flashcard parsing."""

    def test_fenced_array_parses(self):
        payload = '```json\n[{"question": "Q1", "answer": "A1"}, {"question": "Q2", "answer": "A2"}]\n```'

        cards = parse_flashcards(payload)

        assert cards == [Flashcard("Q1", "A1"), Flashcard("Q2", "A2")]

    def test_count_is_not_enforced(self):
        payload = json.dumps([{"question": f"Q{i}", "answer": f"A{i}"} for i in range(7)])
        assert len(parse_flashcards(payload)) == 7

    def test_empty_array_is_allowed(self):
        assert parse_flashcards("[]") == []

    def test_malformed_json_fails(self):
        with pytest.raises(ResponseFormatError, match="Failed to parse flashcards") as excinfo:
            parse_flashcards('```json\n[{"question": "Q1", "answer": \n```', provider="groq")
        assert excinfo.value.provider == "groq"

    def test_non_array_fails(self):
        with pytest.raises(ResponseFormatError, match="expected a JSON array"):
            parse_flashcards('{"question": "Q", "answer": "A"}')

    def test_missing_field_fails_whole_batch(self):
        payload = json.dumps([{"question": "Q1", "answer": "A1"}, {"question": "Q2"}])
        with pytest.raises(ResponseFormatError, match="flashcard 1: 'answer'"):
            parse_flashcards(payload)

    def test_non_object_item_fails(self):
        with pytest.raises(ResponseFormatError, match="must be a JSON object"):
            parse_flashcards('["just a string"]')

    def test_prose_response_fails(self):
        with pytest.raises(ResponseFormatError):
            parse_flashcards("Sure! Here are your flashcards.")


class TestParseQuiz:
    """Test quiz parsing."""

    def test_valid_quiz_parses(self):
        questions = parse_quiz("```json\n" + json.dumps([quiz_item(), quiz_item(correctAnswerIndex=3)]) + "\n```")

        assert questions[0] == QuizQuestion(
            question="What is 2 + 2?",
            options=["3", "4", "5", "22"],
            correct_answer_index=1,
            explanation="Basic arithmetic.",
        )
        assert questions[1].correct_answer_index == 3

    def test_three_options_fail_whole_batch(self):
        payload = json.dumps([quiz_item(), quiz_item(options=["a", "b", "c"]), quiz_item()])
        with pytest.raises(ResponseFormatError, match="quiz question 1: 'options'"):
            parse_quiz(payload)

    @pytest.mark.parametrize("index", [-1, 4, "1", 1.0, True, None])
    def test_bad_answer_index_fails(self, index):
        with pytest.raises(ResponseFormatError, match="correctAnswerIndex"):
            parse_quiz(json.dumps([quiz_item(correctAnswerIndex=index)]))

    def test_non_string_option_fails(self):
        with pytest.raises(ResponseFormatError, match="'options'"):
            parse_quiz(json.dumps([quiz_item(options=["a", "b", "c", 4])]))

    @pytest.mark.parametrize("field", ["question", "explanation"])
    def test_missing_text_field_fails(self, field):
        item = quiz_item()
        del item[field]
        with pytest.raises(ResponseFormatError, match=f"'{field}'"):
            parse_quiz(json.dumps([item]))
