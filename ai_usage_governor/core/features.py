"""
AI-backed features subject to daily quotas.
"""

from enum import Enum


class Feature(Enum):
    """Generative-AI capabilities a user can invoke."""
    CHAT = "chat"
    FLASHCARDS = "flashcards"
    QUIZ = "quiz"
    SUMMARY = "summary"

    @classmethod
    def parse(cls, value: str) -> "Feature":
        """Look up a feature by its config/CLI name (case-insensitive).

        Raises:
            ValueError: If the name is not a known feature
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [feature.value for feature in cls]
            raise ValueError(f"Unknown feature '{value}', must be one of: {valid}")
