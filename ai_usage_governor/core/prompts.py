"""
Prompt text sent to providers for each feature.
"""

CHAT_PREAMBLE = (
    "You are a helpful AI assistant. Provide clear, concise, and accurate answers. "
    "User message: "
)


def chat_prompt(message: str) -> str:
    return CHAT_PREAMBLE + message


def flashcards_prompt(topic: str, count: int) -> str:
    return (
        f"Generate EXACTLY {count} flashcards about '{topic}'. "
        "CRITICAL: Return ONLY a valid JSON array, no additional text before or after. "
        "Each object must have 'question' and 'answer' fields. "
        "Make questions clear and answers concise. "
        'Output format: [{"question": "What is...", "answer": "It is..."}]. '
        f"Generate EXACTLY {count} items, no more, no less."
    )


def quiz_prompt(topic: str, question_count: int) -> str:
    return (
        f"Generate a quiz with exactly {question_count} multiple-choice questions about '{topic}'. "
        "Format your response as a JSON array with objects containing: "
        "'question' (string), 'options' (array of 4 strings), "
        "'correctAnswerIndex' (0-3), and 'explanation' (string). "
        'Example format: [{"question": "What is...", "options": ["A", "B", "C", "D"], '
        '"correctAnswerIndex": 0, "explanation": "Because..."}]'
    )


def summary_prompt(text: str) -> str:
    return (
        "Summarize the following text concisely, capturing the main points and key information. "
        f"Keep the summary clear and well-structured:\n\n{text}"
    )
