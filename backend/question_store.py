import re
import uuid
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import config
from errors import ValidationError, NotFound

logger = logging.getLogger(__name__)


def sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from moderator-entered text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    options: Dict[str, str]
    correct_answer: str

    def to_dict(self, include_answer: bool = True) -> dict:
        data = {"id": self.id, "text": self.text, "options": dict(self.options)}
        if include_answer:
            data["correctAnswer"] = self.correct_answer
        return data


def validate_question(text, options, correct_answer) -> Question:
    """Validate and sanitize raw moderator input, returning a new Question."""
    if not isinstance(text, str) or not sanitize_text(text):
        raise ValidationError("Question text is required and must be non-empty")
    text = sanitize_text(text)
    if len(text) > config.MAX_QUESTION_TEXT_LENGTH:
        raise ValidationError(
            f"Question text must be {config.MAX_QUESTION_TEXT_LENGTH} characters or less")

    if not isinstance(options, dict):
        raise ValidationError("Options must map A-D to text")
    clean_options = {}
    for key in config.OPTION_KEYS:
        option = options.get(key)
        if not isinstance(option, str) or not sanitize_text(option):
            raise ValidationError(f"Option {key} is required and must be non-empty")
        option = sanitize_text(option)
        if len(option) > config.MAX_OPTION_LENGTH:
            raise ValidationError(
                f"Option {key} must be {config.MAX_OPTION_LENGTH} characters or less")
        clean_options[key] = option

    if correct_answer not in config.OPTION_KEYS:
        raise ValidationError("Correct answer must be A, B, C, or D")

    return Question(id=uuid.uuid4().hex, text=text, options=clean_options,
                    correct_answer=correct_answer)


class QuestionStore:
    """Ordered question list. Callers hold the game lock."""

    def __init__(self):
        self._questions: List[Question] = []

    def __len__(self) -> int:
        return len(self._questions)

    def all(self) -> List[Question]:
        return list(self._questions)

    def get(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self._questions):
            return self._questions[index]
        return None

    def append(self, question: Question) -> Question:
        if len(self._questions) >= config.MAX_QUESTIONS:
            raise ValidationError(f"Cannot hold more than {config.MAX_QUESTIONS} questions")
        self._questions.append(question)
        return question

    def remove(self, question_id: str) -> int:
        """Remove a question by id and return the index it occupied."""
        for index, question in enumerate(self._questions):
            if question.id == question_id:
                del self._questions[index]
                logger.info("Question %s removed (was #%d)", question_id, index + 1)
                return index
        raise NotFound("Question not found")
