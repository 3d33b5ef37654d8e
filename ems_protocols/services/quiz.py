from __future__ import annotations

"""Multiple-choice quiz generation from protocol content."""

import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ems_protocols.protocols.store import CategoryMatch, Protocol, ProtocolStore
from ems_protocols.services.llm_client import ChatModelClient, LLMServiceError
from ems_protocols.services.prompts import QUIZ_SYSTEM_PROMPT, QUIZ_USER_PROMPT, format_prompt
from ems_protocols.utils.logger import get_logger

MIN_QUIZ_LENGTH = 1
MAX_QUIZ_LENGTH = 20
QUIZ_TEMPERATURE = 0.7

QUESTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "questionText", "options", "correctAnswerId", "explanation"],
    "properties": {
        "id": {"type": "string"},
        "questionText": {"type": "string", "minLength": 1},
        "questionType": {"const": "multiple-choice"},
        "options": {
            "type": "array",
            "minItems": 2,
            "items": {
                "type": "object",
                "required": ["id", "text"],
                "properties": {"id": {"type": "string"}, "text": {"type": "string"}},
            },
        },
        "correctAnswerId": {"type": "string"},
        "explanation": {"type": "string"},
    },
}


class QuizGenerationError(ValueError):
    """Raised when a quiz cannot be assembled from the requested pool."""


@dataclass(frozen=True)
class QuizOption:
    id: str
    text: str


@dataclass(frozen=True)
class Question:
    id: str
    question_text: str
    options: List[QuizOption]
    correct_answer_id: str
    explanation: str
    protocol_id: str
    question_type: str = "multiple-choice"

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        protocol_id: str,
        question_id: Optional[str] = None,
    ) -> "Question":
        """Build a question from its camelCase JSON form.

        ``question_id`` replaces the payload id; model answers reuse ids such as
        ``"q1"`` across calls, so generated questions get a server-side id.
        """

        options = [QuizOption(id=str(opt["id"]), text=str(opt["text"])) for opt in payload["options"]]
        correct = str(payload["correctAnswerId"])
        if correct not in {option.id for option in options}:
            raise ValueError("correctAnswerId does not reference an option.")
        return cls(
            id=question_id or str(payload["id"]),
            question_text=str(payload["questionText"]),
            options=options,
            correct_answer_id=correct,
            explanation=str(payload["explanation"]),
            protocol_id=protocol_id,
        )

    def option_text(self, option_id: Optional[str]) -> Optional[str]:
        for option in self.options:
            if option.id == option_id:
                return option.text
        return None


@dataclass(frozen=True)
class GeneratedQuestion:
    """A question produced by the language model."""

    question: Question


@dataclass(frozen=True)
class FallbackQuestion:
    """A stub question used when generation was unavailable or failed."""

    question: Question
    reason: str


QuestionResult = Union[GeneratedQuestion, FallbackQuestion]


@dataclass(frozen=True)
class AnswerReview:
    question_id: str
    question_text: str
    selected_answer_id: Optional[str]
    selected_text: Optional[str]
    correct_text: Optional[str]
    is_correct: bool
    explanation: str


@dataclass
class QuizResult:
    score: int
    total: int
    answers: List[AnswerReview] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.score / self.total * 100)


def _make_question_id(prefix: str, protocol: Protocol) -> str:
    """Quiz-unique id: protocols are sampled without replacement."""

    return f"{prefix}-{protocol.id}-{int(time.time() * 1000)}"


def fallback_question(protocol: Protocol) -> Question:
    """Generic first-step question for a protocol."""

    return Question(
        id=_make_question_id("fallback", protocol),
        question_text=f'According to protocol "{protocol.name}", what is the first step?',
        options=[
            QuizOption(id="1", text="Step A"),
            QuizOption(id="2", text="Step B"),
            QuizOption(id="3", text="Step C"),
            QuizOption(id="4", text="Step D"),
        ],
        correct_answer_id="1",
        explanation="Fallback: review the protocol for correct first step.",
        protocol_id=protocol.id,
    )


class QuizGenerator:
    """Pick protocols for a quiz and turn each into one question."""

    def __init__(
        self,
        store: ProtocolStore,
        llm_client: Optional[ChatModelClient] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._llm_client = llm_client
        self._rng = rng or random.Random()
        self._logger = get_logger("ems_protocols.services.quiz")

    def select_candidates(
        self,
        categories: Optional[Iterable[str]],
        length: int,
        match: CategoryMatch = CategoryMatch.ANY,
    ) -> List[Protocol]:
        """Uniformly sample up to ``length`` protocols from the category pool."""

        if not MIN_QUIZ_LENGTH <= length <= MAX_QUIZ_LENGTH:
            raise QuizGenerationError(
                f"Quiz length must be between {MIN_QUIZ_LENGTH} and {MAX_QUIZ_LENGTH}."
            )

        pool = list(self._store.filter_by_categories(categories, match))
        if not pool:
            raise QuizGenerationError("No protocols found for selected categories.")

        return self._rng.sample(pool, min(length, len(pool)))

    def generate(
        self,
        categories: Optional[Iterable[str]],
        length: int,
        match: CategoryMatch = CategoryMatch.ANY,
    ) -> List[QuestionResult]:
        selected = self.select_candidates(categories, length, match)
        results = [self.generate_question(protocol) for protocol in selected]

        fallbacks = sum(1 for item in results if isinstance(item, FallbackQuestion))
        self._logger.info(
            "Quiz generated.",
            extra={
                "context": {
                    "requested": length,
                    "questions": len(results),
                    "fallbacks": fallbacks,
                }
            },
        )
        return results

    def generate_question(self, protocol: Protocol) -> QuestionResult:
        if self._llm_client is None:
            return FallbackQuestion(fallback_question(protocol), "Quiz model is not configured.")

        try:
            payload = self._llm_client.complete_json(
                [
                    {
                        "role": "user",
                        "content": format_prompt(QUIZ_USER_PROMPT, protocol_content=protocol.content),
                    }
                ],
                system_prompt=format_prompt(QUIZ_SYSTEM_PROMPT, protocol_name=protocol.name),
                schema=QUESTION_SCHEMA,
                temperature=QUIZ_TEMPERATURE,
            )
            question = Question.from_payload(
                payload, protocol.id, question_id=_make_question_id("ai", protocol)
            )
        except (LLMServiceError, KeyError, ValueError) as exc:
            self._logger.warning(
                "Question generation failed; using fallback.",
                extra={"context": {"protocol_id": protocol.id, "error": str(exc)}},
            )
            return FallbackQuestion(fallback_question(protocol), str(exc))

        return GeneratedQuestion(question)


def grade(questions: Sequence[Question], answers: Mapping[str, Optional[str]]) -> QuizResult:
    """Score ``answers`` (question id -> selected option id) against ``questions``."""

    ids = [question.id for question in questions]
    duplicates = sorted({qid for qid in ids if ids.count(qid) > 1})
    if duplicates:
        raise ValueError(f"Duplicate question ids: {', '.join(duplicates)}")

    reviews: List[AnswerReview] = []
    for question in questions:
        selected = answers.get(question.id)
        is_correct = selected is not None and selected == question.correct_answer_id
        reviews.append(
            AnswerReview(
                question_id=question.id,
                question_text=question.question_text,
                selected_answer_id=selected,
                selected_text=question.option_text(selected),
                correct_text=question.option_text(question.correct_answer_id),
                is_correct=is_correct,
                explanation=question.explanation,
            )
        )

    score = sum(1 for review in reviews if review.is_correct)
    return QuizResult(score=score, total=len(reviews), answers=reviews)
