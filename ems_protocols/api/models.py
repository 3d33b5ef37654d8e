"""Pydantic request and response models for the protocol API layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..protocols.store import CategoryMatch, Protocol
from ..services.calculator import DEFAULT_DRIP_SET, DRIP_SETS
from ..services.quiz import (
    MAX_QUIZ_LENGTH,
    MIN_QUIZ_LENGTH,
    FallbackQuestion,
    Question,
    QuestionResult,
)


# --------------------------------------------------------------------------- #
# Protocols
# --------------------------------------------------------------------------- #


class ProtocolSummary(BaseModel):
    """Protocol listing entry without the body text."""

    id: str
    name: str
    source_file: str
    categories: List[str] = Field(default_factory=list)
    score: Optional[float] = Field(
        default=None,
        description="Aggregate dissimilarity (0 = identical) when returned by a search.",
    )

    @classmethod
    def from_protocol(cls, protocol: Protocol, score: Optional[float] = None) -> "ProtocolSummary":
        return cls(
            id=protocol.id,
            name=protocol.name,
            source_file=protocol.source_file,
            categories=sorted(protocol.categories),
            score=score,
        )


class ProtocolDetail(ProtocolSummary):
    """Full protocol including its content."""

    content: str

    @classmethod
    def from_protocol(cls, protocol: Protocol, score: Optional[float] = None) -> "ProtocolDetail":
        return cls(
            id=protocol.id,
            name=protocol.name,
            source_file=protocol.source_file,
            categories=sorted(protocol.categories),
            content=protocol.content,
            score=score,
        )


class ProtocolListResponse(BaseModel):
    query: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    match: CategoryMatch = CategoryMatch.ALL
    total: int
    results: List[ProtocolSummary]


class CategoriesResponse(BaseModel):
    categories: List[str]


# --------------------------------------------------------------------------- #
# Chat
# --------------------------------------------------------------------------- #


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Chat history; the last message is the question being asked."""

    messages: List[ChatMessageModel]
    stream: bool = Field(default=True, description="Stream tokens as plain text.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "messages": [{"role": "user", "content": "What is the epinephrine dose for cardiac arrest?"}],
                "stream": False,
            }
        }
    )


class ChatResponse(BaseModel):
    content: str
    protocols: List[ProtocolSummary]
    fallback: bool = False


# --------------------------------------------------------------------------- #
# Quiz
# --------------------------------------------------------------------------- #


class QuizOptionModel(BaseModel):
    id: str
    text: str


class QuizQuestionModel(BaseModel):
    """Question payload in the camelCase shape consumed by the quiz screen."""

    id: str
    questionText: str
    questionType: Literal["multiple-choice"] = "multiple-choice"
    options: List[QuizOptionModel]
    correctAnswerId: str
    explanation: str
    protocolId: str
    origin: Literal["generated", "fallback"] = "generated"
    fallbackReason: Optional[str] = None

    @classmethod
    def from_result(cls, result: QuestionResult) -> "QuizQuestionModel":
        question = result.question
        is_fallback = isinstance(result, FallbackQuestion)
        return cls(
            id=question.id,
            questionText=question.question_text,
            options=[QuizOptionModel(id=option.id, text=option.text) for option in question.options],
            correctAnswerId=question.correct_answer_id,
            explanation=question.explanation,
            protocolId=question.protocol_id,
            origin="fallback" if is_fallback else "generated",
            fallbackReason=result.reason if is_fallback else None,
        )

    def to_question(self) -> Question:
        return Question.from_payload(self.model_dump(), self.protocolId)


class QuizGenerateRequest(BaseModel):
    categories: List[str] = Field(default_factory=list)
    length: int = Field(..., ge=MIN_QUIZ_LENGTH, le=MAX_QUIZ_LENGTH)
    match: CategoryMatch = CategoryMatch.ANY

    model_config = ConfigDict(
        json_schema_extra={"example": {"categories": ["adult", "medical"], "length": 5}}
    )


class QuizGenerateResponse(BaseModel):
    questions: List[QuizQuestionModel]


class QuizGradeRequest(BaseModel):
    questions: List[QuizQuestionModel] = Field(..., min_length=1)
    answers: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Selected option id keyed by question id.",
    )


class AnswerReviewModel(BaseModel):
    questionId: str
    questionText: str
    selectedAnswerId: Optional[str] = None
    selectedText: Optional[str] = None
    correctText: Optional[str] = None
    isCorrect: bool
    explanation: str


class QuizGradeResponse(BaseModel):
    score: int
    total: int
    percentage: int
    answers: List[AnswerReviewModel]


# --------------------------------------------------------------------------- #
# Calculator
# --------------------------------------------------------------------------- #


class WeightDoseRequest(BaseModel):
    weight: float
    weight_unit: Literal["kg", "lbs"] = "kg"
    concentration_mg: float
    concentration_ml: float = 1.0
    dose: float
    dose_unit: Literal["mg_kg", "mcg_kg"] = "mg_kg"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "weight": 70,
                "weight_unit": "kg",
                "concentration_mg": 100,
                "concentration_ml": 1,
                "dose": 0.5,
                "dose_unit": "mg_kg",
            }
        }
    )


class WeightDoseResponse(BaseModel):
    weight_kg: float
    total_dose_mg: float
    volume_ml: Optional[float] = None
    calculable: bool
    summary: str


class DripRateRequest(BaseModel):
    volume_ml: float
    time_min: float
    drip_set: int = DEFAULT_DRIP_SET

    @field_validator("drip_set")
    @classmethod
    def _validate_drip_set(cls, value: int) -> int:
        if value not in DRIP_SETS:
            raise ValueError(f"drip_set must be one of {sorted(DRIP_SETS)}.")
        return value


class DripRateResponse(BaseModel):
    drops_per_minute: int
    summary: str


class ConversionRequest(BaseModel):
    value: float
    direction: Literal["lbs_to_kg", "kg_to_lbs"]


class ConversionResponse(BaseModel):
    value: float
    converted: float
    summary: str


# --------------------------------------------------------------------------- #
# Errors
# --------------------------------------------------------------------------- #


class ErrorResponse(BaseModel):
    """Standard error envelope for API failures."""

    error_code: str = Field(..., description="Machine-readable error identifier.")
    message: str = Field(..., description="Human-readable error description.")
    details: Optional[Dict[str, Any]] = Field(default=None)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error_code": "CALCULATION_ERROR",
                "message": "Time cannot be zero.",
                "details": None,
                "timestamp": "2025-01-05T12:00:00Z",
            }
        }
    )
