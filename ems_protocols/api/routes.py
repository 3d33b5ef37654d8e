'''API route definitions.'''

from __future__ import annotations

from itertools import chain
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ..protocols.context import rank_protocols
from ..protocols.store import CategoryMatch
from ..services import calculator
from ..services.quiz import grade
from ..utils.logger import get_logger
from .dependencies import ServiceContainer, get_container
from .models import (
    AnswerReviewModel,
    CategoriesResponse,
    ChatRequest,
    ChatResponse,
    ConversionRequest,
    ConversionResponse,
    DripRateRequest,
    DripRateResponse,
    ProtocolDetail,
    ProtocolListResponse,
    ProtocolSummary,
    QuizGenerateRequest,
    QuizGenerateResponse,
    QuizGradeRequest,
    QuizGradeResponse,
    QuizQuestionModel,
    WeightDoseRequest,
    WeightDoseResponse,
)

router = APIRouter(prefix='/v1')

logger = get_logger(__name__)


# --------------------------------------------------------------------------- #
# Protocols
# --------------------------------------------------------------------------- #


@router.get('/categories', response_model=CategoriesResponse, tags=['protocols'])
async def list_categories(container: ServiceContainer = Depends(get_container)) -> CategoriesResponse:
    return CategoriesResponse(categories=container.store.categories())


@router.get('/protocols', response_model=ProtocolListResponse, tags=['protocols'])
async def list_protocols(
    q: Optional[str] = Query(default=None, description='Free-text search query.'),
    category: Optional[List[str]] = Query(default=None, description='Category tags to filter by.'),
    match: CategoryMatch = Query(default=CategoryMatch.ALL),
    container: ServiceContainer = Depends(get_container),
) -> ProtocolListResponse:
    '''Browse the corpus, optionally narrowed by category and ranked by a fuzzy query.'''
    categories = category or []
    pool = container.store.filter_by_categories(categories, match)

    if q is None or not q.strip():
        results = [ProtocolSummary.from_protocol(protocol) for protocol in pool]
    else:
        results = [
            ProtocolSummary.from_protocol(hit.protocol, score=hit.score)
            for hit in container.matcher.search_with_scores(q, pool)
        ]

    return ProtocolListResponse(
        query=q,
        categories=categories,
        match=match,
        total=len(results),
        results=results,
    )


@router.get('/protocols/context', response_model=List[ProtocolSummary], tags=['protocols'])
async def protocol_context(
    q: str = Query(..., description='Chat message to select context protocols for.'),
    container: ServiceContainer = Depends(get_container),
) -> List[ProtocolSummary]:
    '''Protocols that would ground a chat answer for ``q``.'''
    ranked = rank_protocols(q, container.store.load())[: container.chat.context_limit]
    return [ProtocolSummary.from_protocol(item.protocol, score=float(item.score)) for item in ranked]


@router.get('/protocols/{protocol_id}', response_model=ProtocolDetail, tags=['protocols'])
async def get_protocol(
    protocol_id: str,
    container: ServiceContainer = Depends(get_container),
) -> ProtocolDetail:
    try:
        protocol = container.store.get(protocol_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Protocol not found: {protocol_id}',
        ) from exc
    return ProtocolDetail.from_protocol(protocol)


# --------------------------------------------------------------------------- #
# Chat
# --------------------------------------------------------------------------- #


@router.post('/chat', response_model=None, tags=['chat'])
def chat(
    payload: ChatRequest,
    container: ServiceContainer = Depends(get_container),
) -> Union[ChatResponse, StreamingResponse]:
    '''Answer a question grounded on the most relevant protocols.'''
    messages = [message.model_dump() for message in payload.messages]

    if not payload.stream:
        reply = container.chat.reply(messages)
        return ChatResponse(
            content=reply.content,
            protocols=[ProtocolSummary.from_protocol(protocol) for protocol in reply.protocols],
            fallback=reply.fallback,
        )

    turn = container.chat.prepare(messages)
    tokens = container.chat.stream(turn)
    # Pull the first token here so upstream failures surface as an HTTP error.
    first = next(tokens, '')

    logger.info(
        'Streaming chat reply.',
        extra={'context': {'protocols': [protocol.id for protocol in turn.protocols]}},
    )
    return StreamingResponse(
        chain([first], tokens),
        media_type='text/plain; charset=utf-8',
        headers={'X-Context-Protocols': ','.join(protocol.id for protocol in turn.protocols)},
    )


# --------------------------------------------------------------------------- #
# Quiz
# --------------------------------------------------------------------------- #


@router.post('/quiz/generate', response_model=QuizGenerateResponse, tags=['quiz'])
def generate_quiz(
    payload: QuizGenerateRequest,
    container: ServiceContainer = Depends(get_container),
) -> QuizGenerateResponse:
    results = container.quiz.generate(payload.categories, payload.length, payload.match)
    return QuizGenerateResponse(questions=[QuizQuestionModel.from_result(result) for result in results])


@router.post('/quiz/grade', response_model=QuizGradeResponse, tags=['quiz'])
async def grade_quiz(payload: QuizGradeRequest) -> QuizGradeResponse:
    try:
        questions = [model.to_question() for model in payload.questions]
        result = grade(questions, payload.answers)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return QuizGradeResponse(
        score=result.score,
        total=result.total,
        percentage=result.percentage,
        answers=[
            AnswerReviewModel(
                questionId=review.question_id,
                questionText=review.question_text,
                selectedAnswerId=review.selected_answer_id,
                selectedText=review.selected_text,
                correctText=review.correct_text,
                isCorrect=review.is_correct,
                explanation=review.explanation,
            )
            for review in result.answers
        ],
    )


# --------------------------------------------------------------------------- #
# Calculator
# --------------------------------------------------------------------------- #


@router.post('/calculator/weight-dose', response_model=WeightDoseResponse, tags=['calculator'])
async def weight_dose(payload: WeightDoseRequest) -> WeightDoseResponse:
    result = calculator.weight_based_dose(
        payload.weight,
        payload.concentration_mg,
        payload.dose,
        concentration_ml=payload.concentration_ml,
        weight_unit=payload.weight_unit,
        dose_unit=payload.dose_unit,
    )
    return WeightDoseResponse(
        weight_kg=result.weight_kg,
        total_dose_mg=result.total_dose_mg,
        volume_ml=result.volume_ml,
        calculable=result.calculable,
        summary=result.summary,
    )


@router.post('/calculator/drip-rate', response_model=DripRateResponse, tags=['calculator'])
async def drip_rate(payload: DripRateRequest) -> DripRateResponse:
    result = calculator.drip_rate(payload.volume_ml, payload.time_min, payload.drip_set)
    return DripRateResponse(drops_per_minute=result.drops_per_minute, summary=result.summary)


@router.post('/calculator/convert', response_model=ConversionResponse, tags=['calculator'])
async def convert(payload: ConversionRequest) -> ConversionResponse:
    if payload.direction == 'lbs_to_kg':
        result = calculator.lbs_to_kg(payload.value)
    else:
        result = calculator.kg_to_lbs(payload.value)
    return ConversionResponse(value=result.value, converted=result.converted, summary=result.summary)
