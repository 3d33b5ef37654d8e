'''Service wiring and FastAPI dependencies.'''

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from ..protocols.matcher import FuzzyMatcher
from ..protocols.store import ProtocolStore
from ..services.chat import ChatService
from ..services.llm_client import ChatModelClient
from ..services.quiz import QuizGenerator
from ..utils.config import Settings, get_settings


@dataclass
class ServiceContainer:
    '''Process-wide components built once from the protocol corpus.'''

    store: ProtocolStore
    matcher: FuzzyMatcher
    chat: ChatService
    quiz: QuizGenerator

    @classmethod
    def build(
        cls,
        store: ProtocolStore,
        *,
        chat_client: Optional[ChatModelClient] = None,
        quiz_client: Optional[ChatModelClient] = None,
        threshold: float = 0.4,
        context_limit: int = 5,
        rng: Optional[random.Random] = None,
    ) -> 'ServiceContainer':
        return cls(
            store=store,
            matcher=FuzzyMatcher(store.load(), threshold=threshold),
            chat=ChatService(store, chat_client, context_limit=context_limit),
            quiz=QuizGenerator(store, quiz_client, rng=rng),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'ServiceContainer':
        '''Load the configured corpus and LLM clients.'''
        settings = settings or get_settings()
        return cls.build(
            ProtocolStore.from_json(settings.PROTOCOLS_PATH),
            chat_client=ChatModelClient.for_chat(settings),
            quiz_client=ChatModelClient.for_quiz(settings),
            threshold=settings.SEARCH_THRESHOLD,
            context_limit=settings.CONTEXT_LIMIT,
        )


def get_container(request: Request) -> ServiceContainer:
    container: Optional[ServiceContainer] = getattr(request.app.state, 'container', None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Protocol services are not initialised.',
        )
    return container
