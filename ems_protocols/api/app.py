'''FastAPI application for the EMS protocol lookup service.'''

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from .. import __version__
from ..services.calculator import CalculationError
from ..services.chat import ChatRequestError
from ..services.llm_client import LLMServiceError
from ..services.quiz import QuizGenerationError
from ..utils.config import get_settings
from ..utils.logger import clear_correlation_id, log_request, set_correlation_id
from .dependencies import ServiceContainer
from .models import ErrorResponse
from .routes import router

APP_VERSION = __version__


def _error_response(status_code: int, error_code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error_code=error_code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode='json'))


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    '''Build the API around ``container``, loading it from settings if omitted.'''

    settings = get_settings()
    app = FastAPI(title=settings.APP_NAME, version=APP_VERSION)
    app.state.container = container or ServiceContainer.from_settings(settings)
    app.state.version = APP_VERSION

    @app.middleware('http')
    async def trace_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        '''Bind a trace id to the request's logs and echo it in ``X-Trace-Id``.'''

        trace_id = request.headers.get('x-trace-id') or uuid.uuid4().hex
        request.state.trace_id = trace_id
        set_correlation_id(trace_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            log_request(
                request.method,
                request.url.path,
                None,
                (time.perf_counter() - started) * 1000.0,
                failed=True,
            )
            raise
        else:
            log_request(
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000.0,
            )
        finally:
            clear_correlation_id()

        response.headers.setdefault('X-Trace-Id', trace_id)
        return response

    @app.exception_handler(CalculationError)
    async def _calculation_error(request: Request, exc: CalculationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, 'CALCULATION_ERROR', str(exc))

    @app.exception_handler(ChatRequestError)
    async def _chat_request_error(request: Request, exc: ChatRequestError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, 'INVALID_CHAT_REQUEST', str(exc))

    @app.exception_handler(QuizGenerationError)
    async def _quiz_error(request: Request, exc: QuizGenerationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, 'QUIZ_ERROR', str(exc))

    @app.exception_handler(LLMServiceError)
    async def _llm_error(request: Request, exc: LLMServiceError) -> JSONResponse:
        return _error_response(status.HTTP_502_BAD_GATEWAY, 'LLM_UNAVAILABLE', str(exc))

    app.include_router(router)

    @app.get('/healthz', tags=['system'])
    async def health_check() -> dict[str, str]:
        '''Simple readiness endpoint.'''
        return {'status': 'ok'}

    @app.get('/version', tags=['system'])
    async def version() -> dict[str, str]:
        return {'version': app.state.version}

    return app
