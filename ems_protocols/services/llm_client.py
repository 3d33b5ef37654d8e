from __future__ import annotations

"""Client for OpenAI-compatible chat completion endpoints (Mistral, OpenAI)."""

import json
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from jsonschema import ValidationError, validate
from openai import APIConnectionError, APITimeoutError, OpenAI, OpenAIError, RateLimitError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ems_protocols.utils.config import Settings, get_settings
from ems_protocols.utils.logger import get_logger, log_error, log_llm_call

ChatMessage = Dict[str, str]

_TRANSIENT_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError)


class LLMServiceError(RuntimeError):
    """Raised when a language model call fails or returns an unusable answer."""


@dataclass
class UsageStats:
    """Running totals for one client; ``ChatModelClient.usage`` returns a copy."""

    calls: int = 0
    errors: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latencies_ms: List[float] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def error_rate(self) -> float:
        return self.errors / self.calls if self.calls else 0.0


def parse_json_object(text: str, schema: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Decode a model answer as a JSON object, optionally checking it against ``schema``."""

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMServiceError("Model response was not valid JSON.") from exc
    if not isinstance(document, dict):
        raise LLMServiceError("Model response was not a JSON object.")

    if schema is not None:
        try:
            validate(instance=document, schema=schema)
        except ValidationError as exc:
            raise LLMServiceError(f"Model response failed validation: {exc.message}") from exc
    return document


class ChatModelClient:
    """OpenAI SDK wrapper used for both the chat relay and quiz generation.

    Transient transport failures are retried up to ``max_attempts`` times with
    exponential backoff; any SDK error left over surfaces as ``LLMServiceError``.
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_attempts: int = 1,
        client: Optional[Any] = None,
    ) -> None:
        if client is None and not api_key:
            raise LLMServiceError(f"No API key configured for model '{model}'.")

        self.model = model
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._max_attempts = max_attempts
        self._stats = UsageStats()
        self._stats_lock = threading.Lock()
        self._logger = get_logger("ems_protocols.services.llm_client")

    @classmethod
    def from_settings(
        cls,
        *,
        model: str,
        api_key: Any,
        base_url: Optional[str],
        settings: Settings,
    ) -> Optional["ChatModelClient"]:
        if api_key is None:
            return None
        return cls(
            model=model,
            api_key=api_key.get_secret_value(),
            base_url=base_url,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_attempts=settings.LLM_MAX_ATTEMPTS,
        )

    @classmethod
    def for_chat(cls, settings: Optional[Settings] = None) -> Optional["ChatModelClient"]:
        """Chat relay client, or ``None`` when ``CHAT_LLM_API_KEY`` is unset."""

        settings = settings or get_settings()
        return cls.from_settings(
            model=settings.CHAT_LLM_MODEL,
            api_key=settings.CHAT_LLM_API_KEY,
            base_url=settings.CHAT_LLM_ENDPOINT,
            settings=settings,
        )

    @classmethod
    def for_quiz(cls, settings: Optional[Settings] = None) -> Optional["ChatModelClient"]:
        """Quiz client, or ``None`` when ``QUIZ_LLM_API_KEY`` is unset."""

        settings = settings or get_settings()
        return cls.from_settings(
            model=settings.QUIZ_LLM_MODEL,
            api_key=settings.QUIZ_LLM_API_KEY,
            base_url=settings.QUIZ_LLM_ENDPOINT,
            settings=settings,
        )

    @property
    def usage(self) -> UsageStats:
        with self._stats_lock:
            return replace(self._stats, latencies_ms=list(self._stats.latencies_ms))

    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.5,
        max_tokens: int = 1000,
    ) -> str:
        """Text of the first choice for a chat history."""

        started = time.perf_counter()
        response = self._create(
            "complete",
            messages=_with_system_prompt(messages, system_prompt),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self._record("complete", response, started)
        return _message_text(response)

    def complete_json(
        self,
        messages: Sequence[ChatMessage],
        *,
        system_prompt: Optional[str] = None,
        schema: Optional[Mapping[str, Any]] = None,
        temperature: float = 0.7,
    ) -> Dict[str, Any]:
        """Ask for a JSON object answer and validate it against ``schema``."""

        started = time.perf_counter()
        response = self._create(
            "complete_json",
            messages=_with_system_prompt(messages, system_prompt),
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        self._record("complete_json", response, started)
        try:
            return parse_json_object(_message_text(response), schema)
        except LLMServiceError:
            self._count_error(new_call=False)
            raise

    def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.5,
        max_tokens: int = 1000,
    ) -> Iterator[str]:
        """Yield content deltas; nothing is sent until the first ``next()``."""

        payload = _with_system_prompt(messages, system_prompt)
        return self._stream_tokens(payload, temperature, max_tokens)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _stream_tokens(
        self,
        payload: List[ChatMessage],
        temperature: float,
        max_tokens: int,
    ) -> Iterator[str]:
        started = time.perf_counter()
        chunks = self._create(
            "stream",
            messages=payload,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        usage = None
        try:
            for chunk in chunks:
                if chunk.choices:
                    piece = getattr(chunk.choices[0].delta, "content", None)
                    if piece:
                        yield piece
                usage = getattr(chunk, "usage", None) or usage
        except OpenAIError as exc:
            self._fail("stream", exc)
        self._record("stream", _UsageOnly(usage), started)

    def _create(self, operation: str, **params: Any) -> Any:
        self._logger.debug(
            "Sending %s request.",
            operation,
            extra={"context": {"model": self.model, "turns": len(params["messages"])}},
        )
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=16),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            return retrying(self._client.chat.completions.create, model=self.model, **params)
        except OpenAIError as exc:
            self._fail(operation, exc)

    def _fail(self, operation: str, exc: OpenAIError) -> None:
        self._count_error()
        log_error(exc, context={"operation": operation, "model": self.model})
        raise LLMServiceError(f"Chat model {operation} request failed.") from exc

    def _count_error(self, *, new_call: bool = True) -> None:
        with self._stats_lock:
            if new_call:
                self._stats.calls += 1
            self._stats.errors += 1

    def _record(self, operation: str, response: Any, started: float) -> None:
        latency_ms = (time.perf_counter() - started) * 1000.0
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        with self._stats_lock:
            self._stats.calls += 1
            self._stats.prompt_tokens += prompt_tokens
            self._stats.completion_tokens += completion_tokens
            self._stats.latencies_ms.append(latency_ms)
        log_llm_call(self.model, operation, prompt_tokens, completion_tokens, latency_ms)


@dataclass(frozen=True)
class _UsageOnly:
    usage: Any


def _with_system_prompt(messages: Sequence[ChatMessage], system_prompt: Optional[str]) -> List[ChatMessage]:
    turns = [{"role": message["role"], "content": message["content"]} for message in messages]
    if system_prompt:
        turns.insert(0, {"role": "system", "content": system_prompt})
    return turns


def _message_text(response: Any) -> str:
    if not getattr(response, "choices", None):
        return ""
    message = getattr(response.choices[0], "message", None)
    return getattr(message, "content", None) or ""
