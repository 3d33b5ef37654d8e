from __future__ import annotations

import httpx
import pytest
from openai import APIConnectionError

from conftest import FakeOpenAI, make_completion, make_stream_chunk
from ems_protocols.services.llm_client import ChatModelClient, LLMServiceError
from ems_protocols.utils.config import Settings


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "http://test"))


def _client(fake: FakeOpenAI) -> ChatModelClient:
    return ChatModelClient(model="test-model", api_key="unused", client=fake)


def test_complete_sends_system_prompt_and_records_usage() -> None:
    fake = FakeOpenAI([make_completion("Begin CPR.")])
    client = _client(fake)

    content = client.complete(
        [{"role": "user", "content": "cardiac arrest"}],
        system_prompt="Protocols only.",
        temperature=0.5,
        max_tokens=1000,
    )

    assert content == "Begin CPR."
    request = fake.requests[0]
    assert request["model"] == "test-model"
    assert request["messages"] == [
        {"role": "system", "content": "Protocols only."},
        {"role": "user", "content": "cardiac arrest"},
    ]
    assert request["temperature"] == 0.5
    assert request["max_tokens"] == 1000
    assert client.usage.total_tokens == 20
    assert len(client.usage.latencies_ms) == 1
    assert client.usage.error_rate == 0.0


def test_connection_failure_is_wrapped() -> None:
    client = _client(FakeOpenAI([_connection_error()]))

    with pytest.raises(LLMServiceError):
        client.complete([{"role": "user", "content": "hello"}])
    assert client.usage.error_rate == 1.0


def test_complete_json_validates_against_schema() -> None:
    schema = {"type": "object", "required": ["id"], "properties": {"id": {"type": "string"}}}
    fake = FakeOpenAI([make_completion('{"id": "q1"}'), make_completion('{"other": 1}')])
    client = _client(fake)

    assert client.complete_json([{"role": "user", "content": "x"}], schema=schema) == {"id": "q1"}
    assert fake.requests[0]["response_format"] == {"type": "json_object"}

    with pytest.raises(LLMServiceError, match="failed validation"):
        client.complete_json([{"role": "user", "content": "x"}], schema=schema)


def test_complete_json_rejects_non_json() -> None:
    client = _client(FakeOpenAI([make_completion("Sure! Here is a question.")]))
    with pytest.raises(LLMServiceError, match="not valid JSON"):
        client.complete_json([{"role": "user", "content": "x"}])


def test_stream_is_lazy_and_skips_empty_deltas() -> None:
    chunks = [make_stream_chunk("Apply "), make_stream_chunk(None), make_stream_chunk("pressure.")]
    fake = FakeOpenAI([iter(chunks)])
    client = _client(fake)

    tokens = client.stream([{"role": "user", "content": "bleeding"}])
    assert fake.requests == []

    assert list(tokens) == ["Apply ", "pressure."]
    assert fake.requests[0]["stream"] is True


def test_stream_failure_mid_response_is_wrapped() -> None:
    def _broken():
        yield make_stream_chunk("Apply ")
        raise _connection_error()

    client = _client(FakeOpenAI([_broken()]))
    tokens = client.stream([{"role": "user", "content": "bleeding"}])

    assert next(tokens) == "Apply "
    with pytest.raises(LLMServiceError):
        next(tokens)


def test_missing_api_key_is_rejected() -> None:
    with pytest.raises(LLMServiceError):
        ChatModelClient(model="m", api_key="")


def test_factories_return_none_without_keys() -> None:
    settings = Settings(_env_file=None, CHAT_LLM_API_KEY=None, QUIZ_LLM_API_KEY=None)
    assert ChatModelClient.for_chat(settings) is None
    assert ChatModelClient.for_quiz(settings) is None


def test_chat_factory_uses_configured_model() -> None:
    settings = Settings(_env_file=None, CHAT_LLM_API_KEY="secret", CHAT_LLM_MODEL="mistral-large-latest")
    client = ChatModelClient.for_chat(settings)
    assert client is not None
    assert client.model == "mistral-large-latest"
