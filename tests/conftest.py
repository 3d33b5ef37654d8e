from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

import pytest

from ems_protocols.protocols.store import ProtocolStore

CORPUS: Dict[str, Dict[str, Any]] = {
    "cardiac_arrest_adult": {
        "name": "Cardiac Arrest - Adult",
        "content": "Begin CPR. Epinephrine 1 mg IV/IO every 3-5 minutes. Amiodarone 300 mg for refractory VF.",
        "source_file": "adult_cardiac.pdf",
        "categories": ["adult", "medical"],
    },
    "cardiac_arrest_pediatric": {
        "name": "Cardiac Arrest - Pediatric",
        "content": "Compressions 15:2 with two rescuers. Epinephrine 0.01 mg/kg IV/IO.",
        "source_file": "pediatric.pdf",
        "categories": ["adult", "pediatric"],
    },
    "hypoglycemia": {
        "name": "Hypoglycemia",
        "content": "Give dextrose for low blood glucose.",
        "source_file": "adult_medical.pdf",
        "categories": ["adult", "medical"],
    },
    "hemorrhage_control": {
        "name": "Hemorrhage Control",
        "content": "Apply a tourniquet above the wound and note the time.",
        "source_file": "trauma.pdf",
        "categories": ["trauma"],
    },
    "formulary": {
        "title": "Medication Formulary",
        "content": "Drug reference cards.",
        "source_file": "formulary.pdf",
    },
}


@pytest.fixture()
def corpus() -> Dict[str, Dict[str, Any]]:
    return json.loads(json.dumps(CORPUS))


@pytest.fixture()
def store(corpus: Dict[str, Dict[str, Any]]) -> ProtocolStore:
    return ProtocolStore.from_mapping(corpus)


@pytest.fixture()
def corpus_file(tmp_path: Path, corpus: Dict[str, Dict[str, Any]]) -> Path:
    path = tmp_path / "protocols.json"
    path.write_text(json.dumps(corpus), encoding="utf-8")
    return path


class FakeChatClient:
    """Stands in for ChatModelClient; records every call."""

    model = "fake-model"

    def __init__(
        self,
        *,
        reply: str = "Use the cardiac arrest protocol.",
        tokens: Optional[Iterable[str]] = None,
        payloads: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.reply = reply
        self.tokens = list(tokens or ["Use ", "the ", "protocol."])
        self.payloads = list(payloads or [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, **kwargs: Any) -> str:
        self.calls.append({"operation": "complete", "messages": list(messages), **kwargs})
        if self.error is not None:
            raise self.error
        return self.reply

    def complete_json(self, messages, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append({"operation": "complete_json", "messages": list(messages), **kwargs})
        if self.error is not None:
            raise self.error
        return self.payloads.pop(0)

    def stream(self, messages, **kwargs: Any):
        self.calls.append({"operation": "stream", "messages": list(messages), **kwargs})

        def _gen():
            if self.error is not None:
                raise self.error
            yield from self.tokens

        return _gen()


@pytest.fixture()
def fake_chat_client() -> FakeChatClient:
    return FakeChatClient()


def make_completion(content: str, prompt_tokens: int = 12, completion_tokens: int = 8) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def make_stream_chunk(content: Optional[str]) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))], usage=None)


class FakeOpenAI:
    """Mimics ``client.chat.completions.create`` of the OpenAI SDK."""

    def __init__(self, responses: List[Any]) -> None:
        self._responses = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
