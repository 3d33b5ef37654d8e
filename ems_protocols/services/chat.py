from __future__ import annotations

"""Protocol-grounded chat relay to an external language model."""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ems_protocols.protocols.context import (
    DEFAULT_CONTEXT_LIMIT,
    build_context_preamble,
    find_relevant_protocols,
)
from ems_protocols.protocols.store import Protocol, ProtocolStore
from ems_protocols.services.llm_client import ChatModelClient, LLMServiceError
from ems_protocols.services.prompts import (
    CHAT_FALLBACK_EMPTY,
    CHAT_FALLBACK_REPLY,
    CHAT_SYSTEM_PROMPT,
    format_prompt,
)
from ems_protocols.utils.logger import get_logger

VALID_ROLES = ("user", "assistant", "system")
HISTORY_WINDOW = 5
CHAT_TEMPERATURE = 0.5
CHAT_MAX_TOKENS = 1000


class ChatRequestError(ValueError):
    """Raised when a chat history cannot be relayed."""


@dataclass
class ChatTurn:
    """Everything needed to send one chat request to the model."""

    query: str
    protocols: List[Protocol]
    system_prompt: str
    messages: List[Dict[str, str]]


@dataclass
class ChatReply:
    content: str
    protocols: List[Protocol]
    fallback: bool = False


class ChatService:
    """Select context protocols for the latest message and relay the chat."""

    def __init__(
        self,
        store: ProtocolStore,
        llm_client: Optional[ChatModelClient] = None,
        *,
        context_limit: int = DEFAULT_CONTEXT_LIMIT,
    ) -> None:
        self._store = store
        self._llm_client = llm_client
        self._context_limit = context_limit
        self._logger = get_logger("ems_protocols.services.chat")

    @property
    def available(self) -> bool:
        return self._llm_client is not None

    @property
    def context_limit(self) -> int:
        return self._context_limit

    def prepare(self, messages: Sequence[Dict[str, Any]]) -> ChatTurn:
        """Validate the history and build the grounded prompt for its last message."""

        if not isinstance(messages, (list, tuple)):
            raise ChatRequestError("Invalid request body: 'messages' array not found or invalid")
        if not messages:
            raise ChatRequestError("Invalid request body: messages array is empty")

        history: List[Dict[str, str]] = []
        for item in messages:
            if not isinstance(item, dict) or item.get("role") not in VALID_ROLES:
                raise ChatRequestError("Invalid request body: 'messages' array not found or invalid")
            history.append({"role": item["role"], "content": str(item.get("content") or "")})

        query = history[-1]["content"]
        if not query.strip():
            raise ChatRequestError("No user query found")

        protocols = find_relevant_protocols(query, self._store.load(), limit=self._context_limit)
        system_prompt = format_prompt(
            CHAT_SYSTEM_PROMPT,
            protocol_context=build_context_preamble(protocols),
        )
        return ChatTurn(
            query=query,
            protocols=protocols,
            system_prompt=system_prompt,
            messages=history[-HISTORY_WINDOW:],
        )

    def reply(self, messages: Sequence[Dict[str, Any]]) -> ChatReply:
        """Return a complete answer, degrading to a local summary on failure."""

        turn = self.prepare(messages)
        if self._llm_client is None:
            return self._fallback(turn)

        try:
            content = self._llm_client.complete(
                turn.messages,
                system_prompt=turn.system_prompt,
                temperature=CHAT_TEMPERATURE,
                max_tokens=CHAT_MAX_TOKENS,
            )
        except LLMServiceError as exc:
            self._logger.warning(
                "Chat model unavailable; returning local fallback.",
                extra={"context": {"error": str(exc)}},
            )
            return self._fallback(turn)

        return ChatReply(content=content, protocols=turn.protocols)

    def stream(self, turn: ChatTurn) -> Iterator[str]:
        """Stream tokens for a prepared turn, or the fallback text without a client."""

        if self._llm_client is None:
            return iter([self._fallback(turn).content])
        return self._llm_client.stream(
            turn.messages,
            system_prompt=turn.system_prompt,
            temperature=CHAT_TEMPERATURE,
            max_tokens=CHAT_MAX_TOKENS,
        )

    @staticmethod
    def _fallback(turn: ChatTurn) -> ChatReply:
        if not turn.protocols:
            content = CHAT_FALLBACK_EMPTY
        else:
            listing = "\n".join(
                f"- {protocol.name} (Source: {protocol.source_file})" for protocol in turn.protocols
            )
            content = format_prompt(CHAT_FALLBACK_REPLY, protocol_list=listing)
        return ChatReply(content=content, protocols=turn.protocols, fallback=True)
