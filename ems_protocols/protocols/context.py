from __future__ import annotations

"""Keyword-overlap selection of protocols used to ground chat prompts."""

from dataclasses import dataclass
from typing import List, Sequence

from ems_protocols.protocols.store import Protocol
from ems_protocols.utils.logger import get_logger

STOP_WORDS = frozenset({"is", "the", "for", "and", "a", "of", "to", "in"})
MIN_KEYWORD_LENGTH = 3
DEFAULT_CONTEXT_LIMIT = 5

NAME_HIT_POINTS = 2
CONTENT_HIT_POINTS = 1

NO_CONTEXT_PLACEHOLDER = "No specific protocols found matching the query."
CONTEXT_SEPARATOR = "\n\n---\n\n"

_logger = get_logger("ems_protocols.protocols.context")


@dataclass(frozen=True)
class ScoredProtocol:
    protocol: Protocol
    score: int


def extract_keywords(query: str) -> List[str]:
    """Split ``query`` into lower-cased keywords worth matching on."""

    if not query:
        return []
    return [
        token
        for token in query.lower().split()
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS
    ]


def score_protocol(protocol: Protocol, keywords: Sequence[str]) -> int:
    """Substring-overlap score of ``protocol`` for the given keywords.

    Every keyword found in the name earns two points and every keyword found in
    the content earns one. Protocols matching more than one distinct keyword in
    the name (or content) receive an extra bonus proportional to that count.
    """

    name = protocol.name.lower()
    content = protocol.content.lower()

    score = 0
    for keyword in keywords:
        if keyword in name:
            score += NAME_HIT_POINTS
        if keyword in content:
            score += CONTENT_HIT_POINTS

    distinct = set(keywords)
    name_matches = sum(1 for keyword in distinct if keyword in name)
    content_matches = sum(1 for keyword in distinct if keyword in content)
    if name_matches > 1:
        score += name_matches * NAME_HIT_POINTS
    if content_matches > 1:
        score += content_matches * CONTENT_HIT_POINTS
    return score


def rank_protocols(query: str, protocols: Sequence[Protocol]) -> List[ScoredProtocol]:
    """Score every protocol against ``query``; zero scores are dropped."""

    keywords = extract_keywords(query)
    if not keywords:
        return []

    scored = [ScoredProtocol(protocol, score_protocol(protocol, keywords)) for protocol in protocols]
    ranked = [item for item in scored if item.score > 0]
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked


def find_relevant_protocols(
    query: str,
    protocols: Sequence[Protocol],
    limit: int = DEFAULT_CONTEXT_LIMIT,
) -> List[Protocol]:
    """Return up to ``limit`` protocols most likely relevant to a chat message."""

    if limit <= 0:
        raise ValueError("limit must be positive.")

    selected = [item.protocol for item in rank_protocols(query, protocols)[:limit]]
    _logger.info(
        "Selected %d context protocols.",
        len(selected),
        extra={"context": {"protocols": [f"{p.name} ({p.source_file})" for p in selected]}},
    )
    return selected


def build_context_preamble(protocols: Sequence[Protocol]) -> str:
    """Render protocols as the text block injected into the chat system prompt."""

    if not protocols:
        return NO_CONTEXT_PLACEHOLDER
    return CONTEXT_SEPARATOR.join(
        f"Protocol {protocol.name} (Source: {protocol.source_file}):\n{protocol.content}"
        for protocol in protocols
    )
