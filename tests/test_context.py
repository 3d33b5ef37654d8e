from __future__ import annotations

from ems_protocols.protocols.context import (
    NO_CONTEXT_PLACEHOLDER,
    build_context_preamble,
    extract_keywords,
    find_relevant_protocols,
    rank_protocols,
    score_protocol,
)
from ems_protocols.protocols.store import Protocol, ProtocolStore


def _ids(protocols) -> list[str]:
    return [protocol.id for protocol in protocols]


def test_keywords_drop_short_tokens_and_stop_words() -> None:
    assert extract_keywords("What is the dose of EPI in a child?") == ["what", "dose", "epi", "child?"]
    assert extract_keywords("is the of to in") == []
    assert extract_keywords("") == []


def test_cardiac_arrest_example_scores_name_hits_and_bonus() -> None:
    protocol = Protocol(id="ca", name="Cardiac Arrest", content="epinephrine every 3-5 minutes")
    keywords = extract_keywords("what is cardiac arrest")

    assert keywords == ["what", "cardiac", "arrest"]
    assert score_protocol(protocol, keywords) == 8
    assert find_relevant_protocols("what is cardiac arrest", [protocol]) == [protocol]


def test_content_hits_and_content_bonus() -> None:
    protocol = Protocol(id="x", name="Other", content="dextrose and glucagon for low glucose")
    # one point per content hit plus a bonus equal to the distinct content hits
    assert score_protocol(protocol, ["dextrose", "glucagon"]) == 4
    assert score_protocol(protocol, ["dextrose"]) == 1


def test_query_without_keywords_selects_nothing(store: ProtocolStore) -> None:
    assert find_relevant_protocols("is it a", store.load()) == []


def test_zero_scores_are_dropped_and_order_is_descending(store: ProtocolStore) -> None:
    ranked = rank_protocols("pediatric cardiac epinephrine", store.load())
    assert _ids(item.protocol for item in ranked)[0] == "cardiac_arrest_pediatric"
    assert all(item.score > 0 for item in ranked)
    assert "hemorrhage_control" not in _ids(item.protocol for item in ranked)
    scores = [item.score for item in ranked]
    assert scores == sorted(scores, reverse=True)


def test_ties_keep_corpus_order() -> None:
    first = Protocol(id="one", name="Burns", content="")
    second = Protocol(id="two", name="Burns", content="")
    assert _ids(find_relevant_protocols("burns", [first, second])) == ["one", "two"]
    assert _ids(find_relevant_protocols("burns", [second, first])) == ["two", "one"]


def test_at_most_five_protocols_are_selected() -> None:
    protocols = [Protocol(id=f"p{i}", name=f"Airway {i}", content="") for i in range(8)]
    selected = find_relevant_protocols("airway", protocols)
    assert _ids(selected) == ["p0", "p1", "p2", "p3", "p4"]
    assert len(find_relevant_protocols("airway", protocols, limit=2)) == 2


def test_context_preamble_formatting() -> None:
    protocols = [
        Protocol(id="a", name="Burns", content="Cool the burn.", source_file="trauma.pdf"),
        Protocol(id="b", name="Stroke", content="Check glucose.", source_file="medical.pdf"),
    ]
    preamble = build_context_preamble(protocols)
    assert preamble == (
        "Protocol Burns (Source: trauma.pdf):\nCool the burn."
        "\n\n---\n\n"
        "Protocol Stroke (Source: medical.pdf):\nCheck glucose."
    )
    assert build_context_preamble([]) == NO_CONTEXT_PLACEHOLDER
