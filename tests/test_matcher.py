from __future__ import annotations

import math
import sys

import pytest
from rapidfuzz import fuzz

from ems_protocols.protocols.matcher import FuzzyMatcher
from ems_protocols.protocols.store import Protocol, ProtocolStore
from ems_protocols.utils.config import DEFAULT_PROTOCOLS_PATH


def _ids(protocols) -> list[str]:
    return [protocol.id for protocol in protocols]


@pytest.fixture()
def matcher(store: ProtocolStore) -> FuzzyMatcher:
    return FuzzyMatcher(store.load())


@pytest.mark.parametrize("query", ["", "   ", "\t\n"])
def test_blank_query_returns_nothing_without_scoring(
    matcher: FuzzyMatcher, monkeypatch: pytest.MonkeyPatch, query: str
) -> None:
    def _fail(*args, **kwargs):
        raise AssertionError("scorer must not run for blank queries")

    monkeypatch.setattr(matcher, "score", _fail)
    assert matcher.search(query) == []


def test_exact_name_ranks_first(matcher: FuzzyMatcher) -> None:
    results = matcher.search("hypoglycemia")
    assert results[0].id == "hypoglycemia"


def test_misspelled_query_still_matches(matcher: FuzzyMatcher) -> None:
    results = matcher.search("cardaic arrest")
    assert set(_ids(results)[:2]) == {"cardiac_arrest_adult", "cardiac_arrest_pediatric"}
    assert "hypoglycemia" not in _ids(results)


def test_partial_word_query_matches(matcher: FuzzyMatcher) -> None:
    assert matcher.search("hemorr")[0].id == "hemorrhage_control"


def test_content_substring_is_found(matcher: FuzzyMatcher) -> None:
    assert matcher.search("tourniquet")[0].id == "hemorrhage_control"


def test_every_hit_is_below_threshold() -> None:
    store = ProtocolStore.from_json(DEFAULT_PROTOCOLS_PATH)
    matcher = FuzzyMatcher(store.load())
    for query in ("epinephrine", "seizure", "burn", "pediatric cardiac", "glucose", "zzzz"):
        for hit in matcher.search_with_scores(query):
            assert 0.0 < hit.score < matcher.threshold


def test_results_are_deterministic(matcher: FuzzyMatcher) -> None:
    first = matcher.search_with_scores("epinephrine")
    second = matcher.search_with_scores("epinephrine")
    assert first == second
    assert [hit.score for hit in first] == sorted(hit.score for hit in first)


def test_ties_keep_input_order() -> None:
    one = Protocol(id="p1", name="Seizure", content="")
    two = Protocol(id="p2", name="Seizure", content="")
    matcher = FuzzyMatcher([one, two])

    assert _ids(matcher.search("seizure")) == ["p1", "p2"]
    assert _ids(matcher.search("seizure", [two, one])) == ["p2", "p1"]


def test_search_is_restricted_to_given_corpus(matcher: FuzzyMatcher, store: ProtocolStore) -> None:
    pediatric_only = store.filter_by_categories(["pediatric"])
    assert _ids(matcher.search("cardiac arrest", pediatric_only)) == ["cardiac_arrest_pediatric"]


def test_unindexed_protocols_are_scored_on_the_fly(matcher: FuzzyMatcher) -> None:
    extra = Protocol(id="stroke", name="Stroke", content="Perform stroke scale.")
    assert _ids(matcher.search("stroke", [extra])) == ["stroke"]


def test_unrelated_query_returns_nothing(matcher: FuzzyMatcher) -> None:
    assert matcher.search("xylophone") == []


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        FuzzyMatcher([], threshold=0)
    with pytest.raises(ValueError):
        FuzzyMatcher([], weights={"summary": 1.0})
    with pytest.raises(ValueError):
        FuzzyMatcher([], weights={"name": 0.0})


def test_transposed_letters_match_when_id_differs_from_name() -> None:
    protocol = Protocol(id="p7", name="Seizure", content="Protect the airway.")
    hits = FuzzyMatcher([protocol]).search_with_scores("seizrue")

    assert [hit.protocol.id for hit in hits] == ["p7"]
    assert 0.0 < hits[0].score < 0.4


def test_single_matching_field_scores_its_own_dissimilarity() -> None:
    protocol = Protocol(id="p7", name="Seizure", content="Protect the airway.")
    matcher = FuzzyMatcher([protocol])

    [hit] = matcher.search_with_scores("seizrue")
    expected = 1.0 - fuzz.partial_ratio("seizrue", "seizure") / 100.0
    assert hit.score == pytest.approx(expected)


def test_several_matching_fields_average_geometrically() -> None:
    protocol = Protocol(id="seizrue_protocol", name="Seizures", content="")
    [hit] = FuzzyMatcher([protocol]).search_with_scores("seizrue")

    name_d = 1.0 - fuzz.partial_ratio("seizrue", "seizures") / 100.0
    id_d = sys.float_info.epsilon  # exact substring of the id
    expected = math.exp((0.6 * math.log(name_d) + 0.5 * math.log(id_d)) / 1.1)
    assert hit.score == pytest.approx(expected)
    assert hit.score < min(name_d, (0.6 * name_d + 0.5 * id_d) / 1.1)
