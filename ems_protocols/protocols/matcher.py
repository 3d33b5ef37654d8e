from __future__ import annotations

"""Typo-tolerant, weighted multi-field search over the protocol corpus."""

import math
import sys
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from rapidfuzz import fuzz, utils

from ems_protocols.protocols.store import Protocol
from ems_protocols.utils.logger import get_logger
from ems_protocols.utils.validators import is_blank

DEFAULT_THRESHOLD = 0.4
DEFAULT_WEIGHTS: Mapping[str, float] = {"name": 0.6, "id": 0.5, "content": 0.2}

# Floor for exact matches so the log in the weighted mean stays finite.
_EPSILON = sys.float_info.epsilon


@dataclass(frozen=True)
class SearchHit:
    """A protocol retained by the matcher with its aggregate dissimilarity."""

    protocol: Protocol
    score: float


class FuzzyMatcher:
    """Rank protocols against free-text queries with rapidfuzz partial ratios.

    Each searchable field gets a dissimilarity ``d = 1 - partial_ratio / 100``.
    Fields with ``d >= threshold`` do not match. Matching fields combine into a
    weighted geometric mean ``exp(sum(w * log(max(d, eps))) / sum(w))`` taken
    over the matching fields only, so a single matching field scores its own
    ``d``. Protocols whose mean is below ``threshold`` are returned, best first.

    Building the matcher normalises every field of every protocol once, so the
    construction cost grows with corpus size while each query only compares.
    """

    def __init__(
        self,
        protocols: Sequence[Protocol],
        *,
        threshold: float = DEFAULT_THRESHOLD,
        weights: Optional[Mapping[str, float]] = None,
    ) -> None:
        if not 0.0 < threshold <= 1.0:
            raise ValueError("threshold must be within (0, 1].")

        field_weights = dict(weights or DEFAULT_WEIGHTS)
        unknown = set(field_weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ValueError(f"Unsupported search fields: {sorted(unknown)}")
        if any(weight <= 0 for weight in field_weights.values()):
            raise ValueError("Field weights must be positive.")

        self._threshold = threshold
        self._weights = field_weights
        self._protocols = tuple(protocols)
        self._index: Dict[str, Tuple[Protocol, Dict[str, str]]] = {
            protocol.id: (protocol, self._normalise_fields(protocol)) for protocol in self._protocols
        }
        self._logger = get_logger("ems_protocols.protocols.matcher")

    @property
    def threshold(self) -> float:
        return self._threshold

    # ------------------------------------------------------------------ #
    def search(self, query: str, corpus: Optional[Sequence[Protocol]] = None) -> List[Protocol]:
        """Return protocols relevant to ``query``, most relevant first."""

        return [hit.protocol for hit in self.search_with_scores(query, corpus)]

    def search_with_scores(
        self,
        query: str,
        corpus: Optional[Sequence[Protocol]] = None,
    ) -> List[SearchHit]:
        if is_blank(query):
            return []

        normalised_query = utils.default_process(query)
        if not normalised_query:
            return []

        candidates = self._protocols if corpus is None else corpus
        hits: List[SearchHit] = []
        for protocol in candidates:
            score = self.score(normalised_query, protocol)
            if score is not None:
                hits.append(SearchHit(protocol=protocol, score=score))

        hits.sort(key=lambda hit: hit.score)

        self._logger.debug(
            "Fuzzy protocol search complete.",
            extra={
                "context": {
                    "query": query,
                    "candidates": len(candidates),
                    "hits": len(hits),
                }
            },
        )
        return hits

    def score(self, normalised_query: str, protocol: Protocol) -> Optional[float]:
        """Aggregate dissimilarity of ``protocol``, or ``None`` if it does not match."""

        cached = self._index.get(protocol.id)
        if cached is not None and cached[0] is protocol:
            fields = cached[1]
        else:
            fields = self._normalise_fields(protocol)

        cutoff = (1.0 - self._threshold) * 100.0
        weighted_log = 0.0
        matched_weight = 0.0
        for name, weight in self._weights.items():
            similarity = fuzz.partial_ratio(normalised_query, fields[name], score_cutoff=cutoff)
            dissimilarity = 1.0 - similarity / 100.0
            if dissimilarity >= self._threshold:
                continue
            weighted_log += weight * math.log(max(dissimilarity, _EPSILON))
            matched_weight += weight

        if not matched_weight:
            return None
        aggregate = math.exp(weighted_log / matched_weight)
        if aggregate >= self._threshold:
            return None
        return aggregate

    # ------------------------------------------------------------------ #
    @staticmethod
    def _normalise_fields(protocol: Protocol) -> Dict[str, str]:
        return {
            "name": utils.default_process(protocol.name),
            "id": utils.default_process(protocol.id),
            "content": utils.default_process(protocol.content),
        }

