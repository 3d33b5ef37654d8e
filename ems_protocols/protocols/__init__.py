"""Protocol corpus storage, category filtering, and relevance matching."""

from .context import build_context_preamble, extract_keywords, find_relevant_protocols
from .matcher import FuzzyMatcher, SearchHit
from .store import CategoryMatch, Protocol, ProtocolStore, ProtocolStoreError, filter_by_categories

__all__ = [
    "CategoryMatch",
    "FuzzyMatcher",
    "Protocol",
    "ProtocolStore",
    "ProtocolStoreError",
    "SearchHit",
    "build_context_preamble",
    "extract_keywords",
    "filter_by_categories",
    "find_relevant_protocols",
]
