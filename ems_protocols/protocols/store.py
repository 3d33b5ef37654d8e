from __future__ import annotations

"""Immutable in-memory store of EMS protocol documents."""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ems_protocols.utils.logger import get_logger
from ems_protocols.utils.validators import normalize_categories


class ProtocolStoreError(RuntimeError):
    """Raised when the protocol corpus cannot be loaded."""


class CategoryMatch(str, Enum):
    """How a category selection is compared against a protocol's tags."""

    ANY = "any"
    ALL = "all"


@dataclass(frozen=True)
class Protocol:
    """A single EMS protocol document."""

    id: str
    name: str
    content: str
    source_file: str = ""
    categories: frozenset = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "source_file": self.source_file,
            "categories": sorted(self.categories),
        }


def filter_by_categories(
    protocols: Sequence[Protocol],
    selected: Optional[Iterable[str]],
    match: CategoryMatch = CategoryMatch.ALL,
) -> Tuple[Protocol, ...]:
    """Narrow ``protocols`` to those tagged with the selected categories.

    ``ANY`` keeps protocols sharing at least one tag with the selection, ``ALL``
    keeps protocols carrying every selected tag. An empty selection returns the
    input unchanged. Input order is preserved.
    """

    wanted = set(normalize_categories(selected))
    if not wanted:
        return tuple(protocols)

    if CategoryMatch(match) is CategoryMatch.ANY:
        return tuple(protocol for protocol in protocols if protocol.categories & wanted)
    return tuple(protocol for protocol in protocols if wanted <= protocol.categories)


class ProtocolStore:
    """Read-only collection of protocols loaded once at startup."""

    def __init__(self, protocols: Iterable[Protocol]) -> None:
        ordered = tuple(protocols)
        by_id: Dict[str, Protocol] = {}
        for protocol in ordered:
            if protocol.id in by_id:
                raise ProtocolStoreError(f"Duplicate protocol id: {protocol.id}")
            by_id[protocol.id] = protocol

        by_category: Dict[str, List[Protocol]] = {}
        for protocol in ordered:
            for tag in protocol.categories:
                by_category.setdefault(tag, []).append(protocol)

        self._protocols = ordered
        self._by_id = by_id
        self._by_category = {tag: tuple(items) for tag, items in by_category.items()}
        self._logger = get_logger("ems_protocols.protocols.store")

    # ------------------------------------------------------------------ #
    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ProtocolStore":
        """Build a store from ``{id: {name, content, source_file, categories}}``."""

        if not isinstance(mapping, Mapping):
            raise ProtocolStoreError("Protocol corpus must be a JSON object keyed by protocol id.")

        # Only a lone "protocols" key is a wrapper; otherwise it is a protocol id.
        entries = mapping["protocols"] if set(mapping) == {"protocols"} else mapping
        if not isinstance(entries, Mapping):
            raise ProtocolStoreError("'protocols' must be an object keyed by protocol id.")

        return cls(cls._build_protocol(key, value) for key, value in entries.items())

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "ProtocolStore":
        """Read a JSON corpus file and build a store from it."""

        corpus_path = Path(path)
        try:
            data = json.loads(corpus_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ProtocolStoreError(f"Protocol corpus not found: {corpus_path}") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise ProtocolStoreError(f"Failed to read protocol corpus '{corpus_path}': {exc}") from exc

        store = cls.from_mapping(data)
        store._logger.info(
            "Protocol corpus loaded.",
            extra={
                "context": {
                    "path": str(corpus_path),
                    "protocols": len(store),
                    "categories": store.categories(),
                }
            },
        )
        return store

    # ------------------------------------------------------------------ #
    def load(self) -> Tuple[Protocol, ...]:
        """Return every protocol in source order."""

        return self._protocols

    def get(self, protocol_id: str) -> Protocol:
        return self._by_id[protocol_id]

    def categories(self) -> List[str]:
        return sorted(self._by_category)

    def by_category(self, tag: str) -> Tuple[Protocol, ...]:
        return self._by_category.get(tag.strip().lower(), ())

    def filter_by_categories(
        self,
        selected: Optional[Iterable[str]],
        match: CategoryMatch = CategoryMatch.ALL,
    ) -> Tuple[Protocol, ...]:
        return filter_by_categories(self._protocols, selected, match)

    def __len__(self) -> int:
        return len(self._protocols)

    def __contains__(self, protocol_id: object) -> bool:
        return protocol_id in self._by_id

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_protocol(key: Any, value: Any) -> Protocol:
        protocol_id = str(key).strip()
        if not protocol_id:
            raise ProtocolStoreError("Protocol ids must be non-empty strings.")
        if not isinstance(value, Mapping):
            raise ProtocolStoreError(f"Protocol '{protocol_id}' must be an object.")

        name = value.get("name") or value.get("title")
        if not isinstance(name, str) or not name.strip():
            raise ProtocolStoreError(f"Protocol '{protocol_id}' is missing a name.")

        content = value.get("content", "")
        if not isinstance(content, str):
            raise ProtocolStoreError(f"Protocol '{protocol_id}' content must be a string.")

        categories = value.get("categories") or []
        if not isinstance(categories, (list, tuple)):
            raise ProtocolStoreError(f"Protocol '{protocol_id}' categories must be a list.")

        return Protocol(
            id=protocol_id,
            name=name.strip(),
            content=content,
            source_file=str(value.get("source_file") or ""),
            categories=frozenset(normalize_categories(categories)),
        )
