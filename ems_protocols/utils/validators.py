from __future__ import annotations

"""Input validation and normalisation utilities."""

import math
from typing import Any, Iterable, List, Optional

INVALID_NUMBER_MESSAGE = "Invalid input: All numerical inputs must be positive numbers."


def parse_non_negative(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` if it is NaN, negative or not numeric."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None

    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def is_blank(text: Optional[str]) -> bool:
    """True for ``None``, empty, or whitespace-only strings."""

    return text is None or not text.strip()


def normalize_categories(values: Optional[Iterable[Any]]) -> List[str]:
    """Lower-case, strip and de-duplicate category tags while keeping their order."""

    if not values:
        return []

    seen: List[str] = []
    for value in values:
        if value is None:
            continue
        tag = str(value).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen
