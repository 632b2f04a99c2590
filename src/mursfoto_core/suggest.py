"""Fuzzy "did you mean" suggestions for unknown names."""

from __future__ import annotations

from collections.abc import Iterable

from thefuzz import fuzz, process

DEFAULT_THRESHOLD = 60


def suggest_names(
    name: str,
    candidates: Iterable[str],
    limit: int = 3,
    threshold: int = DEFAULT_THRESHOLD,
) -> list[str]:
    """Find known names similar to ``name``.

    Only used to enrich error messages; lookups stay exact.

    Args:
        name: The name that failed to match
        candidates: Known names
        limit: Maximum number of suggestions
        threshold: Minimum similarity score (0-100)

    Returns:
        Suggested names, best match first
    """
    choices = list(dict.fromkeys(candidates))
    if not name or not choices:
        return []

    matches = process.extract(name, choices, scorer=fuzz.ratio, limit=limit)
    return [match for match, score in matches if score >= threshold]
