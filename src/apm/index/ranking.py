#!/usr/bin/env python3
"""
APM RELEVANCE RANKING
---------------------
Three-tier ordering shared by the local index and the Flathub adapter:
exact name (case-insensitive), then names starting with the query, then
names merely containing it. Order inside a tier is the input order.

Author: APM Team
Date: 2026-10-17
"""

from typing import Callable, Iterable, List, TypeVar

T = TypeVar("T")

DEFAULT_LIMIT = 10


def rank_by_relevance(items: Iterable[T], query: str, name_of: Callable[[T], str],
                      limit: int = DEFAULT_LIMIT) -> List[T]:
    needle = query.lower()
    exact: List[T] = []
    starts_with: List[T] = []
    contains: List[T] = []

    for item in items:
        name = name_of(item).lower()
        if name == needle:
            exact.append(item)
        elif name.startswith(needle):
            starts_with.append(item)
        elif needle in name:
            contains.append(item)

    return (exact + starts_with + contains)[:limit]
