"""Collector registry, in the order collectors run."""

from __future__ import annotations

from typing import Iterable

from .base import Collector, collect_single_page, page_visit
from .checkout import checkout
from .pages import category, cms, product, search


def default_collectors() -> dict[str, Collector]:
    """Return a fresh registry; callers may remove entries before a run."""

    return {
        "cms": cms,
        "category": category,
        "product": product,
        "search": search,
        "checkout": checkout,
    }


def select_collectors(
    registry: dict[str, Collector],
    *,
    skip: Iterable[str] = (),
) -> dict[str, Collector]:
    """Drop skipped collectors while keeping registration order."""

    skipped = set(skip)
    unknown = sorted(skipped - set(registry))
    if unknown:
        raise ValueError(f"Unknown collectors: {unknown}. Known: {list(registry)}")
    return {name: collector for name, collector in registry.items() if name not in skipped}


__all__ = [
    "Collector",
    "category",
    "checkout",
    "cms",
    "collect_single_page",
    "default_collectors",
    "page_visit",
    "product",
    "search",
    "select_collectors",
]
