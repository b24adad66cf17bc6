"""Collectors for page types that only need a single visit."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..config import GenerationConfig
from ..types import BundleConfig
from .base import collect_single_page

if TYPE_CHECKING:
    from ..browser import Session
    from ..pool import TabPool


def cms(session: "Session", config: GenerationConfig, pool: "TabPool | None" = None) -> BundleConfig:
    """Modules loaded on CMS pages."""

    return collect_single_page(session, config, pool, name="cms", url=config.cms_url)


def category(session: "Session", config: GenerationConfig, pool: "TabPool | None" = None) -> BundleConfig:
    """Modules loaded on category listing pages."""

    return collect_single_page(session, config, pool, name="category", url=config.category_url)


def product(session: "Session", config: GenerationConfig, pool: "TabPool | None" = None) -> BundleConfig:
    """Modules loaded on product pages."""

    return collect_single_page(session, config, pool, name="product", url=config.product_url)


def search(session: "Session", config: GenerationConfig, pool: "TabPool | None" = None) -> BundleConfig:
    """Modules loaded on catalog search result pages."""

    return collect_single_page(session, config, pool, name="search", url=config.search_url)


__all__ = ["category", "cms", "product", "search"]
