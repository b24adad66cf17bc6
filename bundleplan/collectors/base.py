"""Collector contract and the page-visit plumbing every collector shares.

A collector is a function `(session, config, pool) -> BundleConfig`. It either
returns a fully populated bundle or raises. A collector without a URL for its
page type returns an empty bundle without touching the browser.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator

from ..blocking import authenticate, block_requests
from ..config import GenerationConfig
from ..discovery import collect_modules
from ..errors import CollectorFailure, GenerationError
from ..request_log import RequestLogger
from ..types import BundleConfig

if TYPE_CHECKING:
    from ..browser import Session, Tab
    from ..pool import TabPool


LOGGER = logging.getLogger(__name__)

Collector = Callable[["Session", GenerationConfig, "TabPool | None"], BundleConfig]


@contextmanager
def page_visit(
    session: "Session",
    config: GenerationConfig,
    pool: "TabPool | None",
    bundle_name: str,
) -> Iterator["Tab"]:
    """Lease a prepared tab for one collector and always give it back.

    The tab comes with the request denylist, basic auth, and navigation
    timeout applied. Errors from the page interaction are wrapped in
    `CollectorFailure` after the buffered page log is printed.
    """

    if pool is not None:
        tab = pool.lease()
        LOGGER.debug("Using pooled tab %s for %s", pool.tab_id(tab), bundle_name)
    else:
        tab = session.new_tab()
        LOGGER.debug("Opened new tab for %s", bundle_name)

    request_logger = RequestLogger(tab)
    try:
        block_requests(tab)
        if config.timeout_ms:
            tab.set_default_navigation_timeout(config.timeout_ms)
        authenticate(tab, config.auth_username, config.auth_password)
        yield tab
    except GenerationError:
        request_logger.output(bundle_name)
        raise
    except Exception as exc:
        request_logger.output(bundle_name)
        raise CollectorFailure(bundle_name, exc, page_log=request_logger.filtered_entries()) from exc
    finally:
        if pool is not None:
            pool.release(tab)
            LOGGER.debug("Released tab back to pool after %s", bundle_name)
        elif not tab.is_closed():
            tab.close()


def take_screenshot(tab: "Tab", config: GenerationConfig, bundle_name: str, step: str | None = None) -> None:
    if not config.screenshot:
        return
    suffix = f"-{step}" if step else ""
    path = Path(config.screenshot_path) / f"magepack-{bundle_name}{suffix}.png"
    tab.screenshot(path, full_page=True)
    LOGGER.debug("Saved screenshot %s", path)


def discover(tab: "Tab", config: GenerationConfig) -> dict[str, str]:
    return collect_modules(
        tab,
        config.excluded_modules,
        include_mixins=config.include_mixins,
        settle_seconds=config.settle_seconds,
    )


def collect_single_page(
    session: "Session",
    config: GenerationConfig,
    pool: "TabPool | None",
    *,
    name: str,
    url: str | None,
) -> BundleConfig:
    """Visit one URL and bundle every module it loads."""

    LOGGER.info('Collecting modules for bundle "%s".', name)

    if not url:
        LOGGER.info('No URL configured for bundle "%s" - skipping.', name)
        return BundleConfig(name=name, url="")

    with page_visit(session, config, pool, name) as tab:
        tab.navigate(url, wait_until="networkidle", timeout_ms=config.navigation_timeout_ms)
        take_screenshot(tab, config, name)
        modules = discover(tab, config)

    LOGGER.info('Finished collecting modules for bundle "%s".', name)
    return BundleConfig(name=name, url=url, modules=modules)


__all__ = [
    "Collector",
    "collect_single_page",
    "discover",
    "page_visit",
    "take_screenshot",
]
