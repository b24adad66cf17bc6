"""Request denylist and HTTP basic authentication for collector tabs."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Sequence

from .constants import BLOCKED_URL_PATTERNS
from .types import PageEvent, PageEventKind

if TYPE_CHECKING:
    from .browser import Tab


LOGGER = logging.getLogger(__name__)


def block_requests(tab: "Tab", patterns: Sequence[str] = BLOCKED_URL_PATTERNS) -> bool:
    """Abort requests that stall network-idle detection or the loader resolver."""

    applied = tab.block_requests(patterns)
    if applied:
        tab.on(PageEventKind.REQUEST_FAILED, _log_blocked)
    else:
        LOGGER.debug("Request blocking unavailable; pages may take longer to settle")
    return applied


def _log_blocked(event: PageEvent) -> None:
    if event.blocked:
        LOGGER.info("Blocked resource: %s", event.url)


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def authenticate(tab: "Tab", username: str | None, password: str | None) -> bool:
    """Send basic-auth credentials with every request of the tab."""

    if not username:
        return False
    applied = tab.set_extra_headers({"Authorization": basic_auth_header(username, password or "")})
    if not applied:
        LOGGER.warning("Basic authentication is not supported by this browser; continuing without it")
    return applied


__all__ = ["authenticate", "basic_auth_header", "block_requests"]
