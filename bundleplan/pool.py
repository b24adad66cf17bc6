"""Bounded pool of reusable browser tabs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .constants import CLEANUP_NAVIGATION_TIMEOUT_MS, DEFAULT_MAX_TABS
from .errors import PoolExhausted
from .types import utc_now_iso

if TYPE_CHECKING:
    from .browser import Tab


LOGGER = logging.getLogger(__name__)

# Drops page storage and any RequireJS context besides the default one, so a
# reused tab cannot leak a previous page's loader state into discovery.
CLEAR_PAGE_STATE_SCRIPT = """
try {
    try { window.localStorage && window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage && window.sessionStorage.clear(); } catch (e) {}
    if (window.require && window.require.s && window.require.s.contexts) {
        Object.keys(window.require.s.contexts).forEach(function (name) {
            if (name !== '_') {
                delete window.require.s.contexts[name];
            }
        });
    }
} catch (e) {}
return true;
"""


class TabSource(Protocol):
    def new_tab(self) -> "Tab": ...


@dataclass(slots=True)
class TabInfo:
    """Pool-side diagnostics for one tab."""

    tab_id: int
    created_at: str
    lease_count: int = 0


class TabPool:
    """Lease/release tabs from one session with a hard capacity.

    Every tracked tab is either leased (held by exactly one collector) or idle
    (cleaned and ready for reuse). Disposed tabs are no longer tracked.
    Collectors run one at a time, so the pool needs no lock.
    """

    def __init__(self, session: TabSource, max_tabs: int = DEFAULT_MAX_TABS) -> None:
        if max_tabs <= 0:
            raise ValueError("max_tabs must be > 0")

        self.session = session
        self.max_tabs = max_tabs

        self._idle: list[Tab] = []
        self._leased: set[Tab] = set()
        self._info: dict[Tab, TabInfo] = {}
        self._counter = 0

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def leased_count(self) -> int:
        return len(self._leased)

    def tab_id(self, tab: "Tab") -> int | None:
        info = self._info.get(tab)
        return None if info is None else info.tab_id

    def is_leased(self, tab: "Tab") -> bool:
        return tab in self._leased

    def lease(self) -> "Tab":
        """Return a clean tab, reusing an idle one when possible."""

        if self._idle:
            tab = self._idle.pop()
            self._leased.add(tab)
            LOGGER.debug(
                "Reusing tab %s. Pool: %d idle, %d leased",
                self.tab_id(tab),
                len(self._idle),
                len(self._leased),
            )
            try:
                self._clean(tab)
            except Exception as exc:
                LOGGER.debug("Failed to clean reused tab %s, opening a new one: %s", self.tab_id(tab), exc)
                self._leased.discard(tab)
                self.dispose(tab)
            else:
                self._info[tab].lease_count += 1
                return tab

        if len(self._leased) >= self.max_tabs:
            raise PoolExhausted(self.max_tabs)

        tab = self.session.new_tab()
        self._counter += 1
        self._info[tab] = TabInfo(tab_id=self._counter, created_at=utc_now_iso(), lease_count=1)
        self._leased.add(tab)
        LOGGER.debug(
            "Opened new tab %d. Pool: %d idle, %d leased",
            self._counter,
            len(self._idle),
            len(self._leased),
        )
        return tab

    def release(self, tab: "Tab") -> None:
        """Return a leased tab to the idle set, or dispose it if it is unusable."""

        if not self.is_leased(tab):
            LOGGER.warning("Attempted to release tab %s that is not leased", self.tab_id(tab))
            return

        self._leased.discard(tab)

        if tab.is_closed():
            LOGGER.debug("Tab %s was closed, not returning it to the pool", self.tab_id(tab))
            self._info.pop(tab, None)
            return

        try:
            self._clean(tab)
        except Exception as exc:
            LOGGER.warning("Failed to clean up tab %s: %s", self.tab_id(tab), exc)
            self.dispose(tab)
            return

        self._idle.append(tab)
        LOGGER.debug(
            "Released tab %s to pool. Pool: %d idle, %d leased",
            self.tab_id(tab),
            len(self._idle),
            len(self._leased),
        )

    def release_leased(self) -> int:
        """Release every tab still leased; returns how many there were."""

        leased = list(self._leased)
        for tab in leased:
            self.release(tab)
        return len(leased)

    def dispose(self, tab: "Tab") -> None:
        """Close `tab` and stop tracking it. Never raises."""

        tab_id = self.tab_id(tab)
        self._info.pop(tab, None)
        self._leased.discard(tab)
        if tab in self._idle:
            self._idle.remove(tab)

        try:
            if not tab.is_closed():
                tab.close()
        except Exception as exc:
            LOGGER.debug("Error disposing tab %s: %s", tab_id, exc)

    def destroy_all(self) -> None:
        """Dispose every tracked tab, idle and leased."""

        tabs = [*self._idle, *self._leased]
        for tab in tabs:
            self.dispose(tab)
        self._idle.clear()
        self._leased.clear()
        self._info.clear()
        LOGGER.debug("Tab pool destroyed. Closed %d tabs.", len(tabs))

    def _clean(self, tab: "Tab") -> None:
        """Reset `tab` for the next collector.

        Dropping the navigation timeout override leaves the engine's page-load
        cap (`ENGINE_DEFAULT_PAGE_LOAD_TIMEOUT_MS`) as the only bound, the
        closest WebDriver gets to no timeout.
        """

        if tab.is_closed():
            raise RuntimeError(f"Tab {self.tab_id(tab)} is closed")

        tab.set_default_navigation_timeout(None)
        tab.navigate(
            "about:blank",
            wait_until="domcontentloaded",
            timeout_ms=CLEANUP_NAVIGATION_TIMEOUT_MS,
        )
        tab.evaluate(CLEAR_PAGE_STATE_SCRIPT)
        tab.clear_request_policy()
        tab.remove_all_listeners()

        if tab.listener_count:
            raise RuntimeError(f"Tab {self.tab_id(tab)} still has listeners after cleanup")
        LOGGER.debug("Cleaned up tab %s", self.tab_id(tab))


__all__ = ["CLEAR_PAGE_STATE_SCRIPT", "TabInfo", "TabPool", "TabSource"]
