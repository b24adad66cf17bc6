"""Selenium-backed browser engine: launcher, isolated sessions, and tabs.

Concurrency model:
- One WebDriver instance is one isolated session (own profile, cookies and
  storage).
- WebDriver drives a single focused window at a time, so every tab operation
  runs under the session's re-entrant lock and switches focus first.
- `Session.close` never takes that lock: quitting the driver is how lingering
  operations from timed-out collectors get terminated.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.firefox.options import Options as FirefoxOptions
from selenium.webdriver.support.ui import WebDriverWait

from .constants import (
    BROWSER_LAUNCH_TIMEOUT_SECONDS,
    ENGINE_DEFAULT_PAGE_LOAD_TIMEOUT_MS,
    NETWORK_IDLE_POLL_SECONDS,
    NETWORK_IDLE_QUIET_SECONDS,
    TAB_CLOSE_LOCK_TIMEOUT_SECONDS,
    WINDOW_HEIGHT,
    WINDOW_WIDTH,
)
from .errors import CleanupFailure
from .timeouts import with_timeout
from .types import PageEvent, PageEventKind


LOGGER = logging.getLogger(__name__)

EventListener = Callable[[PageEvent], None]

WAIT_CONDITIONS = ("load", "domcontentloaded", "networkidle")

_RESOURCE_COUNT_SCRIPT = """
return document.readyState === 'complete'
    ? performance.getEntriesByType('resource').length
    : -1;
"""


@dataclass(frozen=True, slots=True)
class BrowserOptions:
    """Launch options shared by every session of one browser."""

    headless: bool = True
    window_width: int = WINDOW_WIDTH
    window_height: int = WINDOW_HEIGHT
    user_agent: str | None = None
    ignore_https_errors: bool = True
    launch_timeout_seconds: float = BROWSER_LAUNCH_TIMEOUT_SECONDS


class _DriverLaunch:
    """One driver start that may outlive the caller waiting for it.

    Once abandoned, a driver that is already up or comes up later is quit.
    """

    def __init__(self, factory: Callable[[], tuple[Any, bool]]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._driver: Any = None
        self._abandoned = False

    def run(self) -> tuple[Any, bool]:
        driver, supports_cdp = self._factory()
        with self._lock:
            if not self._abandoned:
                self._driver = driver
                return driver, supports_cdp
        _quit_driver(driver)
        raise RuntimeError("Browser launch abandoned")

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            driver, self._driver = self._driver, None
        if driver is not None:
            _quit_driver(driver)


def _quit_driver(driver: Any) -> None:
    try:
        driver.quit()
    except Exception as exc:
        LOGGER.debug("Failed to quit abandoned driver: %s", exc)


class Browser:
    """Launch isolated WebDriver sessions, Chrome first with a Firefox fallback."""

    def __init__(self, options: BrowserOptions) -> None:
        self.options = options
        self._lock = threading.Lock()
        self._sessions: list[Session] = []
        self._launches: set[_DriverLaunch] = set()
        self._closed = False

    @classmethod
    def launch(cls, options: BrowserOptions | None = None) -> "Browser":
        return cls(options or BrowserOptions())

    def new_session(self) -> "Session":
        """Start a fresh browser process with its own profile.

        A driver that comes up after the launch timeout, or after `close`,
        is quit rather than left running.
        """

        launch = _DriverLaunch(self._create_driver)
        with self._lock:
            if self._closed:
                raise RuntimeError("Browser is closed")
            self._launches.add(launch)

        try:
            driver, supports_cdp = with_timeout(
                launch.run,
                int(self.options.launch_timeout_seconds * 1000),
                "Browser launch",
            )
        except BaseException:
            launch.abandon()
            raise
        finally:
            with self._lock:
                self._launches.discard(launch)

        session = Session(driver, supports_cdp=supports_cdp)
        with self._lock:
            if not self._closed:
                self._sessions.append(session)
                return session
        session.close()
        raise RuntimeError("Browser is closed")

    def close(self) -> None:
        """Close every session and pending launch. Safe to call twice."""

        with self._lock:
            self._closed = True
            sessions = list(self._sessions)
            self._sessions.clear()
            launches = list(self._launches)
            self._launches.clear()

        for launch in launches:
            launch.abandon()
        for session in sessions:
            session.close()

    def _create_driver(self) -> tuple[Any, bool]:
        errors: list[str] = []

        # Try Chrome first; request interception and page logs need CDP.
        try:
            return webdriver.Chrome(options=self._chrome_options()), True
        except Exception as exc:
            errors.append(f"Chrome: {exc}")

        try:
            return webdriver.Firefox(options=self._firefox_options()), False
        except Exception as exc:
            errors.append(f"Firefox: {exc}")

        raise RuntimeError("; ".join(errors) or "No usable Selenium driver found")

    def _chrome_options(self) -> ChromeOptions:
        options = ChromeOptions()
        if self.options.headless:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-setuid-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--disable-gpu")
        options.add_argument(
            f"--window-size={self.options.window_width},{self.options.window_height}"
        )
        if self.options.user_agent:
            options.add_argument(f"--user-agent={self.options.user_agent}")
        options.accept_insecure_certs = self.options.ignore_https_errors
        options.set_capability("goog:loggingPrefs", {"browser": "ALL", "performance": "ALL"})
        return options

    def _firefox_options(self) -> FirefoxOptions:
        options = FirefoxOptions()
        if self.options.headless:
            options.add_argument("-headless")
        options.add_argument(f"--width={self.options.window_width}")
        options.add_argument(f"--height={self.options.window_height}")
        if self.options.user_agent:
            options.set_preference("general.useragent.override", self.options.user_agent)
        options.accept_insecure_certs = self.options.ignore_https_errors
        return options


class Session:
    """One isolated browsing session owning a set of tabs."""

    def __init__(self, driver: Any, *, supports_cdp: bool) -> None:
        self.driver = driver
        self.supports_cdp = supports_cdp

        self._lock = threading.RLock()
        self._home_handle = driver.current_window_handle
        self._active_handle = self._home_handle
        self._tabs: dict[str, Tab] = {}
        self._logs_supported = supports_cdp

        self._closed = False
        self._closed_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        with self._closed_lock:
            return self._closed

    def new_tab(self) -> "Tab":
        """Open a new tab and return its handle."""

        with self._lock:
            self._ensure_open()
            self.driver.switch_to.new_window("tab")
            handle = self.driver.current_window_handle
            self._active_handle = handle
            tab = Tab(self, handle)
            self._tabs[handle] = tab
            return tab

    def tracks(self, handle: str) -> bool:
        return not self.closed and handle in self._tabs

    @contextmanager
    def focus(self, tab: "Tab", *, lock_timeout: float | None = None) -> Iterator[Any]:
        """Hold the session lock with `tab` as the focused window."""

        acquired = self._lock.acquire(timeout=-1 if lock_timeout is None else lock_timeout)
        if not acquired:
            raise CleanupFailure(f"Session busy; could not focus tab {tab.handle}")
        try:
            self._ensure_open()
            if tab.handle not in self._tabs:
                raise RuntimeError(f"Tab {tab.handle} is closed")
            if self._active_handle != tab.handle:
                self.driver.switch_to.window(tab.handle)
                self._active_handle = tab.handle
            yield self.driver
        finally:
            self._lock.release()

    def read_logs(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Drain pending browser and performance log entries."""

        if not self._logs_supported:
            return [], []
        try:
            return self.driver.get_log("browser"), self.driver.get_log("performance")
        except WebDriverException as exc:
            LOGGER.debug("Page logs unavailable, disabling: %s", exc)
            self._logs_supported = False
            return [], []

    def close(self) -> None:
        """Quit the driver. Safe to call from any thread, any number of times."""

        with self._closed_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.driver.quit()
        except Exception as exc:
            LOGGER.debug("Error quitting browser session: %s", exc)
        finally:
            self._tabs.clear()

    def _forget(self, handle: str) -> None:
        self._tabs.pop(handle, None)
        if self._active_handle == handle:
            self.driver.switch_to.window(self._home_handle)
            self._active_handle = self._home_handle

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError("Browser session is closed")


class Tab:
    """Handle to one window of a `Session`."""

    def __init__(self, session: Session, handle: str) -> None:
        self.session = session
        self.handle = handle

        self._listeners: dict[PageEventKind, list[EventListener]] = defaultdict(list)
        self._request_urls: dict[str, str] = {}
        self._navigation_timeout_ms: int | None = None
        self._request_policy_applied = False

    def __repr__(self) -> str:
        return f"Tab({self.handle!r})"

    # Events

    def on(self, kind: PageEventKind | str, listener: EventListener) -> "Tab":
        self._listeners[PageEventKind(kind)].append(listener)
        return self

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
        self._request_urls.clear()

    @property
    def listener_count(self) -> int:
        return sum(len(items) for items in self._listeners.values())

    # Navigation and scripting

    def set_default_navigation_timeout(self, timeout_ms: int | None) -> None:
        """Set the timeout used by `navigate`.

        None drops any override. WebDriver has no unbounded page load, so
        navigation then falls back to the engine's own 300 s cap.
        """

        self._navigation_timeout_ms = timeout_ms

    def navigate(
        self,
        url: str,
        *,
        wait_until: str = "load",
        timeout_ms: int | None = None,
    ) -> None:
        if wait_until not in WAIT_CONDITIONS:
            raise ValueError(f"Unsupported wait condition: {wait_until!r}")

        effective_ms = timeout_ms or self._navigation_timeout_ms or ENGINE_DEFAULT_PAGE_LOAD_TIMEOUT_MS
        deadline = time.monotonic() + effective_ms / 1000

        with self.session.focus(self) as driver:
            try:
                driver.set_page_load_timeout(max(1, effective_ms // 1000))
                driver.get(url)
                if wait_until == "networkidle":
                    self._wait_for_network_idle(driver, url, deadline)
            finally:
                self._drain_events()

    def wait_for_function(
        self,
        script: str,
        *args: Any,
        timeout_ms: int,
        poll_seconds: float = NETWORK_IDLE_POLL_SECONDS,
    ) -> Any:
        """Poll `script` until it returns a truthy value."""

        with self.session.focus(self) as driver:
            try:
                return WebDriverWait(driver, timeout_ms / 1000, poll_frequency=poll_seconds).until(
                    lambda d: d.execute_script(script, *args),
                    message=f"Condition not met within {timeout_ms}ms",
                )
            finally:
                self._drain_events()

    def evaluate(self, script: str, *args: Any) -> Any:
        """Run a function body in the page and return its JSON-able result."""

        with self.session.focus(self) as driver:
            try:
                return driver.execute_script(script, *args)
            finally:
                self._drain_events()

    def evaluate_async(self, script: str, *args: Any, timeout_ms: int) -> Any:
        """Run a callback-style script; the last argument is the done callback."""

        with self.session.focus(self) as driver:
            try:
                driver.set_script_timeout(timeout_ms / 1000)
                return driver.execute_async_script(script, *args)
            finally:
                self._drain_events()

    def screenshot(self, path: str | Path, *, full_page: bool = True) -> Path:
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)

        with self.session.focus(self) as driver:
            if full_page and self.session.supports_cdp:
                shot = driver.execute_cdp_cmd(
                    "Page.captureScreenshot",
                    {"format": "png", "captureBeyondViewport": True},
                )
                out_path.write_bytes(base64.b64decode(shot["data"]))
            else:
                out_path.write_bytes(driver.get_screenshot_as_png())
        return out_path

    # Request policy

    def block_requests(self, patterns: Sequence[str]) -> bool:
        """Abort requests matching wildcard `patterns`. Returns False without CDP."""

        if not self.session.supports_cdp:
            LOGGER.debug("Request blocking needs CDP; skipping for %r", self)
            return False

        with self.session.focus(self) as driver:
            driver.execute_cdp_cmd("Network.enable", {})
            driver.execute_cdp_cmd("Network.setBlockedURLs", {"urls": list(patterns)})
        self._request_policy_applied = True
        return True

    def set_extra_headers(self, headers: dict[str, str]) -> bool:
        if not self.session.supports_cdp:
            LOGGER.debug("Extra headers need CDP; skipping for %r", self)
            return False

        with self.session.focus(self) as driver:
            driver.execute_cdp_cmd("Network.enable", {})
            driver.execute_cdp_cmd("Network.setExtraHTTPHeaders", {"headers": dict(headers)})
        self._request_policy_applied = True
        return True

    def clear_request_policy(self) -> None:
        if not self._request_policy_applied:
            return

        with self.session.focus(self) as driver:
            driver.execute_cdp_cmd("Network.setBlockedURLs", {"urls": []})
            driver.execute_cdp_cmd("Network.setExtraHTTPHeaders", {"headers": {}})
        self._request_policy_applied = False

    # Lifecycle

    def close(self) -> None:
        if self.is_closed():
            return

        with self.session.focus(self, lock_timeout=TAB_CLOSE_LOCK_TIMEOUT_SECONDS) as driver:
            try:
                driver.close()
            finally:
                self.session._forget(self.handle)
        self.remove_all_listeners()

    def is_closed(self) -> bool:
        return not self.session.tracks(self.handle)

    # Internals

    def _wait_for_network_idle(self, driver: Any, url: str, deadline: float) -> None:
        last_count = -1
        quiet_since = time.monotonic()

        while True:
            now = time.monotonic()
            if now >= deadline:
                raise TimeoutException(f"Network did not go idle for {url}")

            count = driver.execute_script(_RESOURCE_COUNT_SCRIPT)
            if count != last_count or count < 0:
                last_count = count
                quiet_since = now
            elif now - quiet_since >= NETWORK_IDLE_QUIET_SECONDS:
                return

            time.sleep(NETWORK_IDLE_POLL_SECONDS)

    def _drain_events(self) -> None:
        browser_entries, performance_entries = self.session.read_logs()

        for entry in browser_entries:
            event = _browser_log_event(entry)
            if event is not None:
                self._dispatch(event)

        for entry in performance_entries:
            event = self._performance_log_event(entry)
            if event is not None:
                self._dispatch(event)

    def _performance_log_event(self, entry: dict[str, Any]) -> PageEvent | None:
        try:
            message = json.loads(entry.get("message", "{}")).get("message", {})
        except (TypeError, ValueError):
            return None

        method = message.get("method")
        params = message.get("params") or {}

        if method == "Network.requestWillBeSent":
            request = params.get("request") or {}
            self._request_urls[str(params.get("requestId"))] = str(request.get("url", ""))
            return None

        if method == "Network.responseReceived":
            response = params.get("response") or {}
            status = response.get("status")
            return PageEvent(
                kind=PageEventKind.RESPONSE,
                text=f"{status} {response.get('url', '')}",
                url=response.get("url"),
                status=None if status is None else int(status),
            )

        if method == "Network.loadingFailed":
            request_url = self._request_urls.pop(str(params.get("requestId")), "")
            return PageEvent(
                kind=PageEventKind.REQUEST_FAILED,
                text=str(params.get("errorText", "")),
                url=request_url,
                blocked=bool(params.get("blockedReason")),
            )

        return None

    def _dispatch(self, event: PageEvent) -> None:
        for listener in list(self._listeners.get(event.kind, ())):
            try:
                listener(event)
            except Exception:
                LOGGER.warning("Listener for %s on %r failed", event.kind.value, self, exc_info=True)


def _browser_log_event(entry: dict[str, Any]) -> PageEvent | None:
    source = entry.get("source")
    level = str(entry.get("level", "INFO"))
    text = str(entry.get("message", ""))

    if source == "network":
        return None
    if source == "javascript":
        return PageEvent(kind=PageEventKind.PAGE_ERROR, text=text, level=level)
    return PageEvent(kind=PageEventKind.CONSOLE, text=text, level=level)


__all__ = [
    "Browser",
    "BrowserOptions",
    "EventListener",
    "Session",
    "Tab",
    "WAIT_CONDITIONS",
]
