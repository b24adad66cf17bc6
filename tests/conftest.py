from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from bundleplan.collectors.checkout import BASE_URL_SCRIPT
from bundleplan.config import GenerationConfig
from bundleplan.discovery import COLLECT_MODULES_SCRIPT, WAIT_FOR_RESOLVER_SCRIPT
from bundleplan.resources import ResourceGuard
from bundleplan.types import PageEvent, PageEventKind


MIB = 1024 * 1024


class FakeTab:
    """In-memory stand-in for `bundleplan.browser.Tab`."""

    def __init__(self, session: "FakeSession", tab_id: int) -> None:
        self.session = session
        self.tab_id = tab_id

        self.listeners: dict[PageEventKind, list[Callable[[PageEvent], None]]] = defaultdict(list)
        self.current_url = "about:blank"
        self.navigations: list[tuple[str, str, int | None]] = []
        self.scripts: list[tuple[str, tuple[Any, ...]]] = []
        self.screenshots: list[Path] = []
        self.navigation_timeout_ms: int | None = None
        self.blocked_patterns: list[str] | None = None
        self.headers: dict[str, str] | None = None
        self.policy_cleared = 0
        self.closed = False
        self.fail_cleanup = False

    def __repr__(self) -> str:
        return f"FakeTab({self.tab_id})"

    def on(self, kind: PageEventKind | str, listener: Callable[[PageEvent], None]) -> "FakeTab":
        self.listeners[PageEventKind(kind)].append(listener)
        return self

    def remove_all_listeners(self) -> None:
        self.listeners.clear()

    @property
    def listener_count(self) -> int:
        return sum(len(items) for items in self.listeners.values())

    def emit(self, event: PageEvent) -> None:
        for listener in list(self.listeners.get(event.kind, ())):
            listener(event)

    def set_default_navigation_timeout(self, timeout_ms: int | None) -> None:
        self.navigation_timeout_ms = timeout_ms

    def navigate(self, url: str, *, wait_until: str = "load", timeout_ms: int | None = None) -> None:
        self._ensure_open()
        if url == "about:blank" and self.fail_cleanup:
            raise RuntimeError("cleanup navigation failed")

        self.navigations.append((url, wait_until, timeout_ms))
        self.current_url = url

        for event in self.session.events.get(url, ()):
            self.emit(event)

        error = self.session.failures.get(url)
        if error is not None:
            raise error

    def wait_for_function(self, script: str, *args: Any, timeout_ms: int, poll_seconds: float = 0.1) -> Any:
        self._ensure_open()
        self.scripts.append((script, args))
        return True

    def evaluate(self, script: str, *args: Any) -> Any:
        self._ensure_open()
        self.scripts.append((script, args))
        if script == COLLECT_MODULES_SCRIPT:
            return self.session.discovery_result(self.current_url)
        if script == BASE_URL_SCRIPT:
            return self.session.base_url
        return True

    def evaluate_async(self, script: str, *args: Any, timeout_ms: int) -> Any:
        self._ensure_open()
        self.scripts.append((script, args))
        if script == WAIT_FOR_RESOLVER_SCRIPT:
            return self.session.resolver_result
        return True

    def screenshot(self, path: str | Path, *, full_page: bool = True) -> Path:
        out_path = Path(path)
        self.screenshots.append(out_path)
        return out_path

    @property
    def url(self) -> str:
        return self.current_url

    def block_requests(self, patterns) -> bool:
        self.blocked_patterns = list(patterns)
        return self.session.supports_cdp

    def set_extra_headers(self, headers: dict[str, str]) -> bool:
        self.headers = dict(headers)
        return self.session.supports_cdp

    def clear_request_policy(self) -> None:
        self.policy_cleared += 1
        self.blocked_patterns = None
        self.headers = None

    def close(self) -> None:
        self.closed = True
        self.listeners.clear()

    def is_closed(self) -> bool:
        return self.closed or self.session.closed

    def scripts_named(self, script: str) -> list[tuple[Any, ...]]:
        return [args for source, args in self.scripts if source == script]

    def _ensure_open(self) -> None:
        if self.is_closed():
            raise RuntimeError(f"{self!r} is closed")


class FakeSession:
    """Serves scripted pages: URL -> discovered modules."""

    def __init__(
        self,
        pages: dict[str, dict[str, str]] | None = None,
        *,
        base_url: str = "https://shop.test/",
        supports_cdp: bool = True,
    ) -> None:
        self.pages = dict(pages or {})
        self.base_url = base_url
        self.supports_cdp = supports_cdp

        self.failures: dict[str, Exception] = {}
        self.events: dict[str, list[PageEvent]] = {}
        self.resolver_result: Any = {"ok": True}

        self.tabs: list[FakeTab] = []
        self.closed = False

    def new_tab(self) -> FakeTab:
        if self.closed:
            raise RuntimeError("session is closed")
        tab = FakeTab(self, len(self.tabs) + 1)
        self.tabs.append(tab)
        return tab

    def discovery_result(self, url: str) -> Any:
        return dict(self.pages.get(url, {}))

    def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.options = None
        self.closed = False

    def launch(self, options) -> "FakeBrowser":
        self.options = options
        return self

    def new_session(self) -> FakeSession:
        return self.session

    def close(self) -> None:
        self.closed = True
        self.session.close()


class FakeProcess:
    """Minimal `psutil.Process` replacement with a settable RSS."""

    def __init__(self, rss_mib: int = 100, *, children: list["FakeProcess"] | None = None) -> None:
        self.rss_mib = rss_mib
        self._children = list(children or [])

    def memory_info(self) -> SimpleNamespace:
        return SimpleNamespace(rss=self.rss_mib * MIB, vms=self.rss_mib * 2 * MIB)

    def children(self, recursive: bool = False) -> list["FakeProcess"]:
        return list(self._children)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., GenerationConfig]:
    def _make(**overrides: Any) -> GenerationConfig:
        values: dict[str, Any] = {
            "settle_seconds": 0.0,
            "output_path": str(tmp_path / "magepack.config.js"),
            "screenshot_path": str(tmp_path / "screenshots"),
        }
        values.update(overrides)
        return GenerationConfig(**values)

    return _make


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_process() -> FakeProcess:
    return FakeProcess()


@pytest.fixture
def guard(fake_process: FakeProcess) -> ResourceGuard:
    return ResourceGuard(6144, process=fake_process)
