"""End-to-end generation: launch, collect, deduplicate, write."""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
import logging
import signal
import threading
import time
import traceback
from typing import Any, Callable, Iterator

from .browser import Browser, BrowserOptions
from .collectors import Collector, default_collectors, select_collectors
from .config import GenerationConfig
from .dedup import extract_common_bundle
from .errors import CollectorFailure, GenerationAborted, GenerationError, OperationTimeout
from .pool import TabPool
from .resources import ResourceGuard
from .stats import RunStats
from .storage import PlanWriter
from .timeouts import with_timeout
from .types import BundleConfig, CollectorRecord, CollectorStatus


LOGGER = logging.getLogger(__name__)

TERMINATION_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP")

Launcher = Callable[[BrowserOptions], Browser]


class RunState(str, Enum):
    """Lifecycle of one generation run."""

    STARTING = "starting"
    COLLECTING = "collecting"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"
    ABORTING = "aborting"


@contextmanager
def termination_handlers(handler: Callable[[int, Any], None]) -> Iterator[None]:
    """Install `handler` for termination signals and restore the previous ones.

    Python only delivers signals to the main thread, so anywhere else this is
    a no-op.
    """

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous: dict[int, Any] = {}
    for name in TERMINATION_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, handler)

    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            # None means the previous handler was installed outside Python.
            signal.signal(signum, signal.SIG_DFL if old_handler is None else old_handler)


class Generator:
    """Run every registered collector and turn the results into a plan."""

    def __init__(
        self,
        config: GenerationConfig,
        *,
        collectors: dict[str, Collector] | None = None,
        launcher: Launcher | None = None,
        guard: ResourceGuard | None = None,
        writer: PlanWriter | None = None,
        stats: RunStats | None = None,
    ) -> None:
        self.config = config

        self.collectors = dict(collectors) if collectors is not None else default_collectors()
        self.launcher = launcher or Browser.launch
        self.guard = guard or ResourceGuard(config.memory_limit_mib)
        self.writer = writer or PlanWriter(config.output_path)
        self.stats = stats or RunStats()

        self.state = RunState.STARTING
        self._cancelled = threading.Event()
        self._teardown_lock = threading.RLock()

        self._browser: Browser | None = None
        self._session = None
        self._pool: TabPool | None = None

    def browser_options(self) -> BrowserOptions:
        return BrowserOptions(
            headless=not self.config.debug,
            user_agent=self.config.user_agent,
        )

    def active_collectors(self) -> dict[str, Collector]:
        """Registry after `skip_checkout` and `skip_collectors` are applied."""

        skipped = list(self.config.skip_collectors)
        if self.config.skip_checkout and "checkout" in self.collectors:
            skipped.append("checkout")
        return select_collectors(self.collectors, skip=skipped)

    def run(self) -> dict[str, Any]:
        """Generate the plan; raises on any collector failure, writing nothing."""

        collectors = self.active_collectors()

        LOGGER.info("Starting generation. Initial memory: %s MiB", self.guard.sample())

        with termination_handlers(self._on_signal):
            try:
                bundles = self._generate(collectors)
            except BaseException:
                if self.state != RunState.ABORTING:
                    self._set_state(RunState.FAILED)
                raise
            finally:
                self._teardown()
                self.stats.finish()

        return {
            "bundles": [bundle.to_json() for bundle in bundles],
            "output_path": str(self.writer.output_path),
            "stats": self.stats.to_json(),
        }

    def _generate(self, collectors: dict[str, Collector]) -> list[BundleConfig]:
        self._browser = self.launcher(self.browser_options())
        self._session = self._browser.new_session()
        self._pool = TabPool(self._session, self.config.max_tabs)
        LOGGER.info("Initialized tab pool with %d tabs maximum", self.config.max_tabs)

        self._set_state(RunState.COLLECTING)
        LOGGER.info("Collecting bundle modules in the browser.")

        bundles = with_timeout(
            lambda: self._collect_all(collectors),
            self.config.run_timeout_ms,
            "Overall generation process",
        )

        self._set_state(RunState.EXTRACTING)
        LOGGER.info("Extracting common module...")
        bundles = extract_common_bundle(bundles)

        LOGGER.info("Done, outputting following modules:")
        for bundle in bundles:
            LOGGER.info("%s - %d items.", bundle.name, len(bundle.modules))

        path = self.writer.write(bundles)
        LOGGER.info("Generated plan saved to %s", path)

        self._set_state(RunState.DONE)
        return bundles

    def _collect_all(self, collectors: dict[str, Collector]) -> list[BundleConfig]:
        bundles: list[BundleConfig] = []
        total = len(collectors)

        for index, (name, collector) in enumerate(collectors.items(), start=1):
            # A timed-out run keeps this loop alive on its worker thread.
            if self._cancelled.is_set():
                raise GenerationAborted("cancellation")

            LOGGER.info("📦 [%d/%d] Starting collection for %s...", index, total, name)
            memory_before = self.guard.check_limit()
            self.stats.record_memory(memory_before.rss)
            LOGGER.debug("Memory before %s: %s MiB", name, memory_before)

            started = time.monotonic()
            try:
                bundle = with_timeout(
                    lambda collector=collector: collector(self._session, self.config, self._pool),
                    self.config.collector_timeout_ms,
                    f"{name} collector",
                )
            except GenerationError as exc:
                self._handle_collector_error(name, exc, started, memory_before.rss)
                raise
            except Exception as exc:
                failure = CollectorFailure(name, exc)
                self._handle_collector_error(name, failure, started, memory_before.rss)
                raise failure from exc

            self.guard.reclaim()
            memory_after = self.guard.sample()
            status = CollectorStatus.SKIPPED if bundle.is_empty else CollectorStatus.SUCCEEDED
            self.stats.record_collector(
                CollectorRecord(
                    name=name,
                    status=status,
                    elapsed_ms=_elapsed_ms(started),
                    module_count=len(bundle.modules),
                    rss_before_mib=memory_before.rss,
                    rss_after_mib=memory_after.rss,
                )
            )
            bundles.append(bundle)
            LOGGER.info("Completed collection for %s. Memory: %s MiB", name, memory_after)

        return bundles

    def _handle_collector_error(
        self,
        name: str,
        exc: GenerationError,
        started: float,
        rss_before: int,
    ) -> None:
        if isinstance(exc, GenerationAborted):
            return

        LOGGER.error("❌ FAILED: %s collector", name)
        LOGGER.error("Error: %s", exc)
        if self.config.debug:
            LOGGER.error(
                "Stack trace:\n%s",
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            )

        memory = self.guard.sample()
        LOGGER.error("Memory at failure: %s MiB", memory)
        if isinstance(exc, CollectorFailure):
            exc.memory = memory

        timed_out = isinstance(exc, OperationTimeout)
        self.stats.record_collector(
            CollectorRecord(
                name=name,
                status=CollectorStatus.TIMED_OUT if timed_out else CollectorStatus.FAILED,
                elapsed_ms=_elapsed_ms(started),
                rss_before_mib=rss_before,
                rss_after_mib=memory.rss,
                error=str(exc),
            )
        )

        # The collector body may still hold the session lock after a timeout;
        # teardown closes its tab instead.
        if not timed_out and self._pool is not None:
            released = self._pool.release_leased()
            if released:
                LOGGER.debug("Released %d tab(s) left leased by %s", released, name)

    def _on_signal(self, signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        self._set_state(RunState.ABORTING)
        LOGGER.warning("Received %s. Cleaning up browser resources...", name)
        self._teardown()
        raise GenerationAborted(name)

    def _teardown(self) -> None:
        """Release every browser resource. Safe to call more than once."""

        with self._teardown_lock:
            self._cancelled.set()

            pool, self._pool = self._pool, None
            session, self._session = self._session, None
            browser, self._browser = self._browser, None

            if pool is not None:
                try:
                    pool.destroy_all()
                except Exception as exc:
                    LOGGER.debug("Failed to destroy tab pool: %s", exc)
            if session is not None:
                try:
                    session.close()
                except Exception as exc:
                    LOGGER.debug("Failed to close browser session: %s", exc)
            if browser is not None:
                try:
                    browser.close()
                except Exception as exc:
                    LOGGER.debug("Failed to close browser: %s", exc)

            self.guard.reclaim()

    def _set_state(self, state: RunState) -> None:
        self.state = state
        self.stats.record_state(state.value)
        LOGGER.debug("Generation state: %s", state.value)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def generate(config: GenerationConfig, **kwargs: Any) -> dict[str, Any]:
    """Convenience wrapper around `Generator(config, **kwargs).run()`."""

    return Generator(config, **kwargs).run()


__all__ = [
    "Generator",
    "RunState",
    "TERMINATION_SIGNALS",
    "generate",
    "termination_handlers",
]
