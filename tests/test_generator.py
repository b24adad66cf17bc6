from __future__ import annotations

import os
import signal
import threading
import time
from pathlib import Path

import pytest

from bundleplan.errors import CollectorFailure, GenerationAborted, OperationTimeout, ResourceExhausted
from bundleplan.generator import Generator, RunState, termination_handlers
from bundleplan.storage import PlanWriter
from bundleplan.types import BundleConfig, CollectorStatus

from conftest import FakeBrowser, FakeProcess, FakeSession


CMS_URL = "https://shop.test/"
CATEGORY_URL = "https://shop.test/bags.html"
PRODUCT_URL = "https://shop.test/bag.html"


@pytest.fixture
def storefront() -> FakeSession:
    return FakeSession(
        {
            CMS_URL: {"a": "a.js", "shared": "shared.js"},
            CATEGORY_URL: {"b": "b.js", "shared": "shared.js"},
            PRODUCT_URL: {"c": "c.js", "shared": "shared.js"},
        }
    )


def _generator(config, session: FakeSession, guard, **kwargs) -> tuple[Generator, FakeBrowser]:
    browser = FakeBrowser(session)
    return Generator(config, launcher=browser.launch, guard=guard, **kwargs), browser


def test_full_run_writes_deduplicated_plan(storefront: FakeSession, make_config, guard) -> None:
    config = make_config(cms_url=CMS_URL, category_url=CATEGORY_URL, product_url=PRODUCT_URL, skip_checkout=True)
    generator, browser = _generator(config, storefront, guard)

    result = generator.run()

    plan = PlanWriter(config.output_path).read()
    assert [bundle.name for bundle in plan] == ["cms", "category", "product", "search", "common"]
    assert plan[0] == BundleConfig("cms", CMS_URL, {"a": "a.js"})
    assert plan[1] == BundleConfig("category", CATEGORY_URL, {"b": "b.js"})
    assert plan[2] == BundleConfig("product", PRODUCT_URL, {"c": "c.js"})
    assert plan[3] == BundleConfig("search", "", {})
    assert plan[4].modules == {"shared": "shared.js"}

    assert result["output_path"] == str(Path(config.output_path).resolve())
    assert result["bundles"][-1]["name"] == "common"
    assert generator.state == RunState.DONE
    assert browser.closed and storefront.closed
    assert all(tab.closed for tab in storefront.tabs)


def test_browser_options_follow_debug_flag(storefront: FakeSession, make_config, guard) -> None:
    generator, browser = _generator(make_config(cms_url=CMS_URL, debug=True, skip_checkout=True), storefront, guard)

    generator.run()

    assert browser.options.headless is False
    assert (browser.options.window_width, browser.options.window_height) == (412, 732)


def test_stats_record_each_collector(storefront: FakeSession, make_config, guard) -> None:
    generator, _ = _generator(make_config(cms_url=CMS_URL, skip_checkout=True), storefront, guard)

    stats = generator.run()["stats"]

    statuses = {record["name"]: record["status"] for record in stats["collectors"]}
    assert statuses == {
        "cms": CollectorStatus.SUCCEEDED.value,
        "category": CollectorStatus.SKIPPED.value,
        "product": CollectorStatus.SKIPPED.value,
        "search": CollectorStatus.SKIPPED.value,
    }
    assert stats["modules_collected"] == 2
    assert stats["state"] == RunState.DONE.value
    assert stats["finished_at"] is not None


def test_skip_flags_remove_collectors(make_config, guard) -> None:
    config = make_config(skip_checkout=True, skip_collectors=("search",))
    generator = Generator(config, guard=guard)

    assert list(generator.active_collectors()) == ["cms", "category", "product"]


def test_collectors_run_in_registration_order(storefront: FakeSession, make_config, guard) -> None:
    calls: list[str] = []

    def recorder(name: str):
        def collect(session, config, pool) -> BundleConfig:
            calls.append(name)
            return BundleConfig(name, modules={name: f"{name}.js"})

        return collect

    collectors = {name: recorder(name) for name in ("first", "second", "third")}
    generator, _ = _generator(make_config(), storefront, guard, collectors=collectors)

    generator.run()

    assert calls == ["first", "second", "third"]


def test_failure_writes_nothing_and_tears_down(storefront: FakeSession, make_config, guard) -> None:
    storefront.failures[CATEGORY_URL] = RuntimeError("navigation failed")
    config = make_config(cms_url=CMS_URL, category_url=CATEGORY_URL, product_url=PRODUCT_URL)
    generator, browser = _generator(config, storefront, guard)

    with pytest.raises(CollectorFailure) as excinfo:
        generator.run()

    assert excinfo.value.collector == "category"
    assert excinfo.value.memory is not None
    assert not Path(config.output_path).exists()
    assert generator.state == RunState.FAILED
    assert browser.closed and storefront.closed
    assert all(tab.closed for tab in storefront.tabs)

    statuses = {record.name: record.status for record in generator.stats.records()}
    assert statuses == {"cms": CollectorStatus.SUCCEEDED, "category": CollectorStatus.FAILED}


def test_plain_collector_errors_are_wrapped(storefront: FakeSession, make_config, guard) -> None:
    def broken(session, config, pool) -> BundleConfig:
        raise KeyError("modules")

    generator, _ = _generator(make_config(), storefront, guard, collectors={"broken": broken})

    with pytest.raises(CollectorFailure) as excinfo:
        generator.run()

    assert isinstance(excinfo.value.cause, KeyError)


def test_leased_tabs_are_released_on_failure(storefront: FakeSession, make_config, guard) -> None:
    pools = []

    def leaks_tab(session, config, pool) -> BundleConfig:
        pool.lease()
        pools.append(pool)
        raise RuntimeError("left a tab leased")

    generator, _ = _generator(make_config(), storefront, guard, collectors={"leaky": leaks_tab})

    with pytest.raises(CollectorFailure):
        generator.run()

    assert pools[0].leased_count == 0


def test_memory_ceiling_stops_before_next_collector(
    storefront: FakeSession,
    make_config,
    guard,
    fake_process: FakeProcess,
) -> None:
    calls: list[str] = []

    def heavy(session, config, pool) -> BundleConfig:
        calls.append("heavy")
        fake_process.rss_mib = 7000
        return BundleConfig("heavy", modules={"x": "x.js"})

    def next_one(session, config, pool) -> BundleConfig:
        calls.append("next")
        return BundleConfig("next")

    config = make_config(memory_limit_mib=6144)
    generator, browser = _generator(config, storefront, guard, collectors={"heavy": heavy, "next": next_one})

    with pytest.raises(ResourceExhausted) as excinfo:
        generator.run()

    assert calls == ["heavy"]
    assert excinfo.value.stats.rss == 7000
    assert not Path(config.output_path).exists()
    assert browser.closed


def test_collector_timeout_aborts_run(storefront: FakeSession, make_config, guard) -> None:
    def slow(session, config, pool) -> BundleConfig:
        time.sleep(1)
        return BundleConfig("slow")

    config = make_config(timeout_ms=100)
    generator, browser = _generator(config, storefront, guard, collectors={"slow": slow})

    with pytest.raises(OperationTimeout) as excinfo:
        generator.run()

    assert excinfo.value.label == "slow collector"
    assert generator.stats.status_of("slow") == CollectorStatus.TIMED_OUT
    assert browser.closed
    assert not Path(config.output_path).exists()


def test_run_timeout_stops_remaining_collectors(storefront: FakeSession, make_config, guard) -> None:
    started: list[str] = []

    def steady(name: str):
        def collect(session, config, pool) -> BundleConfig:
            started.append(name)
            time.sleep(0.08)
            return BundleConfig(name)

        return collect

    # Each collector fits in timeout_ms; together they overrun the run envelope.
    collectors = {f"page{index}": steady(f"page{index}") for index in range(12)}
    config = make_config(timeout_ms=100)
    generator, browser = _generator(config, storefront, guard, collectors=collectors)

    with pytest.raises(OperationTimeout) as excinfo:
        generator.run()

    assert excinfo.value.label == "Overall generation process"
    count = len(started)
    assert count < len(collectors)

    time.sleep(0.5)

    assert len(started) == count
    assert browser.closed
    assert not Path(config.output_path).exists()


def test_termination_signal_aborts_and_cleans_up(storefront: FakeSession, make_config, guard) -> None:
    def interrupted(session, config, pool) -> BundleConfig:
        os.kill(os.getpid(), signal.SIGTERM)
        time.sleep(1)
        return BundleConfig("interrupted")

    previous = signal.getsignal(signal.SIGTERM)
    config = make_config()
    generator, browser = _generator(config, storefront, guard, collectors={"interrupted": interrupted})

    with pytest.raises(GenerationAborted) as excinfo:
        generator.run()

    assert excinfo.value.signal_name == "SIGTERM"
    assert generator.state == RunState.ABORTING
    assert browser.closed
    assert not Path(config.output_path).exists()
    assert signal.getsignal(signal.SIGTERM) is previous


def test_termination_handlers_are_scoped() -> None:
    previous = signal.getsignal(signal.SIGTERM)

    def handler(signum, frame) -> None:
        return None

    with termination_handlers(handler):
        assert signal.getsignal(signal.SIGTERM) is handler
        assert signal.getsignal(signal.SIGINT) is handler

    assert signal.getsignal(signal.SIGTERM) is previous


def test_termination_handlers_restore_default_for_foreign_handlers(monkeypatch: pytest.MonkeyPatch) -> None:
    installed: list[tuple[int, object]] = []

    def record(signum, handler):
        installed.append((signum, handler))
        return None

    monkeypatch.setattr(signal, "signal", record)

    def handler(signum, frame) -> None:
        return None

    with termination_handlers(handler):
        pass

    restored = installed[len(installed) // 2 :]
    assert restored
    assert all(action is signal.SIG_DFL for _, action in restored)
    assert all(action is handler for _, action in installed[: len(installed) // 2])


def test_termination_handlers_skip_worker_threads() -> None:
    previous = signal.getsignal(signal.SIGTERM)
    seen: list[object] = []

    def worker() -> None:
        with termination_handlers(lambda signum, frame: None):
            seen.append(signal.getsignal(signal.SIGTERM))

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(2)

    assert seen == [previous]
