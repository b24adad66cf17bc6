from __future__ import annotations

import pytest

from bundleplan.errors import ResourceExhausted
from bundleplan.resources import ResourceGuard

from conftest import FakeProcess


def test_sample_reports_mib() -> None:
    child = FakeProcess(rss_mib=300)
    guard = ResourceGuard(process=FakeProcess(rss_mib=512, children=[child]))

    stats = guard.sample()

    assert stats.rss == 512
    assert stats.vms == 1024
    assert stats.children_rss == 300
    assert stats.to_json()["rss"] == 512


def test_check_limit_raises_above_ceiling() -> None:
    guard = ResourceGuard(6144, process=FakeProcess(rss_mib=7000))

    with pytest.raises(ResourceExhausted) as excinfo:
        guard.check_limit()

    assert excinfo.value.stats.rss == 7000
    assert excinfo.value.limit_mib == 6144
    assert "7000MiB > 6144MiB" in str(excinfo.value)


def test_check_limit_passes_below_ceiling() -> None:
    guard = ResourceGuard(6144, process=FakeProcess(rss_mib=6144))

    assert guard.check_limit().rss == 6144


def test_check_limit_accepts_override() -> None:
    guard = ResourceGuard(6144, process=FakeProcess(rss_mib=200))

    with pytest.raises(ResourceExhausted):
        guard.check_limit(100)


def test_reclaim_runs_without_error() -> None:
    guard = ResourceGuard(process=FakeProcess())

    guard.reclaim()


def test_invalid_limit_rejected() -> None:
    with pytest.raises(ValueError):
        ResourceGuard(0, process=FakeProcess())
