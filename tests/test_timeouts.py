from __future__ import annotations

import time

import pytest

from bundleplan.errors import OperationTimeout
from bundleplan.timeouts import with_timeout


def test_returns_operation_result() -> None:
    assert with_timeout(lambda: 42, 1000, "answer") == 42


def test_fires_after_duration() -> None:
    started = time.monotonic()

    with pytest.raises(OperationTimeout) as excinfo:
        with_timeout(lambda: time.sleep(2), 100, "slow step")

    elapsed = time.monotonic() - started
    assert 0.09 <= elapsed < 1.5
    assert excinfo.value.label == "slow step"
    assert excinfo.value.duration_ms == 100
    assert excinfo.value.elapsed_ms is not None and excinfo.value.elapsed_ms >= 90
    assert str(excinfo.value) == "TIMEOUT: slow step exceeded 0s limit"


def test_timeout_message_rounds_to_seconds() -> None:
    error = OperationTimeout("cms collector", 300_000)

    assert str(error) == "TIMEOUT: cms collector exceeded 300s limit"
    assert isinstance(error, TimeoutError)


def test_operation_errors_propagate_unchanged() -> None:
    def boom() -> None:
        raise KeyError("missing")

    with pytest.raises(KeyError):
        with_timeout(boom, 1000, "boom")


def test_builtin_timeout_from_operation_is_not_the_deadline() -> None:
    def raises_timeout() -> None:
        raise TimeoutError("socket timed out")

    with pytest.raises(TimeoutError) as excinfo:
        with_timeout(raises_timeout, 1000, "outer")

    assert not isinstance(excinfo.value, OperationTimeout)


def test_inner_timeout_does_not_trip_outer_envelope() -> None:
    def inner() -> None:
        with_timeout(lambda: time.sleep(2), 50, "inner")

    with pytest.raises(OperationTimeout) as excinfo:
        with_timeout(inner, 2000, "outer")

    assert excinfo.value.label == "inner"


def test_outer_envelope_survives_successful_inner_calls() -> None:
    def outer() -> list[int]:
        return [with_timeout(lambda value=value: value, 500, f"step {value}") for value in range(3)]

    assert with_timeout(outer, 2000, "outer") == [0, 1, 2]


def test_non_positive_duration_rejected() -> None:
    with pytest.raises(ValueError):
        with_timeout(lambda: None, 0, "zero")
