"""Bounded waiting on blocking operations."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, wait
from typing import Callable, TypeVar

from .errors import OperationTimeout


T = TypeVar("T")


def with_timeout(operation: Callable[[], T], duration_ms: int, label: str) -> T:
    """Run `operation` and wait at most `duration_ms` for its outcome.

    The operation runs on a daemon thread. When the deadline wins, the caller
    gets `OperationTimeout` and the thread is left to finish on its own; its
    result or error is discarded. Browser calls cannot be interrupted safely
    mid-navigation, so this is a bounded wait rather than a cancellation.
    """

    if duration_ms <= 0:
        raise ValueError("duration_ms must be > 0")

    future: Future[T] = Future()

    def _runner() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(operation())
        except BaseException as exc:
            future.set_exception(exc)

    started = time.monotonic()
    worker = threading.Thread(target=_runner, name=f"timeout:{label}", daemon=True)
    worker.start()

    # `wait` keeps a timeout raised by the operation itself distinguishable
    # from this deadline.
    done, _ = wait([future], timeout=duration_ms / 1000)
    if not done:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        raise OperationTimeout(label, duration_ms, elapsed_ms)
    return future.result()


__all__ = ["with_timeout"]
