"""Error taxonomy for the generation pipeline.

Only `CleanupFailure` is expected to be swallowed (logged where it happens);
every other error aborts the whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .resources import MemoryStats


class GenerationError(Exception):
    """Base class for all pipeline errors."""


class OperationTimeout(GenerationError, TimeoutError):
    """An operation exceeded its deadline."""

    def __init__(self, label: str, duration_ms: int, elapsed_ms: int | None = None) -> None:
        self.label = label
        self.duration_ms = int(duration_ms)
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"TIMEOUT: {label} exceeded {round(self.duration_ms / 1000)}s limit"
        )


class PoolExhausted(GenerationError):
    """Every tab of the pool is leased; capacity is too low for the workload."""

    def __init__(self, max_tabs: int) -> None:
        self.max_tabs = max_tabs
        super().__init__(f"Tab pool exhausted. Maximum {max_tabs} tabs in use.")


class ResourceExhausted(GenerationError):
    """Process memory crossed the configured ceiling."""

    def __init__(self, stats: "MemoryStats", limit_mib: int) -> None:
        self.stats = stats
        self.limit_mib = limit_mib
        super().__init__(
            f"Memory limit exceeded: {stats.rss}MiB > {limit_mib}MiB. "
            "Consider reducing parallel operations or increasing the memory limit."
        )


class CollectorFailure(GenerationError):
    """Wraps an error raised while a collector was interacting with a page."""

    def __init__(
        self,
        collector: str,
        cause: BaseException,
        *,
        page_log: Sequence[str] = (),
    ) -> None:
        self.collector = collector
        self.cause = cause
        self.page_log = list(page_log)
        self.memory: MemoryStats | None = None
        super().__init__(f"{collector} collector failed: {cause.__class__.__name__}: {cause}")


class CleanupFailure(GenerationError):
    """Returning, disposing, or tearing down a browser resource failed."""


class GenerationAborted(GenerationError):
    """The run received a termination signal."""

    def __init__(self, signal_name: str) -> None:
        self.signal_name = signal_name
        super().__init__(f"Generation aborted by {signal_name}")


__all__ = [
    "CleanupFailure",
    "CollectorFailure",
    "GenerationAborted",
    "GenerationError",
    "OperationTimeout",
    "PoolExhausted",
    "ResourceExhausted",
]
