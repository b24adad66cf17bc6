"""Process memory sampling and the hard memory ceiling."""

from __future__ import annotations

import gc
import logging
from dataclasses import dataclass

import psutil

from .constants import DEFAULT_MEMORY_LIMIT_MIB
from .errors import ResourceExhausted
from .types import JSONDict


LOGGER = logging.getLogger(__name__)

_MIB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class MemoryStats:
    """Memory snapshot in whole MiB.

    `children_rss` covers the driver and browser processes spawned by this
    process; `rss` is this interpreter alone and is what the ceiling applies to.
    """

    rss: int
    vms: int
    children_rss: int
    system_available: int

    def to_json(self) -> JSONDict:
        return {
            "rss": self.rss,
            "vms": self.vms,
            "children_rss": self.children_rss,
            "system_available": self.system_available,
        }

    def __str__(self) -> str:
        return (
            f"rss={self.rss} vms={self.vms} "
            f"children_rss={self.children_rss} available={self.system_available}"
        )


class ResourceGuard:
    """Sample memory usage and enforce a ceiling between collectors."""

    def __init__(
        self,
        limit_mib: int = DEFAULT_MEMORY_LIMIT_MIB,
        *,
        process: psutil.Process | None = None,
    ) -> None:
        if limit_mib <= 0:
            raise ValueError("limit_mib must be > 0")
        self.limit_mib = limit_mib
        self._process = process or psutil.Process()

    def sample(self) -> MemoryStats:
        """Return the current memory snapshot."""

        info = self._process.memory_info()
        return MemoryStats(
            rss=round(info.rss / _MIB),
            vms=round(info.vms / _MIB),
            children_rss=round(self._children_rss() / _MIB),
            system_available=round(psutil.virtual_memory().available / _MIB),
        )

    def check_limit(self, limit_mib: int | None = None) -> MemoryStats:
        """Sample memory and raise `ResourceExhausted` above the ceiling."""

        limit = self.limit_mib if limit_mib is None else limit_mib
        stats = self.sample()
        if stats.rss > limit:
            raise ResourceExhausted(stats, limit)
        return stats

    def reclaim(self) -> None:
        """Run a full garbage collection and log what is left."""

        collected = gc.collect()
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("Memory after GC (%d objects collected): %s MiB", collected, self.sample())

    def _children_rss(self) -> int:
        total = 0
        try:
            children = self._process.children(recursive=True)
        except psutil.Error:
            return 0

        for child in children:
            try:
                total += child.memory_info().rss
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return total


__all__ = ["MemoryStats", "ResourceGuard"]
