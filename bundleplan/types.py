"""Records passed between collectors, the generator, and the plan writer.

Nothing here imports other bundleplan modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]

BundleURL = str | list[str] | dict[str, str]


class CollectorStatus(str, Enum):
    """Outcome of one collector invocation."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PageEventKind(str, Enum):
    """Page events a tab can report to its listeners."""

    CONSOLE = "console"
    PAGE_ERROR = "pageerror"
    REQUEST_FAILED = "requestfailed"
    RESPONSE = "response"


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class BundleConfig:
    """One named group of modules, as produced by a collector."""

    name: str
    url: BundleURL = ""
    modules: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True for the placeholder a skipped collector returns: no page and no modules."""

        return not (self.modules or self.url)

    def with_modules(self, modules: Mapping[str, str]) -> "BundleConfig":
        """Return a copy carrying `modules` instead of the current map."""

        return BundleConfig(name=self.name, url=_copy_url(self.url), modules=dict(modules))

    def to_json(self) -> JSONDict:
        return {
            "url": _copy_url(self.url),
            "name": self.name,
            "modules": dict(self.modules),
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BundleConfig":
        name = payload.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Bundle is missing a valid 'name': {payload!r}")

        modules = payload.get("modules") or {}
        if not isinstance(modules, Mapping):
            raise ValueError(f"Bundle '{name}' has non-mapping 'modules'")

        return cls(
            name=name,
            url=_copy_url(payload.get("url", "")),
            modules={str(key): str(value) for key, value in modules.items()},
        )


def _copy_url(url: Any) -> BundleURL:
    if isinstance(url, Mapping):
        return {str(key): str(value) for key, value in url.items()}
    if isinstance(url, (list, tuple)):
        return [str(item) for item in url]
    if url is None:
        return ""
    return str(url)


def merge_modules(*module_maps: Mapping[str, str]) -> dict[str, str]:
    """Merge per-page module maps; later pages win on conflicting paths."""

    merged: dict[str, str] = {}
    for module_map in module_maps:
        merged.update(module_map)
    return merged


@dataclass(frozen=True, slots=True)
class PageEvent:
    """One console/network event observed on a tab."""

    kind: PageEventKind
    text: str
    url: str | None = None
    status: int | None = None
    level: str | None = None
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class CollectorRecord:
    """Per-collector row in the run statistics."""

    name: str
    status: CollectorStatus
    elapsed_ms: int
    module_count: int = 0
    rss_before_mib: int | None = None
    rss_after_mib: int | None = None
    error: str | None = None
    finished_at: str = field(default_factory=utc_now_iso)

    def to_json(self) -> JSONDict:
        return {
            "name": self.name,
            "status": self.status.value,
            "elapsed_ms": self.elapsed_ms,
            "module_count": self.module_count,
            "rss_before_mib": self.rss_before_mib,
            "rss_after_mib": self.rss_after_mib,
            "error": self.error,
            "finished_at": self.finished_at,
        }


__all__ = [
    "BundleConfig",
    "BundleURL",
    "CollectorRecord",
    "CollectorStatus",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "PageEvent",
    "PageEventKind",
    "merge_modules",
    "utc_now_iso",
]
