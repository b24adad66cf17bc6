"""Typed generation configuration with JSON/YAML load/save helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

import yaml  # type: ignore

from .constants import (
    DEFAULT_COLLECTOR_TIMEOUT_MS,
    DEFAULT_INCLUDE_MIXINS,
    DEFAULT_MAX_TABS,
    DEFAULT_MEMORY_LIMIT_MIB,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_OUTPUT_PATH,
    DEFAULT_RUN_TIMEOUT_MS,
    DEFAULT_SCREENSHOT_PATH,
    DEFAULT_SETTLE_SECONDS,
    JSON_INDENT,
    RUN_TIMEOUT_MULTIPLIER,
    SUPPORTED_CONFIG_SUFFIXES,
)
from .types import JSONDict


URL_KEYS = ("cms_url", "category_url", "product_url", "search_url")


def _as_float(value: Any, key: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid int for '{key}': {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"Invalid bool for '{key}': {value!r}")


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _as_url(value: Any, key: str) -> str | None:
    text = _as_optional_str(value)
    if text is None:
        return None
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"Invalid URL for '{key}': {value!r}")
    return text


def parse_name_list(value: Any) -> tuple[str, ...]:
    """Accept a comma-separated string or an iterable of names."""

    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, Iterable):
        items = value
    else:
        raise ValueError(f"Expected a list or comma-separated string, got {value!r}")

    names: list[str] = []
    for item in items:
        name = str(item).strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    """Run parameters for one generation, read-only after construction."""

    cms_url: str | None = None
    category_url: str | None = None
    product_url: str | None = None
    search_url: str | None = None

    auth_username: str | None = None
    auth_password: str | None = None

    timeout_ms: int | None = None

    debug: bool = False
    screenshot: bool = False
    screenshot_path: str = DEFAULT_SCREENSHOT_PATH

    excluded_modules: tuple[str, ...] = ()
    include_mixins: bool = DEFAULT_INCLUDE_MIXINS
    settle_seconds: float = DEFAULT_SETTLE_SECONDS

    skip_checkout: bool = False
    skip_collectors: tuple[str, ...] = ()

    memory_limit_mib: int = DEFAULT_MEMORY_LIMIT_MIB
    max_tabs: int = DEFAULT_MAX_TABS
    output_path: str = DEFAULT_OUTPUT_PATH
    user_agent: str | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0 when set")
        if self.memory_limit_mib <= 0:
            raise ValueError("memory_limit_mib must be > 0")
        if self.max_tabs <= 0:
            raise ValueError("max_tabs must be > 0")
        if self.settle_seconds < 0:
            raise ValueError("settle_seconds must be >= 0")
        if not self.output_path.strip():
            raise ValueError("output_path cannot be empty")
        if (self.auth_username is None) != (self.auth_password is None):
            raise ValueError("auth_username and auth_password must be set together")

    @property
    def collector_timeout_ms(self) -> int:
        """Upper bound for one collector."""

        return self.timeout_ms or DEFAULT_COLLECTOR_TIMEOUT_MS

    @property
    def run_timeout_ms(self) -> int:
        """Upper bound for the whole collection loop."""

        if self.timeout_ms:
            return self.timeout_ms * RUN_TIMEOUT_MULTIPLIER
        return DEFAULT_RUN_TIMEOUT_MS

    @property
    def navigation_timeout_ms(self) -> int:
        return self.timeout_ms or DEFAULT_NAVIGATION_TIMEOUT_MS

    @property
    def has_credentials(self) -> bool:
        return bool(self.auth_username) and self.auth_password is not None

    def to_dict(self) -> JSONDict:
        """Serialize config for manifests and reproducibility.

        Credentials are left out on purpose so saved configs can be shared.
        """

        return {
            "cms_url": self.cms_url,
            "category_url": self.category_url,
            "product_url": self.product_url,
            "search_url": self.search_url,
            "timeout_ms": self.timeout_ms,
            "debug": self.debug,
            "screenshot": self.screenshot,
            "screenshot_path": self.screenshot_path,
            "excluded_modules": list(self.excluded_modules),
            "include_mixins": self.include_mixins,
            "settle_seconds": self.settle_seconds,
            "skip_checkout": self.skip_checkout,
            "skip_collectors": list(self.skip_collectors),
            "memory_limit_mib": self.memory_limit_mib,
            "max_tabs": self.max_tabs,
            "output_path": self.output_path,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GenerationConfig":
        """Build config from a parsed dictionary."""

        unknown = sorted(set(payload) - set(cls.__dataclass_fields__))
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")

        memory_limit = _as_int(payload.get("memory_limit_mib"), "memory_limit_mib")
        max_tabs = _as_int(payload.get("max_tabs"), "max_tabs")
        settle_seconds = _as_float(payload.get("settle_seconds"), "settle_seconds")

        return cls(
            cms_url=_as_url(payload.get("cms_url"), "cms_url"),
            category_url=_as_url(payload.get("category_url"), "category_url"),
            product_url=_as_url(payload.get("product_url"), "product_url"),
            search_url=_as_url(payload.get("search_url"), "search_url"),
            auth_username=_as_optional_str(payload.get("auth_username")),
            auth_password=(
                None if payload.get("auth_password") is None else str(payload.get("auth_password"))
            ),
            timeout_ms=_as_int(payload.get("timeout_ms"), "timeout_ms"),
            debug=_as_bool(payload.get("debug", False), "debug"),
            screenshot=_as_bool(payload.get("screenshot", False), "screenshot"),
            screenshot_path=str(payload.get("screenshot_path") or DEFAULT_SCREENSHOT_PATH),
            excluded_modules=parse_name_list(payload.get("excluded_modules")),
            include_mixins=_as_bool(
                payload.get("include_mixins", DEFAULT_INCLUDE_MIXINS),
                "include_mixins",
            ),
            settle_seconds=DEFAULT_SETTLE_SECONDS if settle_seconds is None else settle_seconds,
            skip_checkout=_as_bool(payload.get("skip_checkout", False), "skip_checkout"),
            skip_collectors=parse_name_list(payload.get("skip_collectors")),
            memory_limit_mib=DEFAULT_MEMORY_LIMIT_MIB if memory_limit is None else memory_limit,
            max_tabs=DEFAULT_MAX_TABS if max_tabs is None else max_tabs,
            output_path=str(payload.get("output_path") or DEFAULT_OUTPUT_PATH),
            user_agent=_as_optional_str(payload.get("user_agent")),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config_payload(path: str | Path) -> dict[str, Any]:
    """Read the raw mapping stored in a JSON/YAML config file."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ValueError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ValueError(f"Config at {config_path} must be a mapping")
    return payload


def load_config(path: str | Path) -> GenerationConfig:
    """Load GenerationConfig from JSON/YAML path."""

    return GenerationConfig.from_dict(load_config_payload(path))


def save_config(config: GenerationConfig, path: str | Path) -> None:
    """Save GenerationConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ValueError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "GenerationConfig",
    "URL_KEYS",
    "load_config",
    "load_config_payload",
    "parse_name_list",
    "save_config",
]
