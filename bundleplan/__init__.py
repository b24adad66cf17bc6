"""Bundle plan generator: browser collection, module discovery, and deduplication."""

from .browser import Browser, BrowserOptions, Session, Tab
from .collectors import Collector, collect_single_page, default_collectors, page_visit, select_collectors
from .config import GenerationConfig, load_config, save_config
from .dedup import extract_common_bundle, module_frequencies
from .discovery import collect_modules
from .errors import (
    CleanupFailure,
    CollectorFailure,
    GenerationAborted,
    GenerationError,
    OperationTimeout,
    PoolExhausted,
    ResourceExhausted,
)
from .generator import Generator, RunState, generate, termination_handlers
from .pool import TabPool
from .resources import MemoryStats, ResourceGuard
from .stats import RunStats
from .storage import PlanWriter
from .timeouts import with_timeout
from .types import (
    BundleConfig,
    CollectorRecord,
    CollectorStatus,
    PageEvent,
    PageEventKind,
    merge_modules,
    utc_now_iso,
)

__all__ = [
    "Browser",
    "BrowserOptions",
    "BundleConfig",
    "CleanupFailure",
    "Collector",
    "CollectorFailure",
    "CollectorRecord",
    "CollectorStatus",
    "GenerationAborted",
    "GenerationConfig",
    "GenerationError",
    "Generator",
    "MemoryStats",
    "OperationTimeout",
    "PageEvent",
    "PageEventKind",
    "PlanWriter",
    "PoolExhausted",
    "ResourceExhausted",
    "ResourceGuard",
    "RunState",
    "RunStats",
    "Session",
    "Tab",
    "TabPool",
    "collect_modules",
    "collect_single_page",
    "default_collectors",
    "extract_common_bundle",
    "generate",
    "load_config",
    "merge_modules",
    "module_frequencies",
    "page_visit",
    "save_config",
    "select_collectors",
    "termination_handlers",
    "utc_now_iso",
    "with_timeout",
]
