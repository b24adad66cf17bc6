"""Default values shared by config, orchestrator, pool, and collectors."""

from __future__ import annotations


DEFAULT_COLLECTOR_TIMEOUT_MS = 300_000
DEFAULT_RUN_TIMEOUT_MS = 1_800_000
RUN_TIMEOUT_MULTIPLIER = 5
DEFAULT_NAVIGATION_TIMEOUT_MS = 120_000

DEFAULT_MEMORY_LIMIT_MIB = 6144
DEFAULT_MAX_TABS = 3

DEFAULT_OUTPUT_PATH = "magepack.config.js"
DEFAULT_SCREENSHOT_PATH = "screenshots"
DEFAULT_SETTLE_SECONDS = 5.0
DEFAULT_INCLUDE_MIXINS = True

COMMON_BUNDLE_NAME = "common"

# Loader plumbing that has to be present before any bundle can execute.
STATIC_EXCLUDED_MODULES: tuple[str, ...] = (
    "domReady",
    "mixins",
    "text",
    "mage/requirejs/mixins",
    "mage/requirejs/static",
)

# Requests that keep the network busy forever or replace the loader config
# with a previously generated one.
BLOCKED_URL_PATTERNS: tuple[str, ...] = (
    "*magepack/requirejs-config-*.js",
    "*googletagmanager.com*",
    "*app.termly.io*",
)

WINDOW_WIDTH = 412
WINDOW_HEIGHT = 732
BROWSER_LAUNCH_TIMEOUT_SECONDS = 30.0
ENGINE_DEFAULT_PAGE_LOAD_TIMEOUT_MS = 300_000

CLEANUP_NAVIGATION_TIMEOUT_MS = 5_000
TAB_CLOSE_LOCK_TIMEOUT_SECONDS = 5.0

LOADER_PRESENT_TIMEOUT_MS = 30_000
LOADER_RESOLVED_TIMEOUT_MS = 120_000
IDLE_CALLBACK_TIMEOUT_MS = 10_000

NETWORK_IDLE_QUIET_SECONDS = 0.5
NETWORK_IDLE_POLL_SECONDS = 0.1

SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")
JSON_INDENT = 2
