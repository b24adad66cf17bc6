"""In-page discovery of the RequireJS modules a page has loaded.

The scripts below are sent to the browser as strings and run in the page's own
context; only their JSON-serializable results come back.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

from .constants import (
    IDLE_CALLBACK_TIMEOUT_MS,
    LOADER_PRESENT_TIMEOUT_MS,
    LOADER_RESOLVED_TIMEOUT_MS,
    STATIC_EXCLUDED_MODULES,
)
from .types import PageEvent, PageEventKind

if TYPE_CHECKING:
    from .browser import Tab


LOGGER = logging.getLogger(__name__)

UNBUNDLED_CONTEXT_NAME = "bundleplan"

# Extra time granted to the driver on top of the in-page timers, so the page
# reports its own timeout instead of the driver cutting it off.
_SCRIPT_TIMEOUT_MARGIN_MS = 5_000

LOADER_PRESENT_SCRIPT = "return !!window.require;"

WAIT_FOR_RESOLVER_SCRIPT = """
var timeoutMs = arguments[0];
var done = arguments[arguments.length - 1];
var timer = setTimeout(function () {
    done({ok: false, error: 'rjsResolver timeout'});
}, timeoutMs);
require(['rjsResolver'], function (resolver) {
    resolver(function () {
        clearTimeout(timer);
        done({ok: true});
    });
}, function (err) {
    clearTimeout(timer);
    done({ok: false, error: String(err)});
});
"""

WAIT_FOR_IDLE_SCRIPT = """
var timeoutMs = arguments[0];
var done = arguments[arguments.length - 1];
var fallback = setTimeout(function () { done(false); }, timeoutMs);
if (typeof window.requestIdleCallback === 'function') {
    window.requestIdleCallback(function () {
        clearTimeout(fallback);
        done(true);
    });
} else {
    clearTimeout(fallback);
    setTimeout(function () { done(false); }, 2000);
}
"""

COLLECT_MODULES_SCRIPT = """
var excludedModules = arguments[0] || [];
var includeMixins = arguments[1];
var contextName = arguments[2];

function extractBaseUrl(req) {
    return req.toUrl('').replace(/\\/[^/]+\\/[^/]+\\/[^/]+\\/[^/]+\\/$/, '/');
}

function stripBaseUrl(baseUrl, moduleUrl) {
    if (moduleUrl.indexOf(baseUrl) !== 0) {
        return moduleUrl;
    }
    return moduleUrl
        .substring(baseUrl.length)
        .replace(/^[^/]+\\/[^/]+\\/[^/]+\\/[^/]+\\//, '');
}

function stripPlugin(name) {
    return name.replace(/^[^!].+!/, '');
}

function isSkipped(name) {
    if (name.indexOf('!') !== -1 && name.indexOf('text!') !== 0) {
        return true;
    }
    if (/^(https?:)?\\/\\//.test(name)) {
        return true;
    }
    return excludedModules.indexOf(name) !== -1;
}

var contexts = window.require.s.contexts;
var defaultContext = contexts._;
var defaultConfig = defaultContext.config;
var unbundled = contexts[contextName] || window.require.s.newContext(contextName);
unbundled.configure({
    baseUrl: defaultConfig.baseUrl,
    paths: defaultConfig.paths,
    shim: defaultConfig.shim,
    config: defaultConfig.config,
    map: defaultConfig.map
});

var baseUrl = extractBaseUrl(window.require);
var mixins = (defaultConfig.config && defaultConfig.config.mixins) || {};

function resolve(name) {
    return stripBaseUrl(baseUrl, unbundled.require.toUrl(stripPlugin(name)));
}

var modules = {};
Object.keys(defaultContext.defined).forEach(function (name) {
    if (isSkipped(name)) {
        return;
    }
    modules[name] = resolve(name);

    if (includeMixins && Object.prototype.hasOwnProperty.call(mixins, name)) {
        Object.keys(mixins[name]).forEach(function (mixinName) {
            if (mixins[name][mixinName] && !isSkipped(mixinName)) {
                modules[mixinName] = resolve(mixinName);
            }
        });
    }
});
return modules;
"""


def excluded_module_list(configured: Iterable[str] = ()) -> list[str]:
    """Static loader plumbing followed by the configured exclusions."""

    names = list(STATIC_EXCLUDED_MODULES)
    for name in configured:
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


def attach_page_logging(tab: "Tab") -> None:
    """Stream page console output, page errors, and failed requests to the log."""

    tab.on(PageEventKind.CONSOLE, _log_console)
    tab.on(PageEventKind.PAGE_ERROR, _log_page_error)
    tab.on(PageEventKind.REQUEST_FAILED, _log_request_failed)


def _log_console(event: PageEvent) -> None:
    LOGGER.info("%s %s", (event.level or "log").upper(), event.text)


def _log_page_error(event: PageEvent) -> None:
    LOGGER.error("PAGE ERROR: %s", event.text)


def _log_request_failed(event: PageEvent) -> None:
    if not event.blocked:
        LOGGER.warning("REQUEST FAILED: %s %s", event.text, event.url)


def collect_modules(
    tab: "Tab",
    excluded_modules: Iterable[str] = (),
    *,
    include_mixins: bool = True,
    settle_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, str]:
    """Wait for the page's loader to settle and map module names to paths."""

    excluded = excluded_module_list(excluded_modules)
    attach_page_logging(tab)

    tab.wait_for_function(LOADER_PRESENT_SCRIPT, timeout_ms=LOADER_PRESENT_TIMEOUT_MS)

    resolved = tab.evaluate_async(
        WAIT_FOR_RESOLVER_SCRIPT,
        LOADER_RESOLVED_TIMEOUT_MS,
        timeout_ms=LOADER_RESOLVED_TIMEOUT_MS + _SCRIPT_TIMEOUT_MARGIN_MS,
    )
    if not isinstance(resolved, Mapping) or not resolved.get("ok"):
        error = resolved.get("error") if isinstance(resolved, Mapping) else resolved
        raise RuntimeError(f"Module loader did not resolve: {error}")

    tab.evaluate_async(
        WAIT_FOR_IDLE_SCRIPT,
        IDLE_CALLBACK_TIMEOUT_MS,
        timeout_ms=IDLE_CALLBACK_TIMEOUT_MS + _SCRIPT_TIMEOUT_MARGIN_MS,
    )

    if settle_seconds > 0:
        sleep(settle_seconds)

    modules = tab.evaluate(COLLECT_MODULES_SCRIPT, excluded, include_mixins, UNBUNDLED_CONTEXT_NAME)
    if not isinstance(modules, Mapping):
        raise RuntimeError(f"Module discovery returned {type(modules).__name__}, expected an object")

    result = {str(name): str(path) for name, path in modules.items()}
    LOGGER.debug("Discovered %d modules", len(result))
    return result


__all__ = [
    "COLLECT_MODULES_SCRIPT",
    "LOADER_PRESENT_SCRIPT",
    "UNBUNDLED_CONTEXT_NAME",
    "WAIT_FOR_IDLE_SCRIPT",
    "WAIT_FOR_RESOLVER_SCRIPT",
    "attach_page_logging",
    "collect_modules",
    "excluded_module_list",
]
