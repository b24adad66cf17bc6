"""Collector for the cart and checkout pages.

Reaching the cart needs a product in it, so the collector opens the product
page, picks the first available option of every configurable attribute,
submits the add-to-cart form, and then visits the cart and checkout.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..config import GenerationConfig
from ..types import BundleConfig, merge_modules
from .base import discover, page_visit, take_screenshot

if TYPE_CHECKING:
    from ..browser import Session, Tab
    from ..pool import TabPool


LOGGER = logging.getLogger(__name__)

BUNDLE_NAME = "checkout"

SELECT_PRODUCT_OPTIONS_SCRIPT = """
var swatches = document.querySelectorAll('.product-options-wrapper .swatch-attribute');
Array.prototype.forEach.call(swatches, function (swatch) {
    var option = swatch.querySelector('.swatch-option:not([disabled])');
    var input = swatch.querySelector('.swatch-input');
    if (option && input) {
        input.value = option.getAttribute('option-id') || option.getAttribute('data-option-id');
    }
});
if (swatches.length) {
    return 'swatch';
}
var selects = document.querySelectorAll('.product-options-wrapper .super-attribute-select');
Array.prototype.forEach.call(selects, function (select) {
    var value = null;
    Array.prototype.forEach.call(select.options, function (option) {
        if (!value && option.value) {
            value = option.value;
        }
    });
    select.value = value;
    select.dispatchEvent(new Event('input', {bubbles: true}));
    select.dispatchEvent(new Event('change', {bubbles: true}));
});
return selects.length ? 'select' : 'simple';
"""

# The marker disappears with the old document, which is how the form
# submission's navigation is detected.
SUBMIT_ADD_TO_CART_SCRIPT = """
var form = document.querySelector('#product_addtocart_form');
if (!form) {
    throw new Error('Add to cart form not found');
}
window.__bundleplanPendingNavigation = true;
form.submit();
return true;
"""

NAVIGATION_FINISHED_SCRIPT = """
return !window.__bundleplanPendingNavigation && document.readyState === 'complete';
"""

BASE_URL_SCRIPT = "return window.BASE_URL || null;"


def _add_to_cart(tab: "Tab", timeout_ms: int) -> None:
    kind = tab.evaluate(SELECT_PRODUCT_OPTIONS_SCRIPT)
    LOGGER.debug("Selected product options (%s product)", kind)
    tab.evaluate(SUBMIT_ADD_TO_CART_SCRIPT)
    tab.wait_for_function(NAVIGATION_FINISHED_SCRIPT, timeout_ms=timeout_ms)


def _store_base_url(tab: "Tab") -> str:
    base_url = tab.evaluate(BASE_URL_SCRIPT)
    if not isinstance(base_url, str) or not base_url:
        raise RuntimeError("Page does not expose BASE_URL")
    return base_url if base_url.endswith("/") else base_url + "/"


def checkout(session: "Session", config: GenerationConfig, pool: "TabPool | None" = None) -> BundleConfig:
    """Modules loaded on the cart and checkout pages, merged into one bundle."""

    LOGGER.info('Collecting modules for bundle "%s".', BUNDLE_NAME)

    if not config.product_url:
        LOGGER.info('No URL configured for bundle "%s" - skipping.', BUNDLE_NAME)
        return BundleConfig(name=BUNDLE_NAME, url={})

    timeout_ms = config.navigation_timeout_ms

    with page_visit(session, config, pool, BUNDLE_NAME) as tab:
        tab.navigate(config.product_url, wait_until="networkidle", timeout_ms=timeout_ms)
        take_screenshot(tab, config, BUNDLE_NAME, "product")

        _add_to_cart(tab, timeout_ms)
        base_url = _store_base_url(tab)

        cart_url = f"{base_url}checkout/cart"
        tab.navigate(cart_url, wait_until="networkidle", timeout_ms=timeout_ms)
        take_screenshot(tab, config, BUNDLE_NAME, "cart")
        cart_modules = discover(tab, config)

        checkout_url = f"{base_url}checkout"
        tab.navigate(checkout_url, wait_until="networkidle", timeout_ms=timeout_ms)
        take_screenshot(tab, config, BUNDLE_NAME)
        checkout_modules = discover(tab, config)

    LOGGER.info('Finished collecting modules for bundle "%s".', BUNDLE_NAME)
    return BundleConfig(
        name=BUNDLE_NAME,
        url={"cart": cart_url, "checkout": checkout_url},
        modules=merge_modules(cart_modules, checkout_modules),
    )


__all__ = ["BUNDLE_NAME", "checkout"]
