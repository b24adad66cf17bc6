"""Buffered per-page console and network log, printed when a visit fails."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .types import PageEvent, PageEventKind

if TYPE_CHECKING:
    from .browser import Tab


LOGGER = logging.getLogger(__name__)

# Product image requests drown out everything useful in the dump.
NOISY_URL_FRAGMENTS = ("media/catalog/product",)


class RequestLogger:
    """Record every console message, page error, response, and failed request."""

    def __init__(self, tab: "Tab") -> None:
        self.entries: list[str] = []

        tab.on(PageEventKind.CONSOLE, self._on_console)
        tab.on(PageEventKind.PAGE_ERROR, self._on_page_error)
        tab.on(PageEventKind.RESPONSE, self._on_response)
        tab.on(PageEventKind.REQUEST_FAILED, self._on_request_failed)

    def _on_console(self, event: PageEvent) -> None:
        level = (event.level or "log")[:3].upper()
        self.entries.append(f"{level} {event.text}")

    def _on_page_error(self, event: PageEvent) -> None:
        self.entries.append(event.text)

    def _on_response(self, event: PageEvent) -> None:
        self.entries.append(f"{event.status} {event.url}")

    def _on_request_failed(self, event: PageEvent) -> None:
        self.entries.append(f"{event.text} {event.url}")

    def filtered_entries(self) -> list[str]:
        return [
            entry
            for entry in self.entries
            if not any(fragment in entry for fragment in NOISY_URL_FRAGMENTS)
        ]

    def output(self, bundle_name: str) -> None:
        LOGGER.error("%s page was terminated.", bundle_name)
        for entry in self.filtered_entries():
            LOGGER.info("%s", entry)


__all__ = ["NOISY_URL_FRAGMENTS", "RequestLogger"]
