from __future__ import annotations

import logging
from typing import Optional, Protocol

from playwright.async_api import Page

SCRIPT_ID_PREFIX = "scriptbot-script-"
TOGGLE_EVENT_PREFIX = "scriptbot-toggle-"

_CURRENT_PAGE_JS = "() => window.location.hash.slice(2).split('/')[0]"

_PAGE_READY_JS = """
() => {
    const page = window.location.hash.slice(2).split("/")[0];
    return !!page && page !== "blank";
}
"""

_HAS_MARKER_JS = "(id) => document.getElementById(id) !== null"

_INSERT_SCRIPT_JS = """
([id, code]) => {
    if (document.getElementById(id)) return false;
    const script = document.createElement("script");
    script.id = id;
    script.textContent = code;
    document.body.appendChild(script);
    return true;
}
"""

_DISPATCH_TOGGLE_JS = """
([name, enabled]) => {
    window.dispatchEvent(new CustomEvent(name, { detail: { enabled: enabled } }));
}
"""


def marker_id(name: str) -> str:
    return SCRIPT_ID_PREFIX + name


def toggle_event(name: str) -> str:
    return TOGGLE_EVENT_PREFIX + name


class PageDriver(Protocol):
    label: str

    async def current_page(self) -> str: ...

    async def wait_for_page(self) -> None: ...

    async def has_marker(self, element_id: str) -> bool: ...

    async def insert_script(self, element_id: str, code: str) -> bool: ...

    async def dispatch_toggle(self, event_name: str, enabled: bool) -> None: ...

    async def reload(self) -> None: ...

    async def close(self) -> None: ...


class PlaywrightPageDriver:
    """Drives one page of the host application through Playwright."""

    def __init__(self, page: Page, label: Optional[str] = None) -> None:
        self._page = page
        self.label = label or page.url
        self.logger = logging.getLogger("pages")

    @property
    def page(self) -> Page:
        return self._page

    async def current_page(self) -> str:
        return await self._page.evaluate(_CURRENT_PAGE_JS)

    async def wait_for_page(self) -> None:
        # polled in the page, so a hash change between reads is never lost
        await self._page.wait_for_function(_PAGE_READY_JS, timeout=0)

    async def has_marker(self, element_id: str) -> bool:
        return bool(await self._page.evaluate(_HAS_MARKER_JS, element_id))

    async def insert_script(self, element_id: str, code: str) -> bool:
        return bool(await self._page.evaluate(_INSERT_SCRIPT_JS, [element_id, code]))

    async def dispatch_toggle(self, event_name: str, enabled: bool) -> None:
        await self._page.evaluate(_DISPATCH_TOGGLE_JS, [event_name, enabled])

    async def reload(self) -> None:
        self.logger.info("Reloading %s", self.label)
        await self._page.reload()

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()
