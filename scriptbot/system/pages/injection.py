"""Page-side script injection.

Scripts are inserted once per page lifetime and never removed: code that has
already run cannot be undone by deleting its element. Instead, every update
fires a ``scriptbot-toggle-<name>`` event carrying the current enabled flag,
and injected scripts are expected to listen for it and stand down on their
own. A changed script body only takes effect after the page is reloaded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Set

from scriptbot.system.scripts.record import ScriptRecord

from .driver import PageDriver, marker_id, toggle_event

BLANK_PAGE = "blank"


def matches(page: str, page_rules: Iterable[str]) -> bool:
    rules = tuple(page_rules)
    if not rules:
        return True
    return page in rules


class InjectionController:
    def __init__(self, driver: PageDriver, *, logger: Optional[logging.Logger] = None) -> None:
        self._driver = driver
        self._injected: Set[str] = set()
        self._page: Optional[asyncio.Future] = None
        self.logger = logger or logging.getLogger("pages")

    @property
    def injected(self) -> Set[str]:
        return set(self._injected)

    async def _read_page(self) -> str:
        page = await self._driver.current_page()
        if page and page != BLANK_PAGE:
            self.logger.debug("%s: page is %s", self._driver.label, page)
            return page
        self.logger.debug("%s: waiting for a page...", self._driver.label)
        await self._driver.wait_for_page()
        page = await self._driver.current_page()
        self.logger.debug("%s: page is %s", self._driver.label, page)
        return page or ""

    async def resolve_page(self) -> str:
        """The page identifier, read once and shared by every later caller."""
        if self._page is None:
            self._page = asyncio.ensure_future(self._read_page())
        return await asyncio.shield(self._page)

    async def inject(self, name: str, code: str, enabled: bool) -> None:
        element_id = marker_id(name)
        if name not in self._injected:
            if not await self._driver.has_marker(element_id):
                await self._driver.insert_script(element_id, code)
            self._injected.add(name)
        await self._driver.dispatch_toggle(toggle_event(name), enabled)

    async def on_update_script(self, record: ScriptRecord) -> bool:
        try:
            page = await self.resolve_page()
        except Exception as exc:
            self.logger.warning("%s: page never became ready: %s", self._driver.label, exc)
            return False
        self.logger.debug("name: %s, page: %s, runAts: %s", record.name, page, list(record.page_rules))
        if not matches(page, record.page_rules):
            self.logger.debug("%r injected? False", record.name)
            return False
        try:
            await self.inject(record.name, record.content, record.enabled)
        except Exception as exc:
            self.logger.warning("%s: failed to inject %s: %s", self._driver.label, record.name, exc)
            return False
        self.logger.debug("%r injected? True", record.name)
        return True

    def cancel(self) -> None:
        if self._page is not None and not self._page.done():
            self._page.cancel()
