from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from playwright.async_api import Browser, Playwright, async_playwright

from scriptbot.system.channel import RENDERER_READY, UPDATE_SCRIPT, HostChannel, PageChannel
from scriptbot.system.scripts.record import ScriptRecord

from .driver import PageDriver, PlaywrightPageDriver
from .injection import InjectionController


class PageContext:
    """One managed window: a driver plus the controller of its current lifetime."""

    def __init__(self, host: HostChannel, driver: PageDriver) -> None:
        self.driver = driver
        self._host = host
        self.channel: Optional[PageChannel] = None
        self.controller: Optional[InjectionController] = None
        self.logger = logging.getLogger("pages")

    async def _on_update_script(self, *args) -> None:
        controller = self.controller
        if controller is None:
            return
        await controller.on_update_script(ScriptRecord.from_message(args))

    async def attach(self) -> None:
        self.controller = InjectionController(self.driver, logger=self.logger)
        channel = self._host.connect(self.driver.label)
        channel.on(UPDATE_SCRIPT, self._on_update_script)
        channel.start()
        self.channel = channel
        channel.send(RENDERER_READY)

    async def detach(self) -> None:
        if self.controller is not None:
            self.controller.cancel()
            self.controller = None
        if self.channel is not None:
            await self.channel.close()
            self.channel = None

    async def reload(self) -> None:
        await self.detach()
        await self.driver.reload()
        await self.attach()

    async def close(self) -> None:
        await self.detach()
        await self.driver.close()


class PageManager:
    def __init__(self, host: HostChannel) -> None:
        self._host = host
        self._contexts: List[PageContext] = []
        self.logger = logging.getLogger("pages")

    @property
    def contexts(self) -> List[PageContext]:
        return list(self._contexts)

    async def add(self, driver: PageDriver) -> PageContext:
        context = PageContext(self._host, driver)
        self._contexts.append(context)
        await context.attach()
        self.logger.info("Managing page %s", driver.label)
        return context

    async def reload_all(self) -> None:
        self.logger.info("Reloading %d page(s)", len(self._contexts))
        for context in self.contexts:
            try:
                await context.reload()
            except Exception as exc:
                self.logger.exception("Failed to reload %s: %s", context.driver.label, exc)

    async def close_all(self) -> None:
        contexts = self.contexts
        self._contexts.clear()
        for context in contexts:
            try:
                await context.close()
            except Exception as exc:
                self.logger.warning("Failed to close %s: %s", context.driver.label, exc)


class BrowserSession:
    """Playwright browser hosting the pages scripts are injected into."""

    def __init__(self, *, headless: bool = True) -> None:
        self.headless = headless
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.logger = logging.getLogger("pages")

    async def start(self) -> None:
        self.playwright = await async_playwright().start()
        self.logger.info("Launching browser; headless=%s", self.headless)
        try:
            self.browser = await self.playwright.chromium.launch(headless=self.headless)
        except Exception:
            await self.playwright.stop()
            self.playwright = None
            raise

    async def open_pages(self, urls: Sequence[str]) -> List[PlaywrightPageDriver]:
        if self.browser is None:
            raise RuntimeError("Browser session not started")
        drivers: List[PlaywrightPageDriver] = []
        for url in urls:
            page = await self.browser.new_page()
            try:
                await page.goto(url)
            except Exception as exc:
                self.logger.warning("Failed to open %s: %s", url, exc)
                await page.close()
                continue
            drivers.append(PlaywrightPageDriver(page, label=url))
        return drivers

    async def stop(self) -> None:
        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as exc:
                self.logger.warning("Browser close failed: %s", exc)
            self.browser = None
        if self.playwright is not None:
            await self.playwright.stop()
            self.playwright = None
