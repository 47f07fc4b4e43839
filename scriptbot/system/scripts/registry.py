from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from scriptbot.system import channel as events
from scriptbot.system.channel import HostChannel, PageChannel
from scriptbot.system.fetch import fetch_text
from scriptbot.system.platform import open_uri

from .metadata import set_enabled
from .record import ScriptRecord
from .repository import ScriptRepository
from .script_errors import ScriptImportError
from .watcher import ChangeWatcher

Fetcher = Callable[[str], Awaitable[str]]
Opener = Callable[..., bool]
WatcherFactory = Callable[..., ChangeWatcher]


@dataclass
class HostContext:
    """Process-wide host state. Dev mode owns the watcher's lifetime."""

    script_root: Path
    debug: bool = False
    dev_mode: bool = False
    watcher: Optional[ChangeWatcher] = None
    update_interval: float = 1.0


class ScriptRegistry:
    """Host side: re-reads scripts from disk and broadcasts them to pages.

    Nothing about a script is cached here; every send re-derives the record
    from the file so the comment header stays the single source of truth.
    """

    def __init__(
        self,
        context: HostContext,
        repository: ScriptRepository,
        channel: HostChannel,
        *,
        reload_pages: Callable[[], Awaitable[None]],
        fetcher: Fetcher = fetch_text,
        opener: Opener = open_uri,
        watcher_factory: WatcherFactory = ChangeWatcher,
    ) -> None:
        self.context = context
        self.repository = repository
        self.channel = channel
        self._reload_pages = reload_pages
        self._fetcher = fetcher
        self._opener = opener
        self._watcher_factory = watcher_factory
        self.logger = logging.getLogger("scripts")

    def install(self) -> None:
        ch = self.channel
        ch.on(events.RENDERER_READY, self._on_renderer_ready)
        ch.on(events.RELOAD, self._on_reload)
        ch.on(events.IMPORT_SCRIPT, self._on_import_script)
        ch.on(events.OPEN, self._on_open)
        ch.on(events.CONFIG_CHANGE, self._on_config_change)
        ch.on(events.DEV_MODE, self._on_dev_mode)
        ch.handle(events.QUERY_DEV_MODE, self._on_query_dev_mode)
        ch.handle(events.QUERY_IS_DEBUG, self._on_query_is_debug)
        ch.handle(events.FETCH_TEXT, self._on_fetch_text)

    # Channel adapters; the first argument is always the sending page.

    def _on_renderer_ready(self, sender: Optional[PageChannel]) -> None:
        self.load_scripts(sender)

    async def _on_reload(self, sender: Optional[PageChannel]) -> None:
        await self.reload()

    def _on_import_script(self, sender: Optional[PageChannel], filename: str, content: str) -> None:
        try:
            self.import_script(filename, content)
        except ScriptImportError as exc:
            self.logger.warning("Rejected import %s: %s", exc.filename, exc)
        except OSError as exc:
            self.logger.error("Failed to import %s: %s", filename, exc)

    def _on_open(self, sender: Optional[PageChannel], kind: str, target: str) -> None:
        self._opener(kind, target, script_root=self.repository.root)

    def _on_config_change(self, sender: Optional[PageChannel], path: str, enabled: bool) -> None:
        self.on_config_change(path, bool(enabled))

    def _on_dev_mode(self, sender: Optional[PageChannel], enabled: bool) -> None:
        self.set_dev_mode(bool(enabled))

    def _on_query_dev_mode(self, sender: Optional[PageChannel]) -> bool:
        self.logger.debug("queryDevMode %s", self.context.dev_mode)
        return self.context.dev_mode

    def _on_query_is_debug(self, sender: Optional[PageChannel]) -> bool:
        self.logger.debug("queryIsDebug %s", self.context.debug)
        return self.context.debug

    async def _on_fetch_text(self, sender: Optional[PageChannel], url: str) -> str:
        return await self._fetcher(url)

    # Operations

    def build_record(self, path: str) -> Optional[ScriptRecord]:
        content = self.repository.read_script(path)
        if not content:
            return None
        return ScriptRecord.from_content(path, content)

    def update_script(self, path: str, target: Optional[PageChannel] = None) -> Optional[ScriptRecord]:
        record = self.build_record(path)
        if record is None:
            return None
        self.logger.debug(
            "updateScript %s %s %r %s", record.path, record.enabled, record.description, list(record.page_rules)
        )
        if target is not None:
            self.channel.send(target, events.UPDATE_SCRIPT, *record.to_message())
        else:
            self.channel.broadcast(events.UPDATE_SCRIPT, *record.to_message())
        return record

    def load_scripts(self, target: Optional[PageChannel] = None) -> List[ScriptRecord]:
        self.logger.debug("loadScripts")
        records: List[ScriptRecord] = []
        for path in self.repository.enumerate():
            record = self.update_script(path, target)
            if record is not None:
                records.append(record)
        return records

    def import_script(self, filename: str, content: str) -> str:
        self.logger.info("importScript %s", filename)
        path = self.repository.import_script(filename, content)
        if not self.context.dev_mode:
            self.update_script(path)
        return path

    def on_config_change(self, path: str, enabled: bool) -> bool:
        """Rewrite the marker line of ``path``; returns whether the file changed."""
        self.logger.info("onConfigChange %s %s", path, enabled)
        content = self.repository.read_script(path)
        if not content:
            self.logger.warning("Script %s is unavailable, ignoring toggle", path)
            return False
        patched = set_enabled(content, enabled)
        if patched == content:
            return False
        self.repository.write_script(path, patched)
        if not self.context.dev_mode:
            self.update_script(path)
        return True

    async def reload(self) -> None:
        self.logger.info("Reloading all pages")
        await self._reload_pages()

    def enable_dev_mode(self) -> None:
        self.context.dev_mode = True
        if self.context.watcher is None:
            watcher = self._watcher_factory(
                self.repository.root,
                self.reload,
                delay=self.context.update_interval,
            )
            watcher.start()
            self.context.watcher = watcher
            self.logger.info("watcher created")

    def disable_dev_mode(self) -> None:
        self.context.dev_mode = False
        watcher = self.context.watcher
        if watcher is not None:
            self.context.watcher = None
            watcher.close()
            self.logger.info("watcher closed")

    def set_dev_mode(self, enabled: bool) -> None:
        self.logger.info("onDevMode %s", enabled)
        if enabled:
            self.enable_dev_mode()
        else:
            self.disable_dev_mode()

    def shutdown(self) -> None:
        self.disable_dev_mode()
