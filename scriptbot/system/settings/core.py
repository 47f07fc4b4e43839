from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from scriptbot.system import channel as events
from scriptbot.system.channel import PageChannel
from scriptbot.system.config import MAX_DESCRIPTION_LENGTH, MAX_PANEL_TEXT, PANEL_PAGE_SIZE
from scriptbot.system.scripts.record import ScriptRecord

NO_DESCRIPTION = "* This script has no description"
RELOAD_HINT = "Changes to this script take effect after reload"
ELLIPSIS = "…"

ChangeListener = Callable[[], Optional[Awaitable[None]]]


def row_key(name: str) -> str:
    """Short stable key for a script path, small enough for button payloads."""
    return hashlib.sha1(name.encode("utf-8")).hexdigest()[:12]


def shorten(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - len(ELLIPSIS), 0)] + ELLIPSIS


@dataclass
class ScriptRow:
    name: str
    enabled: bool
    description: str
    loading: bool = False

    @property
    def key(self) -> str:
        return row_key(self.name)

    @property
    def title(self) -> str:
        return PurePosixPath(self.name).name or self.name

    @property
    def hint(self) -> str:
        return RELOAD_HINT if self.description.startswith("* ") else ""


@dataclass(frozen=True)
class ImportResult:
    imported: int
    skipped: int


class SettingsSurface:
    """Settings page: one row per known script, relaying user actions to the host."""

    def __init__(self, channel: PageChannel, *, extension: str = ".js") -> None:
        self._channel = channel
        self._extension = extension
        self._rows: Dict[str, ScriptRow] = {}
        self._listeners: List[ChangeListener] = []
        self.logger = logging.getLogger("settings")
        channel.on(events.UPDATE_SCRIPT, self._on_update_script)

    @property
    def rows(self) -> List[ScriptRow]:
        return list(self._rows.values())

    def row(self, name: str) -> Optional[ScriptRow]:
        return self._rows.get(name)

    def find(self, key: str) -> Optional[ScriptRow]:
        for row in self._rows.values():
            if row.key == key:
                return row
        return None

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                result = listener()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self.logger.exception("Settings listener failed: %s", exc)

    async def _on_update_script(self, *args) -> None:
        record = ScriptRecord.from_message(args)
        row = self._rows.get(record.name)
        if row is None:
            row = ScriptRow(name=record.name, enabled=record.enabled, description="")
            self._rows[record.name] = row
        row.enabled = record.enabled
        row.loading = False
        row.description = record.description or NO_DESCRIPTION
        self.logger.debug("onUpdateScript %s %s", record.name, record.enabled)
        await self._changed()

    def start(self) -> None:
        self._channel.start()
        self._channel.send(events.RENDERER_READY)

    async def reload_view(self) -> None:
        """Rebuild the view from scratch, as a reloaded page would."""
        self._rows.clear()
        await self._changed()
        self._channel.send(events.RENDERER_READY)

    async def toggle(self, name: str) -> Optional[bool]:
        row = self._rows.get(name)
        if row is None:
            return None
        # flip right away, the host confirms with an update
        row.enabled = not row.enabled
        row.loading = True
        self._channel.send(events.CONFIG_CHANGE, name, row.enabled)
        await self._changed()
        return row.enabled

    def accepts(self, filename: str) -> bool:
        return filename.endswith(self._extension)

    async def import_files(self, files: Iterable[Tuple[str, str]]) -> ImportResult:
        accepted: List[Tuple[str, str]] = []
        skipped = 0
        for filename, content in files:
            if not self.accepts(filename):
                self.logger.info("Ignored %s", filename)
                skipped += 1
                continue
            accepted.append((filename, content))
        for filename, content in accepted:
            self.logger.info("Importing %s", filename)
            self._channel.send(events.IMPORT_SCRIPT, filename, content)
        self.logger.info("Imported %d files", len(accepted))
        return ImportResult(imported=len(accepted), skipped=skipped)

    async def import_url(self, url: str) -> ImportResult:
        filename = PurePosixPath(unquote(urlparse(url).path)).name
        if not self.accepts(filename):
            self.logger.info("Ignored %s", url)
            return ImportResult(imported=0, skipped=1)
        text = await self._channel.invoke(events.FETCH_TEXT, url)
        if not text:
            return ImportResult(imported=0, skipped=1)
        return await self.import_files([(filename, text)])

    async def query_dev_mode(self) -> bool:
        return bool(await self._channel.invoke(events.QUERY_DEV_MODE))

    async def query_is_debug(self) -> bool:
        return bool(await self._channel.invoke(events.QUERY_IS_DEBUG))

    def set_dev_mode(self, enabled: bool) -> None:
        self._channel.send(events.DEV_MODE, enabled)

    def reload(self) -> None:
        self._channel.send(events.RELOAD)

    def open_folder(self) -> None:
        self._channel.send(events.OPEN, "folder", "scripts")

    def page_count(self, page_size: int = PANEL_PAGE_SIZE) -> int:
        return max(1, -(-len(self._rows) // page_size))

    def clamp_page(self, page: int, page_size: int = PANEL_PAGE_SIZE) -> int:
        return min(max(int(page), 0), self.page_count(page_size) - 1)

    def page_rows(self, page: int = 0, page_size: int = PANEL_PAGE_SIZE) -> List[ScriptRow]:
        start = self.clamp_page(page, page_size) * page_size
        return self.rows[start : start + page_size]

    def render(
        self,
        *,
        dev_mode: bool = False,
        debug: bool = False,
        page: int = 0,
        page_size: int = PANEL_PAGE_SIZE,
        limit: int = MAX_PANEL_TEXT,
    ) -> str:
        """Panel text for one page of scripts, never longer than ``limit``.

        The footer with the developer mode (and the debug tag, when the host
        runs a debug build) is always kept; rows that do not fit are cut.
        """
        pages = self.page_count(page_size)
        page = self.clamp_page(page, page_size)
        header = "📜 Scripts" if pages == 1 else f"📜 Scripts ({page + 1}/{pages})"
        lines = [header]
        if not self._rows:
            lines.append("• No scripts found")
        for row in self.page_rows(page, page_size):
            state = "⏳" if row.loading else ("✅" if row.enabled else "⛔")
            lines.append(f"{state} {row.title}")
            lines.append(f"    {shorten(row.description, MAX_DESCRIPTION_LENGTH)}")
            if row.hint:
                lines.append(f"    ({row.hint})")
        footer = ["", f"🛠 Developer mode: {'on' if dev_mode else 'off'}"]
        if debug:
            footer.append("🐞 Debug build")
        tail = "\n".join(footer)
        body = shorten("\n".join(lines), max(limit - len(tail), 0))
        return body + tail

    async def close(self) -> None:
        await self._channel.close()
