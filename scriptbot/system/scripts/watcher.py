from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

ChangeCallback = Callable[[], Optional[Awaitable[None]]]


class Debouncer:
    """Single-slot timer: every trigger replaces the pending one."""

    def __init__(
        self,
        delay: float,
        callback: ChangeCallback,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._delay = delay
        self._callback = callback
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self._tasks: set[asyncio.Task] = set()
        self.logger = logging.getLogger("scripts.watcher")

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def bind(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        self._closed = False

    def trigger(self) -> None:
        # triggers queued from the observer thread may land after close
        if self._closed:
            return
        loop = self.bind()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def trigger_threadsafe(self) -> None:
        self.bind().call_soon_threadsafe(self.trigger)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def close(self) -> None:
        self._closed = True
        self.cancel()

    def _fire(self) -> None:
        self._handle = None
        if self._closed:
            return
        try:
            result = self._callback()
        except Exception as exc:
            self.logger.exception("Debounced callback failed: %s", exc)
            return
        if asyncio.iscoroutine(result):
            task = self.bind().create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Debounced callback failed: %s", exc, exc_info=exc)


class ScriptChangeHandler(FileSystemEventHandler):
    def __init__(self, debouncer: Debouncer) -> None:
        super().__init__()
        self._debouncer = debouncer
        self.logger = logging.getLogger("scripts.watcher")

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in {"created", "modified", "deleted", "moved"}:
            return
        self.logger.debug("onScriptChange %s %s", event.event_type, event.src_path)
        self._debouncer.trigger_threadsafe()


class ChangeWatcher:
    """Watches the script root and calls ``on_change`` once things settle down."""

    def __init__(
        self,
        root: Path,
        on_change: ChangeCallback,
        *,
        delay: float = 1.0,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._root = Path(root)
        self.debouncer = Debouncer(delay, on_change, loop)
        self._handler = ScriptChangeHandler(self.debouncer)
        self._observer: Optional[Observer] = None
        self.logger = logging.getLogger("scripts.watcher")

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        # watchdog calls back from its own thread
        self.debouncer.bind()
        self.debouncer.open()
        observer = Observer()
        observer.schedule(self._handler, str(self._root), recursive=True)
        observer.start()
        self._observer = observer
        self.logger.info("Watching %s", self._root)

    def close(self) -> None:
        self.debouncer.close()
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)
        self.logger.info("Stopped watching %s", self._root)
