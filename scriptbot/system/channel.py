"""In-process message channel between the host and its page contexts.

The host owns one :class:`HostChannel`; every page context (and the settings
surface) gets a :class:`PageChannel` from :meth:`HostChannel.connect`. Each end
reads its own FIFO queue in a dedicated task, so messages from one sender are
handled in the order they were posted. ``send`` is fire-and-forget, ``invoke``
waits for the host handler's return value.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from scriptbot.system.scripts.script_errors import ChannelClosedError

RENDERER_READY = "rendererReady"
UPDATE_SCRIPT = "updateScript"
CONFIG_CHANGE = "configChange"
DEV_MODE = "devMode"
QUERY_DEV_MODE = "queryDevMode"
QUERY_IS_DEBUG = "queryIsDebug"
IMPORT_SCRIPT = "importScript"
FETCH_TEXT = "fetchText"
OPEN = "open"
RELOAD = "reload"

Listener = Callable[..., Any]


@dataclass(frozen=True)
class Message:
    event: str
    args: Tuple[Any, ...] = ()
    sender: Optional["PageChannel"] = None
    reply: Optional[asyncio.Future] = None


async def _call(listener: Listener, *args: Any) -> Any:
    result = listener(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class _Endpoint:
    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue[Optional[Message]] = asyncio.Queue()
        self._listeners: Dict[str, List[Listener]] = {}
        self._task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger("channel")

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def _post(self, message: Optional[Message]) -> None:
        self._queue.put_nowait(message)

    async def _notify(self, message: Message, *prefix: Any) -> None:
        for listener in list(self._listeners.get(message.event, [])):
            try:
                await _call(listener, *prefix, *message.args)
            except Exception as exc:
                self.logger.exception(
                    "%s: listener for %s failed: %s", self.name, message.event, exc
                )

    async def _dispatch(self, message: Message) -> None:
        raise NotImplementedError

    async def serve(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                break
            try:
                await self._dispatch(message)
            except Exception as exc:
                self.logger.exception("%s: dispatch of %s failed: %s", self.name, message.event, exc)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.serve())
        return self._task

    async def join(self) -> None:
        """Wait until everything queued so far has been dispatched."""
        if self._task is None or self._task.done():
            return
        done = asyncio.get_running_loop().create_future()
        self._post(Message("__join__", reply=done))
        await done

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        self._post(None)
        await task


class HostChannel(_Endpoint):
    def __init__(self, name: str = "host") -> None:
        super().__init__(name)
        self._handlers: Dict[str, Listener] = {}
        self._pages: List[PageChannel] = []
        self._requests: set[asyncio.Task] = set()

    @property
    def pages(self) -> List["PageChannel"]:
        return list(self._pages)

    def handle(self, event: str, handler: Listener) -> None:
        self._handlers[event] = handler

    def connect(self, name: str) -> "PageChannel":
        page = PageChannel(self, name)
        self._pages.append(page)
        self.logger.debug("%s connected", name)
        return page

    def disconnect(self, page: "PageChannel") -> None:
        if page in self._pages:
            self._pages.remove(page)
            self.logger.debug("%s disconnected", page.name)

    def send(self, page: "PageChannel", event: str, *args: Any) -> None:
        page.deliver(Message(event, args))

    def broadcast(self, event: str, *args: Any) -> None:
        for page in self.pages:
            self.send(page, event, *args)

    async def _answer(self, message: Message) -> None:
        reply = message.reply
        assert reply is not None
        handler = self._handlers.get(message.event)
        try:
            if handler is None:
                raise LookupError(f"No handler for {message.event}")
            result = await _call(handler, message.sender, *message.args)
        except Exception as exc:
            self.logger.exception("%s: handler for %s failed: %s", self.name, message.event, exc)
            if not reply.done():
                reply.set_exception(exc)
            return
        if not reply.done():
            reply.set_result(result)

    async def _dispatch(self, message: Message) -> None:
        if message.event == "__join__" and message.reply is not None:
            message.reply.set_result(None)
            return
        if message.reply is not None:
            # requests may wait on the network; keep the event queue moving
            task = asyncio.get_running_loop().create_task(self._answer(message))
            self._requests.add(task)
            task.add_done_callback(self._requests.discard)
            return
        await self._notify(message, message.sender)


class PageChannel(_Endpoint):
    def __init__(self, host: HostChannel, name: str) -> None:
        super().__init__(name)
        self._host = host
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: Message) -> None:
        if not self._closed:
            self._post(message)

    def send(self, event: str, *args: Any) -> None:
        if self._closed:
            self.logger.debug("%s: dropped %s on closed channel", self.name, event)
            return
        self._host._post(Message(event, args, sender=self))

    async def invoke(self, event: str, *args: Any) -> Any:
        if self._closed:
            raise ChannelClosedError(f"{self.name}: channel closed")
        reply = asyncio.get_running_loop().create_future()
        self._host._post(Message(event, args, sender=self, reply=reply))
        return await reply

    async def _dispatch(self, message: Message) -> None:
        if message.event == "__join__" and message.reply is not None:
            message.reply.set_result(None)
            return
        await self._notify(message)

    async def close(self) -> None:
        """Disconnect and drop whatever is still queued for this page."""
        self._closed = True
        self._host.disconnect(self)
        task = self._task
        self._task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
