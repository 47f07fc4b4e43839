import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import BadRequest, Forbidden, RetryAfter, TelegramError
from telegram.ext import Application

from scriptbot.system.config import MAX_EDIT_DELAY, PANEL_EDIT_INTERVAL, PROJECT_URL
from scriptbot.system.settings.core import ScriptRow
from scriptbot.system.state import disable_chat, format_chat_label

TOGGLE_PREFIX = "toggle:"
DEV_MODE_DATA = "dev_mode"
RELOAD_DATA = "reload"
OPEN_FOLDER_DATA = "open_folder"
PAGE_PREFIX = "page:"

SEND_INTERVAL = 2.0
REPLY_INTERVAL = 1.0


class Throttle:
    """Spaces out calls per (action, chat) pair."""

    def __init__(self) -> None:
        self._next_at: Dict[Tuple[str, str], float] = {}
        self._lock = asyncio.Lock()

    async def wait(self, action: str, interval: float, scope: Optional[str] = None) -> None:
        key = (action, scope or "global")
        async with self._lock:
            now = time.monotonic()
            slot = max(self._next_at.get(key, 0.0), now)
            self._next_at[key] = slot + interval
        if slot > now:
            await asyncio.sleep(slot - now)


THROTTLE = Throttle()


class EditOutcome(Enum):
    EDITED = "edited"
    THROTTLED = "throttled"
    GONE = "gone"
    RESEND = "resend"


def _label(chat_id: int, chat_state: Dict[str, Any]) -> str:
    return format_chat_label(chat_id, chat_state)


def _row_label(row: ScriptRow) -> str:
    if row.loading:
        return f"⏳ {row.title}"
    return f"{'✅' if row.enabled else '⛔'} {row.title}"


def get_panel_keyboard(
    rows: Iterable[ScriptRow],
    dev_mode: bool = False,
    *,
    page: int = 0,
    page_count: int = 1,
) -> InlineKeyboardMarkup:
    """Buttons for the rows of one panel page plus navigation and actions."""
    buttons = [
        [InlineKeyboardButton(text=_row_label(row), callback_data=f"{TOGGLE_PREFIX}{row.key}")]
        for row in rows
    ]
    if page_count > 1:
        navigation = []
        if page > 0:
            navigation.append(InlineKeyboardButton(text="◀️ Back", callback_data=f"{PAGE_PREFIX}{page - 1}"))
        navigation.append(
            InlineKeyboardButton(text=f"{page + 1}/{page_count}", callback_data=f"{PAGE_PREFIX}{page}")
        )
        if page < page_count - 1:
            navigation.append(InlineKeyboardButton(text="Next ▶️", callback_data=f"{PAGE_PREFIX}{page + 1}"))
        buttons.append(navigation)
    buttons.append(
        [
            InlineKeyboardButton(
                text=f"🛠 Dev mode: {'on' if dev_mode else 'off'}", callback_data=DEV_MODE_DATA
            ),
            InlineKeyboardButton(text="🔄 Reload pages", callback_data=RELOAD_DATA),
        ]
    )
    buttons.append(
        [
            InlineKeyboardButton(text="📂 Open folder", callback_data=OPEN_FOLDER_DATA),
            InlineKeyboardButton(text="💻 Project", url=PROJECT_URL),
        ]
    )
    return InlineKeyboardMarkup(buttons)


def parse_toggle_data(data: Optional[str]) -> Optional[str]:
    if not data or not data.startswith(TOGGLE_PREFIX):
        return None
    return data[len(TOGGLE_PREFIX) :] or None


def parse_page_data(data: Optional[str]) -> Optional[int]:
    if not data or not data.startswith(PAGE_PREFIX):
        return None
    try:
        return max(int(data[len(PAGE_PREFIX) :]), 0)
    except ValueError:
        return None


def _back_off(chat_id: int, chat_state: Dict[str, Any], retry_after: Any) -> None:
    seconds = getattr(retry_after, "total_seconds", lambda: retry_after)()
    delay = max(float(chat_state.get("edit_delay") or 0.0), float(seconds) + 0.5)
    chat_state["edit_delay"] = min(delay, MAX_EDIT_DELAY)
    logging.warning(
        "Chat %s: flood control, panel edits every %.1fs",
        _label(chat_id, chat_state),
        chat_state["edit_delay"],
    )


def _recover(chat_state: Dict[str, Any], interval: float) -> None:
    delay = float(chat_state.get("edit_delay") or 0.0)
    if delay > interval:
        chat_state["edit_delay"] = max(interval, delay - 0.5)


class PanelMessenger:
    """Keeps one settings panel message per chat in sync with the rendered text.

    The panel is edited in place while its message exists; when Telegram
    refuses the edit the panel is posted again. Chats that block the bot or no
    longer exist are disabled in the shared state; any other rejected post
    leaves the chat enabled for the next refresh.
    """

    def __init__(
        self,
        app: Application,
        state: Optional[Dict[str, Any]] = None,
        *,
        throttle: Throttle = THROTTLE,
        edit_interval: float = PANEL_EDIT_INTERVAL,
    ) -> None:
        self.app = app
        self.state = state
        self.throttle = throttle
        self.edit_interval = edit_interval
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock(self, chat_id: int) -> asyncio.Lock:
        return self._locks.setdefault(chat_id, asyncio.Lock())

    async def post(
        self,
        chat_id: int,
        chat_state: Dict[str, Any],
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> Optional[int]:
        try:
            await self.throttle.wait("send", SEND_INTERVAL, scope=str(chat_id))
            message = await self.app.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        except RetryAfter as exc:
            logging.warning("Chat %s: retry after on send: %s", _label(chat_id, chat_state), exc.retry_after)
            return None
        except Forbidden as exc:
            logging.warning("Chat %s: cannot post panel: %s", _label(chat_id, chat_state), exc)
            disable_chat(self.state, chat_id)
            return None
        except BadRequest as exc:
            if "chat not found" in str(exc).lower():
                logging.warning("Chat %s: chat is gone: %s", _label(chat_id, chat_state), exc)
                disable_chat(self.state, chat_id)
            else:
                logging.warning("Chat %s: panel rejected: %s", _label(chat_id, chat_state), exc)
            return None
        except TelegramError as exc:
            logging.exception("Telegram error for chat %s on send: %s", _label(chat_id, chat_state), exc)
            return None
        chat_state["message_id"] = message.message_id
        chat_state["last_sent_text"] = text
        logging.info("Chat %s: posted panel %s", _label(chat_id, chat_state), message.message_id)
        return message.message_id

    async def _edit(
        self,
        chat_id: int,
        chat_state: Dict[str, Any],
        message_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup],
    ) -> EditOutcome:
        try:
            await self.app.bot.edit_message_text(
                chat_id=chat_id, message_id=message_id, text=text, reply_markup=reply_markup
            )
        except RetryAfter as exc:
            _back_off(chat_id, chat_state, exc.retry_after)
            return EditOutcome.THROTTLED
        except Forbidden as exc:
            logging.warning("Chat %s: bot was blocked: %s", _label(chat_id, chat_state), exc)
            disable_chat(self.state, chat_id)
            return EditOutcome.GONE
        except BadRequest as exc:
            if "not modified" in str(exc).lower():
                return EditOutcome.EDITED
            logging.warning("Chat %s: edit rejected (%s), posting again", _label(chat_id, chat_state), exc)
            return EditOutcome.RESEND
        except TelegramError as exc:
            logging.warning("Chat %s: edit failed (%s), posting again", _label(chat_id, chat_state), exc)
            return EditOutcome.RESEND
        return EditOutcome.EDITED

    async def publish(
        self,
        chat_id: int,
        chat_state: Dict[str, Any],
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> None:
        if chat_state.get("message_id") and chat_state.get("last_sent_text") == text:
            logging.debug("Chat %s: panel unchanged", _label(chat_id, chat_state))
            return
        if not chat_state.get("message_id"):
            async with self._lock(chat_id):
                await self.post(chat_id, chat_state, text, reply_markup)
            return

        interval = min(max(self.edit_interval, float(chat_state.get("edit_delay") or 0.0)), MAX_EDIT_DELAY)
        await self.throttle.wait("edit", interval, scope=str(chat_id))

        async with self._lock(chat_id):
            message_id = chat_state.get("message_id")
            if message_id and chat_state.get("last_sent_text") == text:
                return
            outcome = EditOutcome.RESEND
            if message_id:
                outcome = await self._edit(chat_id, chat_state, message_id, text, reply_markup)
            if outcome is EditOutcome.EDITED:
                chat_state["last_sent_text"] = text
                _recover(chat_state, self.edit_interval)
                logging.debug("Chat %s: panel edited", _label(chat_id, chat_state))
            elif outcome is EditOutcome.RESEND:
                chat_state["message_id"] = None
                await self.post(chat_id, chat_state, text, reply_markup)

    async def reply(self, chat_id: int, text: str) -> None:
        try:
            await self.throttle.wait("reply", REPLY_INTERVAL, scope=str(chat_id))
            await self.app.bot.send_message(chat_id=chat_id, text=text)
        except RetryAfter as exc:
            logging.warning("Chat %s: retry after on reply: %s", chat_id, exc.retry_after)
        except TelegramError as exc:
            logging.warning("Chat %s: failed to send reply: %s", chat_id, exc)
