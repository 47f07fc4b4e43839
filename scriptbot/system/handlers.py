import logging
from typing import Any, Dict, Optional, Tuple

from telegram import CallbackQuery, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from scriptbot.system.config import OWNER_IDS, PANEL_PAGE_SIZE
from scriptbot.system.messages.core import (
    DEV_MODE_DATA,
    OPEN_FOLDER_DATA,
    PAGE_PREFIX,
    RELOAD_DATA,
    TOGGLE_PREFIX,
    PanelMessenger,
    get_panel_keyboard,
    parse_page_data,
    parse_toggle_data,
)
from scriptbot.system.settings.core import SettingsSurface
from scriptbot.system.state import enabled_chats, ensure_chat_state, save_state


def is_owner(user_id: Optional[int]) -> bool:
    return user_id in OWNER_IDS


def _surface(app: Application) -> SettingsSurface:
    return app.bot_data["surface"]


def _messenger(app: Application) -> PanelMessenger:
    messenger = app.bot_data.get("messenger")
    if messenger is None:
        messenger = PanelMessenger(app, app.bot_data.get("state"))
        app.bot_data["messenger"] = messenger
    return messenger


async def send_reply(app: Application, chat_id: int, text: str) -> None:
    await _messenger(app).reply(chat_id, text)


def _spawn(app: Application, coro) -> None:
    async def runner() -> None:
        try:
            await coro
        except Exception:  # pragma: no cover - logged globally
            logging.exception("Callback task failed")

    app.create_task(runner())


def import_summary(imported: int) -> str:
    if imported > 0:
        return f"✅ Imported {imported} script file(s)"
    return "⚠️ No script files were imported"


async def refresh_panels(app: Application) -> None:
    state = app.bot_data.get("state")
    if state is None:
        return
    surface = _surface(app)
    try:
        dev_mode = await surface.query_dev_mode()
    except Exception as exc:
        logging.warning("Failed to query dev mode: %s", exc)
        dev_mode = False
    try:
        debug = await surface.query_is_debug()
    except Exception as exc:
        logging.warning("Failed to query debug build: %s", exc)
        debug = False
    page_count = surface.page_count(PANEL_PAGE_SIZE)
    panels: Dict[int, Tuple[str, Any]] = {}
    messenger = _messenger(app)
    for chat_id, chat_state in enabled_chats(state).items():
        page = surface.clamp_page(chat_state.get("panel_page") or 0, PANEL_PAGE_SIZE)
        chat_state["panel_page"] = page
        if page not in panels:
            panels[page] = (
                surface.render(dev_mode=dev_mode, debug=debug, page=page, page_size=PANEL_PAGE_SIZE),
                get_panel_keyboard(
                    surface.page_rows(page, PANEL_PAGE_SIZE),
                    dev_mode=dev_mode,
                    page=page,
                    page_count=page_count,
                ),
            )
        text, reply_markup = panels[page]
        await messenger.publish(chat_id, chat_state, text, reply_markup)
    await save_state(state, app.bot_data["state_path"])


async def _refresh_loop(app: Application) -> None:
    while app.bot_data.pop("panel_dirty", False):
        await refresh_panels(app)


def request_refresh(app: Application) -> None:
    """Coalesce bursts of script updates into as few panel edits as possible."""
    app.bot_data["panel_dirty"] = True
    task = app.bot_data.get("panel_task")
    if task is None or task.done():
        app.bot_data["panel_task"] = app.create_task(_refresh_loop(app))


def _remember_chat(update: Update, chat_state: Dict[str, Any]) -> None:
    chat = update.effective_chat
    if chat is None:
        return
    chat_state["chat_type"] = chat.type
    chat_state["chat_username"] = chat.username
    chat_state["chat_name"] = chat.title or chat.full_name


async def _owner_query(update: Update) -> Optional[CallbackQuery]:
    query = update.callback_query
    if not query or not query.message:
        return None
    if not is_owner(query.from_user.id if query.from_user else None):
        await query.answer(text="Not allowed", show_alert=True)
        return None
    return query


async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_chat is None:
        return
    user_id = update.effective_user.id if update.effective_user else None
    if not is_owner(user_id):
        logging.info("Ignoring /start from non-owner %s", user_id)
        return
    app = context.application
    state = app.bot_data["state"]
    chat_state = ensure_chat_state(state, update.effective_chat.id)
    _remember_chat(update, chat_state)
    chat_state["enabled"] = True
    # always post a fresh panel at the bottom of the chat
    chat_state["message_id"] = None
    chat_state["last_sent_text"] = None
    await refresh_panels(app)


async def handle_toggle(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = await _owner_query(update)
    if query is None:
        return
    key = parse_toggle_data(query.data)
    surface = _surface(context.application)
    row = surface.find(key) if key else None
    if row is None:
        await query.answer(text="Unknown script, refresh the panel", show_alert=True)
        return
    await query.answer()
    await surface.toggle(row.name)


async def handle_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = await _owner_query(update)
    if query is None:
        return
    page = parse_page_data(query.data)
    await query.answer()
    if page is None:
        return
    app = context.application
    chat_state = ensure_chat_state(app.bot_data["state"], query.message.chat_id)
    if chat_state.get("panel_page") == page:
        return
    chat_state["panel_page"] = page
    request_refresh(app)


async def handle_dev_mode(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = await _owner_query(update)
    if query is None:
        return
    await query.answer()

    async def process() -> None:
        surface = _surface(context.application)
        enabled = not await surface.query_dev_mode()
        surface.set_dev_mode(enabled)
        request_refresh(context.application)

    _spawn(context.application, process())


async def handle_reload(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = await _owner_query(update)
    if query is None:
        return
    await query.answer(text="Reloading pages…")
    _surface(context.application).reload()


async def handle_open_folder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = await _owner_query(update)
    if query is None:
        return
    await query.answer()
    _surface(context.application).open_folder()


async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if message is None or message.document is None or update.effective_chat is None:
        return
    if not is_owner(update.effective_user.id if update.effective_user else None):
        return
    app = context.application
    surface = _surface(app)
    document = message.document
    filename = document.file_name or ""
    chat_id = update.effective_chat.id
    if not surface.accepts(filename):
        logging.info("Ignored upload %s", filename)
        await send_reply(app, chat_id, import_summary(0))
        return
    try:
        file = await document.get_file()
        data = await file.download_as_bytearray()
    except Exception as exc:
        logging.warning("Failed to download %s: %s", filename, exc)
        await send_reply(app, chat_id, import_summary(0))
        return
    result = await surface.import_files([(filename, bytes(data).decode("utf-8", errors="replace"))])
    await send_reply(app, chat_id, import_summary(result.imported))


async def handle_fetch(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_chat is None:
        return
    if not is_owner(update.effective_user.id if update.effective_user else None):
        return
    app = context.application
    chat_id = update.effective_chat.id
    if not context.args:
        await send_reply(app, chat_id, "Usage: /fetch <url>")
        return

    async def process() -> None:
        result = await _surface(app).import_url(context.args[0])
        await send_reply(app, chat_id, import_summary(result.imported))

    _spawn(app, process())


def register_handlers(app: Application) -> None:
    app.add_handler(CommandHandler(["start", "scripts"], handle_start))
    app.add_handler(CommandHandler("fetch", handle_fetch))
    app.add_handler(CallbackQueryHandler(handle_toggle, pattern=f"^{TOGGLE_PREFIX}"))
    app.add_handler(CallbackQueryHandler(handle_page, pattern=f"^{PAGE_PREFIX}"))
    app.add_handler(CallbackQueryHandler(handle_dev_mode, pattern=f"^{DEV_MODE_DATA}$"))
    app.add_handler(CallbackQueryHandler(handle_reload, pattern=f"^{RELOAD_DATA}$"))
    app.add_handler(CallbackQueryHandler(handle_open_folder, pattern=f"^{OPEN_FOLDER_DATA}$"))
    app.add_handler(MessageHandler(filters.Document.ALL, handle_document))
