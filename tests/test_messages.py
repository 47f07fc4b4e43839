from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import BadRequest, Forbidden

from scriptbot.system.handlers import import_summary
from scriptbot.system.messages.core import (
    PanelMessenger,
    Throttle,
    DEV_MODE_DATA,
    OPEN_FOLDER_DATA,
    PAGE_PREFIX,
    RELOAD_DATA,
    TOGGLE_PREFIX,
    get_panel_keyboard,
    parse_page_data,
    parse_toggle_data,
)
from scriptbot.system.settings.core import ScriptRow
from scriptbot.system.state import disable_chat, enabled_chats, ensure_chat_state, format_chat_label


def test_keyboard_has_a_button_per_script():
    rows = [
        ScriptRow(name="/s/a.js", enabled=True, description="A"),
        ScriptRow(name="/s/b.js", enabled=False, description="B"),
        ScriptRow(name="/s/c.js", enabled=True, description="C", loading=True),
    ]
    markup = get_panel_keyboard(rows, dev_mode=True)
    keyboard = markup.inline_keyboard
    labels = [line[0].text for line in keyboard[:3]]
    assert labels == ["✅ a.js", "⛔ b.js", "⏳ c.js"]
    assert keyboard[0][0].callback_data == f"{TOGGLE_PREFIX}{rows[0].key}"
    assert [button.callback_data for button in keyboard[3]] == [DEV_MODE_DATA, RELOAD_DATA]
    assert "on" in keyboard[3][0].text
    assert keyboard[4][0].callback_data == OPEN_FOLDER_DATA


def test_callback_data_fits_telegram_limit():
    row = ScriptRow(name="/very/long/" + "x" * 200 + ".js", enabled=True, description="")
    assert len(f"{TOGGLE_PREFIX}{row.key}".encode("utf-8")) <= 64


def test_parse_toggle_data():
    assert parse_toggle_data("toggle:abc") == "abc"
    assert parse_toggle_data("toggle:") is None
    assert parse_toggle_data("reload") is None
    assert parse_toggle_data(None) is None


def test_import_summary():
    assert "Imported 2" in import_summary(2)
    assert "No script files" in import_summary(0)


def test_chat_state_helpers():
    state = {"chats": {}}
    chat = ensure_chat_state(state, 42)
    assert enabled_chats(state) == {}
    chat["enabled"] = True
    chat["chat_username"] = "owner"
    chat["message_id"] = 7
    assert enabled_chats(state) == {42: chat}
    assert format_chat_label(42, chat) == "@owner (42)"
    disable_chat(state, 42)
    assert enabled_chats(state) == {}
    assert chat["message_id"] is None


def make_messenger(state, **bot):
    app = MagicMock()
    app.bot.send_message = AsyncMock(return_value=MagicMock(message_id=9))
    app.bot.edit_message_text = AsyncMock(**bot)
    return app, PanelMessenger(app, state, throttle=Throttle(), edit_interval=0.0)


def panel_state(chat_id):
    state = {"chats": {}}
    chat = ensure_chat_state(state, chat_id)
    chat.update(enabled=True, message_id=3, last_sent_text="old")
    return state, chat


@pytest.mark.asyncio
async def test_panel_is_edited_in_place():
    state, chat = panel_state(601)
    app, messenger = make_messenger(state)
    await messenger.publish(601, chat, "new")
    app.bot.edit_message_text.assert_awaited_once()
    app.bot.send_message.assert_not_awaited()
    assert chat["last_sent_text"] == "new"
    await messenger.publish(601, chat, "new")
    assert app.bot.edit_message_text.await_count == 1


@pytest.mark.asyncio
async def test_rejected_edit_posts_a_new_panel():
    state, chat = panel_state(602)
    app, messenger = make_messenger(state, side_effect=BadRequest("Message to edit not found"))
    await messenger.publish(602, chat, "new")
    assert chat["message_id"] == 9
    assert chat["last_sent_text"] == "new"


@pytest.mark.asyncio
async def test_unmodified_edit_counts_as_success():
    state, chat = panel_state(603)
    app, messenger = make_messenger(state, side_effect=BadRequest("Message is not modified"))
    await messenger.publish(603, chat, "new")
    app.bot.send_message.assert_not_awaited()
    assert chat["last_sent_text"] == "new"


@pytest.mark.asyncio
async def test_blocked_chat_is_disabled():
    state, chat = panel_state(604)
    app, messenger = make_messenger(state, side_effect=Forbidden("bot was blocked by the user"))
    await messenger.publish(604, chat, "new")
    assert enabled_chats(state) == {}
    app.bot.send_message.assert_not_awaited()


def test_keyboard_pages_a_large_script_folder():
    rows = [ScriptRow(name=f"/s/{index}.js", enabled=True, description="") for index in range(100)]
    markup = get_panel_keyboard(rows[20:40], page=1, page_count=5)
    keyboard = markup.inline_keyboard
    assert len(keyboard) == 23
    assert [button.callback_data for button in keyboard[20]] == [
        f"{PAGE_PREFIX}0",
        f"{PAGE_PREFIX}1",
        f"{PAGE_PREFIX}2",
    ]
    assert keyboard[20][1].text == "2/5"
    first = get_panel_keyboard(rows[:20], page=0, page_count=5).inline_keyboard
    assert [button.callback_data for button in first[20]] == [f"{PAGE_PREFIX}0", f"{PAGE_PREFIX}1"]
    single = get_panel_keyboard(rows[:3]).inline_keyboard
    payloads = [button.callback_data for line in single for button in line if button.callback_data]
    assert not [data for data in payloads if data.startswith(PAGE_PREFIX)]


def test_parse_page_data():
    assert parse_page_data("page:3") == 3
    assert parse_page_data("page:-1") == 0
    assert parse_page_data("page:x") is None
    assert parse_page_data("toggle:abc") is None
    assert parse_page_data(None) is None


@pytest.mark.asyncio
async def test_oversized_panel_keeps_chat_enabled():
    state, chat = panel_state(605)
    app, messenger = make_messenger(state, side_effect=BadRequest("Message is too long"))
    app.bot.send_message = AsyncMock(side_effect=BadRequest("Message is too long"))
    await messenger.publish(605, chat, "x" * 5000)
    assert enabled_chats(state) == {605: chat}
    assert chat["message_id"] is None


@pytest.mark.asyncio
async def test_missing_chat_is_disabled_on_post():
    state, chat = panel_state(606)
    chat["message_id"] = None
    app, messenger = make_messenger(state)
    app.bot.send_message = AsyncMock(side_effect=BadRequest("Chat not found"))
    await messenger.publish(606, chat, "new")
    assert enabled_chats(state) == {}
