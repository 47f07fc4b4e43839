import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from scriptbot.system.config import STATE_FILE

STATE_LOCK = asyncio.Lock()

# Per-chat panel bookkeeping; dev mode is never persisted.
CHAT_DEFAULTS: Dict[str, Any] = {
    "enabled": False,
    "chat_type": None,
    "chat_username": None,
    "chat_name": None,
    "message_id": None,
    "last_sent_text": None,
    "edit_delay": 0.0,
    "panel_page": 0,
}


def load_state(path: Path = STATE_FILE) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {"chats": {}}
    except (OSError, ValueError) as exc:
        logging.warning("Failed to read state file %s (%s), starting fresh", path, exc)
        return {"chats": {}}
    if not isinstance(data, dict) or not isinstance(data.get("chats"), dict):
        return {"chats": {}}
    return data


async def save_state(state: Dict[str, Any], path: Path = STATE_FILE) -> None:
    async with STATE_LOCK:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            logging.exception("Unable to save state to %s", path)


def ensure_chat_state(state: Dict[str, Any], chat_id: int) -> Dict[str, Any]:
    chat_state = state.setdefault("chats", {}).setdefault(str(chat_id), {})
    for key, value in CHAT_DEFAULTS.items():
        chat_state.setdefault(key, value)
    return chat_state


def format_chat_label(chat_id: int, chat_state: Dict[str, Any]) -> str:
    name = chat_state.get("chat_username")
    if name:
        return f"@{name} ({chat_id})"
    name = chat_state.get("chat_name")
    return f"{name} ({chat_id})" if name else str(chat_id)


def disable_chat(state: Optional[Dict[str, Any]], chat_id: int) -> None:
    if state is None:
        return
    ensure_chat_state(state, chat_id).update(enabled=False, message_id=None, last_sent_text=None)


def enabled_chats(state: Dict[str, Any]) -> Dict[int, Dict[str, Any]]:
    return {int(key): chat for key, chat in state.get("chats", {}).items() if chat.get("enabled")}
