import os
import sys
from pathlib import Path
from typing import FrozenSet, List


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_owner_ids(values: List[str]) -> FrozenSet[int]:
    owners = set()
    for value in values:
        try:
            owners.add(int(value))
        except ValueError:
            continue
    return frozenset(owners)


BOT_TOKEN = os.environ.get("SCRIPTBOT_TOKEN", "")
OWNER_IDS = _parse_owner_ids(_env_list("SCRIPTBOT_OWNER_IDS"))
PROJECT_URL = "https://github.com/scriptbot/scriptbot"

DATA_DIR = Path(os.environ.get("SCRIPTBOT_DATA", str(Path.home() / ".scriptbot"))).expanduser()
SCRIPT_DIR = DATA_DIR / "scripts"
STATE_FILE = DATA_DIR / "state.json"

HOST_URLS = _env_list("SCRIPTBOT_HOST_URLS")
HEADLESS = _env_flag("SCRIPTBOT_HEADLESS", default=True)

DEBUG = "--scriptbot-debug" in sys.argv or _env_flag("SCRIPTBOT_DEBUG")

# Scripts
SCRIPT_EXTENSION = ".js"
IGNORED_FOLDERS = frozenset({"node_modules"})
HIDDEN_PREFIX = "."
UPDATE_INTERVAL = 1.0

# Settings panel
MAX_EDIT_DELAY = 30.0
PANEL_EDIT_INTERVAL = 1.5
PANEL_PAGE_SIZE = 20
MAX_PANEL_TEXT = 4096
MAX_DESCRIPTION_LENGTH = 160

FETCH_TIMEOUT = 20.0
