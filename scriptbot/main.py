import logging
from typing import Optional

from telegram.ext import Application

from scriptbot.system.channel import HostChannel
from scriptbot.system.config import (
    BOT_TOKEN,
    DEBUG,
    HEADLESS,
    HIDDEN_PREFIX,
    HOST_URLS,
    IGNORED_FOLDERS,
    OWNER_IDS,
    SCRIPT_DIR,
    SCRIPT_EXTENSION,
    STATE_FILE,
    UPDATE_INTERVAL,
)
from scriptbot.system.handlers import register_handlers, request_refresh
from scriptbot.system.pages.manager import BrowserSession, PageManager
from scriptbot.system.scripts import ScriptRepository
from scriptbot.system.scripts.registry import HostContext, ScriptRegistry
from scriptbot.system.settings.core import SettingsSurface
from scriptbot.system.state import load_state

LOG_FORMAT = "[scriptbot] %(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    # keep polling chatter out of the debug log
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Host:
    """Wires the registry, the managed pages and the settings surface together."""

    def __init__(self, *, headless: bool = HEADLESS, debug: bool = DEBUG) -> None:
        self.context = HostContext(script_root=SCRIPT_DIR, debug=debug, update_interval=UPDATE_INTERVAL)
        self.repository = ScriptRepository(
            SCRIPT_DIR,
            extension=SCRIPT_EXTENSION,
            ignored_folders=IGNORED_FOLDERS,
            hidden_prefix=HIDDEN_PREFIX,
        )
        self.channel = HostChannel()
        self.pages = PageManager(self.channel)
        self.browser = BrowserSession(headless=headless)
        self.registry = ScriptRegistry(
            self.context,
            self.repository,
            self.channel,
            reload_pages=self.reload_pages,
        )
        self.surface: Optional[SettingsSurface] = None

    async def reload_pages(self) -> None:
        await self.pages.reload_all()
        if self.surface is not None:
            await self.surface.reload_view()

    async def start(self, urls=HOST_URLS) -> SettingsSurface:
        self.registry.install()
        self.channel.start()
        logging.info("Script folder: %s", self.repository.root)
        if urls:
            await self.browser.start()
            for driver in await self.browser.open_pages(urls):
                await self.pages.add(driver)
        else:
            logging.warning("No host pages configured, only the settings panel will run")
        self.surface = SettingsSurface(self.channel.connect("settings"), extension=SCRIPT_EXTENSION)
        return self.surface

    async def stop(self) -> None:
        self.registry.shutdown()
        await self.pages.close_all()
        if self.surface is not None:
            await self.surface.close()
            self.surface = None
        await self.browser.stop()
        await self.channel.stop()


async def _post_init(app: Application) -> None:
    host: Host = app.bot_data["host"]
    surface = await host.start()
    app.bot_data["surface"] = surface
    surface.add_listener(lambda: request_refresh(app))
    surface.start()


async def _post_shutdown(app: Application) -> None:
    host: Host = app.bot_data["host"]
    await host.stop()


def main() -> None:
    configure_logging(DEBUG)
    if not BOT_TOKEN:
        raise SystemExit("SCRIPTBOT_TOKEN is not set")
    if not OWNER_IDS:
        logging.warning("SCRIPTBOT_OWNER_IDS is empty, nobody can use the bot")

    app = (
        Application.builder()
        .token(BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    app.bot_data["host"] = Host()
    app.bot_data["state"] = load_state(STATE_FILE)
    app.bot_data["state_path"] = STATE_FILE
    register_handlers(app)
    logging.info("Bot started")
    app.run_polling()


if __name__ == "__main__":
    main()
