import pytest
import pytest_asyncio

from scriptbot.system import channel as events
from scriptbot.system.channel import HostChannel
from scriptbot.system.scripts.record import ScriptRecord
from scriptbot.system.scripts.registry import HostContext, ScriptRegistry
from scriptbot.system.scripts.repository import ScriptRepository


class FakeWatcher:
    def __init__(self, root, on_change, *, delay=1.0):
        self.root = root
        self.on_change = on_change
        self.delay = delay
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def close(self):
        self.closed = True


class Harness:
    def __init__(self, root):
        self.reloads = 0
        self.opened = []
        self.watchers = []
        self.updates = []
        self.context = HostContext(script_root=root, debug=True, update_interval=0.5)
        self.repository = ScriptRepository(root)
        self.host = HostChannel()
        self.registry = ScriptRegistry(
            self.context,
            self.repository,
            self.host,
            reload_pages=self._reload,
            fetcher=self._fetch,
            opener=self._open,
            watcher_factory=self._watcher,
        )
        self.page = self.host.connect("page")
        self.page.on(events.UPDATE_SCRIPT, lambda *args: self.updates.append(ScriptRecord.from_message(args)))

    async def _reload(self):
        self.reloads += 1

    async def _fetch(self, url):
        return f"// from {url}\n"

    def _open(self, kind, target, *, script_root=None):
        self.opened.append((kind, target, script_root))
        return True

    def _watcher(self, root, on_change, *, delay):
        watcher = FakeWatcher(root, on_change, delay=delay)
        self.watchers.append(watcher)
        return watcher

    def start(self):
        self.registry.install()
        self.host.start()
        self.page.start()

    async def flush(self):
        await self.host.join()
        await self.page.join()

    async def stop(self):
        await self.page.close()
        await self.host.stop()


@pytest_asyncio.fixture
async def harness(tmp_path):
    (tmp_path / "a.js").write_text("// Alpha\n// @run-at chat\nalpha();\n", encoding="utf-8")
    (tmp_path / "b.js").write_text("beta();\n", encoding="utf-8")
    h = Harness(tmp_path)
    h.start()
    yield h
    await h.stop()


@pytest.mark.asyncio
async def test_renderer_ready_sends_every_script_to_the_sender(harness):
    harness.page.send(events.RENDERER_READY)
    await harness.flush()
    names = [record.name.rsplit("/", 1)[-1] for record in harness.updates]
    assert names == ["a.js", "b.js"]
    alpha = harness.updates[0]
    assert alpha.description == "Alpha"
    assert alpha.page_rules == ("chat",)
    assert alpha.enabled is True


@pytest.mark.asyncio
async def test_renderer_ready_targets_only_the_sender(harness):
    other = harness.host.connect("other")
    received = []
    other.on(events.UPDATE_SCRIPT, lambda *args: received.append(args))
    other.start()
    harness.page.send(events.RENDERER_READY)
    await harness.flush()
    await other.join()
    assert received == []
    assert len(harness.updates) == 2
    await other.close()


@pytest.mark.asyncio
async def test_config_change_rewrites_file_and_broadcasts(harness, tmp_path):
    path = harness.repository.enumerate()[0]
    harness.page.send(events.CONFIG_CHANGE, path, False)
    await harness.flush()
    assert (tmp_path / "a.js").read_text(encoding="utf-8").startswith("// Alpha [Disabled]\n")
    assert [(r.name, r.enabled) for r in harness.updates] == [(path, False)]


@pytest.mark.asyncio
async def test_config_change_without_effect_sends_nothing(harness):
    path = harness.repository.enumerate()[0]
    assert harness.registry.on_config_change(path, True) is False
    await harness.flush()
    assert harness.updates == []


@pytest.mark.asyncio
async def test_dev_mode_owns_watcher_and_suppresses_broadcasts(harness, tmp_path):
    harness.page.send(events.DEV_MODE, True)
    await harness.flush()
    assert harness.context.dev_mode is True
    assert await harness.page.invoke(events.QUERY_DEV_MODE) is True
    [watcher] = harness.watchers
    assert watcher.started and watcher.delay == 0.5
    assert watcher.root == harness.repository.root

    harness.page.send(events.DEV_MODE, True)
    path = harness.repository.enumerate()[1]
    harness.page.send(events.CONFIG_CHANGE, path, False)
    await harness.flush()
    assert len(harness.watchers) == 1
    assert harness.updates == []
    assert (tmp_path / "b.js").read_text(encoding="utf-8") == "// [Disabled]\nbeta();\n"

    await watcher.on_change()
    assert harness.reloads == 1

    harness.page.send(events.DEV_MODE, False)
    await harness.flush()
    assert watcher.closed
    assert harness.context.watcher is None
    assert await harness.page.invoke(events.QUERY_DEV_MODE) is False


@pytest.mark.asyncio
async def test_import_broadcasts_outside_dev_mode(harness, tmp_path):
    harness.page.send(events.IMPORT_SCRIPT, "new.js", "// New one\n")
    harness.page.send(events.IMPORT_SCRIPT, "../escape.js", "x")
    await harness.flush()
    assert (tmp_path / "new.js").exists()
    assert not (tmp_path.parent / "escape.js").exists()
    assert [r.description for r in harness.updates] == ["New one"]


@pytest.mark.asyncio
async def test_import_in_dev_mode_waits_for_reload(harness, tmp_path):
    harness.registry.set_dev_mode(True)
    harness.page.send(events.IMPORT_SCRIPT, "new.js", "// New one\n")
    await harness.flush()
    assert (tmp_path / "new.js").exists()
    assert harness.updates == []
    harness.registry.shutdown()
    assert harness.watchers[0].closed


@pytest.mark.asyncio
async def test_requests_and_host_actions(harness):
    assert await harness.page.invoke(events.QUERY_IS_DEBUG) is True
    assert await harness.page.invoke(events.FETCH_TEXT, "https://x/y.js") == "// from https://x/y.js\n"
    harness.page.send(events.OPEN, "folder", "scripts")
    harness.page.send(events.RELOAD)
    await harness.flush()
    assert harness.opened == [("folder", "scripts", harness.repository.root)]
    assert harness.reloads == 1


@pytest.mark.asyncio
async def test_unknown_request_fails_the_caller(harness):
    with pytest.raises(LookupError):
        await harness.page.invoke("noSuchEvent")
