from .metadata import ScriptMetadata, parse_metadata, set_enabled
from .record import ScriptRecord
from .repository import ScriptRepository
from .script_errors import ChannelClosedError, ScriptError, ScriptImportError
from .watcher import ChangeWatcher, Debouncer

__all__ = [
    "ChangeWatcher",
    "ChannelClosedError",
    "Debouncer",
    "ScriptError",
    "ScriptImportError",
    "ScriptMetadata",
    "ScriptRecord",
    "ScriptRepository",
    "parse_metadata",
    "set_enabled",
]
