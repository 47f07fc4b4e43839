from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from scriptbot.system.platform import native_path, normalize_path, resolve_shortcut

from .script_errors import ScriptImportError

SHORTCUT_SUFFIX = ".lnk"


class ScriptRepository:
    def __init__(
        self,
        root: Path,
        *,
        extension: str = ".js",
        ignored_folders: Iterable[str] = ("node_modules",),
        hidden_prefix: str = ".",
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._extension = extension
        self._ignored = frozenset(ignored_folders)
        self._hidden_prefix = hidden_prefix
        self.logger = logging.getLogger("scripts")
        self.ensure_root()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def extension(self) -> str:
        return self._extension

    def ensure_root(self) -> None:
        if not self._root.exists():
            self.logger.info("%s does not exist, creating...", self._root)
            self._root.mkdir(parents=True, exist_ok=True)

    def has_extension(self, name: str) -> bool:
        return name.endswith(self._extension)

    def _is_hidden(self, name: str) -> bool:
        return bool(self._hidden_prefix) and name.startswith(self._hidden_prefix)

    def _resolve_link(self, entry: os.DirEntry) -> Optional[str]:
        try:
            target = Path(entry.path).resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            self.logger.debug("Dangling link %s: %s", entry.path, exc)
            return None
        if target.is_file() and self.has_extension(target.name):
            return normalize_path(target)
        return None

    def _resolve_shortcut(self, entry: os.DirEntry) -> Optional[str]:
        target = resolve_shortcut(Path(entry.path))
        if target is not None and self.has_extension(target.name):
            return normalize_path(target)
        return None

    def _walk(self, directory: Path, files: List[str]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda item: item.name)
        except OSError as exc:
            self.logger.debug("Cannot list %s: %s", directory, exc)
            return
        for entry in entries:
            if self._is_hidden(entry.name):
                continue
            if entry.is_symlink():
                resolved = self._resolve_link(entry)
                if resolved:
                    files.append(resolved)
                continue
            if entry.is_dir(follow_symlinks=False):
                if entry.name not in self._ignored:
                    self._walk(Path(entry.path), files)
            elif self.has_extension(entry.name):
                files.append(normalize_path(entry.path))
            elif entry.name.endswith(SHORTCUT_SUFFIX):
                resolved = self._resolve_shortcut(entry)
                if resolved:
                    files.append(resolved)

    def enumerate(self) -> List[str]:
        """Normalized paths of every script under the root, depth first."""
        self.logger.debug("enumerate %s", self._root)
        self.ensure_root()
        files: List[str] = []
        self._walk(self._root, files)
        return files

    def read_script(self, path: str) -> str:
        try:
            with native_path(path).open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.debug("Failed to read %s: %s", path, exc)
            return ""

    def write_script(self, path: str, content: str) -> None:
        native_path(path).write_text(content, encoding="utf-8", newline="")

    def import_script(self, filename: str, content: str) -> str:
        if not self.has_extension(filename):
            raise ScriptImportError(
                f"Not a {self._extension} file: {filename}",
                filename=filename,
                reason="extension",
            )
        name = Path(filename).name
        if name != filename or name in {"", ".", ".."}:
            raise ScriptImportError(
                f"Invalid script file name: {filename}",
                filename=filename,
                reason="name",
            )
        self.ensure_root()
        target = self._root / name
        target.write_text(content, encoding="utf-8", newline="")
        self.logger.info("Imported %s", target)
        return normalize_path(target)
