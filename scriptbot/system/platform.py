import logging
import os
import platform
import re
import subprocess
import webbrowser
from pathlib import Path
from typing import Optional

PLATFORM_MAP = {
    "windows": "windows",
    "win32": "windows",
    "cygwin": "windows",
    "linux": "linux",
    "darwin": "macos",
}

_DRIVE_RE = re.compile(r"^([A-Za-z]):[\\/]+")
_NORMALIZED_DRIVE_RE = re.compile(r"^([A-Za-z])://")

logger = logging.getLogger("platform")


def detect_platform() -> str:
    system_name = platform.system().lower()
    return PLATFORM_MAP.get(system_name, "linux")


def normalize_path(path: str | Path) -> str:
    """Return the forward-slash identifier every consumer keys scripts by.

    ``C:\\a\\b.js`` and ``C:/a/b.js`` both become ``C://a/b.js``; POSIX paths
    are left as they are. Applying it twice changes nothing.
    """
    text = str(path)
    text = _DRIVE_RE.sub(lambda match: f"{match.group(1)}://", text)
    return text.replace("\\", "/")


def native_path(path: str | Path) -> Path:
    text = _NORMALIZED_DRIVE_RE.sub(lambda match: f"{match.group(1)}:/", str(path))
    return Path(os.path.normpath(text))


def resolve_shortcut(path: Path) -> Optional[Path]:
    """Target of a Windows ``.lnk`` file, or None where shortcuts are unsupported."""
    if detect_platform() != "windows":
        return None
    try:
        import win32com.client
    except ImportError:
        logger.debug("pywin32 not available, skipping shortcut %s", path)
        return None
    try:
        shell = win32com.client.Dispatch("WScript.Shell")
        target = shell.CreateShortCut(str(path)).Targetpath
    except Exception as exc:
        logger.debug("Failed to read shortcut %s: %s", path, exc)
        return None
    return Path(target) if target else None


def _run_opener(cmd: list[str]) -> bool:
    try:
        subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return True
    except OSError as exc:
        logger.warning("Failed to run %s: %s", cmd[0], exc)
        return False


def open_path(path: Path) -> bool:
    system = detect_platform()
    if system == "windows":
        startfile = getattr(os, "startfile", None)
        if startfile is None:
            return False
        try:
            startfile(str(path))
            return True
        except OSError as exc:
            logger.warning("Failed to open %s: %s", path, exc)
            return False
    if system == "macos":
        return _run_opener(["open", str(path)])
    return _run_opener(["xdg-open", str(path)])


def show_in_folder(path: Path) -> bool:
    system = detect_platform()
    if system == "windows":
        return _run_opener(["explorer", f"/select,{path}"])
    if system == "macos":
        return _run_opener(["open", "-R", str(path)])
    # xdg has no "reveal", open the containing folder instead
    return _run_opener(["xdg-open", str(path.parent)])


def open_uri(kind: str, target: str, *, script_root: Optional[Path] = None) -> bool:
    logger.info("open %s %s", kind, target)
    if kind == "link":
        return webbrowser.open(target)
    if kind == "path":
        return open_path(native_path(target))
    if kind == "show":
        return show_in_folder(native_path(target))
    if kind == "folder":
        if script_root is None:
            return False
        return open_path(script_root)
    logger.warning("Unknown open kind: %s", kind)
    return False
