import os

import pytest

from scriptbot.system.platform import native_path, normalize_path
from scriptbot.system.scripts.repository import ScriptRepository
from scriptbot.system.scripts.script_errors import ScriptImportError


def _write(path, text="// x\n"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_root_is_created(tmp_path):
    root = tmp_path / "data" / "scripts"
    repo = ScriptRepository(root)
    assert root.is_dir()
    assert repo.enumerate() == []


def test_enumerate_walks_nested_folders(tmp_path):
    _write(tmp_path / "a.js")
    _write(tmp_path / "lib" / "b.js")
    _write(tmp_path / "notes.txt")
    repo = ScriptRepository(tmp_path)
    root = normalize_path(repo.root)
    assert repo.enumerate() == [f"{root}/a.js", f"{root}/lib/b.js"]


def test_enumerate_skips_ignored_and_hidden(tmp_path):
    _write(tmp_path / "node_modules" / "dep.js")
    _write(tmp_path / ".hidden.js")
    _write(tmp_path / ".cache" / "c.js")
    _write(tmp_path / "keep.js")
    repo = ScriptRepository(tmp_path)
    assert [os.path.basename(p) for p in repo.enumerate()] == ["keep.js"]


def test_nested_ignored_and_hidden_folders_are_skipped(tmp_path):
    _write(tmp_path / "lib" / "node_modules" / "x.js")
    _write(tmp_path / "lib" / ".git" / "y.js")
    _write(tmp_path / "lib" / "deep" / ".hidden.js")
    _write(tmp_path / "lib" / "deep" / "z.js")
    repo = ScriptRepository(tmp_path)
    root = normalize_path(repo.root)
    assert repo.enumerate() == [f"{root}/lib/deep/z.js"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_script_is_resolved(tmp_path):
    outside = _write(tmp_path / "outside" / "real.js")
    root = tmp_path / "scripts"
    root.mkdir()
    try:
        (root / "link.js").symlink_to(outside)
        (root / "dangling.js").symlink_to(tmp_path / "missing.js")
    except OSError:
        pytest.skip("cannot create symlinks")
    repo = ScriptRepository(root)
    assert repo.enumerate() == [normalize_path(outside.resolve())]


def test_normalize_path_is_idempotent():
    assert normalize_path("C:\\a\\b.js") == "C://a/b.js"
    assert normalize_path("C:/a/b.js") == "C://a/b.js"
    assert normalize_path(normalize_path("C:\\a\\b.js")) == "C://a/b.js"
    assert normalize_path("/home/u/a.js") == "/home/u/a.js"


def test_native_path_reverses_drive_form():
    assert native_path("/home/u/a.js").as_posix() == "/home/u/a.js"


def test_read_failure_returns_empty_string(tmp_path):
    repo = ScriptRepository(tmp_path)
    assert repo.read_script(normalize_path(tmp_path / "missing.js")) == ""
    (tmp_path / "bad.js").write_bytes(b"\xff\xfe\xfa")
    assert repo.read_script(normalize_path(tmp_path / "bad.js")) == ""


def test_read_keeps_line_endings(tmp_path):
    (tmp_path / "crlf.js").write_bytes(b"// t\r\ncode();\r\n")
    repo = ScriptRepository(tmp_path)
    assert repo.read_script(normalize_path(tmp_path / "crlf.js")) == "// t\r\ncode();\r\n"


def test_import_writes_into_root(tmp_path):
    repo = ScriptRepository(tmp_path)
    path = repo.import_script("new.js", "// New\n")
    assert path == normalize_path(repo.root / "new.js")
    assert (tmp_path / "new.js").read_text(encoding="utf-8") == "// New\n"


def test_import_overwrites_existing(tmp_path):
    _write(tmp_path / "same.js", "old")
    repo = ScriptRepository(tmp_path)
    repo.import_script("same.js", "new")
    assert (tmp_path / "same.js").read_text(encoding="utf-8") == "new"


@pytest.mark.parametrize(
    "filename, reason",
    [("readme.txt", "extension"), ("../evil.js", "name"), ("sub/x.js", "name")],
)
def test_import_rejects_bad_names(tmp_path, filename, reason):
    repo = ScriptRepository(tmp_path)
    with pytest.raises(ScriptImportError) as info:
        repo.import_script(filename, "x")
    assert info.value.reason == reason
    assert info.value.filename == filename
