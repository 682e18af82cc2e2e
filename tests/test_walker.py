import os

import pytest

from sourceguard.errors import WarningKind
from sourceguard.utils import walker
from sourceguard.utils.walker import language_for, matches_any, walk


def make_tree(root, files):
    for relpath, content in files.items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


def relpaths(tree):
    return [source.relpath for source in tree]


def test_walk_is_lexicographic_and_depth_first(tmp_path):
    make_tree(tmp_path, {"b.py": "", "a.py": "", "sub/c.py": "", "sub/a.cs": ""})

    assert relpaths(walk(tmp_path)) == ["a.py", "b.py", "sub/a.cs", "sub/c.py"]


def test_walk_orders_by_full_path_not_per_directory(tmp_path):
    make_tree(tmp_path, {"a/x": "", "a-b": "", "a.txt": "", "a/y/z.py": "", "ab.py": ""})

    assert relpaths(walk(tmp_path)) == ["a-b", "a.txt", "a/x", "a/y/z.py", "ab.py"]


def test_walk_is_restartable(tmp_path):
    make_tree(tmp_path, {"one.txt": "1", "two/three.txt": "3"})
    tree = walk(tmp_path)

    assert relpaths(tree) == relpaths(tree) == ["one.txt", "two/three.txt"]


def test_default_excludes_skip_build_output(tmp_path):
    make_tree(
        tmp_path,
        {
            "src/app.js": "",
            "node_modules/lib/index.js": "",
            "bin/Debug/app.dll": b"\x00",
            ".git/config": "",
            "src/__pycache__/app.cpython-312.pyc": b"\x00",
        },
    )

    assert relpaths(walk(tmp_path)) == ["src/app.js"]


def test_include_and_exclude_globs(tmp_path):
    make_tree(tmp_path, {"a.py": "", "b.cs": "", "sub/c.py": "", "sub/gen/d.py": ""})

    tree = walk(tmp_path, include=["*.py"], exclude=["sub/gen"])

    assert relpaths(tree) == ["a.py", "sub/c.py"]


def test_matches_any_handles_names_and_double_star():
    assert matches_any("src/vendor/lib.min.js", ["**/*.min.js"])
    assert matches_any("lib.min.js", ["**/*.min.js"])
    assert matches_any("deep/node_modules", ["node_modules"])
    assert not matches_any("src/app.js", ["*.py"])


def test_symlink_cycle_terminates(tmp_path):
    make_tree(tmp_path, {"src/a.py": "x = 1\n"})
    try:
        (tmp_path / "src" / "loop").symlink_to(tmp_path / "src", target_is_directory=True)
        (tmp_path / "src" / "up").symlink_to(tmp_path, target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks are not supported here")

    assert relpaths(walk(tmp_path)) == ["src/a.py"]


def test_symlinked_file_is_reported_once(tmp_path):
    make_tree(tmp_path, {"real.py": "x = 1\n"})
    try:
        (tmp_path / "alias.py").symlink_to(tmp_path / "real.py")
    except (OSError, NotImplementedError):
        pytest.skip("symlinks are not supported here")

    assert relpaths(walk(tmp_path)) == ["alias.py"]


def test_unreadable_directory_becomes_a_warning(tmp_path, monkeypatch):
    make_tree(tmp_path, {"locked/secret.py": "", "open.py": ""})
    real_scandir = os.scandir

    def fake_scandir(path):
        if str(path).endswith("locked"):
            raise PermissionError(13, "Permission denied")
        return real_scandir(path)

    monkeypatch.setattr(walker.os, "scandir", fake_scandir)
    tree = walk(tmp_path)

    assert relpaths(tree) == ["open.py"]
    assert len(tree.warnings) == 1
    warning = tree.warnings[0]
    assert warning.kind is WarningKind.FILE_ACCESS
    assert warning.path == "locked"
    assert "Permission denied" in warning.detail


def test_source_file_reads_lazily(tmp_path):
    make_tree(tmp_path, {"a.py": "print('hi')\n", "blob.bin": b"GIF\x00\x01"})
    files = {source.relpath: source for source in walk(tmp_path)}

    assert "content" not in vars(files["a.py"])
    assert files["a.py"].content == "print('hi')\n"
    assert not files["a.py"].is_binary
    assert files["blob.bin"].is_binary


@pytest.mark.parametrize(
    "name, language",
    [
        ("Program.cs", "csharp"),
        ("Main.java", "java"),
        ("app.py", "python"),
        ("requirements-dev.txt", "requirements"),
        ("App.csproj", "xml"),
        ("Dockerfile", "dockerfile"),
        (".env.local", "dotenv"),
        ("notes.unknown", "text"),
    ],
)
def test_language_for(name, language):
    assert language_for(name) == language
