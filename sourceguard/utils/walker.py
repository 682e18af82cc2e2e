"""Source tree enumeration."""

from __future__ import annotations

import logging
import os
from fnmatch import fnmatchcase
from functools import cached_property
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from sourceguard.errors import ScanWarning, file_access

from .fileio import looks_binary

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES: Tuple[str, ...] = (
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "bin",
    "obj",
    "build",
    "dist",
    "target",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
)

LANGUAGE_BY_EXTENSION = {
    ".cs": "csharp",
    ".java": "java",
    ".kt": "kotlin",
    ".scala": "scala",
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".sh": "shell",
    ".bash": "shell",
    ".ps1": "powershell",
    ".psm1": "powershell",
    ".sql": "sql",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".rs": "rust",
    ".swift": "swift",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".xml": "xml",
    ".csproj": "xml",
    ".props": "xml",
    ".config": "xml",
    ".ini": "ini",
    ".cfg": "ini",
    ".tf": "terraform",
    ".md": "markdown",
    ".txt": "text",
}


def language_for(filename: str) -> str:
    """Derive a language tag from a file name."""

    lowered = filename.lower()
    if fnmatchcase(lowered, "requirements*.txt"):
        return "requirements"
    if lowered == "dockerfile" or lowered.endswith(".dockerfile"):
        return "dockerfile"
    if lowered == ".env" or lowered.startswith(".env."):
        return "dotenv"
    return LANGUAGE_BY_EXTENSION.get(os.path.splitext(lowered)[1], "text")


class SourceFile:
    """A candidate file. Content is read once, on first access, and never written."""

    def __init__(self, path: Path, relpath: str, language: str) -> None:
        self.path = path
        self.relpath = relpath
        self.language = language

    def __repr__(self) -> str:
        return f"SourceFile({self.relpath!r}, language={self.language!r})"

    @cached_property
    def data(self) -> bytes:
        return self.path.read_bytes()

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    @property
    def is_binary(self) -> bool:
        return looks_binary(self.data)

    @cached_property
    def content(self) -> str:
        """UTF-8 text; undecodable bytes are replaced so legacy encodings still scan."""

        return self.data.decode("utf-8", errors="replace")


def matches_any(relpath: str, patterns: Iterable[str]) -> bool:
    """Match a relative posix path against fnmatch-style globs.

    A pattern also matches the bare name, and a leading ``**/`` matches at the
    root, so ``node_modules`` and ``**/*.min.js`` behave as expected.
    """

    name = relpath.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatchcase(relpath, pattern) or fnmatchcase(name, pattern):
            return True
        if pattern.startswith("**/") and fnmatchcase(relpath, pattern[3:]):
            return True
    return False


class SourceTree:
    """Restartable, finite, lexicographically ordered sequence of source files.

    Each iteration walks the tree again. Symlinked directories are followed,
    but a real path is entered at most once, so link cycles terminate.
    Unreadable directories are recorded in ``warnings``.
    """

    def __init__(
        self,
        root: Path,
        include: Iterable[str] = (),
        exclude: Iterable[str] = DEFAULT_EXCLUDES,
    ) -> None:
        self.root = Path(root)
        self.include = tuple(include)
        self.exclude = tuple(exclude)
        self.warnings: List[ScanWarning] = []

    def __iter__(self) -> Iterator[SourceFile]:
        self.warnings = []
        visited_dirs: Set[str] = {os.path.realpath(self.root)}
        visited_files: Set[str] = set()
        return self._walk_dir(str(self.root), "", visited_dirs, visited_files)

    def _walk_dir(
        self,
        directory: str,
        rel_prefix: str,
        visited_dirs: Set[str],
        visited_files: Set[str],
    ) -> Iterator[SourceFile]:
        try:
            with os.scandir(directory) as iterator:
                entries = [(entry, self._kind(entry)) for entry in iterator]
        except OSError as exc:
            detail = f"cannot list directory: {exc.strerror or exc}"
            logger.warning("%s: %s", rel_prefix or ".", detail)
            self.warnings.append(file_access(rel_prefix or ".", detail))
            return

        # A directory sorts as "name/" so its children interleave with files by full path.
        entries.sort(key=lambda item: item[0].name + "/" if item[1] == "dir" else item[0].name)

        for entry, kind in entries:
            rel = f"{rel_prefix}/{entry.name}" if rel_prefix else entry.name
            if kind == "dir":
                if matches_any(rel, self.exclude):
                    continue
                real = os.path.realpath(entry.path)
                if real in visited_dirs:
                    logger.debug("skipping already visited directory %s", rel)
                    continue
                visited_dirs.add(real)
                yield from self._walk_dir(entry.path, rel, visited_dirs, visited_files)
            elif kind == "file":
                if matches_any(rel, self.exclude):
                    continue
                if self.include and not matches_any(rel, self.include):
                    continue
                real = os.path.realpath(entry.path)
                if real in visited_files:
                    continue
                visited_files.add(real)
                yield SourceFile(path=Path(entry.path), relpath=rel, language=language_for(entry.name))

    @staticmethod
    def _kind(entry: os.DirEntry) -> Optional[str]:
        try:
            if entry.is_dir(follow_symlinks=True):
                return "dir"
            if entry.is_file(follow_symlinks=True):
                return "file"
        except OSError:
            return None
        return None


def walk(root: Path, include: Iterable[str] = (), exclude: Iterable[str] = DEFAULT_EXCLUDES) -> SourceTree:
    """Enumerate candidate files under ``root`` applying include/exclude globs."""

    return SourceTree(root, include=include, exclude=exclude)
