"""Utility helpers for the scanner."""

from .fileio import looks_binary, read_yaml_file
from .walker import DEFAULT_EXCLUDES, SourceFile, SourceTree, language_for, walk

__all__ = [
    "DEFAULT_EXCLUDES",
    "SourceFile",
    "SourceTree",
    "language_for",
    "looks_binary",
    "read_yaml_file",
    "walk",
]
