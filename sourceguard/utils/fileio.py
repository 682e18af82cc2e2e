"""Basic file IO helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

BINARY_SNIFF_BYTES = 8192


def read_yaml_file(path: Path) -> Any:
    """Return the parsed YAML if the file exists, otherwise ``None``."""

    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def looks_binary(data: bytes) -> bool:
    """Null-byte heuristic over the first 8 KiB."""

    return b"\x00" in data[:BINARY_SNIFF_BYTES]
