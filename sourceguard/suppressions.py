"""Inline ignore comments and the allowlist file.

Inline form, on the offending line::

    password = "hunter2"  # sourceguard: ignore[hardcoded-secret]

A bare ``sourceguard: ignore`` silences every rule on that line.

Allowlist form (``.sourceguard-allow.json`` at the scan root)::

    {"suppressions": [
        {"rule": "hardcoded-secret", "path": "tests/fixtures/*",
         "expires": "2026-12-31", "reason": "test data"}
    ]}
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional, Tuple

from .errors import ConfigError
from .utils.walker import matches_any

logger = logging.getLogger(__name__)

ALLOWLIST_FILENAME = ".sourceguard-allow.json"
INLINE_MARKER = re.compile(r"sourceguard:\s*ignore(?:\[([^\]]*)\])?", re.IGNORECASE)


@dataclass(frozen=True)
class AllowEntry:
    rule: str
    path: str = "*"
    expires: Optional[date] = None
    reason: str = ""

    def is_expired(self, today: date) -> bool:
        return self.expires is not None and self.expires < today

    def covers(self, rule_id: str, relpath: str) -> bool:
        return self.rule in ("*", rule_id) and matches_any(relpath, (self.path,))


@dataclass(frozen=True)
class Suppressions:
    entries: Tuple[AllowEntry, ...] = ()
    inline: bool = True

    def allows(self, rule_id: str, relpath: str) -> bool:
        return any(entry.covers(rule_id, relpath) for entry in self.entries)

    def ignored_inline(self, line: str, rule_id: str) -> bool:
        if not self.inline:
            return False
        match = INLINE_MARKER.search(line)
        if match is None:
            return False
        listed = match.group(1)
        if listed is None:
            return True
        return rule_id in {item.strip() for item in listed.split(",")}


NO_SUPPRESSIONS = Suppressions(inline=False)


def parse_entries(raw: object, source: str) -> Tuple[AllowEntry, ...]:
    """Parse allowlist entries, raising ``ConfigError`` when malformed."""

    if isinstance(raw, dict):
        raw = raw.get("suppressions", [])
    if not isinstance(raw, list):
        raise ConfigError(f"{source}: 'suppressions' must be a list")

    entries = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict) or not str(item.get("rule") or "").strip():
            raise ConfigError(f"{source}: suppression #{index} needs a 'rule'")
        expires_raw = item.get("expires")
        expires = None
        if expires_raw is not None:
            try:
                expires = date.fromisoformat(str(expires_raw))
            except ValueError:
                raise ConfigError(
                    f"{source}: suppression #{index} has invalid 'expires' (expected YYYY-MM-DD)"
                ) from None
        entries.append(
            AllowEntry(
                rule=str(item["rule"]).strip(),
                path=str(item.get("path") or "*").strip(),
                expires=expires,
                reason=str(item.get("reason") or ""),
            )
        )
    return tuple(entries)


def load_suppressions(root: Path, allowlist: Optional[Path] = None, *, inline: bool = True, today: Optional[date] = None) -> Suppressions:
    """Load the allowlist for ``root``; expired entries are dropped."""

    path = Path(allowlist) if allowlist else Path(root) / ALLOWLIST_FILENAME
    if not path.exists():
        if allowlist:
            raise ConfigError(f"Allowlist file not found: {path}")
        return Suppressions(inline=inline)

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"{path}: could not read allowlist: {exc}") from None

    today = today or date.today()
    active_entries = []
    for entry in parse_entries(raw, str(path)):
        if entry.is_expired(today):
            logger.debug("ignoring expired suppression %s for %s (expired %s)", entry.rule, entry.path, entry.expires)
            continue
        active_entries.append(entry)
    return Suppressions(entries=tuple(active_entries), inline=inline)
