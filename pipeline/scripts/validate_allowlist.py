"""Validate .sourceguard-allow.json entries for expiry metadata."""

from __future__ import annotations

import json
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from sourceguard.errors import ConfigError
from sourceguard.suppressions import ALLOWLIST_FILENAME, parse_entries


def validate(allow_file: Path, today: date) -> List[str]:
    """Return one error line per entry that is malformed, undated or expired."""

    try:
        data = json.loads(allow_file.read_text(encoding="utf-8"))
        entries = parse_entries(data, str(allow_file))
    except (OSError, json.JSONDecodeError, ConfigError) as exc:
        return [str(exc)]

    errors: list[str] = []
    for entry in entries:
        label = f"{entry.rule} ({entry.path})"
        if entry.expires is None:
            errors.append(f"{label}: missing 'expires' date (YYYY-MM-DD)")
        elif entry.is_expired(today):
            errors.append(f"{label}: expired on {entry.expires}")
        if not entry.reason.strip():
            errors.append(f"{label}: missing 'reason'")
    return errors


def main(argv: Optional[List[str]] = None, today: Optional[date] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    allow_file = Path(args[0]) if args else Path(ALLOWLIST_FILENAME)
    if not allow_file.exists():
        return 0

    errors = validate(allow_file, today or datetime.now(timezone.utc).date())
    if errors:
        sys.stderr.write("Allowlist validation failed:\n" + "\n".join(errors) + "\n")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
