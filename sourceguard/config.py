"""Scan configuration and its YAML loader."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .errors import ConfigError
from .rules import SourceSpec
from .severity import Severity
from .utils.fileio import read_yaml_file
from .utils.walker import DEFAULT_EXCLUDES

DEFAULT_CONFIG_FILENAME = "sourceguard.yml"
DEFAULT_BUDGET_SECONDS = 120.0
DEFAULT_FILE_BUDGET_SECONDS = 5.0
DEFAULT_MAX_FILE_BYTES = 2_000_000


@dataclass(frozen=True)
class ScanConfig:
    """Everything one scan run needs. Defaults match the documented CLI defaults."""

    root: Path
    rule_sources: Tuple[SourceSpec, ...] = ()
    include_default_rules: bool = True
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = DEFAULT_EXCLUDES
    categories: Tuple[str, ...] = ()
    fail_on: Severity = Severity.HIGH
    budget_seconds: float = DEFAULT_BUDGET_SECONDS
    per_file_budget_seconds: Optional[float] = DEFAULT_FILE_BUDGET_SECONDS
    escalation_threshold: Optional[int] = None
    group_across_files: bool = False
    max_file_bytes: Optional[int] = DEFAULT_MAX_FILE_BYTES
    workers: Optional[int] = None
    allowlist: Optional[Path] = None
    inline_suppressions: bool = True
    advisories: Tuple[Path, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))
        if self.budget_seconds < 0:
            raise ConfigError(f"budget_seconds must be >= 0, got {self.budget_seconds}")
        if self.per_file_budget_seconds is not None and self.per_file_budget_seconds < 0:
            raise ConfigError(f"per_file_budget_seconds must be >= 0, got {self.per_file_budget_seconds}")
        if self.workers is not None and self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        if self.escalation_threshold is not None and self.escalation_threshold < 1:
            raise ConfigError(f"escalation_threshold must be >= 1, got {self.escalation_threshold}")

    def with_overrides(self, **changes: Any) -> "ScanConfig":
        """Return a copy with every non-``None`` value in ``changes`` applied."""

        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def load_config(path: Union[str, Path], **overrides: Any) -> ScanConfig:
    """Read a YAML config file. Relative paths resolve against the file's directory."""

    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        raw = read_yaml_file(config_path) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"{config_path}: could not parse config: {exc}") from None
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: config must be a mapping")

    config = config_from_dict(raw, base_dir=config_path.parent, source=str(config_path))
    return config.with_overrides(**overrides)


_KNOWN_KEYS = {
    "root",
    "rules",
    "default_rules",
    "include",
    "exclude",
    "extra_exclude",
    "categories",
    "fail_on",
    "budget_seconds",
    "per_file_budget_seconds",
    "escalation_threshold",
    "group_across_files",
    "max_file_bytes",
    "workers",
    "allowlist",
    "inline_suppressions",
    "advisories",
}


def config_from_dict(raw: Dict[str, Any], *, base_dir: Path = Path("."), source: str = "config") -> ScanConfig:
    unknown = sorted(set(raw) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"{source}: unknown keys: {', '.join(unknown)}")

    def resolve(value: Any) -> Path:
        candidate = Path(str(value))
        return candidate if candidate.is_absolute() else base_dir / candidate

    def rule_location(value: Any) -> str:
        text = str(value)
        if "://" in text:
            return text
        return str(resolve(text))

    try:
        fail_on = Severity.parse(raw.get("fail_on", Severity.HIGH.value))
    except ValueError as exc:
        raise ConfigError(f"{source}: fail_on: {exc}") from None

    exclude = _string_list(raw, "exclude", source, default=list(DEFAULT_EXCLUDES))
    exclude += _string_list(raw, "extra_exclude", source)
    allowlist = raw.get("allowlist")

    return ScanConfig(
        root=resolve(raw.get("root", ".")),
        rule_sources=tuple(rule_location(item) for item in _string_list(raw, "rules", source)),
        include_default_rules=_bool(raw, "default_rules", source, True),
        include=tuple(_string_list(raw, "include", source)),
        exclude=tuple(exclude),
        categories=tuple(_string_list(raw, "categories", source)),
        fail_on=fail_on,
        budget_seconds=_number(raw, "budget_seconds", source, DEFAULT_BUDGET_SECONDS),
        per_file_budget_seconds=_number(raw, "per_file_budget_seconds", source, DEFAULT_FILE_BUDGET_SECONDS),
        escalation_threshold=_int(raw, "escalation_threshold", source, None),
        group_across_files=_bool(raw, "group_across_files", source, False),
        max_file_bytes=_int(raw, "max_file_bytes", source, DEFAULT_MAX_FILE_BYTES),
        workers=_int(raw, "workers", source, None),
        allowlist=resolve(allowlist) if allowlist else None,
        inline_suppressions=_bool(raw, "inline_suppressions", source, True),
        advisories=tuple(resolve(item) for item in _string_list(raw, "advisories", source)),
    )


def _string_list(raw: Dict[str, Any], key: str, source: str, default: Optional[list] = None) -> list:
    value = raw.get(key)
    if value is None:
        return list(default or [])
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{source}: '{key}' must be a list of strings")
    return [str(item) for item in value]


def _bool(raw: Dict[str, Any], key: str, source: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{source}: '{key}' must be true or false")
    return value


def _number(raw: Dict[str, Any], key: str, source: str, default: Optional[float]) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"{source}: '{key}' must be a non-negative number")
    return float(value)


def _int(raw: Dict[str, Any], key: str, source: str, default: Optional[int]) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{source}: '{key}' must be a positive integer")
    return value
