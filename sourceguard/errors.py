"""Error and warning taxonomy for a scan run."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Optional


class SourceguardError(Exception):
    """Base class for errors raised by the scanner."""


class ConfigError(SourceguardError, ValueError):
    """Fatal, pre-scan configuration problem (bad root, malformed rule)."""


class WarningKind(str, Enum):
    """Recoverable conditions recorded on a scan result."""

    FILE_ACCESS = "FileAccessWarning"
    RULE_TIMEOUT = "RuleTimeout"
    SCAN_TIMEOUT = "ScanTimeout"


@dataclass(frozen=True)
class ScanWarning:
    """A recoverable problem; the scan continued or finished partially."""

    kind: WarningKind
    detail: str
    path: Optional[str] = None

    def sort_key(self) -> tuple:
        return (self.kind.value, self.path or "", self.detail)

    def to_dict(self) -> Dict[str, Optional[str]]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def file_access(path: Optional[str], detail: str) -> ScanWarning:
    return ScanWarning(kind=WarningKind.FILE_ACCESS, detail=detail, path=path)


def rule_timeout(path: str, detail: str) -> ScanWarning:
    return ScanWarning(kind=WarningKind.RULE_TIMEOUT, detail=detail, path=path)


def scan_timeout(detail: str) -> ScanWarning:
    return ScanWarning(kind=WarningKind.SCAN_TIMEOUT, detail=detail)
