"""Core result data structures for the scanner."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Tuple

from .errors import ScanWarning
from .severity import SEVERITY_ORDER, Category, Severity


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class RawHit:
    """One unprocessed pattern match, before deduplication."""

    rule_id: str
    path: str
    line: int
    snippet: str


@dataclass(frozen=True)
class SkippedFile:
    """A file the matcher did not read (binary or oversized)."""

    path: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class Finding:
    """A deduplicated group of raw hits for one rule."""

    rule_id: str
    category: Category
    severity: Severity
    base_severity: Severity
    path: str
    line: int
    count: int
    message: str
    snippet: str
    recommendation: str = ""
    lines: Tuple[int, ...] = ()
    paths: Tuple[str, ...] = ()

    @property
    def escalated(self) -> bool:
        return self.severity is not self.base_severity

    def sort_key(self) -> tuple:
        return (-self.severity.rank, self.rule_id, self.path)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        data["base_severity"] = self.base_severity.value
        data["escalated"] = self.escalated
        data["lines"] = list(self.lines)
        data["paths"] = list(self.paths)
        return data


@dataclass
class Summary:
    """Aggregate finding counts by severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def increment(self, severity: Severity) -> None:
        attr = severity.value
        setattr(self, attr, getattr(self, attr) + 1)

    @classmethod
    def from_findings(cls, findings: Iterable[Finding]) -> "Summary":
        summary = cls()
        for finding in findings:
            summary.increment(finding.severity)
        return summary

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    def as_rows(self) -> List[Tuple[str, int]]:
        """Return severity/count pairs ordered for reporting."""

        return [(severity.value, getattr(self, severity.value)) for severity in SEVERITY_ORDER]

    @property
    def total(self) -> int:
        return sum(getattr(self, severity.value) for severity in SEVERITY_ORDER)


@dataclass(frozen=True)
class ScanResult:
    """Bundle the ordered findings, verdict inputs and warnings of one run."""

    findings: Tuple[Finding, ...] = ()
    fail_on: Severity = Severity.HIGH
    files_scanned: int = 0
    duration: float = 0.0
    skipped: Tuple[SkippedFile, ...] = ()
    warnings: Tuple[ScanWarning, ...] = ()
    partial: bool = False
    summary: Summary = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "summary", Summary.from_findings(self.findings))

    @property
    def verdict(self) -> Verdict:
        if any(finding.severity.at_least(self.fail_on) for finding in self.findings):
            return Verdict.FAIL
        return Verdict.PASS

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def top_findings(self, limit: int = 5) -> List[Finding]:
        """Return the first ``limit`` findings; they are already ranked."""

        return list(self.findings[:limit])

    def to_dict(self) -> Dict[str, object]:
        """Machine-readable form. Carries no timestamps or durations."""

        return {
            "verdict": self.verdict.value,
            "fail_on": self.fail_on.value,
            "partial": self.partial,
            "files_scanned": self.files_scanned,
            "summary": self.summary.to_dict(),
            "findings": [finding.to_dict() for finding in self.findings],
            "skipped": [item.to_dict() for item in self.skipped],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
