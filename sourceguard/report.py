"""Render scan results. Every renderer is pure: equal results give equal bytes."""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional

from .result import Finding, ScanResult

FORMATS = ("text", "json", "markdown", "sarif")
DEFAULT_TOP_FINDINGS = 10
SARIF_LEVELS = {"low": "note", "medium": "warning", "high": "error", "critical": "error"}


def render(
    result: ScanResult,
    report_format: str = "json",
    *,
    envelope: Optional[Dict[str, object]] = None,
    top: int = DEFAULT_TOP_FINDINGS,
) -> str:
    """Render ``result`` as ``text``, ``json``, ``markdown`` or ``sarif``.

    ``envelope`` carries caller metadata such as a timestamp. The JSON form
    wraps the report in it; the markdown form lists it under the title. The
    report body itself never contains timestamps or durations.
    """

    renderers: Dict[str, Callable[[], str]] = {
        "text": lambda: format_summary_table(result, max_findings=top),
        "json": lambda: to_json(result, envelope=envelope),
        "markdown": lambda: to_markdown(result, envelope=envelope),
        "sarif": lambda: to_sarif(result),
    }
    try:
        renderer = renderers[report_format]
    except KeyError:
        raise ValueError(f"unknown report format {report_format!r} (expected one of: {', '.join(FORMATS)})") from None
    return renderer()


def to_json(result: ScanResult, *, envelope: Optional[Dict[str, object]] = None) -> str:
    document: Dict[str, object] = result.to_dict()
    if envelope is not None:
        document = {"envelope": dict(envelope), "report": document}
    return json.dumps(document, indent=2, ensure_ascii=True) + "\n"


def format_summary_table(result: ScanResult, max_findings: int = DEFAULT_TOP_FINDINGS) -> str:
    """Create a human-readable summary table for console output."""

    lines: List[str] = []
    lines.append("Scan Summary")
    lines.append("=" * 40)
    header = f"{'Severity':<10} | {'Count':>5}"
    lines.append(header)
    lines.append("-" * len(header))
    for severity, count in result.summary.as_rows():
        lines.append(f"{severity:<10} | {count:>5}")
    lines.append("-" * len(header))
    lines.append(f"Verdict   : {result.verdict.value.upper()} (fails on {result.fail_on.value} or above)")
    lines.append(f"Findings  : {result.summary.total}")
    lines.append(f"Files     : {result.files_scanned} scanned, {len(result.skipped)} skipped")
    if result.partial:
        lines.append("Partial   : yes, the scan budget ran out before every file was scanned")

    findings = result.top_findings(max_findings)
    if findings:
        lines.append("")
        lines.append("Top Findings")
        lines.append("-" * 40)
        for finding in findings:
            lines.append(f"[{finding.severity.value.upper()}] {finding.rule_id} {_location(finding)}{_count_note(finding)}")
            lines.append(f"  {finding.message}")
        hidden = len(result.findings) - len(findings)
        if hidden > 0:
            lines.append(f"... and {hidden} more")

    if result.warnings:
        lines.append("")
        lines.append("Warnings")
        lines.append("-" * 40)
        for warning in result.warnings:
            where = f"{warning.path}: " if warning.path else ""
            lines.append(f"[{warning.kind.value}] {where}{warning.detail}")
    return "\n".join(lines) + "\n"


def to_markdown(result: ScanResult, *, envelope: Optional[Dict[str, object]] = None) -> str:
    lines = ["# Security Scan Report", ""]
    if envelope:
        for key, value in envelope.items():
            lines.append(f"- {key}: {value}")
        lines.append("")

    status = "PASSED" if result.passed else "ISSUES FOUND"
    lines.append("## Summary")
    lines.append(f"- Total findings: {result.summary.total}")
    lines.append(
        "- By severity: "
        + ", ".join(f"{severity}: {count}" for severity, count in result.summary.as_rows())
    )
    lines.append(f"- Scan status: {status} (fails on {result.fail_on.value} or above)")
    lines.append(f"- Files scanned: {result.files_scanned}")
    if result.partial:
        lines.append("- Partial result: the scan budget ran out")
    lines.append("")

    lines.append("## Findings")
    if not result.findings:
        lines.append("No security issues found.")
    else:
        lines.append("| Severity | Rule | Location | Hits | Message |")
        lines.append("|----------|------|----------|------|---------|")
        for finding in result.findings:
            message = finding.message.replace("|", "\\|")
            lines.append(
                f"| {finding.severity.value.upper()} | `{finding.rule_id}` | `{_location(finding)}` "
                f"| {finding.count} | {message} |"
            )
    lines.append("")

    recommendations: Dict[str, str] = {}
    for finding in result.findings:
        if finding.recommendation:
            recommendations.setdefault(finding.rule_id, finding.recommendation)
    if recommendations:
        lines.append("## Recommendations")
        for index, (rule_id, text) in enumerate(recommendations.items(), start=1):
            lines.append(f"{index}. `{rule_id}`: {text}")
        lines.append("")

    if result.warnings:
        lines.append("## Warnings")
        for warning in result.warnings:
            where = f"`{warning.path}` " if warning.path else ""
            lines.append(f"- {warning.kind.value}: {where}{warning.detail}")
        lines.append("")
    return "\n".join(lines)


def to_sarif(result: ScanResult) -> str:
    """Minimal SARIF 2.1.0 document."""

    rules: Dict[str, Dict[str, object]] = {}
    results = []
    for finding in result.findings:
        rules.setdefault(
            finding.rule_id,
            {
                "id": finding.rule_id,
                "shortDescription": {"text": finding.message[:80]},
                "help": {"text": finding.recommendation or finding.message},
                "properties": {"category": finding.category.value},
            },
        )
        results.append(
            {
                "ruleId": finding.rule_id,
                "level": SARIF_LEVELS[finding.severity.value],
                "message": {"text": finding.message},
                "locations": [
                    {
                        "physicalLocation": {
                            "artifactLocation": {"uri": path},
                            "region": {"startLine": finding.line if path == finding.path else 1},
                        }
                    }
                    for path in (finding.paths or (finding.path,))
                ],
                "properties": {
                    "severity": finding.severity.value,
                    "count": finding.count,
                    "escalated": finding.escalated,
                },
            }
        )
    sarif = {
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {"driver": {"name": "sourceguard", "rules": list(rules.values())}},
                "results": results,
            }
        ],
    }
    return json.dumps(sarif, indent=2) + "\n"


def _location(finding: Finding) -> str:
    location = f"{finding.path}:{finding.line}"
    extra = len(finding.paths) - 1
    if extra > 0:
        location += f" (+{extra} more files)"
    return location


def _count_note(finding: Finding) -> str:
    if finding.count <= 1:
        return ""
    note = f" x{finding.count}"
    if finding.escalated:
        note += f", escalated from {finding.base_severity.value}"
    return f" ({note.strip()})"
