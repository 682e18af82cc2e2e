"""Deduplicate raw hits into ranked findings."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .result import Finding, RawHit
from .rules import Rule, RuleSet

RuleLookup = Union[RuleSet, Mapping[str, Rule], Iterable[Rule]]


def aggregate(
    hits: Iterable[RawHit],
    rules: RuleLookup,
    *,
    group_across_files: bool = False,
    escalation_threshold: Optional[int] = None,
) -> Tuple[Finding, ...]:
    """Group hits by (rule id, path), or by rule id across files, and rank them.

    A group whose hit count exceeds the escalation threshold is raised one
    severity level. Findings are ordered by severity (most severe first), then
    rule id, then path; the order does not depend on the order of ``hits``.
    ``escalation_threshold`` overrides every rule's own threshold.
    """

    lookup = _as_mapping(rules)
    groups: Dict[Tuple[str, ...], List[RawHit]] = {}
    for hit in hits:
        if hit.rule_id not in lookup:
            raise ValueError(f"hit references unknown rule {hit.rule_id!r} ({hit.path}:{hit.line})")
        key = (hit.rule_id,) if group_across_files else (hit.rule_id, hit.path)
        groups.setdefault(key, []).append(hit)

    findings = [
        _build_finding(lookup[key[0]], members, escalation_threshold)
        for key, members in groups.items()
    ]
    findings.sort(key=Finding.sort_key)
    return tuple(findings)


def _build_finding(rule: Rule, hits: List[RawHit], threshold_override: Optional[int]) -> Finding:
    ordered = sorted(hits, key=lambda hit: (hit.path, hit.line, hit.snippet))
    first = ordered[0]
    count = len(ordered)
    threshold = threshold_override if threshold_override is not None else rule.escalation_threshold
    severity = rule.severity.escalate() if count > threshold else rule.severity

    return Finding(
        rule_id=rule.id,
        category=rule.category,
        severity=severity,
        base_severity=rule.severity,
        path=first.path,
        line=first.line,
        count=count,
        message=rule.render_message(path=first.path, line=first.line, match=first.snippet, count=count),
        snippet=first.snippet,
        recommendation=rule.recommendation,
        lines=tuple(hit.line for hit in ordered if hit.path == first.path),
        paths=tuple(sorted({hit.path for hit in ordered})),
    )


def _as_mapping(rules: RuleLookup) -> Mapping[str, Rule]:
    if isinstance(rules, Mapping):
        return rules
    return {rule.id: rule for rule in rules}
