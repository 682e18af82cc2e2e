import random

import pytest

from sourceguard.aggregate import aggregate
from sourceguard.result import RawHit
from sourceguard.rules import build_rule
from sourceguard.severity import Severity

RULES = [
    build_rule({"id": "weak-random", "severity": "critical", "category": "weak-crypto", "pattern": "Random"}),
    build_rule({"id": "sql-injection", "severity": "high", "category": "injection-risk", "pattern": "SELECT"}),
    build_rule(
        {
            "id": "hardcoded-secret",
            "severity": "high",
            "category": "hardcoded-secret",
            "pattern": "password",
            "message": "{count} secret(s) in {path}, first at line {line}",
            "recommendation": "Use a vault.",
        }
    ),
    build_rule({"id": "missing-input-validation", "severity": "medium", "pattern": "public"}),
    build_rule({"id": "noisy", "severity": "low", "pattern": "x", "escalation_threshold": 2}),
]


def hit(rule_id, path, line, snippet="snippet"):
    return RawHit(rule_id=rule_id, path=path, line=line, snippet=snippet)


def sample_hits():
    return [
        hit("missing-input-validation", "b/Api.cs", 4),
        hit("hardcoded-secret", "z.py", 1),
        hit("sql-injection", "a/Repo.cs", 9),
        hit("weak-random", "b/Pin.cs", 3),
        hit("hardcoded-secret", "a.py", 7),
        hit("hardcoded-secret", "a.py", 2),
        hit("weak-random", "a/Pin.cs", 12),
        hit("noisy", "n.txt", 1),
    ]


def test_findings_are_ordered_by_severity_then_rule_then_path():
    findings = aggregate(sample_hits(), RULES)

    assert [(f.severity.value, f.rule_id, f.path) for f in findings] == [
        ("critical", "weak-random", "a/Pin.cs"),
        ("critical", "weak-random", "b/Pin.cs"),
        ("high", "hardcoded-secret", "a.py"),
        ("high", "hardcoded-secret", "z.py"),
        ("high", "sql-injection", "a/Repo.cs"),
        ("medium", "missing-input-validation", "b/Api.cs"),
        ("low", "noisy", "n.txt"),
    ]


@pytest.mark.parametrize("seed", range(25))
def test_order_does_not_depend_on_hit_order(seed):
    expected = aggregate(sample_hits(), RULES)
    shuffled = sample_hits()
    random.Random(seed).shuffle(shuffled)

    assert aggregate(shuffled, RULES) == expected


def test_every_hit_lands_in_exactly_one_finding():
    hits = sample_hits()

    findings = aggregate(hits, RULES)

    assert sum(finding.count for finding in findings) == len(hits)


def test_group_uses_first_line_and_renders_message():
    findings = aggregate([hit("hardcoded-secret", "a.py", 7), hit("hardcoded-secret", "a.py", 2)], RULES)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.line == 2
    assert finding.lines == (2, 7)
    assert finding.count == 2
    assert finding.message == "2 secret(s) in a.py, first at line 2"
    assert finding.recommendation == "Use a vault."


def test_hits_above_threshold_escalate_into_one_finding():
    hits = [hit("missing-input-validation", "Api.cs", line) for line in range(1, 7)]

    findings = aggregate(hits, RULES)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.count == 6
    assert finding.severity is Severity.HIGH
    assert finding.base_severity is Severity.MEDIUM
    assert finding.escalated


def test_hits_at_threshold_do_not_escalate():
    hits = [hit("missing-input-validation", "Api.cs", line) for line in range(1, 6)]

    finding = aggregate(hits, RULES)[0]

    assert finding.severity is Severity.MEDIUM
    assert not finding.escalated


def test_escalation_is_capped_at_critical():
    hits = [hit("weak-random", "Pin.cs", line) for line in range(1, 20)]

    assert aggregate(hits, RULES)[0].severity is Severity.CRITICAL


def test_rule_threshold_and_override():
    hits = [hit("noisy", "n.txt", line) for line in range(1, 4)]

    assert aggregate(hits, RULES)[0].severity is Severity.MEDIUM
    assert aggregate(hits, RULES, escalation_threshold=10)[0].severity is Severity.LOW


def test_group_across_files():
    hits = [hit("sql-injection", "b.cs", 1), hit("sql-injection", "a.cs", 5), hit("sql-injection", "a.cs", 2)]

    findings = aggregate(hits, RULES, group_across_files=True)

    assert len(findings) == 1
    finding = findings[0]
    assert (finding.path, finding.line, finding.count) == ("a.cs", 2, 3)
    assert finding.paths == ("a.cs", "b.cs")
    assert finding.lines == (2, 5)


def test_no_hits_no_findings():
    assert aggregate([], RULES) == ()


def test_hit_for_unknown_rule_is_rejected():
    with pytest.raises(ValueError, match="unknown rule 'ghost'"):
        aggregate([hit("ghost", "a.py", 1)], RULES)
