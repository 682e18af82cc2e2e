import json

import pytest
import requests
import yaml

from sourceguard.errors import ConfigError
from sourceguard.rules import DEFAULT_ESCALATION_THRESHOLD, Rule, active, build_rule, dump_rules, load
from sourceguard.severity import Category, Severity


def write_rules(tmp_path, rules, name="rules.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump({"rules": rules}), encoding="utf-8")
    return path


def test_builtin_rules_load_with_unique_ids():
    ruleset = load()

    assert ruleset.sources == ("builtin",)
    assert len(ruleset) == len(set(ruleset.ids))
    assert "hardcoded-secret" in ruleset
    assert ruleset.get("weak-random").is_structural
    assert ruleset.get("hardcoded-secret").severity is Severity.HIGH
    assert all(rule.escalation_threshold == DEFAULT_ESCALATION_THRESHOLD for rule in ruleset)


def test_partial_override_keeps_the_rest_of_the_rule_and_its_position(tmp_path):
    builtin = load()
    path = write_rules(tmp_path, [{"id": "weak-random", "severity": "low"}])

    ruleset = load([path])

    rule = ruleset.get("weak-random")
    assert rule.severity is Severity.LOW
    assert rule.is_structural
    assert rule.message == builtin.get("weak-random").message
    assert ruleset.ids == builtin.ids
    assert ruleset.sources == ("builtin", str(path))


def test_pattern_override_replaces_structure(tmp_path):
    path = write_rules(tmp_path, [{"id": "weak-random", "pattern": r"new Random\(\)"}])

    rule = load([path]).get("weak-random")

    assert not rule.is_structural
    assert rule.compiled.search("var r = new Random();")


def test_later_sources_win_and_new_rules_are_appended(tmp_path):
    first = write_rules(tmp_path, [{"id": "team-rule", "severity": "low", "pattern": "TODO-SECURITY"}], "first.yaml")
    second = write_rules(tmp_path, [{"id": "team-rule", "severity": "critical"}], "second.yaml")

    ruleset = load([first, second])

    assert ruleset.ids[-1] == "team-rule"
    assert ruleset.get("team-rule").severity is Severity.CRITICAL
    assert ruleset.get("team-rule").category is Category.CUSTOM


def test_enabled_false_removes_a_rule(tmp_path):
    path = write_rules(tmp_path, [{"id": "missing-input-validation", "enabled": False}])

    assert "missing-input-validation" not in load([path])


def test_defaults_can_be_left_out(tmp_path):
    path = write_rules(tmp_path, [{"id": "only", "severity": "low", "pattern": "x"}])

    assert load([path], include_defaults=False).ids == ("only",)


def test_duplicate_id_within_one_source_is_fatal(tmp_path):
    path = write_rules(
        tmp_path,
        [
            {"id": "dup", "severity": "low", "pattern": "a"},
            {"id": "dup", "severity": "high", "pattern": "b"},
        ],
    )

    with pytest.raises(ConfigError, match="duplicate rule id 'dup'"):
        load([path])


@pytest.mark.parametrize(
    "entry, message",
    [
        ({"id": "no-pattern", "severity": "high"}, "missing 'pattern' or 'structure'"),
        ({"id": "bad-severity", "severity": "urgent", "pattern": "x"}, "invalid severity"),
        ({"id": "bad-category", "severity": "low", "category": "misc", "pattern": "x"}, "invalid category"),
        ({"id": "bad-regex", "severity": "low", "pattern": "([a-z"}, "invalid pattern regex"),
        ({"id": "slow", "severity": "low", "pattern": "(a+)+$"}, "nested quantifier"),
        ({"id": "slow-exclude", "severity": "low", "pattern": "x", "exclude": "(a|aa)*"}, "overlapping branches"),
        ({"id": "typo", "severity": "low", "pattern": "x", "severty": "high"}, "unknown keys: severty"),
        ({"id": "both", "severity": "low", "pattern": "x", "structure": {"call": "eval"}}, "not both"),
        ({"id": "bad id!", "severity": "low", "pattern": "x"}, "invalid id"),
        ({"id": "zero", "severity": "low", "pattern": "x", "escalation_threshold": 0}, "positive integer"),
        ({"severity": "low", "pattern": "x"}, "missing 'id'"),
        ({"id": "positional", "severity": "low", "pattern": "x", "message": "avoid foo() {} in {path}"}, "empty placeholder"),
        ({"id": "numbered", "severity": "low", "pattern": "x", "message": "hit {0}"}, "must be a plain name"),
        ({"id": "attr", "severity": "low", "pattern": "x", "message": "{path.name}"}, "must be a plain name"),
        ({"id": "index", "severity": "low", "pattern": "x", "message": "{path[0]}"}, "must be a plain name"),
        ({"id": "spec", "severity": "low", "pattern": "x", "message": "{line:d}"}, "format spec"),
        ({"id": "unbalanced", "severity": "low", "pattern": "x", "message": "Dictionary<string, int> {"}, "invalid message template"),
        ({"id": "stray-close", "severity": "low", "pattern": "x", "message": "closing } brace"}, "invalid message template"),
    ],
)
def test_malformed_rules_raise_config_error(tmp_path, entry, message):
    path = write_rules(tmp_path, [entry])

    with pytest.raises(ConfigError, match=message):
        load([path], include_defaults=False)


def test_missing_rules_file_is_fatal(tmp_path):
    with pytest.raises(ConfigError, match="rules file not found"):
        load([tmp_path / "absent.yaml"])


def test_rules_document_may_be_a_bare_list(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- id: bare\n  severity: low\n  pattern: x\n", encoding="utf-8")

    assert load([path], include_defaults=False).ids == ("bare",)


def test_file_uri_source(tmp_path):
    path = write_rules(tmp_path, [{"id": "from-uri", "severity": "medium", "pattern": "x"}])

    ruleset = load([path.as_uri()], include_defaults=False)

    assert ruleset.ids == ("from-uri",)


def test_http_source_is_fetched_with_requests(monkeypatch):
    calls = []

    class FakeResponse:
        text = "rules:\n  - id: remote\n    severity: high\n    pattern: 'secret'\n"

        def raise_for_status(self):
            return None

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return FakeResponse()

    monkeypatch.setattr("sourceguard.rules.requests.get", fake_get)

    ruleset = load(["https://rules.example.test/team.yaml"], include_defaults=False)

    assert ruleset.ids == ("remote",)
    assert calls == [("https://rules.example.test/team.yaml", 30)]


def test_http_failure_becomes_config_error(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr("sourceguard.rules.requests.get", fake_get)

    with pytest.raises(ConfigError, match="failed to fetch rules"):
        load(["https://rules.example.test/team.yaml"])


def test_unsupported_scheme_is_rejected():
    with pytest.raises(ConfigError, match="unsupported rule source scheme 'ftp'"):
        load(["ftp://rules.example.test/team.yaml"])


class StaticSource:
    name = "static"

    def __init__(self, entries):
        self.entries = entries

    def load(self):
        return self.entries


def test_rule_source_objects_may_return_mappings_and_rules():
    prebuilt = build_rule({"id": "prebuilt", "severity": "low", "pattern": "x"}, "static")
    source = StaticSource([{"id": "mapped", "severity": "high", "pattern": "y"}, prebuilt])

    ruleset = load([source], include_defaults=False)

    assert ruleset.ids == ("mapped", "prebuilt")
    assert ruleset.get("prebuilt") is prebuilt
    assert ruleset.sources == ("static",)


def test_rule_from_a_source_object_can_be_overridden_later(tmp_path):
    prebuilt = build_rule({"id": "prebuilt", "severity": "low", "pattern": "x"}, "static")
    path = write_rules(tmp_path, [{"id": "prebuilt", "severity": "high"}])

    rule = load([StaticSource([prebuilt]), path], include_defaults=False).get("prebuilt")

    assert rule.severity is Severity.HIGH
    assert rule.pattern == "x"


def test_failing_rule_source_becomes_config_error():
    class Broken:
        name = "broken-feed"

        def load(self):
            raise RuntimeError("feed offline")

    with pytest.raises(ConfigError, match="broken-feed: rule source failed to load: feed offline"):
        load([Broken()])


def test_active_keeps_registration_order_not_alphabetical(tmp_path):
    path = write_rules(
        tmp_path,
        [
            {"id": "zeta", "severity": "low", "pattern": "z", "category": "weak-crypto"},
            {"id": "alpha", "severity": "low", "pattern": "a", "tags": ["Team"]},
        ],
    )
    ruleset = load([path], include_defaults=False)

    assert [rule.id for rule in active(ruleset)] == ["zeta", "alpha"]
    assert [rule.id for rule in active(ruleset, ["weak-crypto"])] == ["zeta"]
    assert [rule.id for rule in active(ruleset, ["team"])] == ["alpha"]
    assert active(ruleset, ["injection-risk"]) == ()


def test_active_filters_builtin_rules_by_tag():
    assert [rule.id for rule in active(load(), ["heuristic"])] == ["missing-input-validation"]


def test_render_message_keeps_unknown_placeholders():
    rule = build_rule(
        {"id": "tmpl", "severity": "low", "pattern": "x", "message": "{rule_id} {unknown} at {path}:{line}"}
    )

    assert rule.render_message(path="a.txt", line=3) == "tmpl {unknown} at a.txt:3"


def test_default_message_names_rule_and_location():
    rule = build_rule({"id": "plain", "severity": "low", "pattern": "x"})

    assert rule.render_message(path="a.txt", line=1) == "plain matched in a.txt:1"


def test_rules_are_immutable():
    rule = build_rule({"id": "frozen", "severity": "low", "pattern": "x"})

    with pytest.raises(AttributeError):
        rule.severity = Severity.HIGH  # type: ignore[misc]
    assert isinstance(rule, Rule)


def test_dump_rules_emits_loadable_json(tmp_path):
    rules = active(load())
    dumped = json.loads(dump_rules(rules))

    assert [item["id"] for item in dumped] == [rule.id for rule in rules]

    path = tmp_path / "dumped.json"
    path.write_text(json.dumps({"rules": dumped}), encoding="utf-8")
    assert load([path], include_defaults=False).ids == tuple(rule.id for rule in rules)


def test_escaped_braces_in_messages_render_literally():
    rule = build_rule({"id": "braces", "severity": "low", "pattern": "x", "message": "new {{ }} block in {path}"})

    assert rule.render_message(path="a.cs", line=2) == "new { } block in a.cs"


def test_rule_objects_from_sources_have_their_message_checked():
    class Source:
        name = "objects"

        def load(self):
            return [Rule(id="obj", category=Category.CUSTOM, severity=Severity.LOW, message="{} here", pattern="x")]

    with pytest.raises(ConfigError, match="objects: rule obj: invalid message template"):
        load([Source()], include_defaults=False)
