"""Rule registry: declarative detection rules and the sources they load from."""

from __future__ import annotations

import json
import logging
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Pattern, Protocol, Sequence, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests
import yaml

from sourceguard.errors import ConfigError
from sourceguard.severity import Category, Severity

from .patterns import StructuralPredicate, check_backtracking

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_THRESHOLD = 5
DEFAULT_RULES_PATH = Path(__file__).with_name("default_rules.yaml")
BUILTIN_SOURCE = "builtin"
FETCH_TIMEOUT_SECONDS = 30

_RULE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")
_KNOWN_KEYS = {
    "id",
    "category",
    "severity",
    "message",
    "pattern",
    "structure",
    "exclude",
    "ignore_case",
    "languages",
    "tags",
    "escalation_threshold",
    "recommendation",
    "enabled",
}


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class Rule:
    """An immutable detection rule: a regex or structural predicate plus metadata."""

    id: str
    category: Category
    severity: Severity
    message: str
    pattern: Optional[str] = None
    structure: Optional[StructuralPredicate] = None
    exclude: Optional[str] = None
    ignore_case: bool = False
    languages: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    escalation_threshold: int = DEFAULT_ESCALATION_THRESHOLD
    recommendation: str = ""
    compiled: Optional[Pattern[str]] = field(default=None, init=False, repr=False, compare=False)
    compiled_exclude: Optional[Pattern[str]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        flags = re.IGNORECASE if self.ignore_case else 0
        if self.pattern is not None:
            object.__setattr__(self, "compiled", re.compile(self.pattern, flags))
        if self.exclude is not None:
            object.__setattr__(self, "compiled_exclude", re.compile(self.exclude, flags))

    @property
    def is_structural(self) -> bool:
        return self.structure is not None

    def applies_to(self, language: str) -> bool:
        return not self.languages or language in self.languages

    def excludes(self, line: str) -> bool:
        return self.compiled_exclude is not None and self.compiled_exclude.search(line) is not None

    def render_message(self, **values: Any) -> str:
        """Fill the message template; unknown placeholders are left as-is."""

        context = _KeepMissing(rule_id=self.id, category=self.category.value, severity=self.severity.value)
        context.update(values)
        return self.message.format_map(context)


class RuleSource(Protocol):
    """A pluggable provider of rule definitions (for example an advisory feed)."""

    name: str

    def load(self) -> Sequence[Union[Dict[str, Any], Rule]]:
        """Return rule definitions as mappings or ready-made ``Rule`` objects."""


@dataclass(frozen=True)
class RuleSet:
    """The merged, immutable rules of one scan, in registration order."""

    rules: Tuple[Rule, ...] = ()
    sources: Tuple[str, ...] = ()
    _by_id: Dict[str, Rule] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {rule.id: rule for rule in self.rules})

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._by_id.get(rule_id)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(rule.id for rule in self.rules)


SourceSpec = Union[str, Path, RuleSource]


def load(sources: Iterable[SourceSpec] = (), *, include_defaults: bool = True) -> RuleSet:
    """Merge the built-in rules with override sources; later sources win by id.

    An override entry for a known id is merged over the earlier definition, so
    ``{"id": "weak-random", "severity": "low"}`` only changes the severity. An
    entry with ``enabled: false`` drops the rule. Rules keep the position of
    their first registration.
    """

    raw_by_id: Dict[str, Dict[str, Any]] = {}
    merged: Dict[str, Rule] = {}
    loaded_sources: List[str] = []

    plan: List[SourceSpec] = [DEFAULT_RULES_PATH] if include_defaults else []
    plan.extend(sources)

    for spec in plan:
        name = BUILTIN_SOURCE if spec == DEFAULT_RULES_PATH else _source_name(spec)
        entries = _read_source(spec, name)
        seen_in_source: set = set()
        for entry in entries:
            if isinstance(entry, Rule):
                rule_id = entry.id
                _check_duplicate(rule_id, seen_in_source, name)
                problem = check_message_template(entry.message)
                if problem:
                    raise ConfigError(f"{name}: rule {rule_id}: invalid message template ({problem})")
                merged[rule_id] = entry
                raw_by_id[rule_id] = rule_to_dict(entry)
                continue
            if not isinstance(entry, dict):
                raise ConfigError(f"{name}: each rule entry must be a mapping, got {type(entry).__name__}")
            rule_id = str(entry.get("id") or "").strip()
            if not rule_id:
                raise ConfigError(f"{name}: rule entry is missing 'id'")
            _check_duplicate(rule_id, seen_in_source, name)

            if entry.get("enabled", True) is False:
                merged.pop(rule_id, None)
                raw_by_id.pop(rule_id, None)
                logger.debug("rule %s disabled by %s", rule_id, name)
                continue

            base = raw_by_id.get(rule_id, {})
            combined = {**base, **entry}
            if "pattern" in entry and "structure" not in entry:
                combined.pop("structure", None)
            if "structure" in entry and "pattern" not in entry:
                combined.pop("pattern", None)
            merged[rule_id] = build_rule(combined, name)
            raw_by_id[rule_id] = combined
        loaded_sources.append(name)
        logger.debug("loaded %d rule entries from %s", len(entries), name)

    return RuleSet(rules=tuple(merged.values()), sources=tuple(loaded_sources))


def active(ruleset: RuleSet, tags: Optional[Iterable[str]] = None) -> Tuple[Rule, ...]:
    """Return the rules matching any of ``tags`` (category names or rule tags).

    With no tags every rule is returned. Order is registration order; ids
    break ties, which keeps reports diffable between runs.
    """

    wanted = {str(tag).strip().lower() for tag in tags or () if str(tag).strip()}
    indexed = list(enumerate(ruleset.rules))
    if wanted:
        indexed = [
            (index, rule)
            for index, rule in indexed
            if rule.category.value in wanted or wanted.intersection(tag.lower() for tag in rule.tags)
        ]
    indexed.sort(key=lambda item: (item[0], item[1].id))
    return tuple(rule for _, rule in indexed)


def check_message_template(message: str) -> Optional[str]:
    """Return why ``message`` cannot be rendered, or ``None`` if it is usable.

    Placeholders must be bare names such as ``{path}``; literal braces are
    written ``{{`` and ``}}``.
    """

    try:
        fields = list(string.Formatter().parse(message))
    except ValueError as exc:
        return str(exc).lower()
    for _, field_name, format_spec, conversion in fields:
        if field_name is None:
            continue
        if not field_name:
            return "empty placeholder '{}'"
        if not field_name.isidentifier():
            return f"placeholder '{{{field_name}}}' must be a plain name"
        if format_spec or conversion:
            return f"placeholder '{{{field_name}}}' may not use a conversion or format spec"
    return None


def build_rule(data: Dict[str, Any], source: str = BUILTIN_SOURCE) -> Rule:
    """Validate a rule mapping and build a ``Rule``; raise ``ConfigError`` if malformed."""

    rule_id = str(data.get("id") or "").strip()
    where = f"{source}: rule {rule_id or '<unnamed>'}"
    if not rule_id:
        raise ConfigError(f"{source}: rule entry is missing 'id'")
    if not _RULE_ID.match(rule_id):
        raise ConfigError(f"{where}: invalid id (letters, digits, '-', '_', '.', ':' only)")

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"{where}: unknown keys: {', '.join(unknown)}")

    try:
        severity = Severity.parse(data.get("severity"))
        category = Category.parse(data.get("category", Category.CUSTOM.value))
    except ValueError as exc:
        raise ConfigError(f"{where}: {exc}") from None

    pattern = data.get("pattern")
    structure_raw = data.get("structure")
    if not pattern and not structure_raw:
        raise ConfigError(f"{where}: missing 'pattern' or 'structure'")
    if pattern and structure_raw:
        raise ConfigError(f"{where}: define either 'pattern' or 'structure', not both")

    structure = None
    if structure_raw:
        try:
            structure = StructuralPredicate.from_dict(structure_raw)
        except ValueError as exc:
            raise ConfigError(f"{where}: {exc}") from None

    exclude = data.get("exclude")
    for label, regex in (("pattern", pattern), ("exclude", exclude)):
        if regex is None:
            continue
        if not isinstance(regex, str) or not regex:
            raise ConfigError(f"{where}: '{label}' must be a non-empty string")
        try:
            re.compile(regex)
        except re.error as exc:
            raise ConfigError(f"{where}: invalid {label} regex: {exc}") from None
        reason = check_backtracking(regex)
        if reason:
            raise ConfigError(f"{where}: {label} rejected ({reason} may backtrack exponentially)")

    threshold = data.get("escalation_threshold", DEFAULT_ESCALATION_THRESHOLD)
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        raise ConfigError(f"{where}: 'escalation_threshold' must be a positive integer")

    message = str(data.get("message") or "").strip() or "{rule_id} matched in {path}:{line}"
    problem = check_message_template(message)
    if problem:
        raise ConfigError(f"{where}: invalid message template ({problem})")

    return Rule(
        id=rule_id,
        category=category,
        severity=severity,
        message=message,
        pattern=pattern,
        structure=structure,
        exclude=exclude,
        ignore_case=bool(data.get("ignore_case", False)),
        languages=_string_tuple(data.get("languages"), where, "languages"),
        tags=_string_tuple(data.get("tags"), where, "tags"),
        escalation_threshold=threshold,
        recommendation=str(data.get("recommendation") or "").strip(),
    )


def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": rule.id,
        "category": rule.category.value,
        "severity": rule.severity.value,
        "message": rule.message,
    }
    if rule.pattern is not None:
        data["pattern"] = rule.pattern
    if rule.structure is not None:
        data["structure"] = rule.structure.to_dict()
    if rule.exclude is not None:
        data["exclude"] = rule.exclude
    data["ignore_case"] = rule.ignore_case
    data["languages"] = list(rule.languages)
    data["tags"] = list(rule.tags)
    data["escalation_threshold"] = rule.escalation_threshold
    data["recommendation"] = rule.recommendation
    return data


# ----------------------------------------------------------------------
# Source readers
# ----------------------------------------------------------------------
def _source_name(spec: SourceSpec) -> str:
    if isinstance(spec, (str, Path)):
        return str(spec)
    return str(getattr(spec, "name", type(spec).__name__))


def _read_source(spec: SourceSpec, name: str) -> List[Any]:
    if not isinstance(spec, (str, Path)):
        loader = getattr(spec, "load", None)
        if loader is None:
            raise ConfigError(f"{name}: rule source must be a path, URI or provide load()")
        try:
            return list(loader())
        except ConfigError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise ConfigError(f"{name}: rule source failed to load: {exc}") from exc

    text = _fetch_text(str(spec), name)
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{name}: could not parse rules: {exc}") from None
    return _entries_from_document(document, name)


def _fetch_text(location: str, name: str) -> str:
    parsed = urlparse(location)
    if parsed.scheme in {"http", "https"}:
        try:
            response = requests.get(location, timeout=FETCH_TIMEOUT_SECONDS)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ConfigError(f"{name}: failed to fetch rules: {exc}") from None
        return response.text

    if parsed.scheme == "file":
        path = Path(url2pathname(parsed.path))
    elif parsed.scheme and len(parsed.scheme) > 1:
        raise ConfigError(f"{name}: unsupported rule source scheme '{parsed.scheme}'")
    else:
        path = Path(location)

    if not path.is_file():
        raise ConfigError(f"{name}: rules file not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"{name}: could not read rules file: {exc}") from None


def _entries_from_document(document: Any, name: str) -> List[Any]:
    if document is None:
        return []
    if isinstance(document, dict):
        if "rules" not in document:
            raise ConfigError(f"{name}: rules document must be a list or contain a 'rules' list")
        document = document["rules"] or []
    if not isinstance(document, list):
        raise ConfigError(f"{name}: 'rules' must be a list")
    return document


def _check_duplicate(rule_id: str, seen: set, source: str) -> None:
    if rule_id in seen:
        raise ConfigError(f"{source}: duplicate rule id '{rule_id}'")
    seen.add(rule_id)


def _string_tuple(value: Any, where: str, label: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{where}: '{label}' must be a list of strings")
    return tuple(str(item).strip().lower() for item in value if str(item).strip())


def dump_rules(rules: Iterable[Rule]) -> str:
    """Serialize rules to JSON, e.g. for ``--list-rules``."""

    return json.dumps([rule_to_dict(rule) for rule in rules], indent=2)
