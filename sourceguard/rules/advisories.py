"""Rule source that turns known-vulnerable package versions into rules.

The advisory feed itself is external; this adapter reads an exported copy
(YAML or JSON) and emits one ``outdated-dependency`` rule per vulnerable package::

    advisories:
      - package: Newtonsoft.Json
        ecosystem: nuget
        versions: ["12.0.1", "12.0.2"]
        severity: high
        advisory: GHSA-5crp-9r3c-p9vr
        fixed_in: "13.0.1"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from sourceguard.errors import ConfigError
from sourceguard.severity import Category, Severity

ECOSYSTEM_LANGUAGES = {
    "nuget": ("xml",),
    "pypi": ("requirements",),
    "npm": ("json",),
}


@dataclass(frozen=True)
class Advisory:
    package: str
    ecosystem: str
    versions: Tuple[str, ...]
    severity: Severity
    advisory: str = ""
    fixed_in: str = ""

    @property
    def slug(self) -> str:
        return re.sub(r"[^a-z0-9]+", "-", self.package.lower()).strip("-")


@dataclass
class AdvisoryRuleSource:
    """Load advisories from ``path`` and expose them as rule mappings.

    Advisories for the same package in the same ecosystem are merged into
    one rule: versions are combined and the highest severity wins.
    """

    path: Path
    name: str = field(init=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.name = f"advisories:{self.path}"

    def load(self) -> Sequence[Dict[str, Any]]:
        if not self.path.is_file():
            raise ConfigError(f"{self.name}: advisory file not found")
        try:
            document = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"{self.name}: could not read advisories: {exc}") from None

        if isinstance(document, dict):
            document = document.get("advisories")
        if not isinstance(document, list):
            raise ConfigError(f"{self.name}: expected an 'advisories' list")

        grouped: Dict[Tuple[str, str], List[Advisory]] = {}
        for index, item in enumerate(document):
            advisory = self._parse(item, index)
            grouped.setdefault((advisory.ecosystem, advisory.slug), []).append(advisory)
        return [_to_rule(advisories) for advisories in grouped.values()]

    def _parse(self, item: Any, index: int) -> Advisory:
        where = f"{self.name}: advisory #{index + 1}"
        if not isinstance(item, dict):
            raise ConfigError(f"{where} must be a mapping")
        package = str(item.get("package") or "").strip()
        ecosystem = str(item.get("ecosystem") or "").strip().lower()
        versions = item.get("versions")
        if not package:
            raise ConfigError(f"{where} is missing 'package'")
        if ecosystem not in ECOSYSTEM_LANGUAGES:
            allowed = ", ".join(sorted(ECOSYSTEM_LANGUAGES))
            raise ConfigError(f"{where}: ecosystem must be one of: {allowed}")
        if isinstance(versions, str):
            versions = [versions]
        if not isinstance(versions, list) or not versions:
            raise ConfigError(f"{where} needs a non-empty 'versions' list")
        try:
            severity = Severity.parse(item.get("severity", "high"))
        except ValueError as exc:
            raise ConfigError(f"{where}: {exc}") from None

        return Advisory(
            package=package,
            ecosystem=ecosystem,
            versions=tuple(str(version) for version in versions),
            severity=severity,
            advisory=str(item.get("advisory") or "").strip(),
            fixed_in=str(item.get("fixed_in") or "").strip(),
        )


def _version_key(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def _to_rule(advisories: List[Advisory]) -> Dict[str, Any]:
    first = advisories[0]
    package, ecosystem = first.package, first.ecosystem
    severity = max((item.severity for item in advisories), key=lambda item: item.rank)
    versions = sorted({version for item in advisories for version in item.versions})
    ids = list(dict.fromkeys(item.advisory for item in advisories if item.advisory))
    fixes = [item.fixed_in for item in advisories if item.fixed_in]

    recommendation = f"Upgrade {package}"
    if fixes:
        recommendation += f" to {max(fixes, key=_version_key)} or later."
    else:
        recommendation += " to a patched version."
    label = f" ({', '.join(ids)})" if ids else ""

    return {
        "id": f"vulnerable-{ecosystem}-{first.slug}",
        "category": Category.OUTDATED_DEPENDENCY.value,
        "severity": severity.value,
        "pattern": version_pattern(ecosystem, package, versions),
        "languages": list(ECOSYSTEM_LANGUAGES[ecosystem]),
        "tags": ["dependency", ecosystem] + ids,
        "message": f"{package} pinned to a vulnerable version{label} in {{path}}:{{line}}",
        "recommendation": recommendation,
    }


def version_pattern(ecosystem: str, package: str, versions: List[str]) -> str:
    """Build the line regex that finds ``package`` pinned to one of ``versions``."""

    name = re.escape(package)
    pinned = "|".join(re.escape(version) for version in sorted(set(versions)))
    if ecosystem == "nuget":
        return rf'(?i)<PackageReference\s+Include="{name}"\s+Version="(?:{pinned})"'
    if ecosystem == "pypi":
        return rf"(?i)^\s*{name}\s*==\s*(?:{pinned})\s*(?:[#;].*)?$"
    return rf'"{name}"\s*:\s*"[\^~=]?(?:{pinned})"'
