"""Severity and category definitions for scanner rules and findings."""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    """Enumerate the supported severity levels for findings."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Return an integer ranking; higher is more severe."""

        ordering = {
            Severity.CRITICAL: 3,
            Severity.HIGH: 2,
            Severity.MEDIUM: 1,
            Severity.LOW: 0,
        }
        return ordering[self]

    def escalate(self) -> "Severity":
        """Return the next severity up, capped at ``CRITICAL``."""

        for candidate in SEVERITY_ORDER_ASC:
            if candidate.rank == self.rank + 1:
                return candidate
        return Severity.CRITICAL

    def at_least(self, threshold: "Severity") -> bool:
        return self.rank >= threshold.rank

    @classmethod
    def parse(cls, value: object) -> "Severity":
        """Parse a case-insensitive severity name, raising ``ValueError``."""

        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            allowed = ", ".join(item.value for item in cls)
            raise ValueError(f"invalid severity {value!r} (expected one of: {allowed})") from None


SEVERITY_ORDER_ASC = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
SEVERITY_ORDER = tuple(reversed(SEVERITY_ORDER_ASC))


class Category(str, Enum):
    """Enumerate the rule categories."""

    WEAK_CRYPTO = "weak-crypto"
    HARDCODED_SECRET = "hardcoded-secret"
    INJECTION_RISK = "injection-risk"
    MISSING_VALIDATION = "missing-validation"
    OUTDATED_DEPENDENCY = "outdated-dependency"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: object) -> "Category":
        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            allowed = ", ".join(item.value for item in cls)
            raise ValueError(f"invalid category {value!r} (expected one of: {allowed})") from None
