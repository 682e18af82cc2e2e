"""Pattern validation and structural predicates used by rules."""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

_ESCAPE = re.compile(r"\\.", re.S)
_CHAR_CLASS = re.compile(r"\[\^?\]?[^\]]*\]")
_INNER_GROUP = re.compile(r"\(([^()]*)\)")
_QUANTIFIED_GROUP = "\x00"
_PLAIN_GROUP = "\x01"
_INNER_QUANTIFIER = re.compile(r"[*+]|\{\d*,\d*\}|\x00")
_OUTER_QUANTIFIER = re.compile(r"[*+]|\{\d*,\d*\}|\{\d{2,}\}")


def check_backtracking(pattern: str) -> Optional[str]:
    """Return a reason when ``pattern`` risks exponential backtracking.

    Flags a quantified group that itself contains a quantifier, such as
    ``(a+)+`` or ``((ab)*c)*``, and a quantified alternation whose branches
    overlap (one branch is a prefix of another, e.g. ``(a|ab)*``).
    """

    text = _ESCAPE.sub(lambda m: "e" if m.group() not in ("\\(", "\\)") else "p", pattern)
    text = _CHAR_CLASS.sub("c", text)
    while True:
        match = _INNER_GROUP.search(text)
        if match is None:
            return None
        body = match.group(1)
        if body.startswith("?"):
            body = re.sub(r"^\?(?:[:=!>]|<[=!]|P?<\w+>)?", "", body)
        inner_quantified = bool(_INNER_QUANTIFIER.search(body))
        outer_quantified = bool(_OUTER_QUANTIFIER.match(text, match.end()))
        if outer_quantified and inner_quantified:
            return "nested quantifier"
        if outer_quantified and _overlapping_branches(body):
            return "quantified alternation with overlapping branches"
        marker = _QUANTIFIED_GROUP if inner_quantified or outer_quantified else _PLAIN_GROUP
        text = text[: match.start()] + marker + text[match.end():]


def _overlapping_branches(body: str) -> bool:
    branches = body.split("|")
    if len(branches) < 2:
        return False
    for index, first in enumerate(branches):
        for second in branches[index + 1:]:
            if not first or not second:
                return True
            if first.startswith(second) or second.startswith(first):
                return True
    return False


# ----------------------------------------------------------------------
# Structural predicates
# ----------------------------------------------------------------------
_C_LIKE_NOISE = re.compile(
    r"//[^\n]*"
    r"|/\*.*?\*/"
    r"|@\"(?:[^\"]|\"\")*\""
    r"|\"(?:[^\"\\\n]|\\.)*\""
    r"|'(?:[^'\\\n]|\\.)*'"
    r"|`(?:[^`\\]|\\.)*`",
    re.S,
)
_HASH_COMMENT = re.compile(r"#[^\n]*")
HASH_COMMENT_LANGUAGES = frozenset({"shell", "ruby", "powershell", "yaml", "python"})


@dataclass(frozen=True)
class StructuralPredicate:
    """Match a call to ``call`` with an optional exact argument count.

    With ``constructor`` set, only ``new Name(...)`` expressions match.
    """

    call: str
    arity: Optional[int] = None
    constructor: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "StructuralPredicate":
        if not isinstance(data, dict):
            raise ValueError("'structure' must be a mapping")
        name = str(data.get("call") or "").strip()
        if not name or not re.fullmatch(r"[A-Za-z_][\w.]*", name):
            raise ValueError(f"'structure.call' must be an identifier, got {data.get('call')!r}")
        arity = data.get("arity")
        if arity is not None:
            if isinstance(arity, bool) or not isinstance(arity, int) or arity < 0:
                raise ValueError("'structure.arity' must be a non-negative integer")
        return cls(call=name, arity=arity, constructor=bool(data.get("constructor", False)))

    def to_dict(self) -> dict:
        return {"call": self.call, "arity": self.arity, "constructor": self.constructor}

    def find(self, content: str, language: str) -> List[int]:
        """Return the (1-based) line numbers of matching calls."""

        if language == "python" and not self.constructor:
            lines = self._find_python(content)
            if lines is not None:
                return lines
        return sorted(set(self._find_lexical(content, language)))

    def _find_python(self, content: str) -> Optional[List[int]]:
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError):
            return None
        short_name = self.call.rsplit(".", 1)[-1]
        lines = set()
        for node in ast.walk(tree):
            if not isinstance(node, ast.Call):
                continue
            if _call_name(node.func) != short_name:
                continue
            if self.arity is not None and len(node.args) + len(node.keywords) != self.arity:
                continue
            lines.add(node.lineno)
        return sorted(lines)

    def _find_lexical(self, content: str, language: str) -> Iterator[int]:
        cleaned = blank_noise(content, language)
        name = re.escape(self.call)
        prefix = r"\bnew\s+" if self.constructor else r"(?<![\w$])"
        call_pattern = re.compile(prefix + name + r"\s*(?:<[^<>()]*>\s*)?\(")
        for match in call_pattern.finditer(cleaned):
            if self.arity is not None:
                count = count_arguments(cleaned, match.end() - 1)
                if count != self.arity:
                    continue
            yield cleaned.count("\n", 0, match.start()) + 1


def _call_name(func: ast.AST) -> Optional[str]:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def blank_noise(content: str, language: str) -> str:
    """Blank out comments and string literals, preserving offsets and newlines."""

    def _blank(match: re.Match) -> str:
        return re.sub(r"[^\n]", " ", match.group())

    cleaned = _C_LIKE_NOISE.sub(_blank, content)
    if language in HASH_COMMENT_LANGUAGES:
        cleaned = _HASH_COMMENT.sub(_blank, cleaned)
    return cleaned


def count_arguments(text: str, open_index: int) -> Optional[int]:
    """Count top-level arguments of the call whose ``(`` is at ``open_index``.

    Returns ``None`` when the parenthesis is never closed.
    """

    depth = 0
    commas = 0
    has_content = False
    pairs: Tuple[str, str] = ("([{", ")]}")
    for index in range(open_index, len(text)):
        char = text[index]
        if char in pairs[0]:
            depth += 1
            if depth > 1:
                has_content = True
            continue
        if char in pairs[1]:
            depth -= 1
            if depth == 0:
                return commas + 1 if has_content else 0
            continue
        if depth == 1:
            if char == ",":
                commas += 1
            elif not char.isspace():
                has_content = True
    return None
