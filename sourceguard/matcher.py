"""Apply rules to one source file and produce raw hits."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from .errors import ScanWarning, WarningKind, file_access, rule_timeout
from .result import RawHit
from .rules import Rule
from .suppressions import NO_SUPPRESSIONS, Suppressions
from .utils.walker import SourceFile

logger = logging.getLogger(__name__)

SNIPPET_LIMIT = 200
LINES_PER_BUDGET_CHECK = 1000

Clock = Callable[[], float]


@dataclass(frozen=True)
class FileOutcome:
    """What matching one file produced."""

    path: str
    hits: Tuple[RawHit, ...] = ()
    warnings: Tuple[ScanWarning, ...] = ()
    skipped: Optional[str] = None

    @property
    def scanned(self) -> bool:
        return self.skipped is None and not any(w.kind is WarningKind.FILE_ACCESS for w in self.warnings)


class _BudgetExhausted(Exception):
    pass


class _Deadline:
    def __init__(self, budget: Optional[float], clock: Clock) -> None:
        self._clock = clock
        self._deadline = None if budget is None else clock() + budget

    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def check(self) -> None:
        if self.expired():
            raise _BudgetExhausted


def match(
    file: SourceFile,
    rules: Sequence[Rule],
    *,
    time_budget: Optional[float] = None,
    max_file_bytes: Optional[int] = None,
    suppressions: Suppressions = NO_SUPPRESSIONS,
    clock: Clock = time.monotonic,
) -> FileOutcome:
    """Apply ``rules`` to ``file``.

    Textual rules run line by line; structural rules run over the parsed
    file. Each rule reports a line at most once. When ``time_budget`` runs
    out, the rule in progress is dropped and the remaining rules are skipped
    with a ``RuleTimeout`` warning.
    """

    if max_file_bytes is not None and file.size > max_file_bytes:
        logger.debug("skipping %s: larger than %d bytes", file.relpath, max_file_bytes)
        return FileOutcome(path=file.relpath, skipped="too-large")
    if file.is_binary:
        logger.debug("skipping binary file %s", file.relpath)
        return FileOutcome(path=file.relpath, skipped="binary")

    applicable = [rule for rule in rules if rule.applies_to(file.language)]
    if not applicable:
        return FileOutcome(path=file.relpath)

    lines = split_lines(file.content)
    deadline = _Deadline(time_budget, clock)
    hits: List[RawHit] = []
    warnings: List[ScanWarning] = []

    for index, rule in enumerate(applicable):
        try:
            deadline.check()
            if rule.is_structural:
                found = list(_structural_hits(rule, file, lines, suppressions))
            else:
                found = list(_textual_hits(rule, file, lines, suppressions, deadline))
        except _BudgetExhausted:
            remaining = ", ".join(item.id for item in applicable[index:])
            detail = f"time budget of {time_budget}s exhausted; skipped rules: {remaining}"
            logger.warning("%s: %s", file.relpath, detail)
            warnings.append(rule_timeout(file.relpath, detail))
            break
        hits.extend(found)

    return FileOutcome(path=file.relpath, hits=tuple(hits), warnings=tuple(warnings))


def match_safely(file: SourceFile, rules: Sequence[Rule], **options) -> FileOutcome:
    """Like :func:`match`, but any failure becomes a ``FileAccessWarning``."""

    try:
        return match(file, rules, **options)
    except OSError as exc:
        detail = f"cannot read file: {exc.strerror or exc}"
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("unexpected error matching %s", file.relpath, exc_info=True)
        detail = f"unexpected error while matching: {type(exc).__name__}: {exc}"
    logger.warning("%s: %s", file.relpath, detail)
    return FileOutcome(path=file.relpath, warnings=(file_access(file.relpath, detail),))


def _textual_hits(
    rule: Rule,
    file: SourceFile,
    lines: List[str],
    suppressions: Suppressions,
    deadline: _Deadline,
) -> Iterator[RawHit]:
    pattern = rule.compiled
    for number, line in enumerate(lines, start=1):
        if number % LINES_PER_BUDGET_CHECK == 0:
            deadline.check()
        if pattern is None or pattern.search(line) is None:
            continue
        hit = _emit(rule, file, number, line, suppressions)
        if hit is not None:
            yield hit


def _structural_hits(
    rule: Rule,
    file: SourceFile,
    lines: List[str],
    suppressions: Suppressions,
) -> Iterator[RawHit]:
    if rule.structure is None:
        return
    for number in rule.structure.find(file.content, file.language):
        line = lines[number - 1] if 0 < number <= len(lines) else ""
        hit = _emit(rule, file, number, line, suppressions)
        if hit is not None:
            yield hit


def _emit(rule: Rule, file: SourceFile, number: int, line: str, suppressions: Suppressions) -> Optional[RawHit]:
    if rule.excludes(line):
        return None
    if suppressions.ignored_inline(line, rule.id) or suppressions.allows(rule.id, file.relpath):
        return None
    return RawHit(rule_id=rule.id, path=file.relpath, line=number, snippet=line.strip()[:SNIPPET_LIMIT])


def split_lines(content: str) -> List[str]:
    """Split on universal newlines only, keeping numbering aligned with ``ast``."""

    return content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
