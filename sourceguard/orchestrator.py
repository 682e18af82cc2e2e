"""Wire the walker, matcher, aggregator and report builder into one scan run."""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .aggregate import aggregate
from .config import ScanConfig
from .errors import ConfigError, ScanWarning, scan_timeout
from .matcher import FileOutcome, match_safely
from .report import render
from .result import ScanResult, SkippedFile
from .rules import Rule, RuleSet, SourceSpec, active, load
from .rules.advisories import AdvisoryRuleSource
from .suppressions import Suppressions, load_suppressions
from .utils.walker import SourceFile, walk

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def load_ruleset(config: ScanConfig) -> RuleSet:
    """Load built-in, user and advisory rules named by ``config``."""

    sources: List[SourceSpec] = list(config.rule_sources)
    sources.extend(AdvisoryRuleSource(path) for path in config.advisories)
    return load(sources, include_defaults=config.include_default_rules)


def run(config: ScanConfig, *, rules: Optional[RuleSet] = None, clock: Clock = time.monotonic) -> ScanResult:
    """Scan ``config.root`` and return the result.

    Raises ``ConfigError`` before walking when the root or rules are invalid.
    When the wall-clock budget runs out no further files are dispatched,
    in-flight files finish, and the result is flagged partial with a
    ``ScanTimeout`` warning.
    """

    root = config.root
    if not root.exists():
        raise ConfigError(f"Scan root does not exist: {root}")
    if not root.is_dir():
        raise ConfigError(f"Scan root is not a directory: {root}")

    started = clock()
    ruleset = rules if rules is not None else load_ruleset(config)
    selected = active(ruleset, config.categories or None)
    suppressions = load_suppressions(root, config.allowlist, inline=config.inline_suppressions)
    logger.info("scanning %s with %d rules (budget %ss)", root, len(selected), config.budget_seconds)

    tree = walk(root, include=config.include, exclude=config.exclude)
    outcomes, timed_out = _dispatch(
        tree,
        selected,
        config=config,
        suppressions=suppressions,
        deadline=started + config.budget_seconds,
        clock=clock,
    )

    findings = aggregate(
        (hit for outcome in outcomes for hit in outcome.hits),
        ruleset,
        group_across_files=config.group_across_files,
        escalation_threshold=config.escalation_threshold,
    )

    warnings: List[ScanWarning] = list(tree.warnings)
    warnings.extend(warning for outcome in outcomes for warning in outcome.warnings)
    if timed_out:
        detail = f"wall-clock budget of {config.budget_seconds}s exceeded; remaining files were not scanned"
        logger.warning("%s", detail)
        warnings.append(scan_timeout(detail))
    warnings.sort(key=ScanWarning.sort_key)

    skipped = sorted(
        (SkippedFile(path=outcome.path, reason=outcome.skipped) for outcome in outcomes if outcome.skipped),
        key=lambda item: item.path,
    )

    result = ScanResult(
        findings=findings,
        fail_on=config.fail_on,
        files_scanned=sum(1 for outcome in outcomes if outcome.scanned),
        duration=round(clock() - started, 3),
        skipped=tuple(skipped),
        warnings=tuple(warnings),
        partial=timed_out,
    )
    logger.info(
        "scan finished: %d files, %d findings, verdict %s%s",
        result.files_scanned,
        len(result.findings),
        result.verdict.value,
        " (partial)" if result.partial else "",
    )
    return result


def run_and_render(
    config: ScanConfig,
    report_format: str = "json",
    *,
    envelope: Optional[Dict[str, object]] = None,
    rules: Optional[RuleSet] = None,
) -> Tuple[ScanResult, str]:
    """Run a scan and render it in ``report_format``."""

    result = run(config, rules=rules)
    return result, render(result, report_format, envelope=envelope)


def default_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


def _dispatch(
    files: Iterable[SourceFile],
    rules: Sequence[Rule],
    *,
    config: ScanConfig,
    suppressions: Suppressions,
    deadline: float,
    clock: Clock,
) -> Tuple[List[FileOutcome], bool]:
    workers = config.workers or default_workers()
    max_in_flight = workers * 2
    options = {
        "time_budget": config.per_file_budget_seconds,
        "max_file_bytes": config.max_file_bytes,
        "suppressions": suppressions,
    }

    outcomes: List[FileOutcome] = []
    in_flight: Set[Future] = set()
    timed_out = False

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sourceguard") as pool:
        for source in files:
            if clock() >= deadline:
                timed_out = True
                break
            if len(in_flight) >= max_in_flight:
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                outcomes.extend(future.result() for future in done)
                if clock() >= deadline:
                    timed_out = True
                    break
            logger.debug("dispatching %s", source.relpath)
            in_flight.add(pool.submit(match_safely, source, rules, **options))

        done, _ = wait(in_flight)
        outcomes.extend(future.result() for future in done)

    return outcomes, timed_out
