"""Command-line entry point for the sourceguard scanner."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_FILENAME, ScanConfig, load_config
from .errors import ConfigError
from .orchestrator import load_ruleset, run
from .report import FORMATS, format_summary_table, render
from .rules import active, dump_rules
from .severity import Severity

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sourceguard",
        description="Scan a source tree for security anti-patterns and report a pass/fail verdict.",
    )
    parser.add_argument("path", nargs="?", default=None, help="Root directory to scan (default: current directory).")
    parser.add_argument("--config", "-c", default=None, help=f"YAML config file (default: <path>/{DEFAULT_CONFIG_FILENAME} if present).")
    parser.add_argument(
        "--rules",
        "-r",
        dest="rule_sources",
        action="append",
        default=[],
        help="Rule file or URI overriding built-in rules by id (repeatable).",
    )
    parser.add_argument("--no-default-rules", action="store_true", help="Do not load the built-in rules.")
    parser.add_argument("--advisories", action="append", default=[], help="Vulnerable package advisory file (repeatable).")
    parser.add_argument("--include", action="append", default=[], help="Only scan paths matching this glob (repeatable).")
    parser.add_argument("--exclude", action="append", default=[], help="Also skip paths matching this glob (repeatable).")
    parser.add_argument("--category", dest="categories", action="append", default=[], help="Only run rules with this category or tag (repeatable).")
    parser.add_argument("--fail-on", choices=[item.value for item in Severity], default=None, help="Lowest severity that fails the scan (default: high).")
    parser.add_argument("--budget", type=float, default=None, help="Wall-clock budget in seconds (default: 120).")
    parser.add_argument("--file-budget", type=float, default=None, help="Per-file matching budget in seconds (default: 5).")
    parser.add_argument("--escalation-threshold", type=int, default=None, help="Hit count above which a finding is escalated (default: per rule, 5).")
    parser.add_argument("--group-across-files", action="store_true", default=None, help="Group hits of one rule across files into a single finding.")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: based on CPU count).")
    parser.add_argument("--allowlist", default=None, help="Suppression allowlist (default: <path>/.sourceguard-allow.json).")
    parser.add_argument("--format", choices=FORMATS, default="text", help="Report format (default: text).")
    parser.add_argument("--out", "--output", dest="output_path", default=None, help="Write the report to this file.")
    parser.add_argument("--top", type=non_negative_int, default=10, help="Findings listed in the text summary.")
    parser.add_argument("--envelope", action="store_true", help="Wrap the report with a timestamp envelope.")
    parser.add_argument("--list-rules", action="store_true", help="Print the active rules as JSON and exit.")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More logging (repeatable).")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log errors.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def build_config(args: argparse.Namespace) -> ScanConfig:
    root = Path(args.path) if args.path else Path(".")
    config_path = Path(args.config) if args.config else root / DEFAULT_CONFIG_FILENAME
    if args.config or config_path.is_file():
        config = load_config(config_path)
        if args.path:
            config = config.with_overrides(root=root)
    else:
        config = ScanConfig(root=root)

    exclude = tuple(config.exclude) + tuple(args.exclude) if args.exclude else None
    return config.with_overrides(
        rule_sources=tuple(config.rule_sources) + tuple(args.rule_sources) if args.rule_sources else None,
        include_default_rules=False if args.no_default_rules else None,
        advisories=tuple(config.advisories) + tuple(Path(item) for item in args.advisories) if args.advisories else None,
        include=tuple(args.include) or None,
        exclude=exclude,
        categories=tuple(args.categories) or None,
        fail_on=Severity.parse(args.fail_on) if args.fail_on else None,
        budget_seconds=args.budget,
        per_file_budget_seconds=args.file_budget,
        escalation_threshold=args.escalation_threshold,
        group_across_files=args.group_across_files,
        workers=args.workers,
        allowlist=Path(args.allowlist) if args.allowlist else None,
    )


def write_output(report: str, summary: str, output_path: Optional[str], report_format: str) -> None:
    print(summary, end="")

    if output_path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(report, encoding="utf-8")
        print(f"\nReport written to {output_path}")
    elif report_format != "text":
        print(f"\n{report_format.upper()} Report")
        print(report, end="")


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        config = build_config(args)
        logger.debug("effective config: %s", config)
        if args.list_rules:
            print(dump_rules(active(load_ruleset(config), config.categories or None)))
            return 0
        result = run(config)
    except ConfigError as exc:
        print(f"{parser.prog}: error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    envelope: Optional[Dict[str, object]] = None
    if args.envelope:
        envelope = {
            "tool": f"sourceguard {__version__}",
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "root": str(config.root.resolve()),
            "duration_seconds": result.duration,
        }

    report = render(result, args.format, envelope=envelope, top=args.top)
    summary = format_summary_table(result, max_findings=args.top)
    write_output(report, summary, args.output_path, args.format)
    return result.exit_code()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
