"""Command-line entry point for the rule-pack conformance harness."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import HarnessConfig
from .corpus_loader import CorpusLoader
from .coverage import EXIT_HARNESS_ERROR, EXIT_PASS, CoverageReport, format_markdown
from .errors import HarnessError
from .pipeline import verify
from .rule_ids import Standard

logger = logging.getLogger(__name__)


def _standard(value: str) -> Standard:
    try:
        return Standard.from_name(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="conformance",
        description="Verify that a static-analysis rule pack flags every annotated corpus violation",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity on stderr (-v info, -vv debug).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Analyze the corpus and report rule-pack coverage.")
    run.add_argument("--corpus", required=True, help="Root directory of the annotated corpus.")
    run.add_argument(
        "--standard",
        required=True,
        type=_standard,
        help="Standard under test: CERT-C, CERT-CPP, MISRA-C, MISRA-CPP or AUTOSAR.",
    )
    run.add_argument(
        "--tolerance",
        type=int,
        default=None,
        help="Line drift allowed when matching findings (default 2).",
    )
    run.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Also fail on false positives.",
    )
    run.add_argument("--workers", type=int, default=None, help="Worker pool size.")
    run.add_argument("--timeout", type=float, default=None, help="Per-unit analyzer timeout in seconds.")
    run.add_argument(
        "--analyzer-output",
        default=None,
        help="Replay a recorded analyzer report (JSON or SARIF) instead of running the analyzer.",
    )
    run.add_argument(
        "--format",
        choices=["markdown", "json"],
        default="markdown",
        help="Report format (defaults to markdown).",
    )
    run.add_argument(
        "--out",
        "--output",
        dest="output_path",
        default=None,
        help="Write the report to this file instead of stdout.",
    )
    run.add_argument("-v", "--verbose", action="count", default=argparse.SUPPRESS, help=argparse.SUPPRESS)

    lst = sub.add_parser("list", help="List the expected violations declared by the corpus.")
    lst.add_argument("--corpus", required=True, help="Root directory of the annotated corpus.")
    lst.add_argument("--standard", type=_standard, default=None, help="Only list this standard.")
    lst.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON instead of a table.")
    lst.add_argument("-v", "--verbose", action="count", default=argparse.SUPPRESS, help=argparse.SUPPRESS)
    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def render(report: CoverageReport, report_format: str) -> str:
    if report_format == "json":
        return report.to_json()
    return format_markdown(report)


def write_output(report: CoverageReport, output_path: Optional[str], report_format: str) -> None:
    payload = render(report, report_format)
    if output_path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(payload, encoding="utf-8")
        print(format_markdown(report) if report_format == "json" else payload)
        print(f"\nReport written to {output_path}")
    else:
        sys.stdout.write(payload)


def cmd_run(args: argparse.Namespace) -> int:
    config = HarnessConfig.from_env(
        args.standard,
        tolerance=args.tolerance,
        strict=args.strict,
        workers=args.workers,
        timeout=args.timeout,
    )
    result = verify(config, args.corpus, analyzer_output=args.analyzer_output)
    write_output(result.report, args.output_path, args.format)
    return result.report.exit_code()


def cmd_list(args: argparse.Namespace) -> int:
    units = CorpusLoader(args.corpus).load()
    rows = [
        e for unit in units for e in unit.expected
        if args.standard is None or e.rule_id.standard is args.standard
    ]
    if args.as_json:
        sys.stdout.write(json.dumps([e.to_dict() for e in rows], indent=2, sort_keys=True) + "\n")
        return EXIT_PASS

    out = "| Unit | Line | Rule | Function |\n|------|------|------|----------|\n"
    for e in rows:
        out += f"| {e.unit_path} | {e.line_number} | {e.rule_id} | {e.function_name or '-'} |\n"
    out += f"\n{len(rows)} expected violation(s) in {len(units)} unit(s)\n"
    sys.stdout.write(out)
    return EXIT_PASS


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    handler = cmd_run if args.command == "run" else cmd_list
    try:
        return handler(args)
    except HarnessError as e:
        logger.debug("Harness error", exc_info=True)
        print(f"error: {e.render()}", file=sys.stderr)
        return EXIT_HARNESS_ERROR


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
