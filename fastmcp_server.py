"""
Rule-Pack Conformance Harness: MCP Server

Exposes the harness to an IDE agent via the Model Context Protocol:

  1.  load_corpus       scan and parse an annotated corpus
  2.  list_expected     expected violations for a unit or standard
  3.  run_verification  analyze the corpus and reconcile against the rule pack
  4.  list_mismatches   false negatives and false positives of the last run
  5.  explain_rule      catalog entry for a rule
  6.  coverage_report   last coverage report (markdown or JSON)
"""

from mcp.server.fastmcp import FastMCP
import logging
import os
import sys

# Ensure the conformance package is importable
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from conformance.config import HarnessConfig
from conformance.corpus_loader import CorpusLoader
from conformance.coverage import format_markdown
from conformance.errors import HarnessError
from conformance.models import Outcome
from conformance.pipeline import verify
from conformance.rule_catalog import format_rule_explanation, get_rule
from conformance.rule_ids import RuleID, Standard

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
#  Server Setup
# ═══════════════════════════════════════════════════════════════════════

mcp = FastMCP("Rule-Pack Conformance Harness")

corpus_root = None
units = []
last_verification = None


def _title(rule: RuleID) -> str:
    entry = get_rule(rule)
    return entry.title if entry else "Unknown rule"


# ═══════════════════════════════════════════════════════════════════════
#  Tool 1: Load Corpus
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def load_corpus(root: str) -> str:
    """
    Scans an annotated corpus and parses every unit's rule markers.

    Args:
        root: Root directory of the corpus (e.g. '/work/corpus/src').
    """
    global corpus_root, units, last_verification

    try:
        loaded = CorpusLoader(root).load()
    except HarnessError as e:
        return f"Error: {e.render()}"

    corpus_root = root
    units = loaded
    last_verification = None

    per_standard = {}
    for unit in units:
        for e in unit.expected:
            per_standard[e.rule_id.standard] = per_standard.get(e.rule_id.standard, 0) + 1

    result = f"Loaded corpus `{root}`: {len(units)} unit(s), "
    result += f"{sum(per_standard.values())} expected violation(s).\n\n"
    if per_standard:
        result += "| Standard | Expected |\n|----------|----------|\n"
        for std in sorted(per_standard, key=lambda s: s.value):
            result += f"| {std.value} | {per_standard[std]} |\n"
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Tool 2: List Expected Violations
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def list_expected(unit_path: str = "", standard: str = "") -> str:
    """
    Lists the expected violations declared by the corpus.

    Args:
        unit_path: Corpus-relative unit path; empty lists every unit.
        standard:  Optional standard filter (e.g. 'CERT-C', 'misra-c++').
    """
    if corpus_root is None:
        return "Error: No corpus loaded. Call load_corpus first."

    std = None
    if standard.strip():
        try:
            std = Standard.from_name(standard)
        except ValueError as e:
            return f"Error: {e}"

    wanted = unit_path.replace("\\", "/").strip()
    rows = [
        e for unit in units if not wanted or unit.unit_path == wanted
        for e in unit.expected
        if std is None or e.rule_id.standard is std
    ]
    if not rows:
        return f"No expected violations for {wanted or 'the corpus'}"

    result = f"**{len(rows)} expected violation(s)**:\n\n"
    for e in rows:
        scope = f"in `{e.function_name}`" if e.function_name else "file scope"
        result += (
            f"- **[{e.rule_id}]** `{e.unit_path}:{e.line_number}` ({scope})\n"
            f"  *{_title(e.rule_id)}*\n"
        )
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Tool 3: Run Verification
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def run_verification(
    standard: str,
    analyzer_output: str = "",
    tolerance: int = 2,
    strict: bool = False,
) -> str:
    """
    Runs the analyzer over the loaded corpus (or replays a recorded report)
    and reconciles its findings with the expected violations.

    Args:
        standard:        Standard under test (CERT-C, CERT-CPP, MISRA-C, MISRA-CPP, AUTOSAR).
        analyzer_output: Path to a recorded JSON/SARIF report.  If empty, the
                         analyzer named by CONFORMANCE_ANALYZER is executed.
        tolerance:       Line drift allowed when matching (default 2).
        strict:          Also fail the verdict on false positives.
    """
    global units, last_verification

    if corpus_root is None:
        return "Error: No corpus loaded. Call load_corpus first."

    try:
        config = HarnessConfig.from_env(
            Standard.from_name(standard), tolerance=tolerance, strict=strict,
        )
        verification = verify(config, corpus_root, analyzer_output=analyzer_output or None)
    except ValueError as e:
        return f"Error: {e}"
    except HarnessError as e:
        return f"Error: {e.render()}"

    units = list(verification.units)
    last_verification = verification
    return format_markdown(verification.report)


# ═══════════════════════════════════════════════════════════════════════
#  Tool 4: List Mismatches
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def list_mismatches(outcome: str = "FalseNegative", unit_path: str = "") -> str:
    """
    Lists entries of the last run with one outcome.

    Args:
        outcome:   TruePositive, FalseNegative, FalsePositive, Redundant or OutOfScopeFinding.
        unit_path: Optional corpus-relative unit filter.
    """
    if last_verification is None:
        return "Error: No verification run yet. Call run_verification first."
    try:
        wanted = Outcome(outcome)
    except ValueError:
        return f"Error: Unknown outcome '{outcome}'. Choose one of: {', '.join(o.value for o in Outcome)}"

    entries = [
        e for e in last_verification.report.entries_with(wanted)
        if not unit_path or e.unit_path == unit_path.replace("\\", "/")
    ]
    if not entries:
        return f"No {wanted.value} entries"

    result = f"**{len(entries)} {wanted.value} entr{'y' if len(entries) == 1 else 'ies'}**:\n\n"
    for e in entries:
        result += f"- **[{e.rule_id}]** `{e.unit_path}:{e.line_number}`"
        if e.finding is not None:
            result += f" ({e.finding.severity.value}) {e.finding.message}"
            if e.expected is not None and e.finding.line_number != e.expected.line_number:
                result += f" (reported on line {e.finding.line_number})"
        elif e.expected.function_name:
            result += f" in `{e.expected.function_name}`"
        result += f"\n  *{_title(e.rule_id)}*\n"
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Tool 5: Explain Rule
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def explain_rule(rule_id: str) -> str:
    """
    Returns the catalog entry of a rule: title, normative text and related rules.

    Args:
        rule_id: Canonical rule text (e.g. 'CERT-C/MEM30-C', 'MISRA-C/Rule 10.3').
    """
    return format_rule_explanation(rule_id)


# ═══════════════════════════════════════════════════════════════════════
#  Tool 6: Coverage Report
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def coverage_report(report_format: str = "markdown") -> str:
    """
    Returns the coverage report of the last verification run.

    Args:
        report_format: 'markdown' (default) or 'json'.
    """
    if last_verification is None:
        return "Error: No verification run yet. Call run_verification first."
    if report_format == "json":
        return last_verification.report.to_json()
    return format_markdown(last_verification.report)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    mcp.run()
