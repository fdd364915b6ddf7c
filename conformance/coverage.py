"""
Report Generator

Folds per-unit MatchResults into a CoverageReport:

  • TP / FN / FP / Redundant / OutOfScope counts per RuleID and per standard
  • recall    = TP / (TP + FN)
  • precision = TP / (TP + FP)     (Redundant and OutOfScope not counted)
  • units excluded by analysis timeouts, unmapped tool findings
  • the verdict and the harness exit code

Aggregation is a reduce over immutable per-unit outcomes; nothing is
mutated in place, so units may be reconciled in any order or in parallel.
Output ordering is fully determined by the data, so unchanged inputs give a
byte-identical JSON report.
"""

import json
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Dict, Iterable, List, Optional, Tuple

from .models import MatchResult, Outcome, UnmappedFinding
from .rule_catalog import get_rule
from .rule_ids import RuleID, Standard, natural_key

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_HARNESS_ERROR = 2


@dataclass(frozen=True)
class RuleStats:
    tp: int = 0
    fn: int = 0
    fp: int = 0
    redundant: int = 0
    out_of_scope: int = 0

    @classmethod
    def of(cls, outcome: Outcome) -> "RuleStats":
        return cls(**{_FIELD[outcome]: 1})

    def __add__(self, other: "RuleStats") -> "RuleStats":
        return RuleStats(
            tp=self.tp + other.tp,
            fn=self.fn + other.fn,
            fp=self.fp + other.fp,
            redundant=self.redundant + other.redundant,
            out_of_scope=self.out_of_scope + other.out_of_scope,
        )

    @property
    def recall(self) -> Optional[float]:
        denom = self.tp + self.fn
        return self.tp / denom if denom else None

    @property
    def precision(self) -> Optional[float]:
        denom = self.tp + self.fp
        return self.tp / denom if denom else None

    def to_dict(self) -> Dict:
        return {
            "tp": self.tp,
            "fn": self.fn,
            "fp": self.fp,
            "redundant": self.redundant,
            "out_of_scope": self.out_of_scope,
            "recall": _ratio(self.recall),
            "precision": _ratio(self.precision),
        }


_FIELD = {
    Outcome.TRUE_POSITIVE: "tp",
    Outcome.FALSE_NEGATIVE: "fn",
    Outcome.FALSE_POSITIVE: "fp",
    Outcome.REDUNDANT: "redundant",
    Outcome.OUT_OF_SCOPE: "out_of_scope",
}


def _ratio(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 4)


@dataclass(frozen=True)
class UnitOutcome:
    """Everything the harness learned about one unit."""
    unit_path: str
    results: Tuple[MatchResult, ...] = ()
    unmapped: Tuple[UnmappedFinding, ...] = ()
    foreign: int = 0
    skipped: int = 0
    excluded: Optional[Dict] = None     # AnalysisTimeout.to_dict() when excluded
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class _Accumulator:
    per_rule: Dict[RuleID, RuleStats] = field(default_factory=dict)
    entries: Tuple[MatchResult, ...] = ()
    unmapped: Tuple[UnmappedFinding, ...] = ()
    excluded: Tuple[Dict, ...] = ()
    units: Tuple[str, ...] = ()
    foreign: int = 0
    skipped: int = 0
    warnings: Tuple[str, ...] = ()


def _fold(acc: _Accumulator, unit: UnitOutcome) -> _Accumulator:
    per_rule = dict(acc.per_rule)
    for r in unit.results:
        per_rule[r.rule_id] = per_rule.get(r.rule_id, RuleStats()) + RuleStats.of(r.outcome)
    return _Accumulator(
        per_rule=per_rule,
        entries=acc.entries + unit.results,
        unmapped=acc.unmapped + unit.unmapped,
        excluded=acc.excluded + ((unit.excluded,) if unit.excluded is not None else ()),
        units=acc.units + (unit.unit_path,),
        foreign=acc.foreign + unit.foreign,
        skipped=acc.skipped + unit.skipped,
        warnings=acc.warnings + unit.warnings,
    )


@dataclass(frozen=True)
class CoverageReport:
    standard: Standard
    tolerance: int
    strict: bool
    units: Tuple[str, ...]
    per_rule: Tuple[Tuple[RuleID, RuleStats], ...]
    per_standard: Tuple[Tuple[Standard, RuleStats], ...]
    totals: RuleStats
    entries: Tuple[MatchResult, ...]
    unmapped: Tuple[UnmappedFinding, ...]
    excluded_units: Tuple[Dict, ...]
    foreign_findings: int = 0
    skipped_diagnostics: int = 0
    warnings: Tuple[str, ...] = ()

    @property
    def under_test(self) -> RuleStats:
        for std, stats in self.per_standard:
            if std is self.standard:
                return stats
        return RuleStats()

    @property
    def passed(self) -> bool:
        """Full recall, full precision under strict mode, and no unit left unscored."""
        stats = self.under_test
        if stats.fn or self.excluded_units:
            return False
        if self.strict and stats.fp:
            return False
        return True

    def exit_code(self) -> int:
        if self.excluded_units:
            return EXIT_HARNESS_ERROR
        return EXIT_PASS if self.passed else EXIT_FAIL

    def entries_with(self, outcome: Outcome) -> List[MatchResult]:
        return [e for e in self.entries if e.outcome is outcome]

    def to_dict(self) -> Dict:
        return {
            "standard": self.standard.value,
            "tolerance": self.tolerance,
            "strict": self.strict,
            "passed": self.passed,
            "exit_code": self.exit_code(),
            "units": list(self.units),
            "totals": self.under_test.to_dict(),
            "per_standard": {std.value: stats.to_dict() for std, stats in self.per_standard},
            "per_rule": [
                dict(rule=str(rule), title=_title(rule), **stats.to_dict())
                for rule, stats in self.per_rule
            ],
            "entries": [e.to_dict() for e in self.entries],
            "unmapped_findings": [u.to_dict() for u in self.unmapped],
            "excluded_units": list(self.excluded_units),
            "foreign_findings": self.foreign_findings,
            "skipped_diagnostics": self.skipped_diagnostics,
            "warnings": list(self.warnings),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"


def _title(rule: RuleID) -> str:
    entry = get_rule(rule)
    return entry.title if entry else ""


def build_report(
    outcomes: Iterable[UnitOutcome],
    standard: Standard,
    tolerance: int,
    strict: bool = False,
    outside: Optional[UnitOutcome] = None,
) -> CoverageReport:
    """Fold per-unit outcomes into a report.

    ``outside`` carries diagnostics that belong to no corpus unit; they add
    to the unmapped, foreign and skipped counts but not to ``units``.
    """
    ordered = sorted(outcomes, key=lambda u: natural_key(u.unit_path))
    acc = reduce(_fold, ordered, _Accumulator())
    if outside is not None:
        acc = replace(_fold(acc, outside), units=acc.units)

    per_rule = tuple(sorted(acc.per_rule.items(), key=lambda item: item[0].sort_key()))
    per_standard: Dict[Standard, RuleStats] = {}
    for rule, stats in per_rule:
        per_standard[rule.standard] = per_standard.get(rule.standard, RuleStats()) + stats
    per_standard.setdefault(standard, RuleStats())

    return CoverageReport(
        standard=standard,
        tolerance=tolerance,
        strict=strict,
        units=acc.units,
        per_rule=per_rule,
        per_standard=tuple(sorted(per_standard.items(), key=lambda item: item[0].value)),
        totals=reduce(lambda a, b: a + b, (s for _, s in per_rule), RuleStats()),
        entries=tuple(sorted(acc.entries, key=lambda e: e.sort_key())),
        unmapped=tuple(sorted(acc.unmapped, key=lambda u: u.sort_key())),
        excluded_units=tuple(sorted(acc.excluded, key=lambda d: natural_key(d.get("unit") or ""))),
        foreign_findings=acc.foreign,
        skipped_diagnostics=acc.skipped,
        warnings=tuple(sorted(set(acc.warnings))),
    )


# ═══════════════════════════════════════════════════════════════════════
#  Markdown summary
# ═══════════════════════════════════════════════════════════════════════

def _pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value * 100:.1f}%"


def format_markdown(report: CoverageReport, max_entries: int = 50) -> str:
    """Human-readable summary for the console (deterministic like the JSON)."""
    stats = report.under_test
    status = "PASS" if report.passed else "FAIL"
    if report.excluded_units:
        status = "ERROR (units excluded)"

    out = f"## Conformance: {report.standard.label} ({report.standard.value})\n\n"
    out += "| Metric | Value |\n|--------|-------|\n"
    out += f"| Units | {len(report.units)} |\n"
    out += f"| True positives | {stats.tp} |\n"
    out += f"| False negatives | {stats.fn} |\n"
    out += f"| False positives | {stats.fp} |\n"
    out += f"| Redundant findings | {stats.redundant} |\n"
    out += f"| Out-of-scope findings | {report.totals.out_of_scope} |\n"
    out += f"| Unmapped findings | {len(report.unmapped)} |\n"
    out += f"| Recall | {_pct(stats.recall)} |\n"
    out += f"| Precision | {_pct(stats.precision)} |\n"
    out += f"| Tolerance | ±{report.tolerance} lines |\n"
    out += f"| Strict | {'yes' if report.strict else 'no'} |\n"
    out += f"| **Status** | **{status}** |\n"

    rows = [(rule, s) for rule, s in report.per_rule if rule.standard is report.standard]
    if rows:
        out += "\n### Per rule\n\n"
        out += "| Rule | Title | TP | FN | FP | Redundant | Recall | Precision |\n"
        out += "|------|-------|----|----|----|-----------|--------|-----------|\n"
        for rule, s in rows:
            out += (
                f"| {rule.rule_code} | {_title(rule)} | {s.tp} | {s.fn} | {s.fp} | "
                f"{s.redundant} | {_pct(s.recall)} | {_pct(s.precision)} |\n"
            )

    problems = [
        e for e in report.entries
        if e.outcome in (Outcome.FALSE_NEGATIVE, Outcome.FALSE_POSITIVE)
    ]
    if problems:
        out += "\n### Mismatches\n\n"
        out += "| Outcome | Rule | Location | Detail |\n"
        out += "|---------|------|----------|--------|\n"
        for e in problems[:max_entries]:
            if e.expected is not None:
                detail = f"in `{e.expected.function_name}`" if e.expected.function_name else "file scope"
            else:
                detail = e.finding.message[:80]
            out += f"| {e.outcome.value} | {e.rule_id} | `{e.unit_path}:{e.line_number}` | {detail} |\n"
        if len(problems) > max_entries:
            out += f"\n... and {len(problems) - max_entries} more\n"

    if report.excluded_units:
        out += "\n### Excluded units\n\n"
        for item in report.excluded_units:
            out += f"- `{item.get('unit')}`: {item.get('message')} (hint: {item.get('hint')})\n"

    if report.unmapped:
        out += "\n### Unmapped findings\n\n"
        for u in report.unmapped[:max_entries]:
            out += f"- `{u.unit_path}:{u.line_number}` tool rule `{u.raw_rule}`\n"

    return out
