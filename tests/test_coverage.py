"""
Report Generator tests: aggregation, ratios, verdict, exit codes and
deterministic output.
"""

import json
import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from conformance.coverage import RuleStats, UnitOutcome, build_report, format_markdown
from conformance.errors import AnalysisTimeout
from conformance.models import ExpectedViolation, Finding, MatchResult, Outcome, Severity, UnmappedFinding
from conformance.rule_ids import RuleID, Standard

MEM30 = RuleID.of(Standard.CERT_C, "MEM30-C")
EXP33 = RuleID.of(Standard.CERT_C, "EXP33-C")
MISRA_8_7 = RuleID.of(Standard.MISRA_C, "Rule 8.7")


def tp(unit, line, rule):
    e = ExpectedViolation(unit_path=unit, line_number=line, rule_id=rule, function_name="f")
    f = Finding(unit_path=unit, line_number=line, rule_id=rule, severity=Severity.HIGH)
    return MatchResult(outcome=Outcome.TRUE_POSITIVE, expected=e, finding=f)


def fn(unit, line, rule):
    e = ExpectedViolation(unit_path=unit, line_number=line, rule_id=rule)
    return MatchResult(outcome=Outcome.FALSE_NEGATIVE, expected=e)


def extra(outcome, unit, line, rule, index=0):
    f = Finding(unit_path=unit, line_number=line, rule_id=rule, message="extra", emission_index=index)
    return MatchResult(outcome=outcome, finding=f)


class TestRuleStats(unittest.TestCase):

    def test_ratios(self):
        stats = RuleStats(tp=3, fn=1, fp=1, redundant=4, out_of_scope=2)
        self.assertEqual(stats.recall, 0.75)
        self.assertEqual(stats.precision, 0.75)

    def test_undefined_ratios_are_null(self):
        stats = RuleStats(fp=2)
        self.assertIsNone(stats.recall)
        self.assertEqual(stats.precision, 0.0)
        self.assertIsNone(RuleStats().precision)
        self.assertIsNone(RuleStats().to_dict()["recall"])

    def test_addition(self):
        total = RuleStats.of(Outcome.TRUE_POSITIVE) + RuleStats.of(Outcome.REDUNDANT)
        self.assertEqual(total, RuleStats(tp=1, redundant=1))


class TestBuildReport(unittest.TestCase):

    def setUp(self):
        self.outcomes = [
            UnitOutcome("c/b.c", results=(
                tp("c/b.c", 14, EXP33),
                extra(Outcome.REDUNDANT, "c/b.c", 15, EXP33, 1),
                extra(Outcome.OUT_OF_SCOPE, "c/b.c", 18, MISRA_8_7, 2),
            ), unmapped=(
                UnmappedFinding(unit_path="c/b.c", line_number=12, raw_rule="clang-diagnostic-unused"),
            ), warnings=("c/b.c:12: unmapped",)),
            UnitOutcome("c/a.c", results=(
                tp("c/a.c", 8, MEM30),
                extra(Outcome.FALSE_POSITIVE, "c/a.c", 30, MEM30),
            )),
        ]

    def test_counts(self):
        report = build_report(self.outcomes, Standard.CERT_C, 2)
        per_rule = dict(report.per_rule)
        self.assertEqual(per_rule[MEM30], RuleStats(tp=1, fp=1))
        self.assertEqual(per_rule[EXP33], RuleStats(tp=1, redundant=1))
        self.assertEqual(per_rule[MISRA_8_7], RuleStats(out_of_scope=1))
        self.assertEqual(report.under_test, RuleStats(tp=2, fp=1, redundant=1))
        self.assertEqual(report.totals.out_of_scope, 1)
        self.assertEqual(report.units, ("c/a.c", "c/b.c"))
        self.assertEqual(len(report.unmapped), 1)

    def test_verdict(self):
        self.assertTrue(build_report(self.outcomes, Standard.CERT_C, 2).passed)
        self.assertEqual(build_report(self.outcomes, Standard.CERT_C, 2).exit_code(), 0)
        strict = build_report(self.outcomes, Standard.CERT_C, 2, strict=True)
        self.assertFalse(strict.passed)
        self.assertEqual(strict.exit_code(), 1)

    def test_false_negative_fails(self):
        outcomes = self.outcomes + [UnitOutcome("c/c.c", results=(fn("c/c.c", 3, MEM30),))]
        report = build_report(outcomes, Standard.CERT_C, 2)
        self.assertEqual(dict(report.per_rule)[MEM30].recall, 0.5)
        self.assertEqual(report.exit_code(), 1)

    def test_timeout_exclusion_is_a_harness_error(self):
        err = AnalysisTimeout("timed out twice", unit_path="c/z.c", timeout=120.0, attempts=2)
        outcomes = self.outcomes + [UnitOutcome("c/z.c", excluded=err.to_dict())]
        report = build_report(outcomes, Standard.CERT_C, 2)
        self.assertFalse(report.passed)
        self.assertEqual(report.exit_code(), 2)
        self.assertEqual(report.excluded_units[0]["unit"], "c/z.c")
        self.assertIn("Excluded units", format_markdown(report))

    def test_outside_corpus_counts(self):
        outside = UnitOutcome("<outside corpus>", unmapped=(
            UnmappedFinding(unit_path="/usr/include/stdio.h", line_number=7, raw_rule="weird-check"),
        ), foreign=2, skipped=1)
        report = build_report(self.outcomes, Standard.CERT_C, 2, outside=outside)
        self.assertEqual(report.units, ("c/a.c", "c/b.c"))
        self.assertEqual(len(report.unmapped), 2)
        self.assertEqual(report.foreign_findings, 2)
        self.assertEqual(report.skipped_diagnostics, 1)
        self.assertEqual(report.under_test, build_report(self.outcomes, Standard.CERT_C, 2).under_test)

    def test_standard_without_results_is_listed(self):
        report = build_report([], Standard.AUTOSAR, 2)
        self.assertIn(Standard.AUTOSAR, dict(report.per_standard))
        self.assertIsNone(report.under_test.recall)

    def test_order_independent_json(self):
        a = build_report(self.outcomes, Standard.CERT_C, 2).to_json()
        b = build_report(list(reversed(self.outcomes)), Standard.CERT_C, 2).to_json()
        self.assertEqual(a, b)

    def test_json_content(self):
        data = json.loads(build_report(self.outcomes, Standard.CERT_C, 2).to_json())
        self.assertEqual(data["standard"], "CERT-C")
        self.assertEqual(data["exit_code"], 0)
        self.assertEqual(data["totals"]["tp"], 2)
        self.assertEqual(data["totals"]["precision"], 0.6667)
        self.assertEqual(data["per_standard"]["MISRA-C"]["out_of_scope"], 1)
        self.assertEqual([r["rule"] for r in data["per_rule"]],
                         ["CERT-C/EXP33-C", "CERT-C/MEM30-C", "MISRA-C/Rule 8.7"])
        self.assertEqual(data["per_rule"][1]["title"], "Do not access freed memory")
        self.assertEqual(data["entries"][0]["outcome"], "TruePositive")
        self.assertEqual(data["unmapped_findings"][0]["tool_rule"], "clang-diagnostic-unused")

    def test_markdown(self):
        text = format_markdown(build_report(self.outcomes, Standard.CERT_C, 2, strict=True))
        self.assertIn("## Conformance: SEI CERT C (CERT-C)", text)
        self.assertIn("| **Status** | **FAIL** |", text)
        self.assertIn("| MEM30-C | Do not access freed memory | 1 | 0 | 1 |", text)
        self.assertIn("FalsePositive", text)
        self.assertIn("clang-diagnostic-unused", text)
        self.assertNotIn("Rule 8.7 |", text)


if __name__ == "__main__":
    unittest.main()
