"""
Reconciler tests.

Validates the one-to-one matching of expected violations against findings:
  1. Exact-line matches and the tolerance window boundary
  2. Nearest-first and emission-order tie breaking
  3. Redundant / FalsePositive / OutOfScopeFinding classification
  4. Partition property and deterministic output
"""

import os
import random
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from conformance.coverage import UnitOutcome, build_report
from conformance.models import ExpectedViolation, Finding, Outcome
from conformance.reconciler import count_outcomes, reconcile
from conformance.rule_ids import RuleID, Standard

UNIT = "c/memory.c"
MEM30 = RuleID.of(Standard.CERT_C, "MEM30-C")
EXP33 = RuleID.of(Standard.CERT_C, "EXP33-C")
MISRA_10_3 = RuleID.of(Standard.MISRA_C, "Rule 10.3")


def expected(line, rule=MEM30):
    return ExpectedViolation(unit_path=UNIT, line_number=line, rule_id=rule)


def finding(line, rule=MEM30, index=0):
    return Finding(unit_path=UNIT, line_number=line, rule_id=rule, emission_index=index)


def outcomes(results):
    return [(r.outcome, r.line_number, r.finding.line_number if r.finding else None) for r in results]


class TestMatching(unittest.TestCase):

    def test_exact_match(self):
        results = reconcile(UNIT, [expected(45)], [finding(45)], Standard.CERT_C)
        self.assertEqual(outcomes(results), [(Outcome.TRUE_POSITIVE, 45, 45)])

    def test_mem30_scenario_recall(self):
        results = reconcile(UNIT, [expected(45)], [finding(45)], Standard.CERT_C)
        report = build_report([UnitOutcome(UNIT, tuple(results))], Standard.CERT_C, 2)
        stats = dict(report.per_rule)[MEM30]
        self.assertEqual(stats.recall, 1.0)
        self.assertTrue(report.passed)

    def test_tolerance_boundary(self):
        at_two = reconcile(UNIT, [expected(10)], [finding(12)], Standard.CERT_C, tolerance=2)
        self.assertEqual(outcomes(at_two), [(Outcome.TRUE_POSITIVE, 10, 12)])

        at_one = reconcile(UNIT, [expected(10)], [finding(12)], Standard.CERT_C, tolerance=1)
        self.assertEqual(
            sorted(r.outcome.value for r in at_one),
            [Outcome.FALSE_NEGATIVE.value, Outcome.FALSE_POSITIVE.value],
        )

    def test_zero_tolerance_is_exact_only(self):
        results = reconcile(UNIT, [expected(10)], [finding(11)], Standard.CERT_C, tolerance=0)
        self.assertEqual(count_outcomes(results)[Outcome.TRUE_POSITIVE], 0)

    def test_rule_must_match(self):
        results = reconcile(UNIT, [expected(10)], [finding(10, EXP33)], Standard.CERT_C)
        self.assertEqual(
            sorted(r.outcome.value for r in results),
            [Outcome.FALSE_NEGATIVE.value, Outcome.FALSE_POSITIVE.value],
        )

    def test_two_expected_one_found(self):
        results = reconcile(UNIT, [expected(20), expected(30)], [finding(20)], Standard.CERT_C)
        self.assertEqual(outcomes(results), [
            (Outcome.TRUE_POSITIVE, 20, 20),
            (Outcome.FALSE_NEGATIVE, 30, None),
        ])
        report = build_report([UnitOutcome(UNIT, tuple(results))], Standard.CERT_C, 2)
        self.assertFalse(report.passed)
        self.assertEqual(report.exit_code(), 1)

    def test_exact_line_beats_earlier_drifted_finding(self):
        results = reconcile(UNIT, [expected(10)], [finding(11, index=0), finding(10, index=1)], Standard.CERT_C)
        self.assertEqual(results[0].outcome, Outcome.TRUE_POSITIVE)
        self.assertEqual(results[0].finding.line_number, 10)
        self.assertEqual(results[1].outcome, Outcome.REDUNDANT)

    def test_equal_distance_uses_emission_order(self):
        results = reconcile(UNIT, [expected(10)], [finding(11, index=5), finding(9, index=2)], Standard.CERT_C)
        tp = [r for r in results if r.outcome is Outcome.TRUE_POSITIVE]
        self.assertEqual(tp[0].finding.line_number, 9)

    def test_drifted_finding_goes_to_nearest_expected(self):
        results = reconcile(UNIT, [expected(10), expected(11)], [finding(12)], Standard.CERT_C)
        self.assertEqual(outcomes(results), [
            (Outcome.FALSE_NEGATIVE, 10, None),
            (Outcome.TRUE_POSITIVE, 11, 12),
        ])

    def test_drifted_findings_shared_between_neighbours(self):
        # Each expected takes its own nearest finding; no finding is used twice.
        results = reconcile(
            UNIT,
            [expected(10), expected(12)],
            [finding(11, index=0), finding(13, index=1)],
            Standard.CERT_C,
        )
        self.assertEqual(count_outcomes(results)[Outcome.TRUE_POSITIVE], 2)
        pairs = sorted((r.expected.line_number, r.finding.line_number) for r in results)
        self.assertEqual(pairs, [(10, 11), (12, 13)])


class TestUnmatchedFindings(unittest.TestCase):

    def test_duplicates_are_redundant(self):
        results = reconcile(
            UNIT, [expected(8)], [finding(8, index=0), finding(8, index=1), finding(9, index=2)], Standard.CERT_C,
        )
        counts = count_outcomes(results)
        self.assertEqual(counts[Outcome.TRUE_POSITIVE], 1)
        self.assertEqual(counts[Outcome.REDUNDANT], 2)
        self.assertEqual(counts[Outcome.FALSE_POSITIVE], 0)

    def test_far_duplicate_is_false_positive(self):
        results = reconcile(UNIT, [expected(8)], [finding(8), finding(40, index=1)], Standard.CERT_C)
        self.assertEqual(count_outcomes(results)[Outcome.FALSE_POSITIVE], 1)

    def test_unknown_rule_under_test_is_false_positive(self):
        results = reconcile(UNIT, [], [finding(5, EXP33)], Standard.CERT_C)
        self.assertEqual(outcomes(results), [(Outcome.FALSE_POSITIVE, 5, 5)])

    def test_other_standard_is_out_of_scope(self):
        results = reconcile(UNIT, [], [finding(5, MISRA_10_3)], Standard.CERT_C)
        self.assertEqual(outcomes(results), [(Outcome.OUT_OF_SCOPE, 5, 5)])

    def test_same_finding_under_its_own_standard(self):
        results = reconcile(UNIT, [], [finding(5, MISRA_10_3)], Standard.MISRA_C)
        self.assertEqual(outcomes(results), [(Outcome.FALSE_POSITIVE, 5, 5)])


class TestContract(unittest.TestCase):

    def test_rejects_foreign_expected(self):
        with self.assertRaises(ValueError):
            reconcile(UNIT, [expected(5, MISRA_10_3)], [], Standard.CERT_C)

    def test_rejects_other_unit(self):
        other = Finding(unit_path="c/other.c", line_number=1, rule_id=MEM30)
        with self.assertRaises(ValueError):
            reconcile(UNIT, [], [other], Standard.CERT_C)

    def test_rejects_negative_tolerance(self):
        with self.assertRaises(ValueError):
            reconcile(UNIT, [], [], Standard.CERT_C, tolerance=-1)

    def test_partition_property(self):
        rng = random.Random(1234)
        rules = [MEM30, EXP33]
        for _ in range(200):
            exp = {}
            for _ in range(rng.randint(0, 6)):
                line, rule = rng.randint(1, 30), rng.choice(rules)
                exp[(line, rule)] = expected(line, rule)
            fnd = [
                finding(rng.randint(1, 30), rng.choice(rules + [MISRA_10_3]), index=i)
                for i in range(rng.randint(0, 8))
            ]
            results = reconcile(UNIT, list(exp.values()), fnd, Standard.CERT_C)
            tp = count_outcomes(results)[Outcome.TRUE_POSITIVE]
            self.assertEqual(len(results), len(exp) + len(fnd) - tp)

            seen_expected = [r.expected for r in results if r.expected is not None]
            seen_findings = [r.finding for r in results if r.finding is not None]
            self.assertEqual(sorted(seen_expected, key=lambda e: e.sort_key()),
                             sorted(exp.values(), key=lambda e: e.sort_key()))
            self.assertEqual(sorted(f.emission_index for f in seen_findings), list(range(len(fnd))))

    def test_deterministic_and_input_order_independent(self):
        exp = [expected(10), expected(20, EXP33), expected(30)]
        fnd = [finding(11, index=0), finding(21, EXP33, index=1), finding(29, index=2), finding(3, MISRA_10_3, index=3)]
        first = reconcile(UNIT, exp, fnd, Standard.CERT_C)
        second = reconcile(UNIT, list(reversed(exp)), list(reversed(fnd)), Standard.CERT_C)
        self.assertEqual(first, second)
        self.assertEqual([r.to_dict() for r in first], [r.to_dict() for r in second])


if __name__ == "__main__":
    unittest.main()
