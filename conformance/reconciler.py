"""
Reconciler: one-to-one matching of expected violations against findings.

Matching is per unit and per rule:

  1. Every (expected, finding) pair with the same RuleID and a line distance
     within the tolerance window is a candidate.
  2. Candidates are taken greedily in order of (distance, finding emission
     order, expected line, expected rule).  Exact-line pairs (distance 0)
     therefore always win before any drifted pair is considered.
  3. A pair is accepted only if neither side is already matched.

Unmatched expected violations are FalseNegative.  Unmatched findings are:

  • OutOfScopeFinding: the finding's standard is not the one under test
  • Redundant:         same rule, within tolerance of an already satisfied
                        expected violation (a duplicated diagnostic)
  • FalsePositive:     everything else

The function is pure: identical inputs give identical, identically ordered
output.
"""

import logging
from typing import Dict, List, Sequence, Set, Tuple

from .models import ExpectedViolation, Finding, MatchResult, Outcome
from .rule_ids import RuleID, Standard

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 2


def _expected_order(e: ExpectedViolation) -> Tuple:
    return (e.line_number, e.rule_id.sort_key())


def reconcile(
    unit_path: str,
    expected: Sequence[ExpectedViolation],
    findings: Sequence[Finding],
    standard: Standard,
    tolerance: int = DEFAULT_TOLERANCE,
) -> List[MatchResult]:
    """Partition ``expected`` and ``findings`` of one unit into MatchResults.

    ``expected`` must only hold violations of ``standard`` (the pack under
    test); findings may belong to any standard.
    """
    if tolerance < 0:
        raise ValueError("tolerance must be >= 0")
    for e in expected:
        if e.rule_id.standard is not standard:
            raise ValueError(f"{e.rule_id} is not part of {standard.value}")
        if e.unit_path != unit_path:
            raise ValueError(f"expected violation for {e.unit_path} passed for {unit_path}")
    for f in findings:
        if f.unit_path != unit_path:
            raise ValueError(f"finding for {f.unit_path} passed for {unit_path}")

    exp = sorted(expected, key=_expected_order)
    fnd = sorted(findings, key=lambda f: f.emission_index)

    findings_by_rule: Dict[RuleID, List[int]] = {}
    for fi, f in enumerate(fnd):
        findings_by_rule.setdefault(f.rule_id, []).append(fi)

    # Candidate pairs: (distance, emission, expected order, ei, fi)
    candidates: List[Tuple] = []
    for ei, e in enumerate(exp):
        for fi in findings_by_rule.get(e.rule_id, []):
            distance = abs(fnd[fi].line_number - e.line_number)
            if distance <= tolerance:
                candidates.append((distance, fnd[fi].emission_index, _expected_order(e), ei, fi))
    candidates.sort()

    pairs: Dict[int, int] = {}
    used_findings: Set[int] = set()
    for distance, _, _, ei, fi in candidates:
        if ei in pairs or fi in used_findings:
            continue
        pairs[ei] = fi
        used_findings.add(fi)
        if distance:
            logger.debug(
                "%s: %s expected on line %d matched finding on line %d (drift %d)",
                unit_path, exp[ei].rule_id, exp[ei].line_number, fnd[fi].line_number, distance,
            )

    results: List[MatchResult] = []
    satisfied: Dict[RuleID, List[int]] = {}
    for ei, e in enumerate(exp):
        if ei in pairs:
            results.append(MatchResult(outcome=Outcome.TRUE_POSITIVE, expected=e, finding=fnd[pairs[ei]]))
            satisfied.setdefault(e.rule_id, []).append(e.line_number)
        else:
            results.append(MatchResult(outcome=Outcome.FALSE_NEGATIVE, expected=e))

    for fi, f in enumerate(fnd):
        if fi in used_findings:
            continue
        if f.rule_id.standard is not standard:
            outcome = Outcome.OUT_OF_SCOPE
        elif any(abs(f.line_number - line) <= tolerance for line in satisfied.get(f.rule_id, [])):
            outcome = Outcome.REDUNDANT
        else:
            outcome = Outcome.FALSE_POSITIVE
        results.append(MatchResult(outcome=outcome, finding=f))

    results.sort(key=lambda r: r.sort_key())
    return results


def count_outcomes(results: Sequence[MatchResult]) -> Dict[Outcome, int]:
    counts = {outcome: 0 for outcome in Outcome}
    for r in results:
        counts[r.outcome] += 1
    return counts
