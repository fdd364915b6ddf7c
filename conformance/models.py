"""
Core records that flow between the harness stages.

All records are frozen pydantic models: created once by the stage that owns
them and read-only afterwards.
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from .rule_ids import RuleID, natural_key


class Severity(str, Enum):
    """Diagnostic severity, ordered from most to least severe."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value) -> "Severity":
        """Map a tool's severity/level/priority string onto a Severity."""
        if value is None:
            return cls.UNKNOWN
        text = str(value).strip().lower()
        if not text:
            return cls.UNKNOWN
        try:
            return cls(text)
        except ValueError:
            return _SEVERITY_ALIASES.get(text, cls.UNKNOWN)


_SEVERITY_RANK: Dict[Severity, int] = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.INFO: 1,
    Severity.UNKNOWN: 0,
}

# SARIF levels and common vendor spellings
_SEVERITY_ALIASES: Dict[str, Severity] = {
    "fatal": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "error": Severity.HIGH,
    "major": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "warn": Severity.MEDIUM,
    "minor": Severity.LOW,
    "note": Severity.LOW,
    "recommendation": Severity.LOW,
    "style": Severity.LOW,
    "none": Severity.INFO,
    "information": Severity.INFO,
}


class ExpectedViolation(BaseModel):
    """A corpus-declared, intentional rule breach."""

    model_config = ConfigDict(frozen=True)

    unit_path: str
    line_number: int
    rule_id: RuleID
    function_name: str = ""

    def sort_key(self) -> Tuple:
        return self.rule_id.sort_key() + (natural_key(self.unit_path), self.line_number)

    def to_dict(self) -> Dict:
        return {
            "unit": self.unit_path,
            "line": self.line_number,
            "rule": str(self.rule_id),
            "function": self.function_name,
        }


class Finding(BaseModel):
    """One analyzer diagnostic, normalised."""

    model_config = ConfigDict(frozen=True)

    unit_path: str
    line_number: int
    rule_id: RuleID
    message: str = ""
    severity: Severity = Severity.UNKNOWN
    raw_rule: str = ""
    emission_index: int = 0

    @property
    def key(self) -> Tuple[str, int, RuleID]:
        return (self.unit_path, self.line_number, self.rule_id)

    def sort_key(self) -> Tuple:
        return self.rule_id.sort_key() + (
            natural_key(self.unit_path), self.line_number, self.emission_index,
        )

    def to_dict(self) -> Dict:
        return {
            "unit": self.unit_path,
            "line": self.line_number,
            "rule": str(self.rule_id),
            "tool_rule": self.raw_rule,
            "message": self.message,
            "severity": self.severity.value,
        }


class UnmappedFinding(BaseModel):
    """A diagnostic whose rule identifier maps to no recognised standard."""

    model_config = ConfigDict(frozen=True)

    unit_path: str
    line_number: int
    raw_rule: str
    message: str = ""
    severity: Severity = Severity.UNKNOWN

    def sort_key(self) -> Tuple:
        return (natural_key(self.unit_path), self.line_number, self.raw_rule)

    def to_dict(self) -> Dict:
        return {
            "unit": self.unit_path,
            "line": self.line_number,
            "tool_rule": self.raw_rule,
            "message": self.message,
            "severity": self.severity.value,
        }


class Outcome(str, Enum):
    TRUE_POSITIVE = "TruePositive"
    FALSE_NEGATIVE = "FalseNegative"
    FALSE_POSITIVE = "FalsePositive"
    REDUNDANT = "Redundant"
    OUT_OF_SCOPE = "OutOfScopeFinding"


_OUTCOME_ORDER = {outcome: idx for idx, outcome in enumerate(Outcome)}


class MatchResult(BaseModel):
    """One cell of the expected/finding partition."""

    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    expected: Optional[ExpectedViolation] = None
    finding: Optional[Finding] = None

    @model_validator(mode="after")
    def _check_sides(self) -> "MatchResult":
        has_expected = self.expected is not None
        has_finding = self.finding is not None
        if self.outcome is Outcome.TRUE_POSITIVE:
            ok = has_expected and has_finding
        elif self.outcome is Outcome.FALSE_NEGATIVE:
            ok = has_expected and not has_finding
        else:
            ok = has_finding and not has_expected
        if not ok:
            raise ValueError(f"{self.outcome.value} has the wrong expected/finding sides")
        return self

    @property
    def rule_id(self) -> RuleID:
        return self.expected.rule_id if self.expected is not None else self.finding.rule_id

    @property
    def unit_path(self) -> str:
        return self.expected.unit_path if self.expected is not None else self.finding.unit_path

    @property
    def line_number(self) -> int:
        return self.expected.line_number if self.expected is not None else self.finding.line_number

    def sort_key(self) -> Tuple:
        emission = self.finding.emission_index if self.finding is not None else -1
        return self.rule_id.sort_key() + (
            natural_key(self.unit_path),
            self.line_number,
            _OUTCOME_ORDER[self.outcome],
            emission,
        )

    def to_dict(self) -> Dict:
        data: Dict = {
            "outcome": self.outcome.value,
            "rule": str(self.rule_id),
            "unit": self.unit_path,
            "line": self.line_number,
        }
        if self.expected is not None:
            data["function"] = self.expected.function_name
        if self.finding is not None:
            data["finding_line"] = self.finding.line_number
            data["tool_rule"] = self.finding.raw_rule
            data["message"] = self.finding.message
            data["severity"] = self.finding.severity.value
        return data
