"""
Harness error taxonomy.

  • CorpusFormatError        : malformed / duplicate annotation (aborts the run)
  • AnalyzerInvocationError  : analyzer crashed, missing, or exited unexpectedly (aborts the run)
  • AnalysisTimeout          : one unit's analysis timed out (unit excluded, batch continues)
  • ConfigurationError       : bad environment or arguments
  • UnmappedFindingWarning   : non-fatal; attached to the report

Every error carries the unit path, the line (when there is one) and a
remediation hint so the message is actionable on its own.
"""

from typing import Optional


class HarnessError(RuntimeError):
    """Base class for errors raised by the harness."""

    default_hint = ""

    def __init__(
        self,
        message: str,
        unit_path: Optional[str] = None,
        line: Optional[int] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.unit_path = unit_path
        self.line = line
        self.hint = hint if hint is not None else self.default_hint
        super().__init__(self.render())

    @property
    def location(self) -> str:
        if self.unit_path is None:
            return ""
        if self.line is None:
            return self.unit_path
        return f"{self.unit_path}:{self.line}"

    def render(self) -> str:
        text = f"{self.location}: {self.message}" if self.location else self.message
        if self.hint:
            text += f" (hint: {self.hint})"
        return text

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "unit": self.unit_path,
            "line": self.line,
            "message": self.message,
            "hint": self.hint,
        }


class CorpusFormatError(HarnessError):
    default_hint = "annotation regex did not match; check rule-code format"


class AnalyzerInvocationError(HarnessError):
    default_hint = "check CONFORMANCE_ANALYZER and the analyzer's own log output"


class AnalysisTimeout(HarnessError):
    default_hint = "raise CONFORMANCE_TIMEOUT or split the unit"

    def __init__(self, message: str, unit_path: Optional[str] = None,
                 timeout: float = 0.0, attempts: int = 1, hint: Optional[str] = None):
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(message, unit_path=unit_path, hint=hint)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["timeout"] = self.timeout
        data["attempts"] = self.attempts
        return data


class ConfigurationError(HarnessError):
    default_hint = "run `conformance run --help` for the supported options"


class UnmappedFindingWarning(UserWarning):
    """A diagnostic whose rule identifier maps to no recognised standard."""

    def __init__(self, unit_path: str, line: int, raw_rule: str):
        self.unit_path = unit_path
        self.line = line
        self.raw_rule = raw_rule
        super().__init__(
            f"{unit_path}:{line}: analyzer rule '{raw_rule}' does not map to a known rule "
            "(hint: the analyzer's rule pack and the harness rule grammar disagree)"
        )
