"""
Rule Identifiers

The five recognised coding standards and the value type that names one rule
inside a standard.  Also provides the tool-side normaliser that maps an
analyzer's own check identifier onto a RuleID.  Recognised tool conventions:

  • CodeQL coding-standards tags   external/cert/id/exp33-c
                                   external/misra/id/rule-10-3
                                   external/autosar/id/a0-1-1
  • clang-tidy check names         cert-err58-cpp
  • Axivion rule names             MisraC2012-10.3, CertC-EXP33, AutosarC++14-A0-1-1
  • bare rule codes                EXP33-C, Rule 10.3, RULE-10-3, Dir 4.6, A5-1-1
  • canonical harness text         CERT-C/EXP33-C
"""

import re
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict


class Standard(str, Enum):
    """The coding-standard families a corpus may reference."""

    CERT_C = "CERT-C"
    CERT_CPP = "CERT-CPP"
    MISRA_C = "MISRA-C"
    MISRA_CPP = "MISRA-CPP"
    AUTOSAR = "AUTOSAR"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def default_pack(self) -> str:
        """Rule-pack name handed to the analyzer when none is configured."""
        return self.value.lower()

    @classmethod
    def from_name(cls, name: str) -> "Standard":
        """Parse a user-supplied standard name (CLI, MCP, env).

        Case, spaces, underscores and dashes are ignored and ``++`` may be
        spelled ``pp``, so ``cert-c++``, ``CERT_CPP`` and ``certcpp`` all
        resolve to the same member.
        """
        key = re.sub(r"[\s_\-/]", "", name.strip().lower()).replace("++", "pp")
        try:
            return _ALIASES[key]
        except KeyError:
            choices = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown standard '{name}' (expected one of: {choices})")


_LABELS = {
    Standard.CERT_C: "SEI CERT C",
    Standard.CERT_CPP: "SEI CERT C++",
    Standard.MISRA_C: "MISRA C:2012",
    Standard.MISRA_CPP: "MISRA C++:2008",
    Standard.AUTOSAR: "AUTOSAR C++14",
}

_ALIASES = {
    "certc": Standard.CERT_C,
    "certcpp": Standard.CERT_CPP,
    "misrac": Standard.MISRA_C,
    "misrac2012": Standard.MISRA_C,
    "misracpp": Standard.MISRA_CPP,
    "misracpp2008": Standard.MISRA_CPP,
    "autosar": Standard.AUTOSAR,
    "autosarcpp14": Standard.AUTOSAR,
}

# Rule-code grammar per standard (full match).
CODE_PATTERNS = {
    Standard.CERT_C: re.compile(r"[A-Z]{3}\d{2}-C"),
    Standard.CERT_CPP: re.compile(r"[A-Z]{3}\d{2}-CPP"),
    Standard.MISRA_C: re.compile(r"(?:Rule|Dir) \d+\.\d+"),
    Standard.MISRA_CPP: re.compile(r"Rule \d+-\d+-\d+"),
    Standard.AUTOSAR: re.compile(r"[AM]\d+-\d+-\d+"),
}

CODE_FORMATS = {
    Standard.CERT_C: "AAA00-C (e.g. EXP33-C)",
    Standard.CERT_CPP: "AAA00-CPP (e.g. ERR50-CPP)",
    Standard.MISRA_C: "'Rule N.M' or 'Dir N.M' (e.g. Rule 10.3)",
    Standard.MISRA_CPP: "'Rule N-N-N' (e.g. Rule 0-1-1)",
    Standard.AUTOSAR: "AN-N-N or MN-N-N (e.g. A0-1-1)",
}


def natural_key(text: str) -> Tuple:
    """Sort key that orders embedded numbers numerically (Rule 2.2 < Rule 10.3)."""
    return tuple(
        (1, int(part)) if part.isdigit() else (0, part)
        for part in re.split(r"(\d+)", text)
        if part
    )


class RuleID(BaseModel):
    """One rule of one standard.  Immutable and hashable."""

    model_config = ConfigDict(frozen=True)

    standard: Standard
    rule_code: str

    @classmethod
    def of(cls, standard: Union[Standard, str], rule_code: str) -> "RuleID":
        """Build a RuleID, validating the code against the standard's grammar."""
        std = standard if isinstance(standard, Standard) else Standard(standard)
        code = " ".join(rule_code.split())
        if not CODE_PATTERNS[std].fullmatch(code):
            raise ValueError(
                f"'{rule_code}' is not a valid {std.value} rule code; "
                f"expected {CODE_FORMATS[std]}"
            )
        return cls(standard=std, rule_code=code)

    @classmethod
    def from_text(cls, text: str) -> "RuleID":
        """Parse the canonical ``STANDARD/CODE`` form produced by ``str()``."""
        std, sep, code = text.partition("/")
        if not sep:
            raise ValueError(f"'{text}' is not in STANDARD/CODE form")
        return cls.of(Standard.from_name(std), code)

    def sort_key(self) -> Tuple:
        return (self.standard.value, natural_key(self.rule_code))

    def __str__(self) -> str:
        return f"{self.standard.value}/{self.rule_code}"


# ═══════════════════════════════════════════════════════════════════════
#  Tool identifier normalisation
# ═══════════════════════════════════════════════════════════════════════

_CODEQL_TAG = re.compile(r"external/(cert|misra|autosar)/id/(\S+)", re.IGNORECASE)
_CERT = re.compile(r"([A-Z]{3}\d{2})-(C|CPP)", re.IGNORECASE)
_MISRA_C = re.compile(r"(RULE|DIR)[ _\-]?(\d+)[.\-](\d+)", re.IGNORECASE)
_MISRA_CPP = re.compile(r"RULE[ _\-]?(\d+)-(\d+)-(\d+)", re.IGNORECASE)
_AUTOSAR = re.compile(r"([AM]\d+)[.\-](\d+)[.\-](\d+)", re.IGNORECASE)

_CLANG_TIDY_CERT = re.compile(r"cert-([a-z]{3}\d{2})-(c|cpp)", re.IGNORECASE)
_AXIVION_MISRA_C = re.compile(r"MisraC2012(Directive)?-(\d+)\.(\d+)", re.IGNORECASE)
_AXIVION_MISRA_CPP = re.compile(r"MisraC\+\+(?:2008)?-(\d+)[.\-](\d+)[.\-](\d+)", re.IGNORECASE)
_AXIVION_CERT = re.compile(r"CertC(\+\+)?-([A-Z]{3}\d{2})(?:-(?:C|CPP))?", re.IGNORECASE)
_AXIVION_AUTOSAR = re.compile(r"AutosarC\+\+\w*-([AM]\d+)[.\-](\d+)[.\-](\d+)", re.IGNORECASE)


def _cert(code: str, lang: str) -> RuleID:
    std = Standard.CERT_CPP if lang.upper() == "CPP" else Standard.CERT_C
    return RuleID.of(std, f"{code.upper()}-{lang.upper()}")


def _misra_c(kind: str, major: str, minor: str) -> RuleID:
    return RuleID.of(Standard.MISRA_C, f"{kind.capitalize()} {int(major)}.{int(minor)}")


def _misra_cpp(a: str, b: str, c: str) -> RuleID:
    return RuleID.of(Standard.MISRA_CPP, f"Rule {int(a)}-{int(b)}-{int(c)}")


def _autosar(head: str, b: str, c: str) -> RuleID:
    return RuleID.of(Standard.AUTOSAR, f"{head.upper()}-{int(b)}-{int(c)}")


def normalize_tool_rule(raw: str) -> Optional[RuleID]:
    """Map an analyzer check identifier onto a RuleID, or None if unmappable."""
    text = (raw or "").strip()
    if not text:
        return None

    if "/" in text and not text.lower().startswith("external/"):
        try:
            return RuleID.from_text(text)
        except ValueError:
            pass

    m = _CODEQL_TAG.fullmatch(text)
    if m:
        family, ident = m.group(1).lower(), m.group(2)
        if family == "cert":
            c = _CERT.fullmatch(ident)
            return _cert(c.group(1), c.group(2)) if c else None
        if family == "misra":
            c = _MISRA_CPP.fullmatch(ident)
            if c:
                return _misra_cpp(*c.groups())
            c = _MISRA_C.fullmatch(ident)
            return _misra_c(*c.groups()) if c else None
        c = _AUTOSAR.fullmatch(ident)
        return _autosar(*c.groups()) if c else None

    m = _CLANG_TIDY_CERT.fullmatch(text)
    if m:
        return _cert(m.group(1), m.group(2))

    m = _AXIVION_MISRA_C.fullmatch(text)
    if m:
        return _misra_c("Dir" if m.group(1) else "Rule", m.group(2), m.group(3))
    m = _AXIVION_MISRA_CPP.fullmatch(text)
    if m:
        return _misra_cpp(*m.groups())
    m = _AXIVION_CERT.fullmatch(text)
    if m:
        return _cert(m.group(2), "CPP" if m.group(1) else "C")
    m = _AXIVION_AUTOSAR.fullmatch(text)
    if m:
        return _autosar(*m.groups())

    # Bare codes
    for pattern, build in (
        (_CERT, lambda g: _cert(*g)),
        (_MISRA_CPP, lambda g: _misra_cpp(*g)),
        (_MISRA_C, lambda g: _misra_c(*g)),
        (_AUTOSAR, lambda g: _autosar(*g)),
    ):
        m = pattern.fullmatch(text)
        if m:
            return build(m.groups())
    return None
