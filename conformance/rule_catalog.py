"""
Rule Catalog

Titles and one-line summaries for the rules exercised by the reference
corpus, grouped per standard.  Used to label report rows and by the MCP
``explain_rule`` tool.  Rules outside the catalog are still scored; they
simply have no title.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .rule_ids import RuleID, Standard


@dataclass
class CatalogEntry:
    rule: RuleID
    title: str
    summary: str = ""                      # normative text, where it differs from the title
    cross_references: List[str] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════
#  Catalog
# ═══════════════════════════════════════════════════════════════════════

_RULES: Dict[RuleID, CatalogEntry] = {}

def _add(standard: Standard, code: str, title: str, summary: str = "", refs: Optional[List[str]] = None):
    rule = RuleID.of(standard, code)
    _RULES[rule] = CatalogEntry(rule=rule, title=title, summary=summary, cross_references=refs or [])

# ───────────────────────────────────────────────────────────────────────
#  SEI CERT C
# ───────────────────────────────────────────────────────────────────────

_add(Standard.CERT_C, "ARR30-C", "Do not form or use out-of-bounds pointers or array subscripts")
_add(Standard.CERT_C, "DCL30-C", "Declare objects with appropriate storage durations")
_add(Standard.CERT_C, "ERR33-C", "Detect and handle standard library errors")
_add(Standard.CERT_C, "EXP30-C", "Do not depend on the order of evaluation for side effects")
_add(Standard.CERT_C, "EXP33-C", "Do not read uninitialized memory")
_add(Standard.CERT_C, "INT31-C",
     "Ensure that integer conversions do not result in lost or misinterpreted data")
_add(Standard.CERT_C, "MEM30-C", "Do not access freed memory")
_add(Standard.CERT_C, "MEM35-C", "Allocate sufficient memory for an object")
_add(Standard.CERT_C, "MSC32-C", "Properly seed pseudorandom number generators",
     refs=["CERT-CPP/MSC50-CPP"])
_add(Standard.CERT_C, "SIG30-C", "Call only asynchronous-safe functions within signal handlers")
_add(Standard.CERT_C, "STR31-C",
     "Guarantee that storage for strings has sufficient space for character data and the null terminator")

# ───────────────────────────────────────────────────────────────────────
#  SEI CERT C++
# ───────────────────────────────────────────────────────────────────────

_add(Standard.CERT_CPP, "CTR50-CPP", "Guarantee that container indices and iterators are within the valid range")
_add(Standard.CERT_CPP, "DCL50-CPP", "Do not define a C-style variadic function")
_add(Standard.CERT_CPP, "ERR50-CPP", "Do not abruptly terminate the program")
_add(Standard.CERT_CPP, "ERR58-CPP", "Handle all exceptions thrown before main() begins executing")
_add(Standard.CERT_CPP, "ERR61-CPP", "Catch exceptions by lvalue reference",
     refs=["MISRA-CPP/Rule 15-3-5"])
_add(Standard.CERT_CPP, "EXP55-CPP", "Do not access a cv-qualified object through a cv-unqualified type")
_add(Standard.CERT_CPP, "MEM52-CPP", "Detect and handle memory allocation errors")
_add(Standard.CERT_CPP, "MSC50-CPP", "Do not use std::rand() for generating pseudorandom numbers",
     refs=["CERT-C/MSC32-C"])
_add(Standard.CERT_CPP, "OOP51-CPP", "Do not slice derived objects")
_add(Standard.CERT_CPP, "OOP57-CPP",
     "Prefer special member functions and overloaded operators to C Standard Library functions")

# ───────────────────────────────────────────────────────────────────────
#  MISRA C:2012
# ───────────────────────────────────────────────────────────────────────

_add(Standard.MISRA_C, "Dir 4.6", "Use typedefs for basic numerical types",
     "typedefs that indicate size and signedness should be used in place of the basic numerical types.",
     refs=["AUTOSAR/A3-9-1"])
_add(Standard.MISRA_C, "Rule 2.2", "No dead code", "There shall be no dead code.")
_add(Standard.MISRA_C, "Rule 8.4", "Compatible declaration before definition",
     "A compatible declaration shall be visible when an object or function with external "
     "linkage is defined.")
_add(Standard.MISRA_C, "Rule 8.7", "Object/function scope",
     "Functions and objects should not be defined with external linkage if they are "
     "referenced in only one translation unit.")
_add(Standard.MISRA_C, "Rule 10.1", "Operands of inappropriate essential type",
     "Operands shall not be of an inappropriate essential type.")
_add(Standard.MISRA_C, "Rule 10.3", "Narrowing assignment",
     "The value of an expression shall not be assigned to an object with a narrower "
     "essential type or of a different essential type category.",
     refs=["MISRA-C/Rule 10.1"])
_add(Standard.MISRA_C, "Rule 11.3", "Cast between pointer to object and pointer to different object type")
_add(Standard.MISRA_C, "Rule 12.1", "Precedence of operators",
     "The precedence of operators within expressions should be made explicit.")
_add(Standard.MISRA_C, "Rule 14.4", "Controlling expression is essentially Boolean",
     "The controlling expression of an if statement and the controlling expression of an "
     "iteration-statement shall have essentially Boolean type.")
_add(Standard.MISRA_C, "Rule 15.6", "Compound statement bodies",
     "The body of an iteration-statement or a selection-statement shall be a compound-statement.")
_add(Standard.MISRA_C, "Rule 17.7", "Return value of non-void function used",
     "The value returned by a function having non-void return type shall be used.")
_add(Standard.MISRA_C, "Rule 21.3", "Memory allocation and deallocation not used",
     "The memory allocation and deallocation functions of <stdlib.h> shall not be used.")
_add(Standard.MISRA_C, "Rule 21.6", "Standard I/O not used",
     "The Standard Library input/output functions shall not be used.")

# ───────────────────────────────────────────────────────────────────────
#  MISRA C++:2008
# ───────────────────────────────────────────────────────────────────────

_add(Standard.MISRA_CPP, "Rule 0-1-1", "A project shall not contain unreachable code")
_add(Standard.MISRA_CPP, "Rule 2-10-2",
     "Identifiers declared in an inner scope shall not hide an identifier declared in an outer scope",
     refs=["AUTOSAR/A2-10-1"])
_add(Standard.MISRA_CPP, "Rule 5-0-3",
     "A cvalue expression shall not be implicitly converted to a different underlying type",
     refs=["AUTOSAR/M5-0-3"])
_add(Standard.MISRA_CPP, "Rule 5-2-4", "C-style casts and functional notation casts shall not be used")
_add(Standard.MISRA_CPP, "Rule 6-4-2", "All if ... else if constructs shall be terminated with an else clause")
_add(Standard.MISRA_CPP, "Rule 6-6-5", "A function shall have a single point of exit at the end of the function")
_add(Standard.MISRA_CPP, "Rule 15-3-5", "A class type exception shall always be caught by reference")
_add(Standard.MISRA_CPP, "Rule 18-0-1", "The C library shall not be used")
_add(Standard.MISRA_CPP, "Rule 18-4-1", "Dynamic heap memory allocation shall not be used")
_add(Standard.MISRA_CPP, "Rule 27-0-1", "The stream input/output library <cstdio> shall not be used")

# ───────────────────────────────────────────────────────────────────────
#  AUTOSAR C++14
# ───────────────────────────────────────────────────────────────────────

_add(Standard.AUTOSAR, "A0-1-1",
     "A project shall not contain instances of non-volatile variables being given values "
     "that are not subsequently used")
_add(Standard.AUTOSAR, "A0-1-2",
     "The value returned by a function having a non-void return type that is not an "
     "overloaded operator shall be used")
_add(Standard.AUTOSAR, "A2-10-1",
     "An identifier declared in an inner scope shall not hide an identifier declared in an outer scope")
_add(Standard.AUTOSAR, "A3-9-1",
     "Fixed width integer types from <cstdint> shall be used in place of the basic numerical types")
_add(Standard.AUTOSAR, "A5-1-1",
     "Literal values shall not be used apart from type initialization, otherwise symbolic names shall be used")
_add(Standard.AUTOSAR, "A5-2-2", "Traditional C-style casts shall not be used")
_add(Standard.AUTOSAR, "A7-1-5", "The auto specifier shall not be used apart from limited contexts")
_add(Standard.AUTOSAR, "A8-4-7",
     "\"in\" parameters for \"cheap to copy\" types shall be passed by value")
_add(Standard.AUTOSAR, "A11-0-2",
     "A type defined as struct shall provide only public data members")
_add(Standard.AUTOSAR, "A15-1-2", "An exception object shall not be a pointer")
_add(Standard.AUTOSAR, "A18-1-1", "C-style arrays shall not be used")
_add(Standard.AUTOSAR, "A18-5-1", "Functions malloc, calloc, realloc and free shall not be used")
_add(Standard.AUTOSAR, "M5-0-3",
     "A cvalue expression shall not be implicitly converted to a different underlying type")
_add(Standard.AUTOSAR, "M6-4-1", "An if-else-if construct shall be terminated with an else clause")


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def get_rule(rule: Union[RuleID, str]) -> Optional[CatalogEntry]:
    """Look up a rule by RuleID or by its ``STANDARD/CODE`` text."""
    if isinstance(rule, str):
        try:
            rule = RuleID.from_text(rule)
        except ValueError:
            return None
    return _RULES.get(rule)


def get_rules_for_standard(standard: Standard) -> List[CatalogEntry]:
    """Catalog entries of one standard in natural rule order."""
    entries = [e for r, e in _RULES.items() if r.standard is standard]
    return sorted(entries, key=lambda e: e.rule.sort_key())


def format_rule_explanation(rule: Union[RuleID, str]) -> str:
    """Markdown description of a rule for the MCP surface."""
    entry = get_rule(rule)
    if entry is None:
        return f"Unknown rule: {rule}"

    explanation = f"## {entry.rule}: {entry.title}\n**Standard**: {entry.rule.standard.label}"
    if entry.summary:
        explanation += f"\n\n{entry.summary}"
    if entry.cross_references:
        explanation += f"\n\n### Related Rules\n{', '.join(entry.cross_references)}"
    return explanation
