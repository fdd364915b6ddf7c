"""
Corpus Loader

Parses rule-annotated C/C++ source into ExpectedViolation records.

Annotation grammar (strict; anything else that names a standard family fails
the unit with CorpusFormatError):

  // CERT C EXP33-C            → CERT-C/EXP33-C
  // CERT C++ ERR50-CPP        → CERT-CPP/ERR50-CPP
  // MISRA C 2012 Rule 10.3    → MISRA-C/Rule 10.3     (edition optional)
  /* MISRA C 2012 Dir 4.6 */   → MISRA-C/Dir 4.6
  // MISRA C++ Rule 0-1-1      → MISRA-CPP/Rule 0-1-1  (edition 2008 optional)
  // AUTOSAR A0-1-1            → AUTOSAR/A0-1-1        (C++14 optional)

A comment is a marker iff it stands alone on its line and contains one of
the family keywords CERT, MISRA or AUTOSAR.  Free text may surround the tags
and one marker may carry several tags.

Line policy: the expected violation is anchored on the line immediately below
the marker (offset +1).  A block of consecutive marker lines (stacked rules)
anchors every tag in the block on the first line after the block.  The
anchored line must be a statement: a blank line, comment or end of file
directly below a marker is a format error, and so is a family keyword inside
a multi-line block comment.  Lines are counted on newline characters only,
as analyzers and tree-sitter count them.
"""

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConfigurationError, CorpusFormatError
from .models import ExpectedViolation
from .rule_ids import CODE_FORMATS, RuleID, Standard
from .source_outline import SOURCE_EXTENSIONS, SourceOutline

logger = logging.getLogger(__name__)

MARKER_OFFSET = 1
MAX_LINES = 100_000

_FAMILY = re.compile(r"(?<![\w\-])(CERT|MISRA|AUTOSAR)(?![\w\-])")
_TRAILING_PUNCT = ",;:.)]"


class MarkerSyntaxError(ValueError):
    """A marker comment that names a standard family but does not parse."""

    def __init__(self, message: str, hint: str):
        super().__init__(message)
        self.hint = hint


@dataclass(frozen=True)
class CorpusUnit:
    """One corpus source file and the violations it declares."""
    unit_path: str
    expected: Tuple[ExpectedViolation, ...]

    def for_standard(self, standard: Standard) -> Tuple[ExpectedViolation, ...]:
        return tuple(e for e in self.expected if e.rule_id.standard is standard)


# ═══════════════════════════════════════════════════════════════════════
#  Marker grammar
# ═══════════════════════════════════════════════════════════════════════

def _clean(token: str) -> str:
    return token.rstrip(_TRAILING_PUNCT)


def _rule(standard: Standard, code: str, tag: str) -> RuleID:
    try:
        return RuleID.of(standard, code)
    except ValueError:
        raise MarkerSyntaxError(
            f"malformed {standard.value} rule code '{code}' in tag '{tag}'",
            hint=f"annotation regex did not match; {standard.value} codes look like "
                 f"{CODE_FORMATS[standard]}",
        )


def _unrecognized(tag: str) -> MarkerSyntaxError:
    return MarkerSyntaxError(
        f"unrecognized standard in tag '{tag}'",
        hint="recognized standards are CERT C, CERT C++, MISRA C 2012, "
             "MISRA C++ 2008 and AUTOSAR C++14",
    )


def _parse_tag(tokens: List[str]) -> RuleID:
    """Parse one tag whose first token is a family keyword."""
    tag = " ".join(tokens[:4])
    family = tokens[0]

    if family == "CERT":
        if len(tokens) < 2:
            raise _unrecognized(tag)
        lang = _clean(tokens[1])
        if lang not in ("C", "C++"):
            raise _unrecognized(tag)
        standard = Standard.CERT_CPP if lang == "C++" else Standard.CERT_C
        if len(tokens) < 3:
            raise MarkerSyntaxError(f"missing rule code in tag '{tag}'",
                                    hint=f"expected {CODE_FORMATS[standard]}")
        return _rule(standard, _clean(tokens[2]), tag)

    if family == "MISRA":
        if len(tokens) < 2 or _clean(tokens[1]) not in ("C", "C++"):
            raise _unrecognized(tag)
        standard = Standard.MISRA_CPP if _clean(tokens[1]) == "C++" else Standard.MISRA_C
        idx = 2
        if idx < len(tokens) and tokens[idx].isdigit():
            edition = "2008" if standard is Standard.MISRA_CPP else "2012"
            if tokens[idx] != edition:
                raise _unrecognized(tag)
            idx += 1
        if idx + 1 >= len(tokens) or tokens[idx] not in ("Rule", "Dir"):
            raise MarkerSyntaxError(
                f"missing 'Rule' or 'Dir' number in tag '{tag}'",
                hint=f"expected {CODE_FORMATS[standard]}",
            )
        return _rule(standard, f"{tokens[idx]} {_clean(tokens[idx + 1])}", tag)

    # AUTOSAR
    idx = 1
    if idx < len(tokens) and tokens[idx].startswith("C++"):
        if _clean(tokens[idx]) != "C++14":
            raise _unrecognized(tag)
        idx += 1
    if idx >= len(tokens):
        raise MarkerSyntaxError(f"missing rule code in tag '{tag}'",
                                hint=f"expected {CODE_FORMATS[Standard.AUTOSAR]}")
    return _rule(Standard.AUTOSAR, _clean(tokens[idx]), tag)


def parse_marker(comment: str) -> List[RuleID]:
    """Return the rule tags of a comment, [] if the comment is not a marker.

    Raises MarkerSyntaxError when the comment names a family but a tag does
    not parse.
    """
    hits = list(_FAMILY.finditer(comment))
    rules: List[RuleID] = []
    for i, m in enumerate(hits):
        end = hits[i + 1].start() if i + 1 < len(hits) else len(comment)
        tokens = comment[m.start():end].split()
        rules.append(_parse_tag(tokens))
    return rules


def _split_lines(text: str) -> List[str]:
    """Newline-delimited lines without CR; form feeds and other separators do not end a line."""
    lines = [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _standalone_comment(stripped: str) -> Optional[str]:
    """Text of a comment occupying the whole line, else None."""
    if stripped.startswith("//"):
        return stripped[2:]
    if stripped.startswith("/*") and stripped.endswith("*/") and len(stripped) >= 4:
        inner = stripped[2:-2]
        if "*/" not in inner:
            return inner
    return None


def _trailing_comment(stripped: str) -> Optional[str]:
    """Text of a comment that follows code on the same line, else None."""
    for opener in ("//", "/*"):
        idx = stripped.find(opener)
        if idx > 0:
            return stripped[idx + 2:]
    return None


# ═══════════════════════════════════════════════════════════════════════
#  Loader
# ═══════════════════════════════════════════════════════════════════════

class CorpusLoader:
    """Scan a corpus root and parse every unit's annotations."""

    def __init__(self, corpus_root: str, workers: int = 4):
        if not os.path.isdir(corpus_root):
            raise ConfigurationError(
                f"Corpus directory not found: {corpus_root}",
                hint="pass --corpus pointing at the annotated source tree",
            )
        self.corpus_root = os.path.abspath(corpus_root)
        self.workers = max(1, workers)

    # ────────────────────────────────────────────────────────────────
    #  Discovery
    # ────────────────────────────────────────────────────────────────

    def discover(self) -> List[str]:
        """Corpus-relative POSIX paths of every source unit, sorted."""
        found: List[str] = []
        for dirpath, dirnames, filenames in os.walk(self.corpus_root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for fn in filenames:
                if os.path.splitext(fn)[1].lower() not in SOURCE_EXTENSIONS:
                    continue
                rel = os.path.relpath(os.path.join(dirpath, fn), self.corpus_root)
                found.append(rel.replace("\\", "/"))
        return sorted(found)

    def _read(self, unit_path: str) -> Optional[bytes]:
        full = os.path.join(self.corpus_root, unit_path.replace("/", os.sep))
        with open(full, "rb") as f:
            source = f.read()
        if b"\x00" in source[:8192]:
            logger.warning("Skipping binary file: %s", unit_path)
            return None
        return source

    # ────────────────────────────────────────────────────────────────
    #  Parsing
    # ────────────────────────────────────────────────────────────────

    def load_unit(self, unit_path: str) -> CorpusUnit:
        """Parse one unit.  Raises CorpusFormatError on any bad annotation."""
        source = self._read(unit_path)
        if source is None:
            return CorpusUnit(unit_path, ())
        lines = _split_lines(source.decode("utf-8", errors="replace"))
        if len(lines) > MAX_LINES:
            raise CorpusFormatError(
                f"unit has {len(lines)} lines (limit {MAX_LINES})",
                unit_path=unit_path, hint="corpus units are meant to be minimal fragments",
            )

        anchored = self._anchor_markers(unit_path, lines)
        if not anchored:
            return CorpusUnit(unit_path, ())

        outline = SourceOutline(unit_path, source)
        seen: Dict[Tuple[int, RuleID], int] = {}
        expected: List[ExpectedViolation] = []
        for marker_line, line, rule in anchored:
            key = (line, rule)
            if key in seen:
                raise CorpusFormatError(
                    f"duplicate annotation for {rule} on line {line} "
                    f"(markers on lines {seen[key]} and {marker_line})",
                    unit_path=unit_path, line=marker_line,
                    hint="remove the repeated marker; each rule is declared once per statement",
                )
            seen[key] = marker_line
            expected.append(ExpectedViolation(
                unit_path=unit_path,
                line_number=line,
                rule_id=rule,
                function_name=outline.function_name_at(line),
            ))

        expected.sort(key=lambda e: (e.line_number, e.rule_id.sort_key()))
        logger.debug("Loaded %s: %d expected violation(s)", unit_path, len(expected))
        return CorpusUnit(unit_path, tuple(expected))

    def _anchor_markers(self, unit_path: str, lines: List[str]) -> List[Tuple[int, int, RuleID]]:
        """Return (marker_line, anchored_line, rule) for every tag in the unit."""
        anchored: List[Tuple[int, int, RuleID]] = []
        pending: List[Tuple[int, RuleID]] = []
        in_block = False

        for lineno, raw in enumerate(lines, start=1):
            stripped = raw.strip()

            if in_block:
                is_comment = True
                self._reject_block_tag(unit_path, lineno, stripped)
                if "*/" in stripped:
                    in_block = False
            else:
                comment = _standalone_comment(stripped)
                if comment is not None:
                    rules = self._parse(unit_path, lineno, comment)
                    if rules:
                        pending.extend((lineno, r) for r in rules)
                        continue
                    is_comment = True
                elif stripped.startswith("/*"):
                    is_comment = True
                    in_block = "*/" not in stripped[2:]
                    self._reject_block_tag(unit_path, lineno, stripped)
                else:
                    is_comment = False
                    trailing = _trailing_comment(stripped)
                    if trailing is not None and _FAMILY.search(trailing):
                        raise CorpusFormatError(
                            "rule tag in a trailing comment",
                            unit_path=unit_path, line=lineno,
                            hint="move the marker onto its own line directly above the statement",
                        )
                    opened = stripped.rfind("/*")
                    line_comment = stripped.find("//")
                    in_block = (
                        opened > 0
                        and (line_comment < 0 or opened < line_comment)
                        and "*/" not in stripped[opened + 2:]
                    )

            if not pending:
                continue
            if is_comment or not stripped:
                raise CorpusFormatError(
                    f"marker is not followed by a statement (line {lineno} is "
                    f"{'blank' if not stripped else 'a comment'})",
                    unit_path=unit_path, line=pending[-1][0],
                    hint=f"place the marker immediately above the violating statement "
                         f"(offset +{MARKER_OFFSET})",
                )
            anchored.extend((marker_line, lineno, rule) for marker_line, rule in pending)
            pending = []

        if pending:
            raise CorpusFormatError(
                "marker at end of file is not followed by a statement",
                unit_path=unit_path, line=pending[-1][0],
                hint="place the marker immediately above the violating statement",
            )
        return anchored

    @staticmethod
    def _reject_block_tag(unit_path: str, lineno: int, text: str) -> None:
        if _FAMILY.search(text):
            raise CorpusFormatError(
                "rule tag in a multi-line block comment",
                unit_path=unit_path, line=lineno,
                hint="use a standalone // marker (or a /* ... */ closed on the same line) "
                     "directly above the statement",
            )

    @staticmethod
    def _parse(unit_path: str, lineno: int, comment: str) -> List[RuleID]:
        try:
            return parse_marker(comment)
        except MarkerSyntaxError as e:
            raise CorpusFormatError(str(e), unit_path=unit_path, line=lineno, hint=e.hint)

    # ────────────────────────────────────────────────────────────────
    #  Whole corpus
    # ────────────────────────────────────────────────────────────────

    def load(self, unit_paths: Optional[Iterable[str]] = None) -> List[CorpusUnit]:
        """Load every unit in a bounded worker pool; results sorted by path.

        All units are parsed before reporting so that, when several units are
        malformed, the error raised is always the one for the first path.
        """
        paths = sorted(unit_paths) if unit_paths is not None else self.discover()
        results: Dict[str, CorpusUnit] = {}
        errors: Dict[str, CorpusFormatError] = {}

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {path: pool.submit(self.load_unit, path) for path in paths}
            for path, fut in futures.items():
                try:
                    results[path] = fut.result()
                except CorpusFormatError as e:
                    errors[path] = e

        if errors:
            ordered = sorted(errors)
            for path in ordered[1:]:
                logger.error("%s", errors[path])
            raise errors[ordered[0]]

        units = [results[p] for p in paths]
        logger.info(
            "Corpus %s: %d unit(s), %d expected violation(s)",
            self.corpus_root, len(units), sum(len(u.expected) for u in units),
        )
        return units
