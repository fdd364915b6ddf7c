"""
Analyzer Report Parser

Parses the diagnostic stream of a static analyzer into RawDiagnostic records.
Supports multiple output conventions:

  • SARIF 2.1.0                {"runs": [{"results": [...]}]}
  • {"issues": [...]}          (default / simplified)
  • {"findings": [...]}        (dashboard export)
  • {"warnings": [...]}        (legacy format)
  • {"results": [...]}         (custom CI pipeline wrapper)
  • {"violations": [...]}
  • [...]                      (bare array at top level)
  • JSON Lines                 (one diagnostic object per line)

Unknown extra fields are ignored.  Missing message → "", missing severity →
"unknown".  Entries with no rule identifier or no usable line number are
skipped and counted, never fatal to the run.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from .errors import AnalyzerInvocationError, ConfigurationError

logger = logging.getLogger(__name__)

# Keys we scan for when auto-detecting the report structure
_CANDIDATE_KEYS = ("issues", "findings", "warnings", "results", "violations", "diagnostics")


@dataclass(frozen=True)
class RawDiagnostic:
    """One tool diagnostic before rule / path normalisation."""
    rule_candidates: Tuple[str, ...]   # tool rule id first, then tags
    message: str
    file_path: str
    line_number: int
    severity: str
    emission_index: int

    @property
    def rule(self) -> str:
        return self.rule_candidates[0] if self.rule_candidates else ""


@dataclass
class ParsedReport:
    diagnostics: List[RawDiagnostic]
    skipped: int = 0
    detected_format: Optional[str] = None


class ReportFormatError(ValueError):
    pass


# ════════════════════════════════════════════════════════════════════
#  Entry points
# ════════════════════════════════════════════════════════════════════

def parse_report_text(text: str, source: str = "<analyzer output>") -> ParsedReport:
    """Parse analyzer output.  Raises ReportFormatError if nothing is recognisable."""
    stripped = text.strip()
    if not stripped:
        return ParsedReport(diagnostics=[], detected_format="<empty>")

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return _parse_json_lines(stripped, source)

    if isinstance(data, dict) and isinstance(data.get("runs"), list):
        return _parse_sarif(data)

    raw_items, detected = _extract_issues(data)
    if raw_items is None:
        raise ReportFormatError(
            f"Unrecognised report format in {source}. Expected SARIF, a JSON object "
            f"with one of the keys: {', '.join(_CANDIDATE_KEYS)}, or a top-level JSON array."
        )
    return _normalise_all(raw_items, detected)


def parse_report_file(report_path: str) -> ParsedReport:
    """Load a recorded analyzer report from disk."""
    try:
        with open(report_path, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        raise ConfigurationError(
            f"Analyzer report not found: {report_path}",
            hint="check the --analyzer-output path",
        )
    if b"\x00" in raw[:8192]:
        raise ConfigurationError(
            f"Analyzer report {report_path} looks binary",
            hint="pass the JSON/SARIF file the analyzer wrote, not an archive",
        )
    try:
        return parse_report_text(raw.decode("utf-8"), source=report_path)
    except UnicodeDecodeError:
        raise ConfigurationError(f"Cannot decode {report_path} as UTF-8")
    except ReportFormatError as e:
        raise ConfigurationError(str(e), hint="re-run the analyzer with JSON or SARIF output")


def parse_tool_output(stdout: str, unit_path: str) -> ParsedReport:
    """Parse subprocess stdout; an unparseable stream means the tool is broken."""
    try:
        return parse_report_text(stdout, source=f"analyzer stdout for {unit_path}")
    except ReportFormatError as e:
        raise AnalyzerInvocationError(
            str(e), unit_path=unit_path,
            hint="the analyzer must print JSON or SARIF diagnostics on stdout",
        )


# ════════════════════════════════════════════════════════════════════
#  Generic JSON
# ════════════════════════════════════════════════════════════════════

def _extract_issues(data) -> Tuple[Optional[list], Optional[str]]:
    """Auto-detect the array of issues inside the JSON structure."""
    if isinstance(data, list):
        return data, "<root array>"

    if not isinstance(data, dict):
        return None, None

    for key in _CANDIDATE_KEYS:
        if key in data and isinstance(data[key], list):
            return data[key], key

    # Last resort: the first key whose value is a list of objects
    for key, val in data.items():
        if isinstance(val, list) and len(val) > 0 and isinstance(val[0], dict):
            logger.info("Auto-detected issues under key '%s'", key)
            return val, key

    # A single diagnostic (one-line JSON Lines stream)
    if any(key in data for key in ("ruleId", "rule_id", "rule", "checkId")):
        return [data], "<json lines>"

    # An empty object is an empty report
    if not data:
        return [], "<empty object>"
    return None, None


def _parse_json_lines(text: str, source: str) -> ParsedReport:
    items = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            items.append(json.loads(line))
        except json.JSONDecodeError as e:
            raise ReportFormatError(f"Invalid JSON in {source} at line {lineno}: {e}")
    return _normalise_all(items, "<json lines>")


def _normalise_all(items: Iterable, detected: Optional[str]) -> ParsedReport:
    report = ParsedReport(diagnostics=[], detected_format=detected)
    for item in items:
        diag = _normalise(item, len(report.diagnostics) + report.skipped)
        if diag is None:
            logger.warning("Skipping malformed diagnostic: %.200r", item)
            report.skipped += 1
        else:
            report.diagnostics.append(diag)
    return report


def _first(item: dict, *keys):
    for key in keys:
        val = item.get(key)
        if val not in (None, ""):
            return val
    return None


def _as_line(value) -> Optional[int]:
    try:
        line = int(value)
    except (TypeError, ValueError):
        return None
    return line if line >= 1 else None


def _normalise(item, index: int) -> Optional[RawDiagnostic]:
    """Normalise a single issue dict, or None if it lacks a rule or line."""
    if not isinstance(item, dict):
        return None

    rule = _first(item, "ruleId", "rule_id", "rule", "checkId", "check", "checker", "errorNumber")
    if isinstance(rule, dict):
        rule = _first(rule, "id", "name")

    loc = item.get("location")
    if isinstance(loc, dict) and loc:
        file_path = _first(loc, "path", "file", "uri")
        line = _first(loc, "startLine", "line")
    else:
        file_path = None
        line = None
    if file_path is None:
        file_path = _first(item, "file", "path", "filename", "uri")
    if line is None:
        line = _first(item, "line", "startLine", "lineNumber", "line_number")

    line_number = _as_line(line)
    if rule is None or line_number is None:
        return None

    message = _first(item, "message", "msg", "text", "description")
    if isinstance(message, dict):
        message = _first(message, "text", "markdown")
    severity = _first(item, "severity", "priority", "level")

    tags = item.get("tags")
    candidates = [str(rule)]
    if isinstance(tags, list):
        candidates.extend(str(t) for t in tags if isinstance(t, str))

    return RawDiagnostic(
        rule_candidates=tuple(candidates),
        message=str(message) if message is not None else "",
        file_path=_uri_to_path(str(file_path)) if file_path is not None else "",
        line_number=line_number,
        severity=str(severity).lower() if severity is not None else "unknown",
        emission_index=index,
    )


# ════════════════════════════════════════════════════════════════════
#  SARIF
# ════════════════════════════════════════════════════════════════════

def _sarif_rule_meta(run: dict) -> Tuple[List[dict], Dict[str, dict]]:
    tool = run.get("tool") or {}
    components = [tool.get("driver") or {}] + list(tool.get("extensions") or [])
    ordered: List[dict] = []
    by_id: Dict[str, dict] = {}
    for comp in components:
        for meta in comp.get("rules") or []:
            if isinstance(meta, dict):
                if comp is components[0]:
                    ordered.append(meta)
                if meta.get("id"):
                    by_id.setdefault(str(meta["id"]), meta)
    return ordered, by_id


def _parse_sarif(data: dict) -> ParsedReport:
    report = ParsedReport(diagnostics=[], detected_format="sarif")
    index = 0
    for run in data.get("runs") or []:
        if not isinstance(run, dict):
            continue
        ordered, by_id = _sarif_rule_meta(run)
        for result in run.get("results") or []:
            diag = _sarif_result(result, ordered, by_id, index)
            index += 1
            if diag is None:
                logger.warning("Skipping malformed SARIF result: %.200r", result)
                report.skipped += 1
            else:
                report.diagnostics.append(diag)
    return report


def _sarif_result(result, ordered: List[dict], by_id: Dict[str, dict], index: int) -> Optional[RawDiagnostic]:
    if not isinstance(result, dict):
        return None

    rule_ref = result.get("rule") if isinstance(result.get("rule"), dict) else {}
    rule_id = result.get("ruleId") or rule_ref.get("id")
    rule_index = result.get("ruleIndex", rule_ref.get("index"))

    meta: dict = {}
    if rule_id is not None and str(rule_id) in by_id:
        meta = by_id[str(rule_id)]
    elif isinstance(rule_index, int) and 0 <= rule_index < len(ordered):
        meta = ordered[rule_index]
        rule_id = rule_id or meta.get("id")
    if rule_id is None:
        return None

    file_path = ""
    line_number = None
    for location in result.get("locations") or []:
        physical = (location or {}).get("physicalLocation") or {}
        artifact = physical.get("artifactLocation") or {}
        region = physical.get("region") or {}
        if artifact.get("uri"):
            file_path = _uri_to_path(str(artifact["uri"]))
            line_number = _as_line(region.get("startLine"))
            break
    if line_number is None:
        return None

    message = (result.get("message") or {}).get("text") or ""
    level = result.get("level") or (meta.get("defaultConfiguration") or {}).get("level")
    props = result.get("properties") or {}
    severity = props.get("severity") or level

    tags = list((meta.get("properties") or {}).get("tags") or [])
    tags += list(props.get("tags") or [])
    candidates = [str(rule_id)] + [str(t) for t in tags if str(t).startswith("external/")]

    return RawDiagnostic(
        rule_candidates=tuple(candidates),
        message=str(message),
        file_path=file_path,
        line_number=line_number,
        severity=str(severity).lower() if severity else "unknown",
        emission_index=index,
    )


def _uri_to_path(uri: str) -> str:
    if uri.startswith("file:"):
        return unquote(urlsplit(uri).path)
    return unquote(uri)


# ════════════════════════════════════════════════════════════════════
#  Path normalisation
# ════════════════════════════════════════════════════════════════════

class PathNormalizer:
    """Map analyzer-reported paths onto corpus-relative POSIX unit paths.

    Analyzers may report absolute paths from a build server
    (e.g. /opt/ci/checkout/src/c/misra_violations.c) that do not match the
    local corpus layout.  Strategies, first hit wins:

      1. already corpus-relative and a known unit
      2. absolute path under the corpus root
      3. suffix match against known units
      4. unique basename match against known units
    Anything else is returned with separators normalised and is treated by
    the caller as a file outside the corpus.
    """

    def __init__(self, corpus_root: str, unit_paths: Iterable[str]):
        self.root = os.path.abspath(corpus_root)
        self.root_nc = os.path.normcase(self.root)
        self.units = set(unit_paths)
        self._by_basename: Dict[str, List[str]] = {}
        for unit in sorted(self.units):
            self._by_basename.setdefault(unit.rsplit("/", 1)[-1], []).append(unit)

    def normalize(self, file_path: str, default: str = "") -> str:
        if not file_path:
            return default
        fp_norm = file_path.replace("\\", "/")
        if fp_norm.startswith("./"):
            fp_norm = fp_norm[2:]

        # Strategy 1
        if not os.path.isabs(file_path) and fp_norm in self.units:
            return fp_norm

        # Strategy 2
        if os.path.isabs(file_path):
            abs_fp = os.path.abspath(file_path)
            abs_nc = os.path.normcase(abs_fp)
            if abs_nc.startswith(self.root_nc + os.sep):
                rel = os.path.relpath(abs_fp, self.root).replace("\\", "/")
                if rel in self.units or not self.units:
                    return rel

        # Strategy 3
        parts = fp_norm.split("/")
        for i in range(1, len(parts)):
            candidate = "/".join(parts[i:])
            if candidate in self.units:
                return candidate

        # Strategy 4
        matches = self._by_basename.get(parts[-1], [])
        if len(matches) == 1:
            return matches[0]

        return fp_norm
