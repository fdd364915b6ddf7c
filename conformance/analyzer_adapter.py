"""
Analyzer Adapter

The narrow seam between the harness and a static analyzer:

    analyze(unit_path, standard) -> AnalysisRun

Two implementations:

  • SubprocessAnalyzer      : runs the external tool once per unit and rule
                              pack with a bounded timeout (retried once with a
                              longer timeout, then AnalysisTimeout)
  • RecordedReportAnalyzer  : replays a previously captured JSON/SARIF report

Runs for the same unit are combined with ``union_runs``: duplicate findings on
(unit, line, rule) merge into one keeping the highest severity.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from .config import ENV_ANALYZER, HarnessConfig
from .errors import AnalysisTimeout, AnalyzerInvocationError, UnmappedFindingWarning
from .models import Finding, Severity, UnmappedFinding
from .report_parser import ParsedReport, PathNormalizer, RawDiagnostic, parse_report_file, parse_tool_output
from .rule_ids import RuleID, Standard, normalize_tool_rule

logger = logging.getLogger(__name__)

OUTSIDE_CORPUS = "<outside corpus>"


@dataclass(frozen=True)
class AnalysisRun:
    """Normalised output of one or more analyzer invocations for one unit."""
    unit_path: str
    standards: Tuple[Standard, ...]
    findings: Tuple[Finding, ...] = ()
    unmapped: Tuple[UnmappedFinding, ...] = ()
    foreign: Tuple[Finding, ...] = ()      # diagnostics on files other than the unit
    skipped: int = 0                       # malformed diagnostics dropped by the parser

    @property
    def warnings(self) -> List[UnmappedFindingWarning]:
        return [UnmappedFindingWarning(u.unit_path, u.line_number, u.raw_rule) for u in self.unmapped]


class Analyzer(Protocol):
    def analyze(self, unit_path: str, standard: Standard) -> AnalysisRun:
        ...


# ═══════════════════════════════════════════════════════════════════════
#  Normalisation
# ═══════════════════════════════════════════════════════════════════════

def map_rule(diag: RawDiagnostic) -> Optional[RuleID]:
    """First candidate identifier (tool id, then tags) that maps to a RuleID."""
    for candidate in diag.rule_candidates:
        rule = normalize_tool_rule(candidate)
        if rule is not None:
            return rule
    return None


def build_run(
    unit_path: str,
    standard: Standard,
    diagnostics: Iterable[RawDiagnostic],
    normalizer: PathNormalizer,
    skipped: int = 0,
) -> AnalysisRun:
    findings: List[Finding] = []
    unmapped: List[UnmappedFinding] = []
    foreign: List[Finding] = []

    for diag in diagnostics:
        path = normalizer.normalize(diag.file_path, default=unit_path)
        severity = Severity.parse(diag.severity)
        rule = map_rule(diag)
        if rule is None:
            logger.warning("%s", UnmappedFindingWarning(path, diag.line_number, diag.rule))
            unmapped.append(UnmappedFinding(
                unit_path=path,
                line_number=diag.line_number,
                raw_rule=diag.rule,
                message=diag.message,
                severity=severity,
            ))
            continue
        finding = Finding(
            unit_path=path,
            line_number=diag.line_number,
            rule_id=rule,
            message=diag.message,
            severity=severity,
            raw_rule=diag.rule,
            emission_index=diag.emission_index,
        )
        if path == unit_path:
            findings.append(finding)
        else:
            foreign.append(finding)

    if foreign:
        logger.info("%s: %d diagnostic(s) on other files", unit_path, len(foreign))
    return AnalysisRun(
        unit_path=unit_path,
        standards=(standard,),
        findings=tuple(findings),
        unmapped=tuple(unmapped),
        foreign=tuple(foreign),
        skipped=skipped,
    )


def union_runs(runs: Sequence[AnalysisRun]) -> AnalysisRun:
    """Deterministically merge several runs for the same unit.

    For each (unit, line, rule) key the merged multiplicity is the largest
    number of copies any single run emitted, and every copy carries the
    highest severity seen for the key.  Emission order is run order, then
    the tool's own order; indices are renumbered to stay unique.
    """
    if not runs:
        raise ValueError("union_runs needs at least one run")
    unit_path = runs[0].unit_path

    def merge(groups: Sequence[Tuple[Finding, ...]]) -> Tuple[Finding, ...]:
        best: Dict[tuple, Severity] = {}
        kept: Dict[tuple, List[Tuple[int, Finding]]] = {}
        position = 0
        for findings in groups:
            per_run: Dict[tuple, int] = {}
            for f in sorted(findings, key=lambda f: f.emission_index):
                per_run[f.key] = per_run.get(f.key, 0) + 1
                if f.key not in best or f.severity.rank > best[f.key].rank:
                    best[f.key] = f.severity
                slots = kept.setdefault(f.key, [])
                if len(slots) < per_run[f.key]:
                    slots.append((position, f))
                position += 1

        merged = sorted((item for slots in kept.values() for item in slots), key=lambda item: item[0])
        return tuple(
            f.model_copy(update={"severity": best[f.key], "emission_index": idx})
            for idx, (_, f) in enumerate(merged)
        )

    unmapped: Dict[tuple, UnmappedFinding] = {}
    for run in runs:
        for u in run.unmapped:
            key = (u.unit_path, u.line_number, u.raw_rule)
            if key not in unmapped or u.severity.rank > unmapped[key].severity.rank:
                unmapped[key] = u

    standards: List[Standard] = []
    for run in runs:
        standards.extend(s for s in run.standards if s not in standards)

    return AnalysisRun(
        unit_path=unit_path,
        standards=tuple(standards),
        findings=merge([r.findings for r in runs]),
        unmapped=tuple(sorted(unmapped.values(), key=lambda u: u.sort_key())),
        foreign=merge([r.foreign for r in runs]),
        skipped=sum(r.skipped for r in runs),
    )


# ═══════════════════════════════════════════════════════════════════════
#  External process
# ═══════════════════════════════════════════════════════════════════════

class SubprocessAnalyzer:
    """Invoke the configured analyzer executable once per unit and rule pack.

    Children are tracked so that ``cancel`` can kill every running analysis
    when the pipeline aborts on a fatal error.
    """

    def __init__(self, config: HarnessConfig, corpus_root: str, normalizer: PathNormalizer):
        self.config = config
        self.corpus_root = corpus_root
        self.normalizer = normalizer
        self._lock = threading.Lock()
        self._running: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Kill running children; later invocations fail immediately."""
        with self._lock:
            self._cancelled.set()
            running = list(self._running)
        for proc in running:
            proc.kill()
        if running:
            logger.info("Cancelled %d running analyzer process(es)", len(running))

    def _cancelled_error(self, unit_path: str) -> AnalyzerInvocationError:
        return AnalyzerInvocationError("analysis cancelled", unit_path=unit_path)

    def _invoke(self, cmd: List[str], unit_path: str, timeout: float) -> Tuple[int, str, str]:
        if self._cancelled.is_set():
            raise self._cancelled_error(unit_path)
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=self.corpus_root,
                env=self.config.child_environment(),
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise AnalyzerInvocationError(
                f"cannot execute analyzer '{cmd[0]}': {e}", unit_path=unit_path,
                hint=f"check {ENV_ANALYZER} points at an executable with a valid interpreter line",
            )

        with self._lock:
            self._running.add(proc)
            cancelled = self._cancelled.is_set()
        try:
            if cancelled:
                proc.kill()
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.communicate()
                raise
        finally:
            with self._lock:
                self._running.discard(proc)

        if self._cancelled.is_set():
            raise self._cancelled_error(unit_path)
        return proc.returncode, stdout, stderr

    def analyze(self, unit_path: str, standard: Standard) -> AnalysisRun:
        cmd = self.config.command_for(unit_path, standard)
        timeout = self.config.timeout
        attempts = 0

        while attempts < 2:
            attempts += 1
            logger.debug("Running %s (timeout %.1fs, attempt %d)", " ".join(cmd), timeout, attempts)
            try:
                returncode, stdout, stderr = self._invoke(cmd, unit_path, timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "%s: analyzer timed out after %.1fs (%s pack, attempt %d)",
                    unit_path, timeout, standard.value, attempts,
                )
                if attempts < 2:
                    timeout *= self.config.timeout_factor
                continue

            if returncode not in self.config.ok_exit_codes:
                stderr = (stderr or "").strip()
                raise AnalyzerInvocationError(
                    f"analyzer exited with status {returncode} "
                    f"({standard.value} pack): {stderr[-500:] or 'no stderr output'}",
                    unit_path=unit_path,
                )
            if stderr:
                logger.debug("%s: analyzer stderr: %s", unit_path, stderr.strip()[-2000:])

            parsed: ParsedReport = parse_tool_output(stdout, unit_path)
            return build_run(unit_path, standard, parsed.diagnostics, self.normalizer, parsed.skipped)

        raise AnalysisTimeout(
            f"analysis timed out twice ({standard.value} pack, last limit {timeout:.1f}s); "
            "unit excluded from scoring",
            unit_path=unit_path, timeout=timeout, attempts=attempts,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Recorded report
# ═══════════════════════════════════════════════════════════════════════

class RecordedReportAnalyzer:
    """Replay a captured analyzer report (JSON or SARIF) instead of running a tool.

    The report is parsed once; ``analyze`` returns the diagnostics whose path
    normalises to the requested unit.  Diagnostics on files outside the
    corpus (system headers, or no path at all) are returned together by
    ``outside_corpus`` so the report can count and list them.
    """

    def __init__(self, report_path: str, normalizer: PathNormalizer):
        self.report_path = report_path
        self.normalizer = normalizer
        parsed = parse_report_file(report_path)
        self.skipped = parsed.skipped
        self.detected_format = parsed.detected_format
        self._by_unit: Dict[str, List[RawDiagnostic]] = {}
        for diag in parsed.diagnostics:
            path = normalizer.normalize(diag.file_path)
            self._by_unit.setdefault(path, []).append(diag)
        logger.info(
            "Loaded %d diagnostic(s) from %s (format: %s, skipped: %d)",
            len(parsed.diagnostics), report_path, parsed.detected_format, parsed.skipped,
        )

    @property
    def foreign_paths(self) -> List[str]:
        return sorted(p for p in self._by_unit if p not in self.normalizer.units)

    def analyze(self, unit_path: str, standard: Standard) -> AnalysisRun:
        return build_run(unit_path, standard, self._by_unit.get(unit_path, []), self.normalizer)

    def outside_corpus(self, standard: Standard) -> AnalysisRun:
        """Every diagnostic not attributable to a corpus unit, all counted as foreign.

        Unmapped rules among them are listed like any other unmapped finding.
        Diagnostics the parser skipped are attributed here as well.
        """
        diagnostics = sorted(
            (d for path, diags in self._by_unit.items() if path not in self.normalizer.units for d in diags),
            key=lambda d: d.emission_index,
        )
        run = build_run(OUTSIDE_CORPUS, standard, diagnostics, self.normalizer, self.skipped)
        return replace(run, findings=(), foreign=run.findings + run.foreign)
