"""
Verification pipeline.

    CorpusLoader ─┐
                  ├─► reconcile (per unit) ─► build_report
    Analyzer ─────┘

Loading and analysis are independent and run at the same time in separate
bounded pools.  CorpusFormatError and AnalyzerInvocationError abort the run as
soon as they surface: running analyzer processes are killed and queued units
are dropped.  AnalysisTimeout excludes only the affected unit.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .analyzer_adapter import (
    AnalysisRun,
    Analyzer,
    RecordedReportAnalyzer,
    SubprocessAnalyzer,
    union_runs,
)
from .config import ENV_ANALYZER, HarnessConfig
from .corpus_loader import CorpusLoader, CorpusUnit
from .coverage import CoverageReport, UnitOutcome, build_report
from .errors import AnalysisTimeout, ConfigurationError, CorpusFormatError
from .reconciler import reconcile
from .report_parser import PathNormalizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Verification:
    """Loaded corpus plus the coverage report computed from it."""
    units: Tuple[CorpusUnit, ...]
    report: CoverageReport


def make_analyzer(
    config: HarnessConfig,
    corpus_root: str,
    normalizer: PathNormalizer,
    analyzer_output: Optional[str] = None,
) -> Analyzer:
    """Recorded report when one is given, else the configured executable."""
    if analyzer_output:
        analyzer = RecordedReportAnalyzer(analyzer_output, normalizer)
        for path in analyzer.foreign_paths:
            logger.info("Recorded report mentions file outside the corpus: %s", path)
        return analyzer
    if not config.analyzer_path:
        raise ConfigurationError(
            f"No analyzer configured; set {ENV_ANALYZER} or pass --analyzer-output",
        )
    return SubprocessAnalyzer(config, corpus_root, normalizer)


def _analyze_unit(analyzer: Analyzer, config: HarnessConfig, unit_path: str) -> AnalysisRun:
    runs = [analyzer.analyze(unit_path, std) for std in config.standards_to_run]
    return union_runs(runs)


def _collect(
    load_future: Future,
    futures: Dict[Future, str],
) -> Tuple[List[CorpusUnit], Dict[str, Union[AnalysisRun, AnalysisTimeout]]]:
    """Gather loader and analyzer results in completion order.

    The first fatal error (CorpusFormatError, AnalyzerInvocationError)
    propagates as soon as its future finishes.
    """
    units: List[CorpusUnit] = []
    analysis: Dict[str, Union[AnalysisRun, AnalysisTimeout]] = {}
    for fut in as_completed([load_future, *futures]):
        if fut is load_future:
            units = fut.result()
            continue
        unit_path = futures[fut]
        try:
            analysis[unit_path] = fut.result()
        except AnalysisTimeout as e:
            logger.error("%s", e)
            analysis[unit_path] = e
    return units, analysis


def _abort(analyzer: Analyzer, *pools: ThreadPoolExecutor) -> None:
    cancel = getattr(analyzer, "cancel", None)
    if cancel is not None:
        cancel()
    for pool in pools:
        pool.shutdown(wait=False, cancel_futures=True)


def _outcome(
    unit: CorpusUnit,
    analysis: Union[AnalysisRun, AnalysisTimeout],
    config: HarnessConfig,
) -> UnitOutcome:
    if isinstance(analysis, AnalysisTimeout):
        return UnitOutcome(unit_path=unit.unit_path, excluded=analysis.to_dict())

    results = reconcile(
        unit.unit_path,
        unit.for_standard(config.standard),
        analysis.findings,
        config.standard,
        config.tolerance,
    )
    return UnitOutcome(
        unit_path=unit.unit_path,
        results=tuple(results),
        unmapped=analysis.unmapped,
        foreign=len(analysis.foreign),
        skipped=analysis.skipped,
        warnings=tuple(str(w) for w in analysis.warnings),
    )


def _outside_corpus(analyzer: Analyzer, config: HarnessConfig) -> Optional[UnitOutcome]:
    if not isinstance(analyzer, RecordedReportAnalyzer):
        return None
    run = analyzer.outside_corpus(config.standard)
    return UnitOutcome(
        unit_path=run.unit_path,
        unmapped=run.unmapped,
        foreign=len(run.foreign),
        skipped=run.skipped,
        warnings=tuple(str(w) for w in run.warnings),
    )


def verify(
    config: HarnessConfig,
    corpus_root: str,
    analyzer_output: Optional[str] = None,
    analyzer: Optional[Analyzer] = None,
) -> Verification:
    """Run the whole harness once and return the corpus and its report.

    Raises CorpusFormatError, AnalyzerInvocationError or ConfigurationError;
    timeouts are reported inside the CoverageReport instead.
    """
    loader = CorpusLoader(corpus_root, workers=config.workers)
    unit_paths = loader.discover()
    if not unit_paths:
        raise CorpusFormatError(
            "corpus contains no source units",
            unit_path=corpus_root,
            hint="units are .c/.h/.cc/.cpp/.cxx/.hh/.hpp files below the corpus root",
        )

    normalizer = PathNormalizer(loader.corpus_root, unit_paths)
    if analyzer is None:
        analyzer = make_analyzer(config, loader.corpus_root, normalizer, analyzer_output)

    logger.info(
        "Verifying %s against %d unit(s) (packs: %s, tolerance ±%d)",
        config.standard.value, len(unit_paths),
        ", ".join(s.value for s in config.standards_to_run), config.tolerance,
    )

    loader_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="corpus")
    analysis_pool = ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="analyzer")
    try:
        load_future = loader_pool.submit(loader.load, unit_paths)
        futures = {
            analysis_pool.submit(_analyze_unit, analyzer, config, path): path
            for path in unit_paths
        }
        units, analysis = _collect(load_future, futures)
    except BaseException:
        _abort(analyzer, loader_pool, analysis_pool)
        raise
    loader_pool.shutdown()
    analysis_pool.shutdown()

    if not any(unit.for_standard(config.standard) for unit in units):
        raise CorpusFormatError(
            f"corpus declares no {config.standard.value} violations; nothing to verify",
            unit_path=loader.corpus_root,
            hint="check --standard against the corpus annotations",
        )

    outcomes = [_outcome(unit, analysis[unit.unit_path], config) for unit in units]
    report = build_report(
        outcomes, config.standard, config.tolerance, config.strict,
        outside=_outside_corpus(analyzer, config),
    )

    stats = report.under_test
    logger.info(
        "%s: TP=%d FN=%d FP=%d redundant=%d out-of-scope=%d excluded=%d",
        config.standard.value, stats.tp, stats.fn, stats.fp, stats.redundant,
        report.totals.out_of_scope, len(report.excluded_units),
    )
    return Verification(units=tuple(units), report=report)
