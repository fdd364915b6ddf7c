"""
Analyzer report parsing tests: SARIF, keyed JSON, bare arrays, JSON Lines,
field aliases, malformed entries and path normalisation.
"""

import json
import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

CORPUS = os.path.join(PROJECT_ROOT, "tests", "corpus")
REPORTS = os.path.join(PROJECT_ROOT, "tests", "reports")

from conformance.errors import AnalyzerInvocationError, ConfigurationError
from conformance.report_parser import (
    PathNormalizer,
    ReportFormatError,
    parse_report_file,
    parse_report_text,
    parse_tool_output,
)

UNITS = ["c/memory.c", "c/misra_types.c", "cpp/exceptions.cpp"]


class TestGenericJson(unittest.TestCase):

    def test_keyed_report(self):
        report = parse_report_file(os.path.join(REPORTS, "cert_c_findings.json"))
        self.assertEqual(report.detected_format, "findings")
        self.assertEqual(len(report.diagnostics), 8)
        self.assertEqual(report.skipped, 1)
        first = report.diagnostics[0]
        self.assertEqual(first.rule, "MEM35-C")
        self.assertEqual(first.line_number, 25)
        self.assertEqual(first.severity, "warning")
        self.assertEqual(first.emission_index, 0)

    def test_emission_index_counts_skipped_entries(self):
        report = parse_report_file(os.path.join(REPORTS, "cert_c_findings.json"))
        self.assertEqual(report.diagnostics[-1].emission_index, 8)

    def test_bare_array_and_aliases(self):
        text = json.dumps([
            {"check": "EXP33-C", "filename": "a.c", "lineNumber": "7", "msg": "m", "priority": "High"},
            {"rule": {"id": "MEM30-C"}, "location": {"file": "b.c", "startLine": 3}},
        ])
        report = parse_report_text(text)
        self.assertEqual(report.detected_format, "<root array>")
        a, b = report.diagnostics
        self.assertEqual((a.rule, a.file_path, a.line_number, a.message, a.severity),
                         ("EXP33-C", "a.c", 7, "m", "high"))
        self.assertEqual((b.rule, b.file_path, b.line_number, b.message, b.severity),
                         ("MEM30-C", "b.c", 3, "", "unknown"))

    def test_tags_become_rule_candidates(self):
        text = json.dumps({"issues": [
            {"ruleId": "cpp/autosar/unused-value", "tags": ["external/autosar/id/a0-1-1"],
             "file": "x.cpp", "line": 4},
        ]})
        diag = parse_report_text(text).diagnostics[0]
        self.assertEqual(diag.rule_candidates, ("cpp/autosar/unused-value", "external/autosar/id/a0-1-1"))

    def test_invalid_line_is_skipped(self):
        text = json.dumps({"issues": [
            {"ruleId": "EXP33-C", "file": "a.c", "line": 0},
            {"ruleId": "EXP33-C", "file": "a.c", "line": "n/a"},
            {"ruleId": "EXP33-C", "file": "a.c"},
        ]})
        report = parse_report_text(text)
        self.assertEqual(report.diagnostics, [])
        self.assertEqual(report.skipped, 3)

    def test_empty_outputs(self):
        self.assertEqual(parse_report_text("").diagnostics, [])
        self.assertEqual(parse_report_text("{}").diagnostics, [])
        self.assertEqual(parse_report_text("[]").diagnostics, [])

    def test_unrecognised_structure(self):
        with self.assertRaises(ReportFormatError):
            parse_report_text('{"version": 3}')

    def test_json_lines(self):
        report = parse_report_file(os.path.join(REPORTS, "autosar.jsonl"))
        self.assertEqual(report.detected_format, "<json lines>")
        self.assertEqual([d.line_number for d in report.diagnostics], [11, 17, 17])
        self.assertEqual(report.diagnostics[1].message, "Implicit floating conversion")

    def test_single_object_line(self):
        report = parse_report_text('{"ruleId": "EXP33-C", "file": "a.c", "line": 2}')
        self.assertEqual(len(report.diagnostics), 1)

    def test_broken_json_lines(self):
        with self.assertRaises(ReportFormatError):
            parse_report_text('{"ruleId": "EXP33-C", "line": 2}\n{broken')


class TestSarif(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.report = parse_report_file(os.path.join(REPORTS, "cert_c_missing.sarif"))

    def test_format(self):
        self.assertEqual(self.report.detected_format, "sarif")
        self.assertEqual(len(self.report.diagnostics), 2)

    def test_rule_metadata_tags(self):
        diag = self.report.diagnostics[0]
        self.assertEqual(diag.rule, "c/cert/read-of-uninitialized-memory")
        self.assertIn("external/cert/id/exp33-c", diag.rule_candidates)
        self.assertEqual(diag.severity, "error")
        self.assertEqual(diag.file_path, "c/memory.c")
        self.assertEqual(diag.line_number, 11)

    def test_rule_index_and_default_level(self):
        diag = self.report.diagnostics[1]
        self.assertEqual(diag.rule, "c/cert/insufficient-memory-allocated-for-object")
        self.assertEqual(diag.severity, "warning")
        self.assertEqual(diag.file_path, "/ci/checkout/corpus/c/memory.c")


class TestErrorMapping(unittest.TestCase):

    def test_missing_report_file(self):
        with self.assertRaises(ConfigurationError):
            parse_report_file(os.path.join(REPORTS, "missing.json"))

    def test_bad_tool_stdout(self):
        with self.assertRaises(AnalyzerInvocationError) as ctx:
            parse_tool_output("Segmentation fault", "c/memory.c")
        self.assertEqual(ctx.exception.unit_path, "c/memory.c")


class TestPathNormalizer(unittest.TestCase):

    def setUp(self):
        self.norm = PathNormalizer(CORPUS, UNITS)

    def test_relative_path(self):
        self.assertEqual(self.norm.normalize("c/memory.c"), "c/memory.c")
        self.assertEqual(self.norm.normalize("./c/memory.c"), "c/memory.c")
        self.assertEqual(self.norm.normalize("c\\memory.c"), "c/memory.c")

    def test_absolute_under_root(self):
        self.assertEqual(self.norm.normalize(os.path.join(CORPUS, "cpp", "exceptions.cpp")),
                         "cpp/exceptions.cpp")

    def test_suffix_match(self):
        self.assertEqual(self.norm.normalize("/ci/checkout/corpus/c/misra_types.c"), "c/misra_types.c")

    def test_unique_basename(self):
        self.assertEqual(self.norm.normalize("build/tmp/exceptions.cpp"), "cpp/exceptions.cpp")

    def test_outside_corpus(self):
        self.assertEqual(self.norm.normalize("/usr/include/stdlib.h"), "/usr/include/stdlib.h")

    def test_empty_uses_default(self):
        self.assertEqual(self.norm.normalize("", default="c/memory.c"), "c/memory.c")


if __name__ == "__main__":
    unittest.main()
