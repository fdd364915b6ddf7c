"""
MCP tool surface tests: the tools are plain functions once registered, so
they are called directly against the fixture corpus.
"""

import json
import os
import sys
import unittest
from unittest import mock

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

CORPUS = os.path.join(PROJECT_ROOT, "tests", "corpus")
BAD_CORPUS = os.path.join(PROJECT_ROOT, "tests", "corpus_bad")
REPORTS = os.path.join(PROJECT_ROOT, "tests", "reports")

import fastmcp_server as server


class McpTestCase(unittest.TestCase):

    def setUp(self):
        env = {k: v for k, v in os.environ.items() if not k.startswith("CONFORMANCE_")}
        patcher = mock.patch.dict(os.environ, env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)
        server.corpus_root = None
        server.units = []
        server.last_verification = None


class TestBeforeLoading(McpTestCase):

    def test_tools_need_a_corpus(self):
        self.assertTrue(server.list_expected().startswith("Error: No corpus loaded"))
        self.assertTrue(server.run_verification("CERT-C").startswith("Error: No corpus loaded"))

    def test_tools_need_a_run(self):
        self.assertTrue(server.list_mismatches().startswith("Error: No verification run yet"))
        self.assertTrue(server.coverage_report().startswith("Error: No verification run yet"))

    def test_bad_corpus(self):
        result = server.load_corpus(BAD_CORPUS)
        self.assertTrue(result.startswith("Error:"))
        self.assertIn("BAD-RULE", result)
        self.assertIsNone(server.corpus_root)


class TestCorpusTools(McpTestCase):

    def setUp(self):
        super().setUp()
        self.summary = server.load_corpus(CORPUS)

    def test_load_summary(self):
        self.assertIn("3 unit(s), 11 expected violation(s)", self.summary)
        self.assertIn("| CERT-C | 3 |", self.summary)
        self.assertIn("| AUTOSAR | 2 |", self.summary)

    def test_list_expected_for_unit(self):
        result = server.list_expected("c/memory.c")
        self.assertIn("**5 expected violation(s)**", result)
        self.assertIn("`c/memory.c:8` (in `cert_mem30_c`)", result)
        self.assertIn("`c/memory.c:18` (file scope)", result)
        self.assertIn("Do not access freed memory", result)

    def test_list_expected_by_standard(self):
        result = server.list_expected(standard="misra-c++")
        self.assertIn("**1 expected violation(s)**", result)
        self.assertIn("MISRA-CPP/Rule 5-0-3", result)

    def test_list_expected_unknown_standard(self):
        self.assertTrue(server.list_expected(standard="CERT Java").startswith("Error:"))

    def test_list_expected_no_match(self):
        self.assertEqual(server.list_expected("c/nope.c"), "No expected violations for c/nope.c")


class TestVerificationTools(McpTestCase):

    def setUp(self):
        super().setUp()
        server.load_corpus(CORPUS)
        self.markdown = server.run_verification(
            "CERT-C", analyzer_output=os.path.join(REPORTS, "cert_c_findings.json"),
        )

    def test_run_verification(self):
        self.assertIn("## Conformance: SEI CERT C (CERT-C)", self.markdown)
        self.assertIn("| **Status** | **PASS** |", self.markdown)

    def test_strict_run(self):
        result = server.run_verification(
            "CERT-C", analyzer_output=os.path.join(REPORTS, "cert_c_findings.json"), strict=True,
        )
        self.assertIn("| **Status** | **FAIL** |", result)

    def test_false_positives(self):
        result = server.list_mismatches("FalsePositive")
        self.assertIn("**1 FalsePositive entry**", result)
        self.assertIn("**[CERT-C/INT31-C]** `c/misra_types.c:9`", result)

    def test_false_negatives_none(self):
        self.assertEqual(server.list_mismatches(), "No FalseNegative entries")

    def test_drifted_true_positive(self):
        result = server.list_mismatches("TruePositive", unit_path="c/memory.c")
        self.assertIn("**3 TruePositive entries**", result)
        self.assertIn("(reported on line 13)", result)

    def test_unknown_outcome(self):
        self.assertIn("Unknown outcome", server.list_mismatches("Missed"))

    def test_json_report(self):
        data = json.loads(server.coverage_report("json"))
        self.assertEqual(data["standard"], "CERT-C")
        self.assertEqual(data["totals"]["tp"], 3)
        self.assertEqual(server.coverage_report(), self.markdown)

    def test_missing_report_is_an_error(self):
        result = server.run_verification("CERT-C", analyzer_output=os.path.join(REPORTS, "missing.json"))
        self.assertTrue(result.startswith("Error:"))
        self.assertIsNotNone(server.last_verification)

    def test_unknown_standard(self):
        self.assertTrue(server.run_verification("CERT-Java").startswith("Error:"))

    def test_reload_clears_last_run(self):
        server.load_corpus(CORPUS)
        self.assertIsNone(server.last_verification)


class TestExplainRule(unittest.TestCase):

    def test_known_rule(self):
        result = server.explain_rule("CERT-C/MEM30-C")
        self.assertIn("## CERT-C/MEM30-C: Do not access freed memory", result)
        self.assertIn("**Standard**: SEI CERT C", result)

    def test_unknown_rule(self):
        self.assertTrue(server.explain_rule("CERT-C/XYZ99-C").startswith("Unknown rule"))


if __name__ == "__main__":
    unittest.main()
