"""
Test suite for the FindingDeduplicator.
"""

import unittest

from synthguard.finding_deduplicator import FindingDeduplicator
from synthguard.findings import Finding, Severity


class TestFindingDeduplicator(unittest.TestCase):

    def setUp(self):
        self.deduplicator = FindingDeduplicator()

    def test_deduplicate_no_findings(self):
        self.assertEqual(self.deduplicator.process_findings([]), [])

    def test_same_kind_and_line_merge(self):
        catalog_hit = Finding('REENTRANCY', Severity.HIGH, 'Potential reentrancy', 3, 14)
        analyzer_hit = Finding('REENTRANCY', Severity.CRITICAL, 'External call without a guard', 3, 4,
                               cwe='CWE-841')
        merged = self.deduplicator.process_findings([catalog_hit, analyzer_hit])
        self.assertEqual(len(merged), 1)
        self.assertIs(merged[0].severity, Severity.CRITICAL)
        self.assertEqual(merged[0].message, 'External call without a guard')

    def test_merge_fills_missing_text(self):
        first = Finding('UNCHECKED_MATH', Severity.HIGH, 'a', 2, impact='overflow')
        second = Finding('UNCHECKED_MATH', Severity.HIGH, 'b', 2, remediation='use checked_add', cwe='CWE-190')
        merged = self.deduplicator.process_findings([first, second])
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].message, 'a')
        self.assertEqual(merged[0].remediation, 'use checked_add')
        self.assertEqual(merged[0].cwe, 'CWE-190')
        self.assertEqual(merged[0].impact, 'overflow')

    def test_different_lines_kept(self):
        findings = [
            Finding('UNCHECKED_MATH', Severity.HIGH, 'x', 5),
            Finding('UNCHECKED_MATH', Severity.HIGH, 'x', 2),
        ]
        result = self.deduplicator.process_findings(findings)
        self.assertEqual([f.line for f in result], [2, 5])

    def test_unlocated_findings_keep_messages_apart(self):
        findings = [
            Finding('INVALID_FIELD_OFFSET', Severity.HIGH, "Field 'a' has offset 3, expected 0"),
            Finding('INVALID_FIELD_OFFSET', Severity.HIGH, "Field 'b' has offset 9, expected 4"),
        ]
        self.assertEqual(len(self.deduplicator.process_findings(findings)), 2)

    def test_sort_order(self):
        findings = [
            Finding('B', Severity.LOW, 'm', 1, 5),
            Finding('A', Severity.LOW, 'm', 1, 5),
            Finding('C', Severity.LOW, 'm', 1, 0),
        ]
        self.assertEqual([f.kind for f in self.deduplicator.sort_findings(findings)], ['C', 'A', 'B'])


if __name__ == '__main__':
    unittest.main()
