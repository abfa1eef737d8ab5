"""Tests for the line-level vulnerability pattern catalog."""

import pytest

from synthguard.findings import Severity
from synthguard.pattern_catalog import VULNERABILITY_PATTERNS, PatternCatalog


@pytest.fixture
def catalog():
    return PatternCatalog()


def kinds(findings):
    return [f.kind for f in findings]


class TestPatternCatalog:

    def test_unchecked_math_location(self, catalog):
        findings = catalog.scan("let x = a + b;")
        assert kinds(findings) == ['UNCHECKED_MATH']
        assert findings[0].line == 1
        assert findings[0].column == 8
        assert findings[0].severity is Severity.HIGH
        assert findings[0].cwe == 'CWE-190'

    def test_false_positive_marker_skips_line(self, catalog):
        assert catalog.scan("let x = a.checked_add(b).unwrap();") == []

    def test_comments_and_strings_ignored(self, catalog):
        code = '// total = a + b\nmsg!("a + b");\n/* x = y * z */'
        assert catalog.scan(code) == []

    def test_line_numbers_survive_block_comments(self, catalog):
        findings = catalog.scan("/* a\n b */\nlet x = a + b;")
        assert [f.line for f in findings] == [3]

    def test_timestamp_dependence(self, catalog):
        findings = catalog.scan("let now = Clock::get()?.unix_timestamp;")
        assert kinds(findings) == ['TIMESTAMP_DEPENDENCE']
        assert findings[0].severity is Severity.MEDIUM
        assert findings[0].column == 4

    def test_external_call_flagged_unless_guarded(self, catalog):
        assert kinds(catalog.scan("recipient.transfer(amount);")) == ['REENTRANCY']
        assert catalog.scan("require(token.transfer(to, amount));") == []

    def test_unsafe_block_but_not_inline_attribute(self, catalog):
        assert kinds(catalog.scan("unsafe { ptr.write(0) }")) == ['ARBITRARY_JUMP']
        assert catalog.scan("#[inline]") == []

    def test_selfdestruct_requires_owner_modifier(self, catalog):
        assert kinds(catalog.scan("selfdestruct(payable(owner));")) == ['UNPROTECTED_SELFDESTRUCT']
        assert catalog.scan("function kill() onlyOwner { selfdestruct(payable(owner)); }") == []

    def test_lookup_by_id(self, catalog):
        assert catalog.get('REENTRANCY').cwe == 'CWE-841'
        assert catalog.get('NOPE') is None

    def test_custom_pattern_table(self):
        timestamp_only = PatternCatalog(patterns=(VULNERABILITY_PATTERNS[-1],))
        assert timestamp_only.scan("let x = a + b;") == []
        assert kinds(timestamp_only.scan("if block.timestamp > deadline {")) == ['TIMESTAMP_DEPENDENCE']

    def test_empty_source(self, catalog):
        assert catalog.scan("") == []
