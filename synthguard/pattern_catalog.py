#!/usr/bin/env python3
"""
Vulnerability Pattern Catalog

Fixed table of line-level vulnerability signatures. Each entry carries a
compiled matcher plus the text shown to users (description, impact,
remediation, CWE). A line that contains any of a pattern's false-positive
markers is skipped for that pattern; the markers are plain substrings.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from .cfg_builder import strip_comments
from .findings import Finding, Severity

logger = logging.getLogger(__name__)

_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')


def _blank(match) -> str:
    return '"' + ' ' * (len(match.group(0)) - 2) + '"'


@dataclass(frozen=True)
class VulnerabilityPattern:
    id: str
    severity: Severity
    matcher: Pattern
    description: str
    impact: str
    remediation: str
    cwe: str
    false_positives: Tuple[str, ...] = ()

    def match(self, line: str) -> Optional["re.Match"]:
        """Match against the line with string literals blanked; honour false-positive markers."""
        found = self.matcher.search(_STRING_RE.sub(_blank, line))
        if found is None:
            return None
        if any(marker in line for marker in self.false_positives):
            return None
        return found


VULNERABILITY_PATTERNS: Tuple[VulnerabilityPattern, ...] = (
    VulnerabilityPattern(
        id='REENTRANCY',
        severity=Severity.CRITICAL,
        matcher=re.compile(r'\b(?:invoke|invoke_signed|call|transfer|send)\s*[({]'),
        description='Potential reentrancy vulnerability detected',
        impact='Contract could be drained of funds or have state corrupted',
        remediation='Implement reentrancy guards and follow checks-effects-interactions pattern',
        cwe='CWE-841',
        false_positives=('require', 'assert', 'is_locked', 'nonReentrant', 'non_reentrant',
                         'reentrancy_guard', 'transfer_ownership'),
    ),
    VulnerabilityPattern(
        id='UNCHECKED_MATH',
        severity=Severity.HIGH,
        matcher=re.compile(r'[\w)\]]\s*[+\-*/%]=?\s*[\w(]'),
        description='Unchecked arithmetic operation',
        impact='Integer overflow/underflow can lead to incorrect calculations',
        remediation='Use checked math operations or explicit overflow checks',
        cwe='CWE-190',
        false_positives=('checked_', 'saturating_', 'wrapping_', 'SafeMath', 'safe_math',
                         'safe_add', 'safe_sub', 'safe_mul', 'safe_div', '#['),
    ),
    VulnerabilityPattern(
        id='ARBITRARY_JUMP',
        severity=Severity.CRITICAL,
        matcher=re.compile(r'\b(?:unsafe|asm|assembly|inline)\b'),
        description='Potentially unsafe low-level operation',
        impact='Contract execution could jump to arbitrary locations',
        remediation='Avoid using unsafe code and inline assembly',
        cwe='CWE-695',
        false_positives=('#[inline',),
    ),
    VulnerabilityPattern(
        id='UNPROTECTED_SELFDESTRUCT',
        severity=Severity.CRITICAL,
        matcher=re.compile(r'\b(?:selfdestruct|suicide)\s*\('),
        description='Unprotected selfdestruct operation',
        impact='Contract could be maliciously destroyed',
        remediation='Add proper access controls to selfdestruct operations',
        cwe='CWE-284',
        false_positives=('onlyOwner', 'only_owner'),
    ),
    VulnerabilityPattern(
        id='TIMESTAMP_DEPENDENCE',
        severity=Severity.MEDIUM,
        matcher=re.compile(r'block\.timestamp|\bunix_timestamp\b|\bnow\b'),
        description='Timestamp manipulation vulnerability',
        impact='Contract logic could be manipulated by miners',
        remediation='Use block numbers instead of timestamps for time-sensitive operations',
        cwe='CWE-829',
    ),
)


class PatternCatalog:
    """Scans source text line by line against the vulnerability table."""

    def __init__(self, patterns: Optional[Tuple[VulnerabilityPattern, ...]] = None):
        self.patterns = tuple(patterns) if patterns is not None else VULNERABILITY_PATTERNS
        self._by_id: Dict[str, VulnerabilityPattern] = {p.id: p for p in self.patterns}

    def get(self, pattern_id: str) -> Optional[VulnerabilityPattern]:
        return self._by_id.get(pattern_id)

    def scan(self, code: str) -> List[Finding]:
        findings: List[Finding] = []
        lines = strip_comments(code or "").split('\n')
        for pattern in self.patterns:
            for index, line in enumerate(lines):
                found = pattern.match(line)
                if found is None:
                    continue
                findings.append(Finding(
                    kind=pattern.id,
                    severity=pattern.severity,
                    message=pattern.description,
                    line=index + 1,
                    column=found.start(),
                    impact=pattern.impact,
                    remediation=pattern.remediation,
                    cwe=pattern.cwe,
                ))
        logger.debug(f"Pattern scan produced {len(findings)} findings")
        return findings
