"""
Finding Deduplicator

Several detectors report the same problem independently (the pattern
catalog and the reentrancy analyzer both see an unguarded ``transfer``).
This module merges findings that share a kind and a source line and gives
the merged list a stable order.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Tuple

from .findings import Finding

logger = logging.getLogger(__name__)


class FindingDeduplicator:
    """Deduplicates and orders vulnerability findings"""

    def process_findings(self, findings: List[Finding]) -> List[Finding]:
        """
        Main entry point for post-processing findings.

        Steps:
        1. Merge findings with the same signature
        2. Sort by line, column, kind and message
        """
        if not findings:
            return []

        deduplicated = self.deduplicate_findings(findings)
        logger.debug(
            f"Deduplicated {len(findings)} findings to {len(deduplicated)} "
            f"({len(findings) - len(deduplicated)} duplicates removed)"
        )
        return self.sort_findings(deduplicated)

    def deduplicate_findings(self, findings: List[Finding]) -> List[Finding]:
        groups: Dict[Tuple, List[Finding]] = {}
        for finding in findings:
            groups.setdefault(self.signature(finding), []).append(finding)
        return [self._merge_findings(group) for group in groups.values()]

    def signature(self, finding: Finding) -> Tuple:
        """(kind, line); findings without a location also keep their message."""
        if finding.line > 0:
            return (finding.kind, finding.line)
        return (finding.kind, 0, finding.message)

    def _merge_findings(self, findings: List[Finding]) -> Finding:
        """Keep the most severe finding and fill its missing text from the others."""
        if len(findings) == 1:
            return findings[0]

        # max() keeps the first of equally severe findings
        merged = max(findings, key=lambda f: f.severity.rank)
        for other in findings:
            merged = replace(
                merged,
                impact=merged.impact or other.impact,
                remediation=merged.remediation or other.remediation,
                cwe=merged.cwe or other.cwe,
            )
        return merged

    def sort_findings(self, findings: List[Finding]) -> List[Finding]:
        return sorted(findings, key=lambda f: f.sort_key)
