"""
Finding model shared by every SynthGuard analyzer.

A Finding is the single currency passed between the CFG-based analyzers,
the pattern catalog and the scoring pipeline:
- stable ``kind`` identifier (REENTRANCY, UNCHECKED_MATH, ...)
- severity from a closed set
- location (line/column) when known
- optional impact/remediation/CWE text
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class InputError(ValueError):
    """Raised when the analyzer input is rejected before any phase runs."""


class Severity(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, Severity):
            return value
        return cls(str(value).strip().lower())


_SEVERITY_RANK = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.INFO: 1,
}


@dataclass(frozen=True)
class Finding:
    """A single security observation."""
    kind: str
    severity: Severity
    message: str
    line: int = 0
    column: int = 0
    impact: Optional[str] = None
    remediation: Optional[str] = None
    cwe: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'line': self.line,
            'column': self.column,
            'message': self.message,
            'severity': self.severity.value,
            'errorType': self.kind,
        }
        if self.impact:
            data['impact'] = self.impact
        if self.remediation:
            data['remediation'] = self.remediation
        if self.cwe:
            data['cwe'] = self.cwe
        return data

    @property
    def sort_key(self):
        return (self.line, self.column, self.kind, self.message)
