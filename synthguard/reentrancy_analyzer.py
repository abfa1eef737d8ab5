"""
Reentrancy Analyzer

Flags external calls (CPI invoke, call, transfer, send) made from a function
that shows no reentrancy protection. Recognised protections:
- nonReentrant-style modifiers or attributes
- ReentrancyGuard inheritance (applies to every function)
- mutex idioms: is_locked checks, lock()/unlock() or enter/exit pairs
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from .cfg_builder import ControlFlowGraph, as_graph
from .findings import Finding, Severity

logger = logging.getLogger(__name__)


@dataclass
class ReentrancyProtection:
    """Represents detected reentrancy protection."""
    protection_type: str  # 'modifier', 'library', 'pattern'
    function_name: str
    line_number: int
    mechanism: str


class ReentrancyAnalyzer:
    """Checks every external call against the guards of its enclosing function."""

    REENTRANCY_MODIFIERS = [
        'nonReentrant',
        'noReentrancy',
        'non_reentrant',
        'reentrancy_guard',
    ]

    REENTRANCY_GUARD_LIBRARIES = [
        'ReentrancyGuard',
        'ReentrancyGuardUpgradeable',
    ]

    MUTEX_PATTERNS = [
        (re.compile(r'\bis_locked\b'), 'is_locked check'),
        (re.compile(r'\block\s*\(\s*\)[\s\S]*\bunlock\s*\(\s*\)'), 'lock/unlock pair'),
        (re.compile(r'\b_?enter\w*\s*\([\s\S]*\b_?exit\w*\s*\('), 'enter/exit pair'),
        (re.compile(r'\blocked\s*=\s*(?:true|1)\b'), 'manual lock flag'),
    ]

    CALL_PATTERN = re.compile(r'\b(?:invoke|invoke_signed|call|transfer|send|send_value)\s*[({]')

    def analyze(self, target: Union[str, ControlFlowGraph]) -> List[Finding]:
        cfg = as_graph(target)
        protections = self.detect_protections(cfg)
        for protection in protections:
            where = f"line {protection.line_number}" if protection.line_number else "contract level"
            logger.debug(
                f"Reentrancy protection for '{protection.function_name}': "
                f"{protection.protection_type} {protection.mechanism} ({where})"
            )
        protected = {p.function_name for p in protections}

        findings = []
        for function_name, nodes in cfg.nodes_by_function().items():
            if '*' in protected or (function_name or '') in protected:
                continue
            for node in nodes:
                match = self.CALL_PATTERN.search(node.code)
                if match is None or node.is_function_header:
                    continue
                where = f"'{function_name}'" if function_name else "module scope"
                findings.append(Finding(
                    kind='REENTRANCY',
                    severity=Severity.CRITICAL,
                    message=f"External call in {where} without a reentrancy guard",
                    line=node.start_line,
                    column=node.column,
                    impact='Re-entering the instruction before state is settled can drain funds',
                    remediation='Set an is_locked flag with lock() before the external call and unlock() '
                                'after it, or apply a nonReentrant guard; update state before calling out',
                    cwe='CWE-841',
                ))
        logger.debug(f"Reentrancy analysis produced {len(findings)} findings")
        return findings

    def detect_protections(self, cfg: ControlFlowGraph) -> List[ReentrancyProtection]:
        protections = []
        full_text = "\n".join(node.code for node in cfg.nodes.values() if node.code)

        inheritance = re.search(r'contract\s+\w+\s+is\s+([^{\n]+)', full_text)
        if inheritance:
            for guard_lib in self.REENTRANCY_GUARD_LIBRARIES:
                if re.search(rf'\b{guard_lib}\b', inheritance.group(1)):
                    protections.append(ReentrancyProtection('library', '*', 0, guard_lib))

        for function_name, nodes in cfg.nodes_by_function().items():
            text = "\n".join(node.code for node in nodes)
            line = nodes[0].start_line if nodes else 0
            name = function_name or ''
            mechanism = self._find_modifier(text) or self._find_mutex(text)
            if mechanism:
                kind = 'modifier' if mechanism in self.REENTRANCY_MODIFIERS else 'pattern'
                protections.append(ReentrancyProtection(kind, name, line, mechanism))
        return protections

    def _find_modifier(self, text: str) -> Optional[str]:
        for modifier in self.REENTRANCY_MODIFIERS:
            if re.search(rf'\b{modifier}\b', text):
                return modifier
        return None

    def _find_mutex(self, text: str) -> Optional[str]:
        for pattern, mechanism in self.MUTEX_PATTERNS:
            if pattern.search(text):
                return mechanism
        return None
