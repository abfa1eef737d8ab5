"""
Access Control Analyzer

Looks at every externally callable instruction (Rust ``pub fn`` or Solidity
public/external function) and reports fund-moving or state-mutating
operations that are not covered by the expected checks:

1. No signer check at all -> MISSING_SIGNER_CHECK (critical)
2. Signer checked but no owner/authority binding -> MISSING_OWNER_CHECK (high)

For Anchor programs the ``#[derive(Accounts)]`` struct named in
``Context<X>`` counts as part of the instruction.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from .cfg_builder import CFGNode, ControlFlowGraph, as_graph
from .findings import Finding, Severity

logger = logging.getLogger(__name__)


class AccessCheck(Enum):
    """Kinds of access checks an instruction can carry"""
    SIGNER = "signer"
    OWNER = "owner"


@dataclass
class AccessControlPattern:
    """Represents an access control pattern"""
    pattern: str
    check: AccessCheck
    description: str


class AccessControlAnalyzer:
    """Flags privileged operations that lack signer or owner/authority checks"""

    FUND_MOVE_RE = re.compile(
        r'\b(?:transfer|transfer_checked|withdraw|send|send_value|invoke|invoke_signed|'
        r'selfdestruct|close_account)\s*[({]|\blamports\b[^;]*[-+]=|\.call\s*\{'
    )
    STATE_MUTATION_RE = re.compile(
        r'(?<![\w.])[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+\s*[+\-*/%]?=(?![=>])'
        r'|(?<![\w.])[A-Za-z_]\w*\[[^\]]+\]\s*[+\-*/%]?=(?![=>])'
        r'|\b(?:set_authority|set_owner|upgrade\w*)\s*\('
    )
    CONTEXT_RE = re.compile(r'\bContext\s*<\s*(?:\'\w+\s*,\s*)*([A-Za-z_]\w*)')
    STRUCT_BOUNDARY_RE = re.compile(r'^(?:#\[(?:derive|program|account\]|error_code)|(?:pub\s+)?(?:struct|impl|mod|enum|fn|trait)\b)')

    def __init__(self):
        self.check_patterns = self._initialize_check_patterns()

    def _initialize_check_patterns(self) -> List[AccessControlPattern]:
        """Initialize signer and owner/authority check patterns"""
        return [
            # Signer checks
            AccessControlPattern(r'\bis_signer\b', AccessCheck.SIGNER, "is_signer check"),
            AccessControlPattern(r'\bSigner\b', AccessCheck.SIGNER, "Signer account type"),
            AccessControlPattern(r'#\[account\([^)]*\bsigner\b', AccessCheck.SIGNER, "signer constraint"),
            AccessControlPattern(r'\bmsg\.sender\s*[=!]=', AccessCheck.SIGNER, "msg.sender comparison"),
            AccessControlPattern(r'\b_msgSender\s*\(\s*\)\s*[=!]=', AccessCheck.SIGNER, "_msgSender comparison"),
            AccessControlPattern(r'\bonly[A-Z]\w*\b', AccessCheck.SIGNER, "only* modifier"),
            # Owner / authority checks
            AccessControlPattern(r'\bhas_one\b', AccessCheck.OWNER, "has_one constraint"),
            AccessControlPattern(r'\b(?:owner|authority|admin)\b', AccessCheck.OWNER, "owner/authority account"),
            AccessControlPattern(r'\brequire_keys_eq!', AccessCheck.OWNER, "key equality check"),
            AccessControlPattern(r'\bconstraint\s*=', AccessCheck.OWNER, "account constraint"),
            AccessControlPattern(r'\bhasRole\s*\(|\bonlyRole\b', AccessCheck.OWNER, "role check"),
            AccessControlPattern(r'\bonly(?:Owner|Admin|Governance)\b', AccessCheck.OWNER, "owner modifier"),
        ]

    def analyze(self, target: Union[str, ControlFlowGraph]) -> List[Finding]:
        cfg = as_graph(target)
        groups = cfg.nodes_by_function()
        module_nodes = groups.get(None, [])

        findings = []
        for function_name, nodes in groups.items():
            if function_name is None:
                continue
            header = next((n for n in nodes if n.is_function_header), None)
            if header is None or not self.is_instruction(header.code):
                continue

            text = "\n".join(n.code for n in nodes)
            accounts = self.CONTEXT_RE.search(header.code)
            if accounts:
                text += "\n" + self._accounts_struct_text(module_nodes, accounts.group(1))
            checks = self.detect_checks(text)

            if AccessCheck.SIGNER not in checks:
                kind, severity, missing = 'MISSING_SIGNER_CHECK', Severity.CRITICAL, 'signer'
            elif AccessCheck.OWNER not in checks:
                kind, severity, missing = 'MISSING_OWNER_CHECK', Severity.HIGH, 'owner/authority'
            else:
                continue

            operation = self._first_privileged_operation(nodes)
            if operation is None:
                continue
            node, action = operation
            findings.append(Finding(
                kind=kind,
                severity=severity,
                message=f"Instruction '{function_name}' {action} without a {missing} check",
                line=node.start_line,
                column=node.column,
                impact='Any caller can invoke the privileged operation on accounts they do not control',
                remediation='Require the authority account to sign and bind it to the state account '
                            '(Signer<>, has_one = authority, or an explicit key comparison)',
                cwe='CWE-285',
            ))
        logger.debug(f"Access control analysis produced {len(findings)} findings")
        return findings

    def is_instruction(self, header: str) -> bool:
        """Whether a function header is externally callable."""
        if re.match(r'^pub\s+fn\b', header):
            return True
        if header.startswith('function'):
            return not re.search(r'\b(?:internal|private|view|pure)\b', header)
        return False

    def detect_checks(self, text: str) -> set:
        return {p.check for p in self.check_patterns if re.search(p.pattern, text)}

    def _first_privileged_operation(self, nodes: List[CFGNode]) -> Optional[tuple]:
        for node in nodes:
            if node.is_function_header:
                continue
            if self.FUND_MOVE_RE.search(node.code):
                return node, 'moves funds'
            if self.STATE_MUTATION_RE.search(node.code):
                return node, 'mutates state'
        return None

    def _accounts_struct_text(self, module_nodes: List[CFGNode], struct_name: str) -> str:
        """Text of the accounts struct ``struct_name`` declared at module scope."""
        collected: List[str] = []
        pending_attributes: List[str] = []
        inside = False
        for node in module_nodes:
            code = node.code
            if inside:
                if self.STRUCT_BOUNDARY_RE.match(code):
                    break
                collected.append(code)
                continue
            if re.match(rf'^(?:pub\s+)?struct\s+{re.escape(struct_name)}\b', code):
                inside = True
                collected.extend(pending_attributes)
                collected.append(code)
            elif code.startswith('#['):
                pending_attributes.append(code)
            else:
                pending_attributes = []
        return "\n".join(collected)
