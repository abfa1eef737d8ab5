"""
Overflow Analyzer

Range-based detection of unchecked integer arithmetic:
- operand widths inferred from declarations (u8..u128, i8..i128, uintN), u64 default
- operand ranges narrowed by comparisons against literals and by literal values
- add/sub/mul checked against the width's bounds, div/mod against a zero divisor
- arithmetic adjacent to checked_*/saturating_*/SafeMath/require!/assert! is skipped
- unchecked arithmetic inside a loop body is reported as critical
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .cfg_builder import CFGNode, ControlFlowGraph, as_graph
from .data_flow_analyzer import integer_bounds
from .findings import Finding, Severity

logger = logging.getLogger(__name__)

DEFAULT_TYPE = 'u64'

Range = Tuple[int, int]


@dataclass
class ArithmeticOperation:
    node_id: str
    left: str
    operator: str
    right: str
    line: int
    column: int
    checked: bool
    data_type: str


class OverflowAnalyzer:
    """Analyzes arithmetic operations for overflow, underflow and division by zero."""

    OPERATION_RE = re.compile(r'(\w+(?:\[\w+\])?)\s*([+\-*/%]=|[+\-*/%])\s*(\w+(?:\[\w+\])?)')
    CHECKED_CONTEXT_RE = re.compile(
        r'checked_\w+|saturating_\w+|wrapping_\w+|SafeMath|safe_math|\brequire!?\s*\(|\bassert\w*!?\s*\('
    )
    RUST_DECL_RE = re.compile(r'\b([A-Za-z_]\w*)\s*:\s*(u8|u16|u32|u64|u128|i8|i16|i32|i64|i128|usize|isize)\b')
    SOL_DECL_RE = re.compile(r'\b(u?int)(\d*)\s+(?:public\s+|private\s+|internal\s+|memory\s+|storage\s+|calldata\s+)*([A-Za-z_]\w*)')
    COMPARISON_RE = re.compile(r'\b([A-Za-z_]\w*)\s*(<=|>=|<|>|==)\s*(\d[\d_]*)\b')
    LITERAL_RE = re.compile(r'^(\d[\d_]*)((?:u|i)(?:8|16|32|64|128|size))?$')
    STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')
    CONTEXT_WINDOW = 50

    OPERATION_NAMES = {'+': 'addition', '-': 'subtraction', '*': 'multiplication', '/': 'division', '%': 'modulo'}

    def analyze(self, target: Union[str, ControlFlowGraph]) -> List[Finding]:
        cfg = as_graph(target)
        loop_nodes = set()
        for loop in cfg.find_loops():
            loop_nodes |= loop.body

        findings = []
        for function_name, nodes in cfg.nodes_by_function().items():
            types = self._collect_types(cfg, function_name, nodes)
            ranges = self._collect_ranges(nodes)
            for node in nodes:
                if node.is_function_header:
                    continue
                for op in self.find_operations(node, types):
                    if op.checked:
                        continue
                    if node.id in loop_nodes:
                        findings.append(self._loop_finding(op))
                        continue
                    problem = self.check_operation(op, types, ranges)
                    if problem:
                        findings.append(Finding(
                            kind='ARITHMETIC_OVERFLOW',
                            severity=Severity.HIGH,
                            message=problem,
                            line=op.line,
                            column=op.column,
                            impact='Wrapped or panicking arithmetic corrupts balances and accounting',
                            remediation=f"Use checked_{self._checked_name(op.operator)} and handle the None case",
                            cwe='CWE-190',
                        ))
        logger.debug(f"Overflow analysis produced {len(findings)} findings")
        return findings

    # -- extraction ---------------------------------------------------------

    def find_operations(self, node: CFGNode, types: Dict[str, str]) -> List[ArithmeticOperation]:
        code = self.STRING_RE.sub(lambda m: '"' + ' ' * (len(m.group(0)) - 2) + '"', node.code)
        operations = []
        for match in self.OPERATION_RE.finditer(code):
            left, operator, right = match.group(1), match.group(2), match.group(3)
            start = max(0, match.start() - self.CONTEXT_WINDOW)
            window = code[start:match.end() + self.CONTEXT_WINDOW]
            operations.append(ArithmeticOperation(
                node_id=node.id,
                left=left,
                operator=operator,
                right=right,
                line=node.start_line,
                column=node.column + match.start(),
                checked=bool(self.CHECKED_CONTEXT_RE.search(window)),
                data_type=self._operation_type(left, right, types),
            ))
        return operations

    def _collect_types(self, cfg: ControlFlowGraph, function_name: Optional[str],
                       nodes: List[CFGNode]) -> Dict[str, str]:
        types: Dict[str, str] = {}
        texts = [node.code for node in nodes]
        context = cfg.function_context(function_name) if function_name else None
        if context is not None:
            texts.extend(context.parameters)
        for text in texts:
            for name, type_name in self.RUST_DECL_RE.findall(text):
                types[name] = type_name
            for base, bits, name in self.SOL_DECL_RE.findall(text):
                width = bits or '256'
                types[name] = ('u' if base == 'uint' else 'i') + width
        return types

    def _collect_ranges(self, nodes: List[CFGNode]) -> Dict[str, Range]:
        ranges: Dict[str, List[Optional[int]]] = {}
        for node in nodes:
            for name, op, value in self.COMPARISON_RE.findall(node.code):
                number = int(value.replace('_', ''))
                bounds = ranges.setdefault(name, [None, None])
                if op in ('<', '<='):
                    high = number - 1 if op == '<' else number
                    bounds[1] = high if bounds[1] is None else min(bounds[1], high)
                elif op in ('>', '>='):
                    low = number + 1 if op == '>' else number
                    bounds[0] = low if bounds[0] is None else max(bounds[0], low)
                else:
                    bounds[0] = bounds[1] = number
        return {name: (b[0], b[1]) for name, b in ranges.items()}

    def _literal(self, token: str) -> Optional[Tuple[int, Optional[str]]]:
        match = self.LITERAL_RE.match(token)
        if not match:
            return None
        return int(match.group(1).replace('_', '')), match.group(2)

    def _base_name(self, operand: str) -> str:
        return operand.split('[', 1)[0]

    def _operation_type(self, left: str, right: str, types: Dict[str, str]) -> str:
        for operand in (left, right):
            literal = self._literal(operand)
            if literal and literal[1]:
                return literal[1]
            name = self._base_name(operand)
            if name in types:
                return types[name]
        return DEFAULT_TYPE

    # -- range checks -------------------------------------------------------

    def operand_range(self, operand: str, data_type: str,
                      ranges: Dict[str, Tuple[Optional[int], Optional[int]]]) -> Range:
        low, high = integer_bounds(data_type)
        literal = self._literal(operand)
        if literal:
            return literal[0], literal[0]
        known = ranges.get(self._base_name(operand)) if '[' not in operand else None
        if known:
            return (low if known[0] is None else max(low, known[0]),
                    high if known[1] is None else min(high, known[1]))
        return low, high

    def check_operation(self, op: ArithmeticOperation, types: Dict[str, str],
                        ranges: Dict[str, Tuple[Optional[int], Optional[int]]]) -> Optional[str]:
        """Return a description of the overflow risk, or None when the operation is safe."""
        low, high = integer_bounds(op.data_type)
        left = self.operand_range(op.left, op.data_type, ranges)
        right = self.operand_range(op.right, op.data_type, ranges)
        base = op.operator[0]

        if base == '+' and (left[1] + right[1] > high or left[0] + right[0] < low):
            return f"Potential addition overflow in {op.data_type} operation"
        if base == '-' and (left[0] - right[1] < low or left[1] - right[0] > high):
            return f"Potential subtraction overflow in {op.data_type} operation"
        if base == '*':
            corners = [a * b for a in left for b in right]
            if max(corners) > high or min(corners) < low:
                return f"Potential multiplication overflow in {op.data_type} operation"
        if base in '/%' and right[0] <= 0 <= right[1]:
            return f"Potential division by zero in {op.data_type} operation"
        return None

    def _checked_name(self, operator: str) -> str:
        return {'+': 'add', '-': 'sub', '*': 'mul', '/': 'div', '%': 'rem'}[operator[0]]

    def _loop_finding(self, op: ArithmeticOperation) -> Finding:
        return Finding(
            kind='LOOP_ARITHMETIC_OVERFLOW',
            severity=Severity.CRITICAL,
            message=f"Unchecked {self.OPERATION_NAMES[op.operator[0]]} inside a loop on {op.data_type}",
            line=op.line,
            column=op.column,
            impact='Repeated unchecked arithmetic can overflow as iterations accumulate',
            remediation=f"Use checked_{self._checked_name(op.operator)} inside loops and bound the iteration count",
            cwe='CWE-190',
        )
