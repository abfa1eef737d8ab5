"""
Data-flow analysis over a SynthGuard control-flow graph.

Runs on a snapshot of the CFG and reports:
  - reaching-definition issues (local bindings whose value is never read)
  - taint reaching sensitive operations (transfer/withdraw/admin/...)
  - tainted branch conditions gating sensitive operations
  - circular and tainted data dependencies
  - unsafe execution paths (taint, violated constraints, unguarded calls)

Every fixed-point loop is bounded by ``max_iterations``; hitting the cap logs
a warning and the partial result is kept.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .cfg_builder import (
    ControlFlowGraph,
    NodeKind,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_PATHS,
    DEFAULT_MAX_PATH_STEPS,
)
from .findings import Finding, Severity

logger = logging.getLogger(__name__)

Definition = Tuple[str, str]  # (variable, defining node id)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class ConstraintKind(Enum):
    RANGE = "range"
    NULL = "null"
    TYPE = "type"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Constraint:
    """A simple fact about a variable.

    RANGE values are ``(low, high)`` with ``None`` for an open end, NULL values
    are ``True`` (known null) or ``False`` (known non-null) and TYPE values are
    the integer type a variable is cast to.
    """
    kind: ConstraintKind
    value: Any
    condition: str = ""
    origin: str = "guard"  # guard or assignment


@dataclass(frozen=True)
class TaintSourceSpec:
    label: str
    source_type: str
    pattern: Any


TAINT_SOURCES = (
    TaintSourceSpec('user_input', 'input',
                    re.compile(r'accounts\[\d+\]\.data|\binstruction_data\b|\bmsg\.data\b')),
    TaintSourceSpec('storage', 'storage',
                    re.compile(r'\b(?:load|load_mut|get_storage|read_data|try_borrow_data|borrow_data)\s*\(')),
    TaintSourceSpec('external_call', 'external',
                    re.compile(r'\b(?:invoke|invoke_signed|call|transfer)\s*[({]')),
)

SENSITIVE_OPERATION_RE = re.compile(r'transfer|withdraw|delete|upgrade|initialize|admin|owner|auth', re.IGNORECASE)
EXTERNAL_CALL_RE = re.compile(r'\b(?:invoke|invoke_signed|call)\b')
GUARD_RE = re.compile(r'\b(?:require|assert)\w*!?\s*\(')


@dataclass
class DataFlowNode:
    """A CFG node augmented with def/use, reaching-definition and taint facts."""
    id: str
    kind: NodeKind
    code: str
    line: int
    column: int
    function_name: Optional[str]
    predecessors: List[str]
    successors: List[str]
    defs: Set[str] = field(default_factory=set)
    local_defs: Set[str] = field(default_factory=set)
    uses: Set[str] = field(default_factory=set)
    reach_in: Set[Definition] = field(default_factory=set)
    reach_out: Set[Definition] = field(default_factory=set)
    taint: Set[str] = field(default_factory=set)
    tainted_vars: Dict[str, Set[str]] = field(default_factory=dict)
    constraints: Dict[str, Constraint] = field(default_factory=dict)

    @property
    def is_guard(self) -> bool:
        return bool(GUARD_RE.search(self.code))


@dataclass
class DataFlowPath:
    nodes: List[str] = field(default_factory=list)
    variables: Set[str] = field(default_factory=set)
    taint: Set[str] = field(default_factory=set)
    constraints: Dict[str, Constraint] = field(default_factory=dict)
    nulls: Set[str] = field(default_factory=set)
    violations: List[Tuple[str, str]] = field(default_factory=list)

    def copy(self) -> "DataFlowPath":
        return DataFlowPath(
            nodes=list(self.nodes),
            variables=set(self.variables),
            taint=set(self.taint),
            constraints=dict(self.constraints),
            nulls=set(self.nulls),
            violations=list(self.violations),
        )


@dataclass
class DataFlowResult:
    nodes: Dict[str, DataFlowNode]
    findings: List[Finding]
    post_dominators: Dict[str, Set[str]] = field(default_factory=dict)
    control_dependents: Dict[str, List[str]] = field(default_factory=dict)
    data_dependencies: Dict[str, List[str]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Def/use extraction
# ---------------------------------------------------------------------------

KEYWORDS = {
    'fn', 'let', 'mut', 'if', 'else', 'while', 'for', 'loop', 'return', 'match', 'pub', 'true',
    'false', 'in', 'as', 'self', 'use', 'mod', 'struct', 'impl', 'enum', 'const', 'static', 'ref',
    'move', 'break', 'continue', 'where', 'unsafe', 'async', 'await', 'crate', 'super', 'type',
    'trait', 'dyn', 'function', 'returns', 'memory', 'storage', 'calldata', 'external', 'public',
    'internal', 'private', 'view', 'pure', 'payable', 'emit', 'new', 'delete', 'modifier',
    'constructor', 'contract', 'mapping', 'address', 'bool', 'string', 'bytes', 'usize', 'isize',
    'f32', 'f64', 'char', 'str', 'u8', 'u16', 'u32', 'u64', 'u128', 'i8', 'i16', 'i32', 'i64',
    'i128', 'uint', 'int', 'uint8', 'uint16', 'uint32', 'uint64', 'uint128', 'uint256', 'int256',
    'bytes32', 'Ok', 'Err', 'Some', 'None', 'null', 'require', 'assert',
}

_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')
_IDENT_RE = re.compile(r'(?<![\w.])(?<!::)([A-Za-z_]\w*)\b(?!!)(?!\s*::)')
_LET_RE = re.compile(r'\blet\s+(?:mut\s+)?([A-Za-z_]\w*)\b(?!\s*\()')
_SOL_LOCAL_RE = re.compile(
    r'\b(?:u?int\d*|bool|address|bytes\d*|string)\s+(?:memory\s+|storage\s+|calldata\s+)?([A-Za-z_]\w*)\s*=(?!=)'
)
_ASSIGN_RE = re.compile(
    r'(?<![\w.])([A-Za-z_]\w*)(?:\s*(?:\.\s*[A-Za-z_]\w*|\[[^\]]*\]))*\s*(?:[+\-*/%^&|]|<<|>>)?=(?![=>])'
)
_PLAIN_TARGET_RE = re.compile(r'(?<![\w.])([A-Za-z_]\w*)\s*=(?![=>])')
_BINDING_RE = re.compile(r'(?<![\w.])([A-Za-z_]\w*)\s*:(?!:)')
_FOR_IN_RE = re.compile(r'\bfor\s+\(?\s*([A-Za-z_]\w*)\s+in\b')

_COMPARISON_RE = re.compile(r'\b([A-Za-z_]\w*)\s*(<=|>=|<|>|==)\s*(-?\d+)\b')
_LITERAL_ASSIGN_RE = re.compile(
    r'(?<![\w.])([A-Za-z_]\w*)\s*(?::\s*\w+)?\s*=\s*(-?\d+)(?:_?[ui]\d+)?\s*;?\s*$'
)
_NULL_ASSIGN_RE = re.compile(r'(?<![\w.])([A-Za-z_]\w*)\s*(?::\s*[\w<>]+)?\s*=\s*(?:None|null|address\(0\))\s*;?\s*$')
_NON_NULL_RE = re.compile(r'\b([A-Za-z_]\w*)\s*(?:!=\s*(?:None|null|address\(0\))|\.is_some\(\))')
_CAST_RE = re.compile(r'\b([A-Za-z_]\w*)\s+as\s+([ui](?:8|16|32|64|128)|usize|isize)\b')


def integer_bounds(type_name: str) -> Tuple[int, int]:
    """Inclusive bounds of a fixed-width integer type name (u8..u256, i8..i256, usize)."""
    name = {'usize': 'u64', 'isize': 'i64'}.get(type_name, type_name)
    bits = int(name[1:])
    if name.startswith('u'):
        return 0, 2 ** bits - 1
    return -(2 ** (bits - 1)), 2 ** (bits - 1) - 1


def _is_type_name(name: str) -> bool:
    return name[0].isupper() and any(c.islower() for c in name)


def extract_defs(code: str) -> Tuple[Set[str], Set[str]]:
    """Return (all defined names, locally bound names) for a statement."""
    if code.startswith('#['):
        return set(), set()
    text = _STRING_RE.sub('""', code)
    local = set(_LET_RE.findall(text)) | set(_SOL_LOCAL_RE.findall(text))
    defs = set(local) | set(_ASSIGN_RE.findall(text)) | set(_FOR_IN_RE.findall(text))
    defs = {d for d in defs if d not in KEYWORDS}
    return defs, {d for d in local if d not in KEYWORDS}


def extract_uses(code: str) -> Set[str]:
    """Identifiers read by a statement, excluding keywords, types and binding targets."""
    if code.startswith('#['):
        return set()
    text = _STRING_RE.sub('""', code)
    excluded = set(_PLAIN_TARGET_RE.findall(text)) | set(_BINDING_RE.findall(text)) | set(_LET_RE.findall(text))
    uses = set()
    for name in _IDENT_RE.findall(text):
        if name in KEYWORDS or name in excluded or _is_type_name(name):
            continue
        uses.add(name)
    return uses


def _range_from_comparison(op: str, value: int) -> Tuple[Optional[int], Optional[int]]:
    if op == '<':
        return None, value - 1
    if op == '<=':
        return None, value
    if op == '>':
        return value + 1, None
    if op == '>=':
        return value, None
    return value, value


def extract_constraints(code: str, is_condition: bool) -> Dict[str, Constraint]:
    """Range/null/type facts stated by a branch condition, guard or assignment."""
    constraints: Dict[str, Constraint] = {}
    text = _STRING_RE.sub('""', code)

    if is_condition:
        for name, op, value in _COMPARISON_RE.findall(text):
            if name in KEYWORDS:
                continue
            constraints[name] = Constraint(ConstraintKind.RANGE, _range_from_comparison(op, int(value)), text)
        for name in _NON_NULL_RE.findall(text):
            constraints.setdefault(name, Constraint(ConstraintKind.NULL, False, text))
        return constraints

    match = _LITERAL_ASSIGN_RE.search(text)
    if match and match.group(1) not in KEYWORDS:
        value = int(match.group(2))
        constraints[match.group(1)] = Constraint(ConstraintKind.RANGE, (value, value), text, origin='assignment')
    match = _NULL_ASSIGN_RE.search(text)
    if match and match.group(1) not in KEYWORDS:
        constraints[match.group(1)] = Constraint(ConstraintKind.NULL, True, text, origin='assignment')
    for name, type_name in _CAST_RE.findall(text):
        constraints.setdefault(name, Constraint(ConstraintKind.TYPE, type_name, text))
    return constraints


def _intersect(a: Tuple[Optional[int], Optional[int]],
               b: Tuple[Optional[int], Optional[int]]) -> Tuple[Optional[int], Optional[int]]:
    lows = [v for v in (a[0], b[0]) if v is not None]
    highs = [v for v in (a[1], b[1]) if v is not None]
    return (max(lows) if lows else None, min(highs) if highs else None)


# ---------------------------------------------------------------------------
# Finding text
# ---------------------------------------------------------------------------

_FINDING_TEXT = {
    'UNUSED_DEFINITION': (
        "Dead stores hide logic errors and waste compute units",
        "Remove the unused binding or use its value",
        None,
    ),
    'TAINTED_SENSITIVE_OPERATION': (
        "Untrusted input may control a privileged operation",
        "Validate and constrain externally supplied data before sensitive operations",
        "CWE-20",
    ),
    'TAINTED_CONTROL_DEPENDENCY': (
        "An attacker-influenced condition decides whether a sensitive operation runs",
        "Validate branch conditions derived from untrusted data",
        "CWE-807",
    ),
    'CIRCULAR_DATA_DEPENDENCY': (
        "Values that depend on each other can drift or become inconsistent",
        "Break the dependency cycle or bound the loop that carries it",
        None,
    ),
    'TAINTED_DATA_DEPENDENCY': (
        "A sensitive operation consumes a value derived from untrusted data",
        "Sanitize tainted values before they feed sensitive operations",
        "CWE-20",
    ),
    'UNSAFE_PATH': (
        "An execution path reaches a risky operation without the expected checks",
        "Add require/assert guards and validate inputs along this path",
        None,
    ),
}


def _finding(kind: str, severity: Severity, message: str, node: DataFlowNode) -> Finding:
    impact, remediation, cwe = _FINDING_TEXT[kind]
    return Finding(kind, severity, message, node.line, node.column, impact, remediation, cwe)


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class DataFlowAnalyzer:
    """Stateless analyzer; every call to run() builds its own node set."""

    def __init__(self, max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 max_paths: int = DEFAULT_MAX_PATHS,
                 max_path_steps: int = DEFAULT_MAX_PATH_STEPS):
        self.max_iterations = max_iterations
        self.max_paths = max_paths
        self.max_path_steps = max_path_steps

    @classmethod
    def from_config(cls, config) -> "DataFlowAnalyzer":
        return cls(config.max_iterations, config.max_paths, config.max_path_steps)

    def analyze(self, cfg: ControlFlowGraph) -> List[Finding]:
        return self.run(cfg).findings

    def run(self, cfg: ControlFlowGraph) -> DataFlowResult:
        nodes = self.build_nodes(cfg)
        findings: List[Finding] = []

        self.compute_reaching_definitions(nodes)
        findings.extend(self.find_unused_definitions(nodes))

        self.propagate_taint(nodes)
        findings.extend(self.find_taint_violations(nodes))

        post_dom = cfg.post_dominators()
        control_dependents = self.compute_control_dependencies(nodes, post_dom)
        findings.extend(self.find_control_dependency_violations(nodes, control_dependents))

        data_dependencies = self.compute_data_dependencies(nodes)
        findings.extend(self.find_data_dependency_violations(nodes, data_dependencies))

        findings.extend(self.find_unsafe_paths(nodes))

        return DataFlowResult(nodes, findings, post_dom, control_dependents, data_dependencies)

    # -- setup --------------------------------------------------------------

    def build_nodes(self, cfg: ControlFlowGraph) -> Dict[str, DataFlowNode]:
        nodes: Dict[str, DataFlowNode] = {}
        for cfg_node in cfg.nodes.values():
            node = DataFlowNode(
                id=cfg_node.id,
                kind=cfg_node.kind,
                code=cfg_node.code,
                line=cfg_node.start_line,
                column=cfg_node.column,
                function_name=cfg_node.function_name,
                predecessors=list(cfg_node.predecessors),
                successors=list(cfg_node.successors),
            )
            if cfg_node.is_function_header:
                context = cfg.function_context(cfg_node.function_name)
                if context is not None and context.header_id == cfg_node.id:
                    node.defs = set(context.parameter_names) - {'self'}
            elif cfg_node.kind is NodeKind.BRANCH:
                condition = " ".join(cfg_node.conditions)
                node.uses = extract_uses(condition)
                node.defs = extract_defs(cfg_node.code)[0]
                node.constraints = extract_constraints(condition, is_condition=True)
            elif cfg_node.code:
                node.defs, node.local_defs = extract_defs(cfg_node.code)
                node.uses = extract_uses(cfg_node.code)
                node.constraints = extract_constraints(cfg_node.code, is_condition=node.is_guard)
            nodes[node.id] = node
        return nodes

    # -- reaching definitions -----------------------------------------------

    def compute_reaching_definitions(self, nodes: Dict[str, DataFlowNode]) -> int:
        """Worklist reaching definitions without kills; returns the number of rounds."""
        for node in nodes.values():
            node.reach_in = set()
            node.reach_out = {(d, node.id) for d in node.defs}

        worklist = list(nodes)
        rounds = 0
        while worklist:
            if rounds >= self.max_iterations:
                logger.warning(f"Reaching definitions hit the iteration cap ({self.max_iterations})")
                break
            rounds += 1
            next_round: List[str] = []
            scheduled: Set[str] = set()
            for nid in worklist:
                node = nodes[nid]
                new_in: Set[Definition] = set()
                for pred in node.predecessors:
                    if pred in nodes:
                        new_in |= nodes[pred].reach_out
                new_out = {(d, nid) for d in node.defs} | new_in
                if new_in != node.reach_in or new_out != node.reach_out:
                    node.reach_in, node.reach_out = new_in, new_out
                    for succ in node.successors:
                        if succ in nodes and succ not in scheduled:
                            scheduled.add(succ)
                            next_round.append(succ)
            worklist = next_round
        return rounds

    def find_unused_definitions(self, nodes: Dict[str, DataFlowNode]) -> List[Finding]:
        findings = []
        for node in nodes.values():
            for var in sorted(node.local_defs):
                if var.startswith('_'):
                    continue
                definition = (var, node.id)
                used = any(var in other.uses and definition in other.reach_in
                           for other in nodes.values())
                if not used:
                    findings.append(_finding(
                        'UNUSED_DEFINITION', Severity.LOW,
                        f"Value bound to '{var}' is never read", node))
        return findings

    # -- taint ---------------------------------------------------------------

    def seed_taint(self, nodes: Dict[str, DataFlowNode]) -> None:
        for node in nodes.values():
            node.taint = {src.label for src in TAINT_SOURCES if src.pattern.search(node.code)}
            node.tainted_vars = {d: set(node.taint) for d in node.defs} if node.taint else {}

    def propagate_taint(self, nodes: Dict[str, DataFlowNode], observer=None) -> int:
        """Propagate taint along edges and use-def chains to a fixed point.

        ``observer`` (optional) is called after every round with a snapshot
        mapping node id to its taint labels. Returns the number of rounds.
        """
        self.seed_taint(nodes)
        changed = True
        rounds = 0
        while changed:
            if rounds >= self.max_iterations:
                logger.warning(f"Taint propagation hit the iteration cap ({self.max_iterations})")
                break
            rounds += 1
            changed = False
            for node in nodes.values():
                before = len(node.taint), sum(len(v) for v in node.tainted_vars.values())
                for pred in node.predecessors:
                    if pred in nodes:
                        node.taint |= nodes[pred].taint
                for var, site in node.reach_in:
                    if var in node.uses and site in nodes and var in nodes[site].tainted_vars:
                        node.taint |= nodes[site].tainted_vars[var]
                if node.taint:
                    for d in node.defs:
                        node.tainted_vars.setdefault(d, set()).update(node.taint)
                after = len(node.taint), sum(len(v) for v in node.tainted_vars.values())
                if after != before:
                    changed = True
            if observer is not None:
                observer({nid: frozenset(n.taint) for nid, n in nodes.items()})
        return rounds

    def is_sensitive(self, code: str) -> bool:
        return bool(SENSITIVE_OPERATION_RE.search(code))

    def find_taint_violations(self, nodes: Dict[str, DataFlowNode]) -> List[Finding]:
        findings = []
        for node in nodes.values():
            if node.taint and node.code and self.is_sensitive(node.code):
                labels = ", ".join(sorted(node.taint))
                findings.append(_finding(
                    'TAINTED_SENSITIVE_OPERATION', Severity.HIGH,
                    f"Potentially tainted data ({labels}) used in sensitive operation", node))
        return findings

    # -- control dependency -------------------------------------------------

    def compute_control_dependencies(self, nodes: Dict[str, DataFlowNode],
                                     post_dom: Dict[str, Set[str]]) -> Dict[str, List[str]]:
        """Map each branch to the nodes it controls (reachable before a post-dominator)."""
        dependents: Dict[str, List[str]] = {}
        for node in nodes.values():
            if node.kind is not NodeKind.BRANCH:
                continue
            branch_post_dom = post_dom.get(node.id, set())
            affected: List[str] = []
            seen: Set[str] = set()
            stack = [s for s in reversed(node.successors) if s in nodes and s not in branch_post_dom]
            while stack:
                current = stack.pop()
                if current in seen:
                    continue
                seen.add(current)
                affected.append(current)
                for succ in reversed(nodes[current].successors):
                    if succ in nodes and succ not in branch_post_dom and succ not in seen:
                        stack.append(succ)
            dependents[node.id] = affected
        return dependents

    def find_control_dependency_violations(self, nodes: Dict[str, DataFlowNode],
                                           dependents: Dict[str, List[str]]) -> List[Finding]:
        findings = []
        reported: Set[str] = set()
        for branch_id, affected in dependents.items():
            branch = nodes[branch_id]
            if not branch.taint:
                continue
            for nid in affected:
                target = nodes[nid]
                if nid in reported or not target.code or not self.is_sensitive(target.code):
                    continue
                reported.add(nid)
                findings.append(_finding(
                    'TAINTED_CONTROL_DEPENDENCY', Severity.HIGH,
                    f"Sensitive operation is controlled by a tainted condition at line {branch.line}", target))
        return findings

    # -- data dependency ----------------------------------------------------

    def compute_data_dependencies(self, nodes: Dict[str, DataFlowNode]) -> Dict[str, List[str]]:
        deps: Dict[str, List[str]] = {}
        for node in nodes.values():
            sites = {site for var, site in node.reach_in if var in node.uses and site != node.id}
            deps[node.id] = sorted(sites, key=lambda s: (nodes[s].line, s))
        return deps

    def find_data_dependency_violations(self, nodes: Dict[str, DataFlowNode],
                                        deps: Dict[str, List[str]]) -> List[Finding]:
        findings = []
        for component in _strongly_connected(deps):
            if len(component) < 2:
                continue
            ordered = sorted(component, key=lambda nid: (nodes[nid].line, nid))
            lines = ", ".join(str(nodes[nid].line) for nid in ordered)
            findings.append(_finding(
                'CIRCULAR_DATA_DEPENDENCY', Severity.MEDIUM,
                f"Circular data dependency between statements at lines {lines}", nodes[ordered[0]]))

        for node in nodes.values():
            if not node.code or not self.is_sensitive(node.code):
                continue
            for var, site in sorted(node.reach_in):
                if var in node.uses and site != node.id and var in nodes[site].tainted_vars:
                    findings.append(_finding(
                        'TAINTED_DATA_DEPENDENCY', Severity.HIGH,
                        f"Sensitive operation depends on tainted value '{var}' from line {nodes[site].line}", node))
                    break
        return findings

    # -- unsafe paths -------------------------------------------------------

    def find_unsafe_paths(self, nodes: Dict[str, DataFlowNode]) -> List[Finding]:
        entries = [nid for nid, n in nodes.items() if n.kind is NodeKind.ENTRY or not n.predecessors]
        exits = {nid for nid, n in nodes.items() if n.kind is NodeKind.EXIT or not n.successors}
        findings: Dict[str, Finding] = {}
        complete = 0
        steps = 0

        for start in entries:
            stack = [(start, DataFlowPath())]
            while stack:
                steps += 1
                if steps > self.max_path_steps:
                    logger.warning(f"Unsafe-path search stopped after {self.max_path_steps} steps")
                    return list(findings.values())
                nid, path = stack.pop()
                node = nodes[nid]
                path = self._extend_path(path, node)

                if nid in exits:
                    complete += 1
                    self._check_path(path, nodes, findings)
                    if complete >= self.max_paths:
                        logger.warning(f"Unsafe-path search capped at {self.max_paths} paths")
                        return list(findings.values())
                    continue

                for index in range(len(node.successors) - 1, -1, -1):
                    succ = node.successors[index]
                    if succ not in nodes or succ in path.nodes:
                        continue
                    branch_path = path
                    if node.kind is NodeKind.BRANCH and index == 0:
                        branch_path = self._apply_guard(path, node)
                    stack.append((succ, branch_path))

        return list(findings.values())

    def _apply_guard(self, path: DataFlowPath, node: DataFlowNode) -> DataFlowPath:
        """Facts that hold after a guard or on the true edge of a branch."""
        path = path.copy()
        for var, constraint in node.constraints.items():
            if constraint.kind is ConstraintKind.NULL and constraint.value is False:
                path.nulls.discard(var)
            elif constraint.kind is ConstraintKind.RANGE:
                current = path.constraints.get(var)
                bounds = constraint.value
                if current is not None and current.kind is ConstraintKind.RANGE:
                    bounds = _intersect(current.value, bounds)
                path.constraints[var] = Constraint(ConstraintKind.RANGE, bounds, constraint.condition)
                if bounds[0] is not None and bounds[1] is not None and bounds[0] > bounds[1]:
                    path.violations.append((node.id, f"range of '{var}' is empty at line {node.line}"))
        return path

    def _extend_path(self, path: DataFlowPath, node: DataFlowNode) -> DataFlowPath:
        path = path.copy()
        path.nodes.append(node.id)
        path.variables |= node.defs | node.uses
        path.taint |= node.taint
        if node.kind is NodeKind.BRANCH:
            return path

        guard = node.is_guard
        if guard:
            path = self._apply_guard(path, node)
        elif node.kind is NodeKind.BASIC:
            for var in sorted(node.uses & path.nulls):
                path.violations.append((node.id, f"'{var}' may be null at line {node.line}"))

        for var, constraint in node.constraints.items():
            if constraint.kind is ConstraintKind.TYPE:
                current = path.constraints.get(var)
                if current is not None and current.kind is ConstraintKind.RANGE:
                    low, high = integer_bounds(constraint.value)
                    lo, hi = current.value
                    if (lo is not None and lo < low) or (hi is not None and hi > high):
                        path.violations.append(
                            (node.id, f"'{var}' does not fit in {constraint.value} at line {node.line}"))

        for var in node.defs:
            constraint = node.constraints.get(var)
            if constraint is not None and constraint.origin == 'assignment':
                if constraint.kind is ConstraintKind.NULL:
                    path.nulls.add(var)
                    path.constraints.pop(var, None)
                else:
                    path.nulls.discard(var)
                    path.constraints[var] = constraint
            elif not guard:
                path.nulls.discard(var)
                path.constraints.pop(var, None)
        return path

    def _check_path(self, path: DataFlowPath, nodes: Dict[str, DataFlowNode],
                    findings: Dict[str, Finding]) -> None:
        reasons = []
        sensitive = [nid for nid in path.nodes if nodes[nid].code and self.is_sensitive(nodes[nid].code)]
        if path.taint and any(nodes[nid].taint for nid in sensitive):
            reasons.append("tainted data reaches a sensitive operation")
        if path.violations:
            reasons.append(f"constraint violated ({path.violations[0][1]})")
        calls = [nid for nid in path.nodes if EXTERNAL_CALL_RE.search(nodes[nid].code)]
        if calls and not any(nodes[nid].is_guard for nid in path.nodes):
            reasons.append("external call without a require/assert guard")
        if not reasons:
            return

        if sensitive:
            anchor = sensitive[-1]
        elif calls:
            anchor = calls[-1]
        elif path.violations:
            anchor = path.violations[-1][0]
        else:
            anchor = path.nodes[-1]
        if anchor in findings:
            return
        findings[anchor] = _finding(
            'UNSAFE_PATH', Severity.MEDIUM,
            f"Unsafe execution path: {'; '.join(reasons)}", nodes[anchor])


def _strongly_connected(graph: Dict[str, List[str]]) -> List[List[str]]:
    """Kosaraju's algorithm, iterative."""
    order: List[str] = []
    seen: Set[str] = set()
    for root in graph:
        if root in seen:
            continue
        seen.add(root)
        stack = [(root, iter(graph[root]))]
        while stack:
            vertex, successors = stack[-1]
            nxt = next(successors, None)
            if nxt is None:
                stack.pop()
                order.append(vertex)
            elif nxt in graph and nxt not in seen:
                seen.add(nxt)
                stack.append((nxt, iter(graph[nxt])))

    reverse: Dict[str, List[str]] = {v: [] for v in graph}
    for vertex, targets in graph.items():
        for target in targets:
            if target in reverse:
                reverse[target].append(vertex)

    components = []
    assigned: Set[str] = set()
    for root in reversed(order):
        if root in assigned:
            continue
        assigned.add(root)
        component = []
        stack = [root]
        while stack:
            vertex = stack.pop()
            component.append(vertex)
            for pred in reverse[vertex]:
                if pred not in assigned:
                    assigned.add(pred)
                    stack.append(pred)
        components.append(component)
    return components
