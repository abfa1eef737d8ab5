"""
Control-flow graph construction for contract source text.

Builds an approximate CFG from Rust/Anchor or Solidity-flavoured text with a
tolerant scanner (comments stripped, whitespace normalized). It never raises
on malformed input, so callers always get *some* graph:
- function headers become tagged basic nodes fanned out from the entry
- ``if``/``match`` openers become branch -> true/false -> merge diamonds
- ``while``/``for``/``loop`` openers become header -> body -> back-edge shapes
- ``return``/``break``/``continue`` terminate the current chain
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 1000
DEFAULT_MAX_PATHS = 1000
DEFAULT_MAX_PATH_STEPS = 100000


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class NodeKind(Enum):
    ENTRY = "entry"
    EXIT = "exit"
    BASIC = "basic"
    BRANCH = "branch"
    MERGE = "merge"


@dataclass(frozen=True)
class EntryPayload:
    pass


@dataclass(frozen=True)
class ExitPayload:
    pass


@dataclass
class BasicPayload:
    is_function_header: bool = False
    is_return: bool = False
    label: str = ""  # true, false, loop_body, loop_exit for synthesized nodes


@dataclass
class BranchPayload:
    conditions: List[str] = field(default_factory=list)
    is_loop: bool = False


@dataclass(frozen=True)
class MergePayload:
    pass


NodePayload = Union[EntryPayload, ExitPayload, BasicPayload, BranchPayload, MergePayload]

PAYLOAD_TYPES = {
    NodeKind.ENTRY: EntryPayload,
    NodeKind.EXIT: ExitPayload,
    NodeKind.BASIC: BasicPayload,
    NodeKind.BRANCH: BranchPayload,
    NodeKind.MERGE: MergePayload,
}


@dataclass
class CFGNode:
    """A program point in the control-flow graph."""
    id: str
    kind: NodeKind
    payload: Optional[NodePayload] = None
    code: str = ""
    start_line: int = 0
    end_line: int = 0
    column: int = 0
    function_name: Optional[str] = None
    successors: List[str] = field(default_factory=list)
    predecessors: List[str] = field(default_factory=list)

    def __post_init__(self):
        expected = PAYLOAD_TYPES[self.kind]
        if self.payload is None:
            self.payload = expected()
        elif not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} node requires {expected.__name__}, got {type(self.payload).__name__}"
            )

    @property
    def line(self) -> int:
        return self.start_line

    @property
    def conditions(self) -> List[str]:
        if self.kind is NodeKind.BRANCH:
            return self.payload.conditions
        return []

    @property
    def is_loop_header(self) -> bool:
        return self.kind is NodeKind.BRANCH and self.payload.is_loop

    @property
    def is_return(self) -> bool:
        return self.kind is NodeKind.BASIC and self.payload.is_return

    @property
    def is_function_header(self) -> bool:
        return self.kind is NodeKind.BASIC and self.payload.is_function_header


@dataclass(frozen=True)
class Loop:
    header: str
    body: FrozenSet[str]
    exits: FrozenSet[str]


@dataclass
class FunctionContext:
    name: str
    parameters: List[str] = field(default_factory=list)
    return_type: Optional[str] = None
    start_line: int = 0
    end_line: int = -1
    header_id: Optional[str] = None

    @property
    def parameter_names(self) -> List[str]:
        return [name for name in (parameter_name(p) for p in self.parameters) if name]


def parameter_name(param: str) -> str:
    """Name bound by a Rust ``name: Type`` or Solidity ``Type [location] name`` parameter."""
    if ':' in param:
        tokens = re.findall(r'[A-Za-z_]\w*', param.split(':', 1)[0])
        return tokens[-1] if tokens else ""
    tokens = re.findall(r'[A-Za-z_]\w*', param)
    return tokens[-1] if len(tokens) >= 2 or tokens == ['self'] else ""


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class ControlFlowGraph:
    """Nodes, edges, loops and the function table produced by CFGBuilder."""

    def __init__(self, max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 max_paths: int = DEFAULT_MAX_PATHS,
                 max_path_steps: int = DEFAULT_MAX_PATH_STEPS):
        self.nodes: Dict[str, CFGNode] = {}
        self.entry: Optional[str] = None
        self.exit: Optional[str] = None
        self.loops: Dict[str, Loop] = {}
        self.functions: Dict[str, FunctionContext] = {}
        self.max_iterations = max_iterations
        self.max_paths = max_paths
        self.max_path_steps = max_path_steps
        self._counter = 0
        self._dominance_cache: Dict[Tuple[str, Optional[str]], Dict[str, Set[str]]] = {}

    # -- construction -------------------------------------------------------

    def new_node(self, kind: NodeKind, code: str = "", line: int = 0, end_line: Optional[int] = None,
                 column: int = 0, function_name: Optional[str] = None,
                 payload: Optional[NodePayload] = None) -> CFGNode:
        node = CFGNode(
            id=f"node_{self._counter}",
            kind=kind,
            payload=payload,
            code=code,
            start_line=line,
            end_line=line if end_line is None else end_line,
            column=column,
            function_name=function_name,
        )
        self._counter += 1
        self._dominance_cache.clear()
        self.nodes[node.id] = node
        return node

    def add_edge(self, source: str, target: str) -> None:
        src, dst = self.nodes[source], self.nodes[target]
        self._dominance_cache.clear()
        if target not in src.successors:
            src.successors.append(target)
        if source not in dst.predecessors:
            dst.predecessors.append(source)

    def remove_edge(self, source: str, target: str) -> None:
        self._dominance_cache.clear()
        if source in self.nodes and target in self.nodes[source].successors:
            self.nodes[source].successors.remove(target)
        if target in self.nodes and source in self.nodes[target].predecessors:
            self.nodes[target].predecessors.remove(source)

    def remove_node(self, node_id: str) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            return
        for pred in list(node.predecessors):
            self.remove_edge(pred, node_id)
        for succ in list(node.successors):
            self.remove_edge(node_id, succ)
        del self.nodes[node_id]
        self._dominance_cache.clear()
        self.loops.pop(node_id, None)

    # -- lookup -------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[CFGNode]:
        return self.nodes.get(node_id)

    def successors(self, node_id: str) -> List[str]:
        node = self.nodes.get(node_id)
        return list(node.successors) if node else []

    def predecessors(self, node_id: str) -> List[str]:
        node = self.nodes.get(node_id)
        return list(node.predecessors) if node else []

    def has_edge(self, source: str, target: str) -> bool:
        node = self.nodes.get(source)
        return node is not None and target in node.successors

    def edges(self) -> List[Tuple[str, str]]:
        return [(nid, succ) for nid, node in self.nodes.items() for succ in node.successors]

    def node_count(self) -> int:
        return len(self.nodes)

    def edge_count(self) -> int:
        return sum(len(node.successors) for node in self.nodes.values())

    def function_context(self, name: str) -> Optional[FunctionContext]:
        return self.functions.get(name)

    def nodes_in_function(self, name: Optional[str]) -> List[CFGNode]:
        return [node for node in self.nodes.values() if node.function_name == name]

    def nodes_by_function(self) -> Dict[Optional[str], List[CFGNode]]:
        """Group nodes with code by enclosing function; module-level code is keyed by None."""
        groups: Dict[Optional[str], List[CFGNode]] = {}
        for node in self.nodes.values():
            if node.code:
                groups.setdefault(node.function_name, []).append(node)
        return groups

    def find_loops(self) -> List[Loop]:
        return list(self.loops.values())

    def loop_info(self, node_id: str) -> Optional[Loop]:
        if node_id in self.loops:
            return self.loops[node_id]
        for loop in self.loops.values():
            if node_id in loop.body:
                return loop
        return None

    # -- reachability and paths ----------------------------------------------

    def reachable_from(self, start: Optional[str]) -> Set[str]:
        if start not in self.nodes:
            return set()
        seen = {start}
        stack = [start]
        while stack:
            for succ in self.nodes[stack.pop()].successors:
                if succ in self.nodes and succ not in seen:
                    seen.add(succ)
                    stack.append(succ)
        return seen

    def dead_code(self) -> List[str]:
        """Nodes that cannot be reached from the entry node."""
        reachable = self.reachable_from(self.entry)
        return [nid for nid in self.nodes if nid not in reachable]

    def all_paths(self, start: Optional[str] = None, end: Optional[str] = None,
                  max_paths: Optional[int] = None) -> List[List[str]]:
        """Simple paths from start to end, depth-first in successor order."""
        start = start or self.entry
        end = end or self.exit
        if start not in self.nodes or end not in self.nodes:
            return []

        limit = max_paths or self.max_paths
        paths: List[List[str]] = []
        steps = 0
        stack = [(start, [start])]
        while stack:
            steps += 1
            if steps > self.max_path_steps:
                logger.warning(f"Path enumeration stopped after {self.max_path_steps} steps")
                break
            node_id, path = stack.pop()
            if node_id == end:
                paths.append(path)
                if len(paths) >= limit:
                    logger.warning(f"Path enumeration capped at {limit} paths")
                    break
                continue
            for succ in reversed(self.nodes[node_id].successors):
                if succ in self.nodes and succ not in path:
                    stack.append((succ, path + [succ]))
        return paths

    def connected_components(self) -> List[List[str]]:
        """Weakly connected components, in node creation order."""
        seen: Set[str] = set()
        components = []
        for nid in self.nodes:
            if nid in seen:
                continue
            component = []
            seen.add(nid)
            queue = [nid]
            while queue:
                current = queue.pop(0)
                component.append(current)
                node = self.nodes[current]
                for neighbour in node.successors + node.predecessors:
                    if neighbour in self.nodes and neighbour not in seen:
                        seen.add(neighbour)
                        queue.append(neighbour)
            components.append(sorted(component, key=self._position))
        return components

    def validate_path(self, path: List[str]) -> bool:
        if not path or any(nid not in self.nodes for nid in path):
            return False
        return all(self.has_edge(a, b) for a, b in zip(path, path[1:]))

    # -- dominance ----------------------------------------------------------

    def dominators(self) -> Dict[str, Set[str]]:
        """Dominator sets, cached until the next node or edge change."""
        return {nid: set(dom) for nid, dom in self._dominance('dom').items()}

    def post_dominators(self) -> Dict[str, Set[str]]:
        return {nid: set(dom) for nid, dom in self._dominance('post').items()}

    def dominates(self, a: str, b: str) -> bool:
        return a in self._dominance('dom').get(b, ())

    def post_dominates(self, a: str, b: str) -> bool:
        return a in self._dominance('post').get(b, ())

    def _dominance(self, direction: str) -> Dict[str, Set[str]]:
        key = (direction, self.entry)
        if key not in self._dominance_cache:
            if direction == 'dom':
                roots = {nid for nid, node in self.nodes.items()
                         if nid == self.entry or not node.predecessors}
                solved = self._solve_dominance(roots, lambda nid: self.nodes[nid].predecessors)
            else:
                roots = {nid for nid, node in self.nodes.items()
                         if node.kind is NodeKind.EXIT or not node.successors}
                solved = self._solve_dominance(roots, lambda nid: self.nodes[nid].successors)
            self._dominance_cache[key] = solved
        return self._dominance_cache[key]

    def _solve_dominance(self, roots: Set[str],
                         neighbours: Callable[[str], Iterable[str]]) -> Dict[str, Set[str]]:
        all_ids = set(self.nodes)
        dom = {nid: ({nid} if nid in roots else set(all_ids)) for nid in self.nodes}

        changed = True
        iterations = 0
        while changed and iterations < self.max_iterations:
            changed = False
            iterations += 1
            for nid in self.nodes:
                if nid in roots:
                    continue
                sets = [dom[m] for m in neighbours(nid) if m in dom]
                new = set.intersection(*sets) if sets else set()
                new.add(nid)
                if new != dom[nid]:
                    dom[nid] = new
                    changed = True

        if changed:
            logger.warning(f"Dominance computation hit the iteration cap ({self.max_iterations})")
        return dom

    # -- loops --------------------------------------------------------------

    def identify_loops(self) -> List[Loop]:
        """Detect loops from DFS back-edges, starting at every node with no predecessors."""
        bodies: Dict[str, Set[str]] = {}
        visited: Set[str] = set()
        roots = [nid for nid, node in self.nodes.items() if not node.predecessors]
        roots += [nid for nid in self.nodes if nid not in roots]

        for root in roots:
            if root in visited:
                continue
            visited.add(root)
            path = [root]
            on_path = {root}
            stack = [iter(list(self.nodes[root].successors))]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    on_path.discard(path.pop())
                    continue
                if child not in self.nodes:
                    continue
                if child in on_path:
                    body = bodies.setdefault(child, set())
                    body.update(path[path.index(child):])
                    body.update(self._natural_loop(child, path[-1]))
                    continue
                if child in visited:
                    continue
                visited.add(child)
                path.append(child)
                on_path.add(child)
                stack.append(iter(list(self.nodes[child].successors)))

        self.loops = {}
        for header in self.nodes:
            if header not in bodies:
                continue
            body = bodies[header]
            exits = {succ for nid in body for succ in self.nodes[nid].successors
                     if succ not in body and succ in self.nodes}
            self.loops[header] = Loop(header, frozenset(body), frozenset(exits))
        return self.find_loops()

    def _natural_loop(self, header: str, tail: str) -> Set[str]:
        body = {header, tail}
        worklist = [tail]
        while worklist:
            current = worklist.pop()
            if current == header:
                continue
            for pred in self.nodes[current].predecessors:
                if pred in self.nodes and pred not in body:
                    body.add(pred)
                    worklist.append(pred)
        return body

    # -- validation and simplification -----------------------------------------

    def validate(self) -> List[str]:
        """Check structural invariants; problems are logged, never raised."""
        issues = []
        entries = [n for n in self.nodes.values() if n.kind is NodeKind.ENTRY]
        if len(entries) != 1:
            issues.append(f"expected exactly one entry node, found {len(entries)}")
        if not any(n.kind is NodeKind.EXIT for n in self.nodes.values()):
            issues.append("graph has no exit node")

        for node in self.nodes.values():
            for succ in node.successors:
                if succ not in self.nodes:
                    issues.append(f"{node.id} references missing successor {succ}")
                elif node.id not in self.nodes[succ].predecessors:
                    issues.append(f"edge {node.id}->{succ} missing from predecessors of {succ}")
            for pred in node.predecessors:
                if pred not in self.nodes:
                    issues.append(f"{node.id} references missing predecessor {pred}")
                elif node.id not in self.nodes[pred].successors:
                    issues.append(f"edge {pred}->{node.id} missing from successors of {pred}")
            if node.kind is NodeKind.BRANCH and not any(c.strip() for c in node.conditions):
                issues.append(f"branch {node.id} has no condition")

        for issue in issues:
            logger.warning(f"CFG validation: {issue}")
        return issues

    def optimize(self) -> "ControlFlowGraph":
        """Drop unreachable and empty nodes, then merge straight-line basic chains."""
        reachable = self.reachable_from(self.entry)
        for nid in list(self.nodes):
            if nid not in reachable and nid not in (self.entry, self.exit):
                self.remove_node(nid)

        for nid in list(self.nodes):
            node = self.nodes[nid]
            if node.kind is NodeKind.BASIC and not node.code.strip():
                self._bypass(nid)

        self._merge_chains()
        self.identify_loops()
        self.validate()
        return self

    def _bypass(self, node_id: str) -> None:
        node = self.nodes[node_id]
        preds = [p for p in node.predecessors if p != node_id]
        succs = [s for s in node.successors if s != node_id]
        self.remove_node(node_id)
        for pred in preds:
            for succ in succs:
                self.add_edge(pred, succ)

    def _merge_chains(self) -> None:
        changed = True
        iterations = 0
        while changed and iterations < self.max_iterations:
            changed = False
            iterations += 1
            for nid in list(self.nodes):
                node = self.nodes.get(nid)
                if (node is None or node.kind is not NodeKind.BASIC or len(node.successors) != 1
                        or node.is_function_header):
                    continue
                succ = self.nodes.get(node.successors[0])
                if (succ is None or succ.id == nid or succ.kind is not NodeKind.BASIC
                        or len(succ.predecessors) != 1 or succ.is_function_header
                        or succ.function_name != node.function_name):
                    continue
                self._absorb(node, succ)
                changed = True

    def _absorb(self, node: CFGNode, succ: CFGNode) -> None:
        node.code = "\n".join(part for part in (node.code, succ.code) if part)
        node.end_line = max(node.end_line, succ.end_line)
        node.payload.is_return = node.payload.is_return or succ.payload.is_return
        targets = list(succ.successors)
        self.remove_node(succ.id)
        for target in targets:
            self.add_edge(node.id, target)

    # -- serialization ------------------------------------------------------

    def _position(self, node_id: str) -> int:
        match = re.search(r'(\d+)$', node_id)
        return int(match.group(1)) if match else 0

    def serialize(self) -> Dict[str, Any]:
        return {
            'entry': self.entry,
            'exit': self.exit,
            'nodes': [
                {
                    'id': node.id,
                    'kind': node.kind.value,
                    'code': node.code,
                    'startLine': node.start_line,
                    'endLine': node.end_line,
                    'column': node.column,
                    'function': node.function_name,
                    'successors': list(node.successors),
                    'predecessors': list(node.predecessors),
                    'payload': asdict(node.payload),
                }
                for node in self.nodes.values()
            ],
            'loops': [
                {
                    'header': loop.header,
                    'body': sorted(loop.body, key=self._position),
                    'exits': sorted(loop.exits, key=self._position),
                }
                for loop in self.loops.values()
            ],
            'functions': {name: asdict(ctx) for name, ctx in self.functions.items()},
        }


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

_COMMENT_RE = re.compile(r'("(?:\\.|[^"\\\n])*")|//[^\n]*|/\*[\s\S]*?\*/')

_CONTINUATION_SUFFIXES = ('=', '+', '-', '*', '/', '&&', '||', '.', '::')
_CONTINUATION_PREFIXES = ('.', '?', '&&', '||', '{')

# Solidity call options: addr.call{value: v}(data)
_CALL_OPTIONS_RE = re.compile(r'\.\s*(?:call|delegatecall|staticcall)\s*$')


def strip_comments(code: str) -> str:
    """Remove line and block comments, keeping string literals and line numbers."""
    def _replace(match):
        if match.group(1):
            return match.group(1)
        return '\n' * match.group(0).count('\n')
    return _COMMENT_RE.sub(_replace, code)


@dataclass
class _Piece:
    kind: str  # open, close, stmt
    text: str
    line: int
    end_line: int
    column: int = 0


class _Scanner:
    """Splits source into brace openers, closers and statements."""

    def __init__(self, code: str):
        self.lines = strip_comments(code).split('\n')
        self.pieces: List[_Piece] = []
        self._buf: List[str] = []
        self._start = (1, 0)
        self._depth = 0

    def scan(self) -> List[_Piece]:
        for index, raw in enumerate(self.lines):
            line_no = index + 1
            in_string = False
            escaped = False
            for col, ch in enumerate(raw):
                if not self._buf:
                    if ch.isspace():
                        continue
                    self._start = (line_no, col)
                if in_string:
                    self._buf.append(ch)
                    if escaped:
                        escaped = False
                    elif ch == '\\':
                        escaped = True
                    elif ch == '"':
                        in_string = False
                    continue
                if ch == '"':
                    in_string = True
                    self._buf.append(ch)
                    continue

                if ch in '([':
                    self._depth += 1
                elif ch in ')]':
                    self._depth = max(0, self._depth - 1)
                elif ch == '{' and (self._depth > 0 or _CALL_OPTIONS_RE.search(''.join(self._buf))):
                    self._depth += 1
                    self._buf.append(ch)
                    continue
                elif ch == '}' and self._depth > 0:
                    self._depth -= 1
                    self._buf.append(ch)
                    continue

                if self._depth == 0 and ch == '{':
                    self._buf.append(ch)
                    self._flush('open', line_no)
                elif self._depth == 0 and ch == '}':
                    self._flush('stmt', line_no)
                    self._start = (line_no, col)
                    self._flush('close', line_no)
                elif self._depth == 0 and ch == ';':
                    self._buf.append(ch)
                    self._flush('stmt', line_no)
                else:
                    self._buf.append(ch)

            if self._buf:
                if self._depth == 0 and not self._continues(index):
                    self._flush('stmt', line_no)
                else:
                    self._buf.append(' ')

        self._flush('stmt', len(self.lines))
        return self.pieces

    def _continues(self, index: int) -> bool:
        text = ''.join(self._buf).rstrip()
        if text.endswith(_CONTINUATION_SUFFIXES) and not text.endswith(('=>', '->')):
            return True
        for following in self.lines[index + 1:]:
            stripped = following.strip()
            if stripped:
                return stripped.startswith(_CONTINUATION_PREFIXES)
        return False

    def _flush(self, kind: str, line_no: int) -> None:
        text = ' '.join(''.join(self._buf).split())
        self._buf = []
        line, column = self._start
        if kind == 'close':
            self.pieces.append(_Piece('close', '}', line, line_no, column))
        elif text.strip(' ;,)'):
            self.pieces.append(_Piece(kind, text, line, line_no, column))


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

_RUST_FN_RE = re.compile(
    r'^(?:pub(?:\s*\([^)]*\))?\s+)?(?:(?:const|async|unsafe)\s+)*(?:extern\s+"[^"]*"\s+)?'
    r'fn\s+([A-Za-z_]\w*)\s*(?:<.*?>)?\s*\((.*?)\)\s*(?:->\s*(.+?))?\s*(?:where\b.*)?$'
)
_SOL_FN_RE = re.compile(
    r'^(?:function\s+([A-Za-z_]\w*)|(constructor|receive|fallback)|modifier\s+([A-Za-z_]\w*))'
    r'\s*\((.*?)\)(.*)$'
)
_SOL_RETURNS_RE = re.compile(r'\breturns\s*\((.*)\)')
_BRANCH_RE = re.compile(r'^(if|match|switch)\b\s*(.*)$')
_LOOP_RE = re.compile(r"^(?:'\w+\s*:\s*)?(while|for|loop)\b\s*(.*)$")
_ELSE_RE = re.compile(r'^else\b\s*(.*?)\s*\{$')
_RETURN_RE = re.compile(r'^return\b')
_BREAK_RE = re.compile(r"^break\b")
_CONTINUE_RE = re.compile(r"^continue\b")


def split_parameters(params: str) -> List[str]:
    """Split a parameter list on commas at nesting depth zero."""
    parts, current, depth = [], [], 0
    for ch in params:
        if ch in '<([':
            depth += 1
        elif ch in '>)]':
            depth = max(0, depth - 1)
        if ch == ',' and depth == 0:
            parts.append(''.join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append(''.join(current).strip())
    return [p for p in parts if p]


def parse_function_header(header: str) -> Optional[Tuple[str, List[str], Optional[str]]]:
    """Return (name, parameters, return marker) for a function header, else None."""
    match = _RUST_FN_RE.match(header)
    if match:
        ret = match.group(3).strip() if match.group(3) else None
        return match.group(1), split_parameters(match.group(2)), ret

    match = _SOL_FN_RE.match(header)
    if match:
        name = match.group(1) or match.group(2) or match.group(3)
        returns = _SOL_RETURNS_RE.search(match.group(5))
        ret = returns.group(1).strip() if returns else None
        return name, split_parameters(match.group(4)), ret
    return None


def _strip_parens(text: str) -> str:
    text = text.strip()
    while text.startswith('(') and text.endswith(')'):
        depth = 0
        for i, ch in enumerate(text):
            depth += ch == '('
            depth -= ch == ')'
            if depth == 0 and i < len(text) - 1:
                return text
        text = text[1:-1].strip()
    return text


@dataclass
class _Frame:
    kind: str  # function, branch, else, loop, block
    node: Optional[str] = None
    false_node: Optional[str] = None
    merge: Optional[str] = None
    exit: Optional[str] = None
    saved_current: Optional[str] = None
    chained: bool = False
    branch: Optional["_Frame"] = None
    context: Optional[FunctionContext] = None


class _BuildState:
    """Run-scoped state for one CFGBuilder.build call."""

    def __init__(self, graph: ControlFlowGraph):
        self.graph = graph
        entry = graph.new_node(NodeKind.ENTRY, line=0)
        graph.entry = entry.id
        self.current: Optional[str] = entry.id
        self.tails: List[str] = []
        self.frames: List[_Frame] = []
        self.pending: Optional[_Frame] = None
        self.last_line = 0

    @property
    def function_name(self) -> Optional[str]:
        for frame in reversed(self.frames):
            if frame.kind == 'function':
                return frame.context.name
        return None

    def _node(self, kind: NodeKind, piece: _Piece, code: str = "", payload=None, synthetic: bool = False) -> CFGNode:
        return self.graph.new_node(
            kind,
            code=code,
            line=piece.line,
            end_line=piece.line if synthetic else piece.end_line,
            column=0 if synthetic else piece.column,
            function_name=self.function_name,
            payload=payload,
        )

    def _link(self, node: CFGNode) -> None:
        if self.current is not None:
            self.graph.add_edge(self.current, node.id)
        self.current = node.id

    # -- piece dispatch -----------------------------------------------------

    def consume(self, piece: _Piece) -> None:
        self.last_line = max(self.last_line, piece.end_line)
        if self.pending is not None:
            match = _ELSE_RE.match(piece.text) if piece.kind == 'open' else None
            if match:
                self._open_else(piece, match.group(1))
                return
            self._finish_pending()

        if piece.kind == 'close':
            self._close(piece)
        elif piece.kind == 'open':
            self._open(piece, piece.text[:-1].strip())
        else:
            self._statement(piece)

    def finish(self) -> None:
        while True:
            if self.pending is not None:
                self._finish_pending()
                continue
            if not self.frames:
                break
            self._close(_Piece('close', '}', self.last_line, self.last_line))

        exit_node = self.graph.new_node(NodeKind.EXIT, line=self.last_line)
        self.graph.exit = exit_node.id
        for tail in self.tails:
            self.graph.add_edge(tail, exit_node.id)
        if self.current is not None:
            self.graph.add_edge(self.current, exit_node.id)

    # -- openers ------------------------------------------------------------

    def _open(self, piece: _Piece, header: str, chained: bool = False) -> None:
        signature = parse_function_header(header)
        if signature:
            self._open_function(piece, *signature)
            return

        match = _BRANCH_RE.match(header)
        if match:
            self._open_branch(piece, header, match.group(2), chained)
            return

        match = _LOOP_RE.match(header)
        if match:
            self._open_loop(piece, header, match.group(2).strip() or match.group(1))
            return

        if header and header != 'else':
            self._link(self._node(NodeKind.BASIC, piece, header, BasicPayload()))
        self.frames.append(_Frame('block'))

    def _open_function(self, piece: _Piece, name: str, params: List[str], ret: Optional[str]) -> None:
        context = FunctionContext(name, params, ret, start_line=piece.line)
        node = self.graph.new_node(
            NodeKind.BASIC,
            code=piece.text[:-1].strip(),
            line=piece.line,
            end_line=piece.end_line,
            column=piece.column,
            function_name=name,
            payload=BasicPayload(is_function_header=True),
        )
        context.header_id = node.id
        self.graph.add_edge(self.graph.entry, node.id)
        if name in self.graph.functions:
            logger.debug(f"Duplicate function name {name} at line {piece.line}")
        else:
            self.graph.functions[name] = context
        self.frames.append(_Frame('function', saved_current=self.current, context=context))
        self.current = node.id

    def _open_branch(self, piece: _Piece, header: str, condition: str, chained: bool) -> None:
        branch = self._node(NodeKind.BRANCH, piece, header,
                            BranchPayload([_strip_parens(condition) or header]))
        self._link(branch)
        true_node = self._node(NodeKind.BASIC, piece, payload=BasicPayload(label='true'), synthetic=True)
        false_node = self._node(NodeKind.BASIC, piece, payload=BasicPayload(label='false'), synthetic=True)
        merge = self._node(NodeKind.MERGE, piece, synthetic=True)
        self.graph.add_edge(branch.id, true_node.id)
        self.graph.add_edge(branch.id, false_node.id)
        self.current = true_node.id
        self.frames.append(_Frame('branch', node=branch.id, false_node=false_node.id,
                                  merge=merge.id, chained=chained))

    def _open_else(self, piece: _Piece, rest: str) -> None:
        branch = self.pending
        self.pending = None
        self.current = branch.false_node
        self.frames.append(_Frame('else', branch=branch))
        if rest and _BRANCH_RE.match(rest):
            self._open(piece, rest, chained=True)

    def _open_loop(self, piece: _Piece, header: str, condition: str) -> None:
        head = self._node(NodeKind.BRANCH, piece, header,
                          BranchPayload([_strip_parens(condition)], is_loop=True))
        self._link(head)
        body = self._node(NodeKind.BASIC, piece, payload=BasicPayload(label='loop_body'), synthetic=True)
        exit_node = self._node(NodeKind.BASIC, piece, payload=BasicPayload(label='loop_exit'), synthetic=True)
        self.graph.add_edge(head.id, body.id)
        self.graph.add_edge(head.id, exit_node.id)
        self.current = body.id
        self.frames.append(_Frame('loop', node=head.id, exit=exit_node.id))

    # -- closers ------------------------------------------------------------

    def _close(self, piece: _Piece) -> None:
        if not self.frames:
            return
        frame = self.frames.pop()
        if frame.kind == 'function':
            if self.current is not None:
                self.tails.append(self.current)
            frame.context.end_line = piece.line
            self.current = frame.saved_current
        elif frame.kind == 'branch':
            if self.current is not None:
                self.graph.add_edge(self.current, frame.merge)
            self.pending = frame
            self.current = frame.merge
        elif frame.kind == 'else':
            if self.current is not None:
                self.graph.add_edge(self.current, frame.branch.merge)
            self.current = frame.branch.merge
            self._finish_branch(frame.branch)
        elif frame.kind == 'loop':
            if self.current is not None:
                self.graph.add_edge(self.current, frame.node)
            self.current = frame.exit

    def _finish_pending(self) -> None:
        branch = self.pending
        self.pending = None
        self.graph.add_edge(branch.false_node, branch.merge)
        self.current = branch.merge
        self._finish_branch(branch)

    def _finish_branch(self, branch: _Frame) -> None:
        if branch.chained and self.frames and self.frames[-1].kind == 'else':
            outer = self.frames.pop()
            self.graph.add_edge(branch.merge, outer.branch.merge)
            self.current = outer.branch.merge
            self._finish_branch(outer.branch)

    # -- statements ---------------------------------------------------------

    def _innermost_loop(self) -> Optional[_Frame]:
        for frame in reversed(self.frames):
            if frame.kind == 'loop':
                return frame
            if frame.kind == 'function':
                return None
        return None

    def _statement(self, piece: _Piece) -> None:
        text = piece.text
        if _RETURN_RE.match(text):
            node = self._node(NodeKind.BASIC, piece, text, BasicPayload(is_return=True))
            self._link(node)
            self.tails.append(node.id)
            self.current = None
            return

        loop = self._innermost_loop()
        if loop is not None and (_BREAK_RE.match(text) or _CONTINUE_RE.match(text)):
            node = self._node(NodeKind.BASIC, piece, text, BasicPayload())
            self._link(node)
            target = loop.exit if _BREAK_RE.match(text) else loop.node
            self.graph.add_edge(node.id, target)
            self.current = None
            return

        self._link(self._node(NodeKind.BASIC, piece, text, BasicPayload()))


class CFGBuilder:
    """Turns contract source text into a ControlFlowGraph."""

    def __init__(self, max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 max_paths: int = DEFAULT_MAX_PATHS,
                 max_path_steps: int = DEFAULT_MAX_PATH_STEPS):
        self.max_iterations = max_iterations
        self.max_paths = max_paths
        self.max_path_steps = max_path_steps

    @classmethod
    def from_config(cls, config) -> "CFGBuilder":
        return cls(config.max_iterations, config.max_paths, config.max_path_steps)

    def build(self, code: str) -> ControlFlowGraph:
        graph = ControlFlowGraph(self.max_iterations, self.max_paths, self.max_path_steps)
        state = _BuildState(graph)
        for piece in _Scanner(code or "").scan():
            state.consume(piece)
        state.finish()

        graph.identify_loops()
        graph.validate()
        logger.debug(
            f"Built CFG with {graph.node_count()} nodes, {graph.edge_count()} edges, "
            f"{len(graph.loops)} loops, {len(graph.functions)} functions"
        )
        return graph


def as_graph(target: Union[str, ControlFlowGraph]) -> ControlFlowGraph:
    """Accept either source text or an already built graph."""
    if isinstance(target, ControlFlowGraph):
        return target
    return CFGBuilder().build(target)
