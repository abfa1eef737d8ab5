"""
Test suite for the data-flow analyzer.

Tests cover:
- def/use extraction and constraint facts
- reaching definitions and unused bindings
- taint seeding and monotone propagation
- tainted control and data dependencies
- unsafe path search (unguarded calls, null reads, empty ranges)
- iteration caps
"""

import logging
import unittest

from synthguard.cfg_builder import CFGBuilder, NodeKind
from synthguard.data_flow_analyzer import (
    ConstraintKind,
    DataFlowAnalyzer,
    extract_constraints,
    extract_defs,
    extract_uses,
    integer_bounds,
)


def run_source(source, **kwargs):
    cfg = CFGBuilder().build(source)
    return cfg, DataFlowAnalyzer(**kwargs).run(cfg)


def kinds(findings):
    return [f.kind for f in findings]


STRAIGHT_LINE = """\
fn f() {
    let a = 1;
    let b = a;
    let c = b;
}
"""

TAINTED_HANDLER = """\
pub fn handler(accounts: &[AccountInfo], instruction_data: &[u8]) -> ProgramResult {
    let target = instruction_data[0];
    transfer_tokens(target);
    Ok(())
}
"""


class TestExtraction(unittest.TestCase):

    def test_integer_bounds(self):
        self.assertEqual(integer_bounds("u8"), (0, 255))
        self.assertEqual(integer_bounds("i8"), (-128, 127))
        self.assertEqual(integer_bounds("usize"), (0, 2 ** 64 - 1))

    def test_let_binding_is_local_definition(self):
        defs, local = extract_defs("let mut total: u64 = 0;")
        self.assertEqual(defs, {"total"})
        self.assertEqual(local, {"total"})

    def test_field_assignment_defines_root(self):
        defs, local = extract_defs("vault.balance += amount;")
        self.assertEqual(defs, {"vault"})
        self.assertEqual(local, set())

    def test_uses_exclude_target_and_paths(self):
        self.assertEqual(extract_uses("let x = compute(a, b);"), {"compute", "a", "b"})
        self.assertEqual(extract_uses("let v = Vec::new();"), set())

    def test_condition_range(self):
        constraints = extract_constraints("x < 10", is_condition=True)
        self.assertEqual(constraints["x"].kind, ConstraintKind.RANGE)
        self.assertEqual(constraints["x"].value, (None, 9))

    def test_cast_constraint(self):
        constraints = extract_constraints("let n = value as u8;", is_condition=False)
        self.assertEqual(constraints["value"].kind, ConstraintKind.TYPE)
        self.assertEqual(constraints["value"].value, "u8")


class TestReachingDefinitions(unittest.TestCase):

    def test_exit_sees_every_definition(self):
        cfg, result = run_source(STRAIGHT_LINE)
        exit_node = next(n for n in result.nodes.values() if n.kind is NodeKind.EXIT)
        variables = {var for var, _ in exit_node.reach_out}
        self.assertEqual(variables, {"a", "b", "c"})

    def test_unused_binding_reported(self):
        _, result = run_source(STRAIGHT_LINE)
        unused = [f for f in result.findings if f.kind == "UNUSED_DEFINITION"]
        self.assertEqual(len(unused), 1)
        self.assertEqual(unused[0].line, 4)
        self.assertIn("'c'", unused[0].message)
        self.assertEqual(unused[0].severity.value, "low")

    def test_iteration_cap_keeps_partial_result(self):
        cfg = CFGBuilder().build(STRAIGHT_LINE)
        analyzer = DataFlowAnalyzer(max_iterations=1)
        nodes = analyzer.build_nodes(cfg)
        with self.assertLogs("synthguard.data_flow_analyzer", level=logging.WARNING):
            rounds = analyzer.compute_reaching_definitions(nodes)
        self.assertEqual(rounds, 1)


class TestTaint(unittest.TestCase):

    def setUp(self):
        self.cfg = CFGBuilder().build(TAINTED_HANDLER)
        self.analyzer = DataFlowAnalyzer()

    def test_taint_grows_monotonically(self):
        nodes = self.analyzer.build_nodes(self.cfg)
        self.analyzer.compute_reaching_definitions(nodes)
        snapshots = []
        self.analyzer.propagate_taint(nodes, observer=snapshots.append)

        self.assertTrue(snapshots)
        for before, after in zip(snapshots, snapshots[1:]):
            for nid, labels in before.items():
                self.assertTrue(labels <= after[nid])

        transfer = next(n for n in nodes.values() if n.code.startswith("transfer_tokens"))
        self.assertIn("user_input", snapshots[-1][transfer.id])

    def test_sensitive_operation_flagged(self):
        result = self.analyzer.run(self.cfg)
        flagged = [f for f in result.findings if f.kind == "TAINTED_SENSITIVE_OPERATION"]
        self.assertIn(3, [f.line for f in flagged])
        self.assertIn("TAINTED_DATA_DEPENDENCY", kinds(result.findings))


class TestDependencies(unittest.TestCase):

    def test_tainted_condition_controls_withdrawal(self):
        source = """\
fn process(flag: u8) {
    let data = load(flag);
    if data > 5 {
        withdraw_funds(data);
    }
}
"""
        _, result = run_source(source)
        flagged = [f for f in result.findings if f.kind == "TAINTED_CONTROL_DEPENDENCY"]
        self.assertEqual(len(flagged), 1)
        self.assertEqual(flagged[0].line, 4)
        self.assertIn("line 3", flagged[0].message)

    def test_circular_dependency_in_loop(self):
        source = """\
fn spin(n: u64) {
    let mut a = 0;
    let mut b = 0;
    while a < n {
        a = b + 1;
        b = a + 1;
    }
}
"""
        _, result = run_source(source)
        circular = [f for f in result.findings if f.kind == "CIRCULAR_DATA_DEPENDENCY"]
        self.assertEqual(len(circular), 1)
        self.assertIn("lines 5, 6", circular[0].message)


class TestUnsafePaths(unittest.TestCase):

    def test_unguarded_invoke(self):
        source = """\
fn relay(ix: Instruction, program: AccountInfo) {
    invoke(&ix, &[program]);
}
"""
        _, result = run_source(source)
        unsafe = [f for f in result.findings if f.kind == "UNSAFE_PATH"]
        self.assertEqual(len(unsafe), 1)
        self.assertEqual(unsafe[0].line, 2)
        self.assertIn("without a require/assert guard", unsafe[0].message)

    def test_guard_suppresses_unsafe_path(self):
        source = """\
fn relay(ix: Instruction, program: AccountInfo) {
    require!(program.executable, ErrorCode::BadProgram);
    invoke(&ix, &[program]);
}
"""
        _, result = run_source(source)
        self.assertNotIn("UNSAFE_PATH", kinds(result.findings))

    def test_null_read(self):
        source = """\
fn pick() {
    let account = None;
    process(account);
}
"""
        _, result = run_source(source)
        unsafe = [f for f in result.findings if f.kind == "UNSAFE_PATH"]
        self.assertEqual(len(unsafe), 1)
        self.assertIn("may be null", unsafe[0].message)
        self.assertEqual(unsafe[0].line, 3)

    def test_empty_range_on_true_edge(self):
        source = """\
fn clamp(x: u64) {
    let y = 5;
    if y > 10 {
        emit(y);
    }
}
"""
        _, result = run_source(source)
        unsafe = [f for f in result.findings if f.kind == "UNSAFE_PATH"]
        self.assertEqual(len(unsafe), 1)
        self.assertIn("range of 'y' is empty at line 3", unsafe[0].message)


if __name__ == '__main__':
    unittest.main()
