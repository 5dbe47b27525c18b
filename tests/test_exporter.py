import pytest

from litmusgraph.config import Dialect
from litmusgraph.errors import LitmusExportError
from litmusgraph.exporter import (
    NOTE_AMBIGUOUS,
    NOTE_UNINFERRED,
    export_c11_litmus,
    export_litmus_text,
    export_lkmm_litmus,
    to_c11_memory_order,
)
from litmusgraph.model import BranchGroup, BranchRule, MemoryScope, MemoryType, RelationEdge
from litmusgraph.parser import parse_litmus_text

MP_LKMM = r"""C MP

{}

P0(volatile int *x, volatile int *y) {
  WRITE_ONCE(*x, 1);
  WRITE_ONCE(*y, 1);
}

P1(volatile int *x, volatile int *y) {
  int EAX;
  int EBX;
  EAX = READ_ONCE(*y);
  EBX = READ_ONCE(*x);
}

exists (1:EAX=1 /\ 1:EBX=0)
"""


def with_edges(graph, *edges):
    for i, (kind, source, target) in enumerate(edges):
        graph.edges.append(RelationEdge(id=f"edge-{kind}-x{i}", source=source, target=target, relation_type=kind))
    return graph


@pytest.fixture
def mp_graph(mp_pipe_text):
    return with_edges(
        parse_litmus_text(mp_pipe_text),
        ("rf", "node-t0-op2", "node-t1-op1"),
        ("fr", "node-t1-op2", "node-t0-op1"),
    )


@pytest.mark.parametrize("order, kind, expected", [
    ("SC", "load", "memory_order_seq_cst"),
    ("Acquire", "load", "memory_order_acquire"),
    ("Acquire", "store", "memory_order_relaxed"),
    ("Release", "load", "memory_order_relaxed"),
    ("Release", "rmw_success", "memory_order_release"),
    ("Acq_Rel", "load", "memory_order_acquire"),
    ("Acq_Rel", "store", "memory_order_release"),
    ("Acq_Rel", "rmw_failure", "memory_order_relaxed"),
    ("Acq_Rel", "rmw_success", "memory_order_acq_rel"),
    ("Standard", "store", "memory_order_relaxed"),
    (None, "fence", "memory_order_relaxed"),
])
def test_c11_memory_order_mapping(order, kind, expected):
    assert to_c11_memory_order(order, kind) == expected


def test_lkmm_export_of_message_passing(mp_graph):
    assert export_lkmm_litmus(mp_graph) == MP_LKMM


def test_c11_export_of_message_passing(mp_graph):
    text = export_c11_litmus(mp_graph)
    assert "{ [x] = 0; [y] = 0; }" in text
    assert "P0(atomic_int *x, atomic_int *y) {" in text
    assert "  atomic_store_explicit(x, 1, memory_order_relaxed);" in text
    assert "  EAX = atomic_load_explicit(y, memory_order_relaxed);" in text
    assert text.endswith("exists (1:EAX=1 /\\ 1:EBX=0)\n")


def test_dialect_names_are_accepted(mp_graph):
    assert export_litmus_text(mp_graph, "lkmm") == export_litmus_text(mp_graph, Dialect.MACRO)
    assert export_litmus_text(mp_graph, "c11") == export_litmus_text(mp_graph, "explicit-atomics")
    with pytest.raises(ValueError):
        export_litmus_text(mp_graph, "fortran")


def test_uninferrable_postcondition_falls_back(mp_pipe_text):
    text = export_lkmm_litmus(parse_litmus_text(mp_pipe_text))
    assert NOTE_UNINFERRED in text
    assert text.endswith("exists (0=0)\n")


def test_store_to_load_rf_gives_conjunct(factory):
    # one STORE of constant 1, read by thread 1 into r0
    factory.var("mem-x", "x")
    one = factory.const(1)
    factory.local("local-r0", "r0")
    factory.node("w", "T0", 1, "STORE", address_id="mem-x", value_id=one)
    factory.node("r", "T1", 1, "LOAD", address_id="mem-x", result_id="local-r0")
    factory.edge("w", "r", kind="rf")
    text = export_lkmm_litmus(factory.build("rf"))
    assert "exists (1:r0=1)" in text
    assert "WRITE_ONCE(*x, 1);" in text


def test_release_acquire_macros(factory):
    factory.var("mem-x", "x", value="3")
    factory.local("local-r0", "r0")
    factory.node("w", "T0", 1, "STORE", address_id="mem-x", value=2, memory_order="Release")
    factory.node("r", "T1", 1, "LOAD", address_id="mem-x", result_id="local-r0", memory_order="Acquire")
    text = export_lkmm_litmus(factory.build())
    assert "smp_store_release(x, 2);" in text
    assert "r0 = smp_load_acquire(x);" in text
    assert "{\n  x=3;\n}" in text


def test_both_futures_visible_is_ambiguous(if_else_text):
    text = export_lkmm_litmus(parse_litmus_text(if_else_text))
    assert NOTE_AMBIGUOUS in text
    assert "  if ((r0 != 0)) {\n    WRITE_ONCE(*y, 1);\n  } else {\n    WRITE_ONCE(*y, 2);\n  }\n  smp_mb();\n" in text
    assert "  int r0;\n" in text
    assert text.endswith("exists (0=0)\n")


def test_hidden_future_is_not_exported(if_else_text):
    graph = parse_litmus_text(if_else_text)
    branch = graph.node_by_id()["node-t0-op2"]
    branch.operation.branch_show_both_futures = False
    text = export_lkmm_litmus(graph)
    # r0 has no value, so the condition is false and only the else path remains
    assert "  if (!((r0 != 0))) {\n    WRITE_ONCE(*y, 2);\n  }\n" in text
    assert "WRITE_ONCE(*y, 1)" not in text
    assert NOTE_AMBIGUOUS not in text
    assert text.endswith("exists (0:r0=0)\n")


def test_show_all_nodes_overrides_hiding(if_else_text):
    graph = parse_litmus_text(if_else_text)
    graph.node_by_id()["node-t0-op2"].operation.branch_show_both_futures = False
    text = export_lkmm_litmus(graph, show_all_nodes=True)
    assert "WRITE_ONCE(*y, 1)" in text
    assert "} else {" in text


def test_forced_rule_exports_as_constant(if_else_text):
    graph = parse_litmus_text(if_else_text)
    branch = graph.node_by_id()["node-t0-op2"]
    branch.operation.branch_condition.items[0].evaluation = "true"
    assert "  if (1) {\n" in export_lkmm_litmus(graph)


def test_c11_branch_and_local_store(lb_ctrl_text):
    text = export_c11_litmus(parse_litmus_text(lb_ctrl_text))
    assert "  r0 = atomic_load_explicit(x, memory_order_relaxed);\n  if ((r0 == 1)) {\n" in text
    assert "    atomic_store_explicit(y, 1, memory_order_relaxed);\n  }\n" in text
    assert "  atomic_store_explicit(x, r1, memory_order_relaxed);" in text
    assert "  atomic_thread_fence(memory_order_seq_cst);" in text


def test_lkmm_rejects_local_store_value(lb_ctrl_text):
    with pytest.raises(LitmusExportError, match="local register") as info:
        export_lkmm_litmus(parse_litmus_text(lb_ctrl_text))
    assert str(info.value).startswith("Cannot export: ")
    assert "T1-S3" in str(info.value)


def test_cas_in_both_dialects(factory):
    factory.var("mem-x", "x")
    zero, one = factory.const(0), factory.const(1)
    factory.local("local-r0", "r0")
    factory.node("c", "T0", 1, "RMW", address_id="mem-x", result_id="local-r0",
                 expected_value_id=zero, desired_value_id=one,
                 success_memory_order="SC", failure_memory_order="SC")
    graph = factory.build()

    lkmm = export_lkmm_litmus(graph)
    assert ("  r0 = READ_ONCE(*x);\n"
            "  if (r0 == 0) {\n"
            "    WRITE_ONCE(*x, 1);\n"
            "  }\n") in lkmm

    c11 = export_c11_litmus(graph)
    assert "P0(atomic_int *cas_expected_T0, atomic_int *x) {" in c11
    assert "[cas_expected_T0] = 0;" in c11
    assert "  atomic_store_explicit(cas_expected_T0, 0, memory_order_relaxed);" in c11
    assert ("  (void)atomic_compare_exchange_strong_explicit(x, cas_expected_T0, 1, "
            "memory_order_seq_cst, memory_order_seq_cst);") in c11
    assert "  r0 = atomic_load_explicit(cas_expected_T0, memory_order_relaxed);" in c11


def test_cas_without_destination_uses_temporary(factory):
    factory.var("mem-x", "x")
    zero, one = factory.const(0), factory.const(1)
    factory.node("c", "T0", 1, "RMW", address_id="mem-x", expected_value_id=zero, desired_value_id=one)
    text = export_lkmm_litmus(factory.build())
    assert "  int rmw_t0_s1 = READ_ONCE(*x);\n  if (rmw_t0_s1 == 0) {\n" in text


def test_multiple_rf_sources_rejected(mp_graph):
    with_edges(mp_graph, ("rf", "node-t0-op1", "node-t1-op1"))
    with pytest.raises(LitmusExportError, match="multiple incoming rf"):
        export_lkmm_litmus(mp_graph)


def test_load_needs_destination(factory):
    factory.var("mem-x", "x")
    factory.node("r", "T0", 1, "LOAD", address_id="mem-x")
    with pytest.raises(LitmusExportError, match="missing a destination register"):
        export_lkmm_litmus(factory.build())


def test_load_into_shared_memory_rejected(factory):
    factory.var("mem-x", "x")
    factory.var("mem-y", "y")
    factory.node("r", "T0", 1, "LOAD", address_id="mem-x", result_id="mem-y")
    with pytest.raises(LitmusExportError, match="must be local registers"):
        export_lkmm_litmus(factory.build())


def test_thread_needs_single_entry(factory):
    factory.var("mem-x", "x")
    factory.node("a", "T0", 1, "STORE", address_id="mem-x", value=1)
    factory.node("b", "T0", 2, "STORE", address_id="mem-x", value=2)
    factory.node("c", "T0", 3, "FENCE")
    factory.chain("a", "b")
    with pytest.raises(LitmusExportError, match="exactly one entry node"):
        export_lkmm_litmus(factory.build())


def test_missing_po_edges_fall_back_to_sequence_order(factory):
    factory.var("mem-x", "x")
    factory.node("b", "T0", 2, "STORE", address_id="mem-x", value=2)
    factory.node("a", "T0", 1, "STORE", address_id="mem-x", value=1)
    text = export_lkmm_litmus(factory.build())
    assert "  WRITE_ONCE(*x, 1);\n  WRITE_ONCE(*x, 2);\n" in text


def test_local_address_rejected(factory):
    factory.local("local-r0", "r0")
    factory.node("w", "T0", 1, "STORE", address_id="local-r0", value=1)
    with pytest.raises(LitmusExportError, match="must be shared"):
        export_lkmm_litmus(factory.build())


def test_pointer_and_member_locations(factory):
    factory.var("mem-x", "x")
    factory.ptr("mem-p", "p", "mem-x")
    factory.var("mem-s", "s", value=None, type=MemoryType.STRUCT)
    factory.var("mem-s-next", "next", parent_id="mem-s")
    factory.node("w", "T0", 1, "STORE", address_id="mem-p", value=1)
    factory.node("v", "T0", 2, "STORE", address_id="mem-s", member_id="mem-s-next", value=2)
    factory.chain("w", "v")
    text = export_lkmm_litmus(factory.build())
    assert "WRITE_ONCE(*x, 1);" in text
    assert "WRITE_ONCE(*s_next, 2);" in text


def test_title_and_identifier_collisions(factory):
    factory.var("mem-a", "my var")
    factory.var("mem-b", "my-var")
    factory.node("w", "T0", 1, "STORE", address_id="mem-a", value=1)
    factory.node("v", "T0", 2, "STORE", address_id="mem-b", value=2)
    factory.chain("w", "v")
    graph = factory.build("  spaced\n title ")
    text = export_lkmm_litmus(graph)
    assert text.startswith("C spaced title\n")
    assert "P0(volatile int *my_var, volatile int *my_var_2) {" in text


def test_round_trip_preserves_shape(mp_pipe_text):
    first = parse_litmus_text(mp_pipe_text)
    second = parse_litmus_text(export_lkmm_litmus(first))
    assert second.threads == first.threads
    for thread_id in first.threads:
        kinds = [n.op_type for n in first.nodes if n.thread_id == thread_id]
        assert [n.op_type for n in second.nodes if n.thread_id == thread_id] == kinds
    names = sorted(m.name for m in first.memory_in_scope(MemoryScope.SHARED))
    assert sorted(m.name for m in second.memory_in_scope(MemoryScope.SHARED)) == names


# ---------- Branch layout ----------

def branch_on_r0(factory):
    factory.var("mem-x", "x")
    factory.local("local-r0", "r0")
    one = factory.const(1)
    condition = BranchGroup(id="g", items=[BranchRule(id="r", op="==", lhs_id="local-r0", rhs_id=one)])
    factory.node("b", "T0", 1, "BRANCH", branch_condition=condition, branch_show_both_futures=True)
    factory.node("a", "T0", 2, "STORE", address_id="mem-x", value=1, branch_id="b", branch_path="then")
    factory.node("e", "T0", 3, "STORE", address_id="mem-x", value=2, branch_id="b", branch_path="else")
    factory.node("j", "T0", 4, "STORE", address_id="mem-x", value=3)
    factory.edge("b", "a", handle="then")
    factory.edge("b", "e", handle="else")


def test_drawn_futures_reconverge_after_the_if(factory):
    branch_on_r0(factory)
    factory.edge("a", "j")
    factory.edge("e", "j")
    text = export_lkmm_litmus(factory.build())
    assert ("  if ((r0 == 1)) {\n"
            "    WRITE_ONCE(*x, 1);\n"
            "  } else {\n"
            "    WRITE_ONCE(*x, 2);\n"
            "  }\n"
            "  WRITE_ONCE(*x, 3);\n"
            "}\n") in text


def test_futures_without_join_run_to_thread_end(factory):
    branch_on_r0(factory)
    factory.edge("a", "j")
    text = export_lkmm_litmus(factory.build())
    assert ("  if ((r0 == 1)) {\n"
            "    WRITE_ONCE(*x, 1);\n"
            "    WRITE_ONCE(*x, 3);\n"
            "  } else {\n"
            "    WRITE_ONCE(*x, 2);\n"
            "  }\n"
            "}\n") in text


def test_unresolved_condition_names_the_branch():
    text = "C unresolved\n{}\nP0(int *y) {\n  if (zz) { WRITE_ONCE(*y, 1); }\n}\nexists (y=1)\n"
    with pytest.raises(LitmusExportError, match="BRANCH node T0-S1 condition is missing an operand"):
        export_lkmm_litmus(parse_litmus_text(text))


def test_missing_condition_operand_hides_internal_ids(factory):
    factory.var("mem-x", "x")
    condition = BranchGroup(id="g", items=[BranchRule(id="r", op="==", lhs_id="ghost", rhs_id="ghost")])
    factory.node("b", "T0", 1, "BRANCH", branch_condition=condition, branch_show_both_futures=True)
    factory.node("a", "T0", 2, "STORE", address_id="mem-x", value=1)
    factory.edge("b", "a", handle="then")
    with pytest.raises(LitmusExportError, match="BRANCH node T0-S1 condition references") as info:
        export_lkmm_litmus(factory.build())
    assert "ghost" not in str(info.value)


def test_missing_store_value_hides_internal_ids(factory):
    factory.var("mem-x", "x")
    factory.node("w", "T0", 1, "STORE", address_id="mem-x", value_id="ghost")
    with pytest.raises(LitmusExportError, match="STORE node T0-S1 value refers to") as info:
        export_lkmm_litmus(factory.build())
    assert "ghost" not in str(info.value)


# ---------- Program-order shape ----------

def test_two_plain_successors_rejected(factory):
    factory.var("mem-x", "x")
    factory.node("a", "T0", 1, "STORE", address_id="mem-x", value=1)
    factory.node("b", "T0", 2, "STORE", address_id="mem-x", value=2)
    factory.node("c", "T0", 3, "STORE", address_id="mem-x", value=3)
    factory.edge("a", "b")
    factory.edge("a", "c")
    with pytest.raises(LitmusExportError, match="node T0-S1 has multiple po successors"):
        export_lkmm_litmus(factory.build())


def test_register_index_rejected(factory):
    factory.var("mem-a", "arr", value=None, type=MemoryType.ARRAY, size=2)
    factory.local("local-r0", "r0")
    factory.node("w", "T0", 1, "STORE", address_id="mem-a", index_id="local-r0", value=1)
    with pytest.raises(LitmusExportError, match="non-literal index"):
        export_lkmm_litmus(factory.build())


def test_po_cycle_rejected(factory):
    factory.var("mem-x", "x")
    factory.node("a", "T0", 1, "STORE", address_id="mem-x", value=1)
    factory.node("b", "T0", 2, "STORE", address_id="mem-x", value=2)
    factory.node("c", "T0", 3, "STORE", address_id="mem-x", value=3)
    factory.chain("a", "b", "c", "b")
    with pytest.raises(LitmusExportError, match="cycle or re-visit detected at node T0-S2"):
        export_lkmm_litmus(factory.build())


def test_node_off_the_po_path_rejected(factory):
    factory.var("mem-x", "x")
    factory.node("a", "T0", 1, "STORE", address_id="mem-x", value=1)
    factory.node("b", "T0", 2, "STORE", address_id="mem-x", value=2)
    factory.node("c", "T0", 3, "FENCE", text="smp_mb()")
    factory.node("d", "T0", 4, "FENCE", text="smp_wmb()")
    factory.chain("a", "b")
    factory.chain("c", "d", "c")
    with pytest.raises(LitmusExportError, match="not reachable by po: T0-S3, T0-S4"):
        export_lkmm_litmus(factory.build())
