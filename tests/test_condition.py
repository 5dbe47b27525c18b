import itertools

from litmusgraph.condition import (
    Binary,
    ConditionBuilder,
    Ident,
    Not,
    Number,
    evaluate_branch_condition,
    parse_condition,
    tokenize_condition,
)
from litmusgraph.model import BranchGroup, BranchRule, MemoryScope, MemoryType, MemoryVariable


def make_builder(names=None):
    names = names or {"r0": "local-r0", "r1": "local-r1", "x": "mem-x"}
    constants = {}

    def ensure_constant(literal):
        return constants.setdefault(literal, f"const-{literal}")

    builder = ConditionBuilder(names.get, ensure_constant, itertools.count(1))
    return builder, constants


def test_tokenizer_skips_unknown_characters():
    assert tokenize_condition("r0 == 1 && @ r1") == [
        ("IDENT", "r0"), ("OP", "=="), ("NUMBER", "1"), ("OP", "&&"), ("IDENT", "r1"),
    ]


def test_tokenizer_hex_and_two_char_operators():
    assert tokenize_condition("r0<=0x10||!r1") == [
        ("IDENT", "r0"), ("OP", "<="), ("NUMBER", "0x10"), ("OP", "||"), ("OP", "!"), ("IDENT", "r1"),
    ]


def test_bare_hex_prefix_is_not_a_number():
    assert tokenize_condition("r0 == 0x") == [
        ("IDENT", "r0"), ("OP", "=="), ("NUMBER", "0"), ("IDENT", "x"),
    ]
    builder, constants = make_builder()
    builder.build_root(parse_condition("r0 == 0x"))
    assert list(constants) == ["0"]


def test_parse_precedence():
    ast = parse_condition("r0 == 1 && (r1 != 0 || !r2)")
    assert ast == Binary(
        "&&",
        Binary("==", Ident("r0"), Number("1")),
        Binary("||", Binary("!=", Ident("r1"), Number("0")), Not(Ident("r2"))),
    )


def test_parse_is_total():
    assert parse_condition("") == Number("0")
    assert parse_condition("r0 ==") == Binary("==", Ident("r0"), Number("0"))
    assert parse_condition("(r0") == Ident("r0")


def test_builder_wraps_single_rule_in_group():
    builder, constants = make_builder()
    root = builder.build_root(parse_condition("r0 == 1"))
    assert isinstance(root, BranchGroup)
    assert root.operators == []
    rule = root.items[0]
    assert (rule.lhs_id, rule.op, rule.rhs_id) == ("local-r0", "==", "const-1")
    assert constants == {"1": "const-1"}


def test_builder_flattens_same_operator_chains():
    builder, _ = make_builder()
    root = builder.build_root(parse_condition("r0 == 1 && r1 == 2 && x == 3"))
    assert len(root.items) == 3
    assert root.operators == ["&&", "&&"]


def test_builder_pushes_negation_inwards():
    builder, _ = make_builder()
    root = builder.build_root(parse_condition("!(r0 == 1 && r1 < 2)"))
    assert root.operators == ["||"]
    assert [rule.op for rule in root.items] == ["!=", ">="]


def test_builder_bare_operand_compares_against_zero():
    builder, constants = make_builder()
    rule = builder.build_root(parse_condition("r0")).items[0]
    assert (rule.lhs_id, rule.op, rule.rhs_id) == ("local-r0", "!=", "const-0")
    negated = builder.build_root(parse_condition("!r0")).items[0]
    assert negated.op == "=="


def test_builder_unknown_identifier_has_no_operand():
    builder, _ = make_builder()
    rule = builder.build_root(parse_condition("nope == 1")).items[0]
    assert rule.lhs_id is None


def test_builder_ids_are_unique():
    builder, _ = make_builder()
    root = builder.build_root(parse_condition("r0 == 1 || r1 == 0"))
    ids = [root.id] + [item.id for item in root.items]
    assert len(set(ids)) == 3
    assert root.id.startswith("group-")
    assert all(item.id.startswith("rule-") for item in root.items)


def _memory():
    return [
        MemoryVariable(id="r0", name="r0", scope=MemoryScope.LOCALS, value="1"),
        MemoryVariable(id="one", name="1", scope=MemoryScope.CONSTANTS, value="1"),
        MemoryVariable(id="two", name="2", scope=MemoryScope.CONSTANTS, value="0x2"),
        MemoryVariable(id="x", name="x", scope=MemoryScope.SHARED, value="0"),
        MemoryVariable(id="p", name="p", scope=MemoryScope.SHARED, type=MemoryType.PTR, points_to_id="x"),
        MemoryVariable(id="q", name="q", scope=MemoryScope.SHARED, type=MemoryType.PTR, points_to_id="x"),
    ]


def test_evaluate_numeric_rules():
    memory = _memory()
    group = BranchGroup(id="g", items=[BranchRule(id="a", op="==", lhs_id="r0", rhs_id="one"),
                                       BranchRule(id="b", op="<", lhs_id="r0", rhs_id="two")])
    assert evaluate_branch_condition(group, memory) is True
    group.operators = ["&&"]
    group.items[1].op = ">"
    assert evaluate_branch_condition(group, memory) is False


def test_evaluate_forced_rules():
    memory = _memory()
    forced = BranchRule(id="a", op="==", lhs_id="r0", rhs_id="two", evaluation="true")
    assert evaluate_branch_condition(BranchGroup(id="g", items=[forced]), memory) is True
    forced.evaluation = "false"
    forced.rhs_id = "one"
    assert evaluate_branch_condition(BranchGroup(id="g", items=[forced]), memory) is False


def test_evaluate_pointers_by_target():
    memory = _memory()
    same = BranchRule(id="a", op="==", lhs_id="p", rhs_id="q")
    assert evaluate_branch_condition(BranchGroup(id="g", items=[same]), memory) is True
    ordered = BranchRule(id="b", op="<", lhs_id="p", rhs_id="q")
    assert evaluate_branch_condition(BranchGroup(id="g", items=[ordered]), memory) is False
    mixed = BranchRule(id="c", op="==", lhs_id="p", rhs_id="one")
    assert evaluate_branch_condition(BranchGroup(id="g", items=[mixed]), memory) is False


def test_evaluate_missing_operand_is_false():
    rule = BranchRule(id="a", op="==", lhs_id=None, rhs_id="one")
    assert evaluate_branch_condition(BranchGroup(id="g", items=[rule]), _memory()) is False
