"""
Branch conditions: ``if (...)`` text -> expression AST -> BranchCondition tree,
plus evaluation of a condition tree against a memory environment.

Parsing is total: malformed or partial conditions still produce a tree
(missing operands become the literal ``0``).
"""

import itertools

from lark import Lark

from .literals import parse_int_literal
from .memory import resolve_pointer_target
from .model import BranchGroup, BranchRule, MemoryType

# ---------- Tokenizer ----------

# JUNK catches anything the other terminals do not; those tokens are dropped.
CONDITION_TOKENS = r"""
start: _token*
_token: IDENT | NUMBER | OP | LPAR | RPAR | JUNK

IDENT.2: /[A-Za-z_][A-Za-z0-9_]*/
NUMBER.2: /-?(?:0[xX][0-9a-fA-F]+|[0-9]+)/
OP.2: /&&|\|\||==|!=|<=|>=|<|>|!/
LPAR.2: "("
RPAR.2: ")"
JUNK: /./

%ignore /\s+/
"""

_lexer = Lark(CONDITION_TOKENS, parser="lalr", lexer="basic")

COMPARISONS = ("==", "!=", "<", "<=", ">", ">=")


def tokenize_condition(text):
    return [(tok.type, str(tok)) for tok in _lexer.lex(text or "") if tok.type != "JUNK"]


# ---------- AST ----------

class Ident:
    def __init__(self, name): self.name = name
    def __repr__(self): return f"Ident({self.name!r})"
    def __eq__(self, other): return isinstance(other, Ident) and other.name == self.name

class Number:
    def __init__(self, value): self.value = value
    def __repr__(self): return f"Number({self.value!r})"
    def __eq__(self, other): return isinstance(other, Number) and other.value == self.value

class Not:
    def __init__(self, expr): self.expr = expr
    def __repr__(self): return f"Not({self.expr!r})"
    def __eq__(self, other): return isinstance(other, Not) and other.expr == self.expr

class Binary:
    def __init__(self, op, left, right): self.op, self.left, self.right = op, left, right
    def __repr__(self): return f"Binary({self.op!r}, {self.left!r}, {self.right!r})"
    def __eq__(self, other):
        return (isinstance(other, Binary) and other.op == self.op
                and other.left == self.left and other.right == self.right)


ZERO = "0"


class _ConditionParser:
    """Recursive descent: ``||`` < ``&&`` < comparison < ``!`` / primary."""

    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def consume(self):
        tok = self.peek()
        self.pos += 1
        return tok

    def parse(self):
        # trailing tokens are ignored
        return self.parse_or()

    def parse_or(self):
        node = self.parse_and()
        while self.peek() == ("OP", "||"):
            self.consume()
            node = Binary("||", node, self.parse_and())
        return node

    def parse_and(self):
        node = self.parse_comparison()
        while self.peek() == ("OP", "&&"):
            self.consume()
            node = Binary("&&", node, self.parse_comparison())
        return node

    def parse_comparison(self):
        left = self.parse_primary()
        tok = self.peek()
        if tok is not None and tok[0] == "OP" and tok[1] in COMPARISONS:
            self.consume()
            return Binary(tok[1], left, self.parse_primary())
        return left

    def parse_primary(self):
        tok = self.peek()
        if tok is None:
            return Number(ZERO)
        kind, value = tok
        self.consume()
        if kind == "OP" and value == "!":
            return Not(self.parse_primary())
        if kind == "LPAR":
            expr = self.parse_or()
            if self.peek() == ("RPAR", ")"):
                self.consume()
            return expr
        if kind == "IDENT":
            return Ident(value)
        if kind == "NUMBER":
            return Number(value)
        return Number(ZERO)


def parse_condition(text):
    return _ConditionParser(tokenize_condition(text)).parse()


# ---------- Condition builder ----------

NEGATED = {"==": "!=", "!=": "==", "<": ">=", ">=": "<", ">": "<=", "<=": ">"}


class ConditionBuilder:
    """Turns a condition AST into BranchRule/BranchGroup nodes.

    ``resolve_name(name)`` maps an identifier to a memory id (or None).
    ``ensure_constant(literal)`` returns the id of a constant int holding
    ``literal``, creating it if needed.
    """

    def __init__(self, resolve_name, ensure_constant, id_counter=None):
        self.resolve_name = resolve_name
        self.ensure_constant = ensure_constant
        self.ids = id_counter if id_counter is not None else itertools.count(1)

    def _id(self, prefix):
        return f"{prefix}-{next(self.ids)}"

    def rule(self, lhs, op, rhs):
        return BranchRule(id=self._id("rule"), op=op, lhs_id=lhs, rhs_id=rhs)

    def group(self, items, op):
        return BranchGroup(id=self._id("group"), items=items, operators=[op] * max(0, len(items) - 1))

    def operand(self, node):
        if isinstance(node, Ident):
            return self.resolve_name(node.name)
        if isinstance(node, Number):
            return self.ensure_constant(node.value)
        return None

    def build(self, ast, negate=False):
        if isinstance(ast, Binary) and ast.op in ("&&", "||"):
            parts = _flatten(ast, ast.op)
            op = ast.op
            if negate:
                op = "||" if op == "&&" else "&&"
            return self.group([self.build(part, negate) for part in parts], op)

        if isinstance(ast, Binary):
            op = NEGATED[ast.op] if negate else ast.op
            return self.rule(self.operand(ast.left), op, self.operand(ast.right))

        if isinstance(ast, Not):
            return self.build(ast.expr, not negate)

        # bare identifier or literal: C truthiness
        return self.rule(self.operand(ast), "==" if negate else "!=", self.ensure_constant(ZERO))

    def build_root(self, ast):
        condition = self.build(ast)
        if isinstance(condition, BranchGroup):
            return condition
        return BranchGroup(id=self._id("group"), items=[condition], operators=[])


def _flatten(node, op):
    if isinstance(node, Binary) and node.op == op:
        return _flatten(node.left, op) + _flatten(node.right, op)
    return [node]


# ---------- Evaluation ----------

def _comparable(variable, memory_by_id):
    if variable is None:
        return None
    if variable.type == MemoryType.INT:
        return parse_int_literal(variable.value)
    if variable.type == MemoryType.ARRAY:
        return variable.size
    if variable.type == MemoryType.PTR:
        resolved = resolve_pointer_target(variable.id, memory_by_id).resolved
        return resolved.id if resolved else None
    return None


def _evaluate_rule(rule, memory_by_id):
    if rule.evaluation == "true":
        return True
    if rule.evaluation == "false":
        return False
    lhs = _comparable(memory_by_id.get(rule.lhs_id), memory_by_id)
    rhs = _comparable(memory_by_id.get(rule.rhs_id), memory_by_id)
    if isinstance(lhs, str) or isinstance(rhs, str):
        # pointer values only compare for (in)equality
        if not (isinstance(lhs, str) and isinstance(rhs, str)):
            return False
        if rule.op == "==":
            return lhs == rhs
        if rule.op == "!=":
            return lhs != rhs
        return False
    if lhs is None or rhs is None:
        return False
    return {
        "==": lhs == rhs,
        "!=": lhs != rhs,
        "<": lhs < rhs,
        "<=": lhs <= rhs,
        ">": lhs > rhs,
        ">=": lhs >= rhs,
    }.get(rule.op, False)


def _evaluate(condition, memory_by_id):
    if isinstance(condition, BranchRule):
        return _evaluate_rule(condition, memory_by_id)
    if not condition.items:
        return False
    result = _evaluate(condition.items[0], memory_by_id)
    for op, item in zip(condition.operators, condition.items[1:]):
        nxt = _evaluate(item, memory_by_id)
        result = (result and nxt) if op == "&&" else (result or nxt)
    return result


def evaluate_branch_condition(condition, memory):
    return _evaluate(condition, {item.id: item for item in memory})
