import logging
import re

from lark import Lark, Transformer
from lark.exceptions import LarkError

logger = logging.getLogger(__name__)

# ---------- Grammar ----------
POSTCONDITION_GRAMMAR = r"""
start: QUANTIFIER expr ";"?

QUANTIFIER: /~\s*exists|exists|forall|filter/

?expr: or_expr
?or_expr: and_expr ("\\/" and_expr)*
?and_expr: not_expr ("/\\" not_expr)*
?not_expr: "~" not_expr -> not_expr | atom
?atom: comparison | "(" expr ")" | "true" -> true | "false" -> false
comparison: thread_reg_eq | var_eq
thread_reg_eq: INT ":" NAME "=" value
var_eq: NAME "=" value
?value: SIGNED | NAME

INT: /[0-9]+/
SIGNED: /-?(?:0[xX][0-9a-fA-F]+|[0-9]+)/
NAME: /[A-Za-z_][A-Za-z0-9_.]*/

%ignore /\s+/
"""

# ---------- AST ----------

class Postcondition:
    def __init__(self, quantifier, expr, negated=False):
        self.quantifier, self.expr, self.negated = quantifier, expr, negated

    def registers(self):
        out = []
        _collect_registers(self.expr, out)
        return out

    def render(self):
        head = ("~" if self.negated else "") + self.quantifier
        return f"{head} ({render_expr(self.expr)})"

class And:
    def __init__(self, children): self.children = children
class Or:
    def __init__(self, children): self.children = children
class Not:
    def __init__(self, child): self.child = child
class Const:
    def __init__(self, value): self.value = value
class ThreadRegEq:
    def __init__(self, tid, reg, val): self.tid, self.reg, self.val = tid, reg, val
class VarEq:
    def __init__(self, var, val): self.var, self.val = var, val

# ---------- Transformer ----------

class PostconditionTransformer(Transformer):
    def start(self, items):
        quantifier = str(items[0])
        return Postcondition(quantifier.lstrip("~").strip(), items[1], quantifier.startswith("~"))
    def comparison(self, items): return items[0]
    def and_expr(self, items): return And(items)
    def or_expr(self, items): return Or(items)
    def not_expr(self, items): return Not(items[0])
    def true(self, items): return Const(True)
    def false(self, items): return Const(False)
    def thread_reg_eq(self, items): return ThreadRegEq(int(items[0]), str(items[1]), str(items[2]))
    def var_eq(self, items): return VarEq(str(items[0]), str(items[1]))


_parser = Lark(POSTCONDITION_GRAMMAR, parser="lalr", lexer="contextual",
               transformer=PostconditionTransformer())


def render_expr(expr):
    if isinstance(expr, Or):
        return r' \/ '.join(_render_operand(e) for e in expr.children)
    elif isinstance(expr, And):
        return r' /\ '.join(_render_operand(e) for e in expr.children)
    elif isinstance(expr, Not):
        return f'~{_render_operand(expr.child)}'
    elif isinstance(expr, ThreadRegEq):
        return f'{expr.tid}:{expr.reg}={expr.val}'
    elif isinstance(expr, VarEq):
        return f'{expr.var}={expr.val}'
    elif isinstance(expr, Const):
        return 'true' if expr.value else 'false'
    else:
        raise ValueError(f"Unknown expression type: {type(expr)}")


def _render_operand(expr):
    text = render_expr(expr)
    return f'({text})' if isinstance(expr, (And, Or)) else text


def _collect_registers(expr, out):
    if isinstance(expr, (And, Or)):
        for child in expr.children:
            _collect_registers(child, out)
    elif isinstance(expr, Not):
        _collect_registers(expr.child, out)
    elif isinstance(expr, ThreadRegEq):
        out.append((expr.tid, expr.reg))


# ---------- Entry points ----------

CLAUSE_START = re.compile(r"(?<![~\w])(?<!~ )(?=(?:~\s*)?(?:exists|forall|filter)\b)")
THREAD_REG = re.compile(r"(\d+)\s*:\s*([A-Za-z_][A-Za-z0-9_]*)")


def split_clauses(text):
    return [chunk.strip() for chunk in CLAUSE_START.split(text) if chunk.strip()]


def parse_postcondition(text):
    """Parse one ``exists``/``forall``/``filter`` clause; raises on bad syntax."""
    return _parser.parse(text.strip())


def scan_registers(text):
    return [(int(tid), reg) for tid, reg in THREAD_REG.findall(text)]


def read_postconditions(text):
    """Best-effort reading of the postcondition section of a litmus file.

    Returns the parsed clauses and every ``thread:register`` reference found.
    Clauses the grammar rejects are still scanned for register references.
    """
    clauses = []
    registers = []
    for chunk in split_clauses(text):
        try:
            clause = parse_postcondition(chunk)
        except LarkError as exc:
            logger.warning("Could not parse postcondition %r: %s", chunk, str(exc).splitlines()[0])
            registers.extend(scan_registers(chunk))
            continue
        clauses.append(clause)
        registers.extend(clause.registers())
    return clauses, registers
