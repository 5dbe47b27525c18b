"""
herd ``.litmus`` text -> trace graph.

Two thread syntaxes are understood: the pipe table of the assembly catalogues
(``P0 | P1 ;`` followed by rows of instructions) and C-style ``P0(...) { }``
bodies. Instructions are recognised by ordered lists of (pattern, builder)
pairs where the first match wins; an instruction nothing recognises is kept
as a FENCE carrying its raw text so the rest of the file still imports.
"""

import itertools
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedInput, VisitError

from .condition import ConditionBuilder, parse_condition
from .config import ModelConfig
from .errors import LitmusParseError
from .literals import normalize_literal, parse_int_literal
from .model import (
    MemoryScope,
    MemoryVariable,
    Operation,
    OperationType,
    RelationEdge,
    TraceGraph,
    TraceNode,
)
from .postcondition import read_postconditions

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_VALUE = "0"
NAME = r"[A-Za-z_][A-Za-z0-9_]*"
LOCATION = r"[A-Za-z_][A-Za-z0-9_.-]*"

HEADER = re.compile(r"^(\S+)\s+(.+)$")
POSTCONDITION_KEYWORD = re.compile(r"^(?:~\s*)?(?:exists|forall|filter)\b", re.I)
LOCATIONS_LINE = re.compile(r"^\s*locations\s*\[(.+)\]\s*;?\s*$", re.I)
THREAD_REGISTER = re.compile(rf"^(\d+)\s*:\s*({NAME})$")
INIT_THREAD_ASSIGN = re.compile(rf"^(\d+)\s*:\s*({LOCATION})\s*=\s*(.+)$")
INIT_ASSIGN = re.compile(rf"\[?\s*({LOCATION})\s*\]?\s*=\s*(.+)$")
SIGNATURE = re.compile(r"^P(\d+)\s*\(([^)]*)\)\s*(\{.*)?$")


# ---------- Text cleanup ----------

def strip_comments(text):
    # (* ... *) and /* ... */ may span lines; "(*" right after a token is a dereference
    text = re.sub(r"(?<=\s)\(\*.*?\*\)|^\(\*.*?\*\)", "", text, flags=re.DOTALL | re.MULTILINE)
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)
    text = re.sub(r"//[^\n]*", "", text)
    return text


def clean_lines(text):
    text = strip_comments(text.replace("\r\n", "\n").replace("\r", "\n"))
    return [line.replace("\t", "  ") for line in text.split("\n")]


def strip_trailing_semicolon(text):
    return re.sub(r";\s*$", "", text.strip()).strip()


def id_token(raw):
    return re.sub(r"[^a-z0-9_.-]+", "-", raw.strip().lower())


def _is_register(token):
    return re.fullmatch(NAME, token) is not None


# ---------- Parsed instructions ----------

@dataclass
class ParsedInstruction:
    operation: Operation
    locations: List[str] = field(default_factory=list)
    registers: List[str] = field(default_factory=list)
    result_register: Optional[str] = None
    value_register: Optional[str] = None
    expected: Optional[str] = None
    desired: Optional[str] = None
    condition: Optional[str] = None


def fence_instruction(text):
    return ParsedInstruction(Operation(OperationType.FENCE, text=text))


def load_instruction(location, dest, order, text=None):
    dest = (dest or "").strip() or None
    return ParsedInstruction(
        Operation(OperationType.LOAD, address=location, memory_order=order, text=text),
        locations=[location] if location else [],
        registers=[dest] if dest else [],
        result_register=dest,
    )


def store_instruction(location, rhs, order, text=None):
    rhs = rhs.strip()
    immediate = parse_int_literal(rhs)
    register = rhs if immediate is None and _is_register(rhs) else None
    value = immediate if immediate is not None else re.sub(r"^[$#]", "", rhs)
    return ParsedInstruction(
        Operation(OperationType.STORE, address=location, value=value, memory_order=order, text=text),
        locations=[location] if location else [],
        registers=[register] if register else [],
        value_register=register,
    )


def bracket_locations(text):
    out = []
    for inside in re.findall(r"\[([^\]]+)\]", text):
        match = re.search(LOCATION, inside)
        if match:
            out.append(match.group(0))
    return out


def _first_location(text):
    found = bracket_locations(f"[{text}]")
    return found[0] if found else None


# ---------- Pipe-table instructions ----------

def _ld_st_heuristic(match, text):
    locations = bracket_locations(text)
    opcode = text.split()[0].upper()
    first_operand = re.sub(r"\s+", "", text[len(opcode):].strip().split(",")[0])
    if opcode.startswith("LD"):
        return load_instruction(locations[0], first_operand, "Standard", text=text)
    parsed = ParsedInstruction(
        Operation(OperationType.STORE, address=locations[0], memory_order="Standard", text=text),
        locations=[locations[0]],
        registers=[first_operand] if first_operand else [],
        value_register=first_operand or None,
    )
    return parsed


PIPE_MATCHERS = [
    (re.compile(r"^(?:MFENCE|LFENCE|SFENCE|DMB|DSB|ISB|SYNC|FENCE|MEMBAR)\b", re.I),
     lambda m, text: fence_instruction(text)),
    # x86 MOV [x],$1
    (re.compile(r"^MOV\s+\[([^\]]+)\]\s*,\s*(.+)$", re.I),
     lambda m, text: store_instruction(_first_location(m.group(1)), m.group(2), "Standard")),
    # x86 MOV EAX,[y]
    (re.compile(rf"^MOV\s+({NAME})\s*,\s*\[([^\]]+)\]\s*$", re.I),
     lambda m, text: load_instruction(_first_location(m.group(2)), m.group(1), "Standard")),
    # W[x]=1
    (re.compile(rf"^(?:W|ST|STORE)\s*\[?({LOCATION})\]?\s*=\s*(.+)$", re.I),
     lambda m, text: store_instruction(m.group(1), m.group(2), "Standard")),
    # R[x]=r0
    (re.compile(rf"^(?:R|LD|LOAD)\s*\[?({LOCATION})\]?\s*=\s*({NAME})\s*$", re.I),
     lambda m, text: load_instruction(m.group(1), m.group(2), "Standard")),
    # r0=R[x]
    (re.compile(rf"^({NAME})\s*=\s*R\[\s*({LOCATION})\s*\]\s*$", re.I),
     lambda m, text: load_instruction(m.group(2), m.group(1), "Standard")),
    # LDR W0,[X1] / STR W0,[X1]
    (re.compile(r"^(?:LD|ST)\S*\s.*\[[^\]]*[A-Za-z_][^\]]*\]", re.I), _ld_st_heuristic),
]


def parse_instruction_cell(cell):
    text = strip_trailing_semicolon(cell)
    if not text:
        return fence_instruction(None)
    for pattern, build in PIPE_MATCHERS:
        match = pattern.match(text)
        if match:
            return build(match, text)
    logger.warning("Unrecognised instruction %r kept as raw text", text)
    return fence_instruction(text)


def split_pipe_row(line):
    return [cell.strip() for cell in strip_trailing_semicolon(line).split("|")]


def parse_thread_header_row(line):
    """``P0 | P1 ;`` -> [0, 1]; None when the line is not a table header."""
    trimmed = strip_trailing_semicolon(line)
    if re.search(r"[()]", trimmed) or not re.search(r"P\d+", trimmed, re.I):
        return None
    cells = split_pipe_row(trimmed) if "|" in trimmed else [trimmed.strip()]
    indexes = []
    for cell in cells:
        match = re.fullmatch(r"P(\d+)", cell)
        if not match:
            return None
        indexes.append(int(match.group(1)))
    return indexes or None


# ---------- C statements ----------

C11_ORDERS = {
    "memory_order_relaxed": "Relaxed",
    "memory_order_consume": "Acquire",
    "memory_order_acquire": "Acquire",
    "memory_order_release": "Release",
    "memory_order_acq_rel": "Acq_Rel",
    "memory_order_seq_cst": "SC",
}

# cmpxchg suffix -> (success order, failure order)
CMPXCHG_ORDERS = {
    "": ("SC", "SC"),
    "_relaxed": ("Relaxed", "Relaxed"),
    "_acquire": ("Acquire", "Acquire"),
    "_release": ("Release", "Relaxed"),
}

DROP = object()


def _c11_order(token):
    return C11_ORDERS.get((token or "").strip(), "SC")


def _cas_instruction(match, text):
    dest, suffix, location, expected, desired = match.groups()
    success, failure = CMPXCHG_ORDERS[suffix or ""]
    registers = [token for token in (dest, expected, desired)
                 if token and parse_int_literal(token) is None and _is_register(token)]
    return ParsedInstruction(
        Operation(OperationType.RMW, address=location, success_memory_order=success,
                  failure_memory_order=failure, text=text),
        locations=[location],
        registers=registers,
        result_register=dest,
        expected=expected.strip(),
        desired=desired.strip(),
    )


def _unsupported_cas(match, text):
    logger.warning("C11 compare-exchange %r is not modelled, kept as raw text", text)
    return fence_instruction(text)


def _return_instruction(match, text):
    return ParsedInstruction(Operation(OperationType.RETURN_TRUE, text=text))


C_MATCHERS = [
    (re.compile(rf"^({NAME})\s*=\s*smp_load_acquire\s*\(\s*&?\s*({LOCATION})\s*\)$"),
     lambda m, text: load_instruction(m.group(2), m.group(1), "Acquire")),
    (re.compile(rf"^({NAME})\s*=\s*READ_ONCE\s*\(\s*\*?\s*({LOCATION})\s*\)$"),
     lambda m, text: load_instruction(m.group(2), m.group(1), "Relaxed")),
    (re.compile(rf"^({NAME})\s*=\s*atomic_load(?:_explicit)?\s*\(\s*&?\s*({LOCATION})\s*(?:,\s*(\w+)\s*)?\)$"),
     lambda m, text: load_instruction(m.group(2), m.group(1), _c11_order(m.group(3)))),
    (re.compile(rf"^(?:({NAME})\s*=\s*)?cmpxchg(_relaxed|_acquire|_release)?\s*\(\s*&?\s*({LOCATION})"
                rf"\s*,\s*([^,]+?)\s*,\s*([^,]+?)\s*\)$"),
     _cas_instruction),
    (re.compile(rf"^WRITE_ONCE\s*\(\s*\*?\s*({LOCATION})\s*,\s*(.+)\)$"),
     lambda m, text: store_instruction(m.group(1), m.group(2), "Relaxed")),
    (re.compile(rf"^smp_store_release\s*\(\s*&?\s*({LOCATION})\s*,\s*(.+)\)$"),
     lambda m, text: store_instruction(m.group(1), m.group(2), "Release")),
    (re.compile(rf"^atomic_store(?:_explicit)?\s*\(\s*&?\s*({LOCATION})\s*,\s*(.+?)\s*(?:,\s*(memory_order_\w+)\s*)?\)$"),
     lambda m, text: store_instruction(m.group(1), m.group(2), _c11_order(m.group(3)))),
    (re.compile(r"^smp_(?:mb|rmb|wmb)\s*\(\s*\)$"),
     lambda m, text: fence_instruction(text)),
    (re.compile(r"^atomic_thread_fence\s*\(\s*memory_order_\w+\s*\)$"),
     lambda m, text: fence_instruction(text)),
    # plain accesses: *x = 1; r0 = *x;
    (re.compile(rf"^\*\s*({LOCATION})\s*=\s*(.+)$"),
     lambda m, text: store_instruction(m.group(1), m.group(2), "Standard")),
    (re.compile(rf"^({NAME})\s*=\s*\*\s*({LOCATION})$"),
     lambda m, text: load_instruction(m.group(2), m.group(1), "Standard")),
    (re.compile(r"^return\b.*$"), _return_instruction),
    (re.compile(rf"^(?:{NAME}\s*=\s*)?atomic_compare_exchange_\w+\s*\(.*\)$"), _unsupported_cas),
    # local computation, not a memory operation
    (re.compile(rf"^{NAME}\s*=\s*.+$"), lambda m, text: DROP),
]

DECLARATION = re.compile(
    r"^(?:(?:const|volatile|unsigned|signed|long|short)\s+)*(?:int|long|short|char|unsigned|signed)\s+(.+)$")
DECLARATOR = re.compile(rf"^({NAME})\s*(?:=\s*(.+))?$")


def parse_c_statement(text):
    """One C statement (no trailing ``;``) -> ParsedInstruction, or DROP."""
    text = text.strip()
    for pattern, build in C_MATCHERS:
        match = pattern.match(text)
        if match:
            return build(match, text)
    logger.warning("Unrecognised statement %r kept as raw text", text)
    return fence_instruction(text)


# ---------- C statement tree ----------

# Statements stay opaque text up to their ';' and go through C_MATCHERS
# afterwards, so anything unrecognised still imports as a raw FENCE.
THREAD_BODY_GRAMMAR = r"""
start: item* STMT?

?item: block
     | if_stmt
     | STMT ";"  -> statement
     | ";"       -> empty

block: "{" item* STMT? "}"
if_stmt: _IF "(" COND ")" item (_ELSE item)?

_IF.2: /if\b/
_ELSE.2: /else\b/
STMT: /(?!(?:if|else)\b)[^;{}\s][^;{}]*/
COND: /(?:[^()\s]|\((?:[^()]|\([^()]*\))*\))(?:[^()]|\((?:[^()]|\([^()]*\))*\))*/

%import common.WS
%ignore WS
"""

_body_parser = Lark(THREAD_BODY_GRAMMAR, parser="lalr", lexer="contextual")


@dataclass
class IfStatement:
    condition: str
    then_body: list
    else_body: Optional[list] = None


def _squash(text):
    return " ".join(str(text).split())


def _as_body(item):
    if item is None:
        return []
    return item if isinstance(item, list) else [item]


class ThreadBodyTransformer(Transformer):
    """Parse tree -> list of statement strings and IfStatements."""

    def __init__(self, label):
        super().__init__()
        self.label = label

    def _items(self, items):
        out = []
        for item in items:
            if isinstance(item, Token):
                item = _squash(item)
            if isinstance(item, list):
                # a bare { } block inside straight-line code
                out.extend(item)
            elif item:
                out.append(item)
        return out

    def start(self, items):
        return self._items(items)

    def block(self, items):
        return self._items(items)

    def statement(self, items):
        return _squash(items[0])

    def empty(self, items):
        return None

    def if_stmt(self, items):
        if isinstance(items[1], IfStatement):
            raise LitmusParseError(
                f"Thread {self.label}: nested 'if' without braces is not supported; "
                "wrap the inner 'if' in braces.")
        else_body = _as_body(items[2]) if len(items) > 2 else None
        return IfStatement(_squash(items[0]), _as_body(items[1]), else_body)


def build_c_tree(body, label):
    try:
        tree = _body_parser.parse(body)
    except UnexpectedInput as exc:
        line = getattr(exc, "line", None)
        where = f" at body line {line}, column {exc.column}" if isinstance(line, int) and line > 0 else ""
        raise LitmusParseError(f"Thread {label} has malformed code{where}.") from None
    try:
        return ThreadBodyTransformer(label).transform(tree)
    except VisitError as exc:
        raise exc.orig_exc from None


# ---------- Threads ----------

@dataclass
class ThreadCode:
    index: int
    label: str
    # (sequence index, instruction, (branch sequence index, path) or None)
    entries: List[Tuple[int, ParsedInstruction, Optional[Tuple[int, str]]]] = field(default_factory=list)
    # (source sequence index, target sequence index, source handle)
    po: List[Tuple[int, int, Optional[str]]] = field(default_factory=list)
    local_inits: Dict[str, str] = field(default_factory=dict)
    declared: List[str] = field(default_factory=list)

    @property
    def thread_id(self):
        return f"T{self.index}"


class _CThreadBuilder:
    """Linearises a statement tree into sequence-numbered entries and po edges."""

    def __init__(self, code):
        self.code = code
        self.seq = itertools.count(1)

    def add(self, parsed, preds, context):
        seq = next(self.seq)
        self.code.entries.append((seq, parsed, context))
        for source, handle in preds:
            self.code.po.append((source, seq, handle))
        return seq

    def declaration(self, text):
        match = DECLARATION.match(text)
        if not match:
            return None
        declarators = [part.strip() for part in match.group(1).split(",")] if "(" not in match.group(1) \
            else [match.group(1).strip()]
        loads = []
        for declarator in declarators:
            m = DECLARATOR.match(declarator.lstrip("*").strip())
            if not m:
                return None
            name, init = m.group(1), (m.group(2) or "").strip()
            self.code.declared.append(name)
            if not init:
                continue
            if parse_int_literal(init) is not None:
                self.code.local_inits[name] = init
                continue
            parsed = parse_c_statement(f"{name} = {init}")
            if parsed is not DROP:
                loads.append(parsed)
        return loads

    def statements(self, block, preds, context):
        for item in block:
            if isinstance(item, IfStatement):
                preds = self.if_statement(item, preds, context)
                continue
            declared = self.declaration(item)
            parsed = declared if declared is not None else [parse_c_statement(item)]
            for instruction in parsed:
                if instruction is DROP:
                    continue
                seq = self.add(instruction, preds, context)
                # nothing falls through a return
                preds = [] if instruction.operation.type.is_terminator else [(seq, None)]
        return preds

    def if_statement(self, stmt, preds, context):
        branch = ParsedInstruction(
            Operation(OperationType.BRANCH, text=f"if ({stmt.condition})"),
            condition=stmt.condition,
        )
        seq = self.add(branch, preds, context)
        then_preds = self.statements(stmt.then_body, [(seq, "then")], (seq, "then"))
        if stmt.else_body is None:
            if then_preds == [(seq, "then")]:
                return then_preds
            return then_preds + [(seq, "else")]
        else_preds = self.statements(stmt.else_body, [(seq, "else")], (seq, "else"))
        return then_preds + else_preds


def extract_block(text, start, label):
    """``(inner text, index of the closing brace)`` for the block opening at ``start``."""
    depth = 0
    for pos in range(start, len(text)):
        ch = text[pos]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start + 1:pos], pos
    raise LitmusParseError(f"{label} is missing a closing '}}'.")


def parse_c_threads(lines, start):
    """C-style thread bodies found from line ``start``; returns (threads, shared names, end line)."""
    threads = []
    shared = []
    end_line = start
    i = start
    while i < len(lines):
        match = SIGNATURE.match(lines[i].strip())
        if not match:
            i += 1
            continue
        index = int(match.group(1))
        signature = lines[i].strip()
        label = signature[:signature.index(")") + 1]
        for arg in (a.strip() for a in match.group(2).split(",")):
            name = re.search(rf"({LOCATION})\s*$", arg) if arg else None
            if name:
                shared.append(name.group(1))

        rest = "\n".join(lines[i:])
        open_pos = rest.find("{", len(label))
        if open_pos == -1:
            raise LitmusParseError(f"Thread {label} is missing an opening '{{'.")
        body, close_pos = extract_block(rest, open_pos, f"Thread {label}")

        code = ThreadCode(index=index, label=label)
        _CThreadBuilder(code).statements(build_c_tree(body, label), [], None)
        threads.append(code)

        end_line = i + rest.count("\n", 0, close_pos)
        i = end_line + 1
    return threads, shared, end_line


def parse_pipe_threads(lines, header_index, columns):
    threads = [ThreadCode(index=col, label=f"P{col}") for col in columns]
    end = len(lines)
    for i in range(header_index + 1, len(lines)):
        trimmed = lines[i].strip()
        if not trimmed:
            continue
        if POSTCONDITION_KEYWORD.match(trimmed):
            end = i
            break
        if LOCATIONS_LINE.match(trimmed):
            continue
        cells = split_pipe_row(trimmed) if "|" in trimmed else [strip_trailing_semicolon(trimmed)]
        for code, cell in zip(threads, cells):
            if not cell.strip():
                continue
            seq = len(code.entries) + 1
            if code.entries:
                code.po.append((code.entries[-1][0], seq, None))
            code.entries.append((seq, parse_instruction_cell(cell), None))
    return threads, end


# ---------- Reader ----------

class _LitmusReader:
    def __init__(self, text, fallback_title=None, model=None):
        self.lines = clean_lines(text or "")
        self.fallback_title = fallback_title
        self.model = model if model is not None else ModelConfig()
        self.shared_init = {}
        self.local_init = {}
        self.shared = set()
        self.registers = {}

    # header / init

    def header(self):
        for i, line in enumerate(self.lines):
            if line.strip():
                match = HEADER.match(line.strip())
                if not match:
                    raise LitmusParseError("Missing litmus header line (expected '<ARCH> <NAME>').")
                return i, match.group(1), match.group(2).strip()
        raise LitmusParseError("Missing litmus header line (expected '<ARCH> <NAME>').")

    def init_block(self, header_index):
        for i in range(header_index + 1, len(self.lines)):
            trimmed = self.lines[i].strip()
            if trimmed.startswith("{"):
                break
            if SIGNATURE.match(trimmed) or parse_thread_header_row(trimmed):
                raise LitmusParseError("Missing initial state block '{ ... }'.")
        else:
            raise LitmusParseError("Missing initial state block '{ ... }'.")
        rest = "\n".join(self.lines[i:])
        try:
            content, close_pos = extract_block(rest, rest.index("{"), "Initial state block")
        except LitmusParseError:
            raise LitmusParseError("Unbalanced braces in the initial state block.") from None
        self.read_init(content)
        return i + rest.count("\n", 0, close_pos)

    def read_init(self, content):
        for statement in re.split(r"[\n;]", content):
            statement = statement.strip()
            if not statement:
                continue
            match = INIT_THREAD_ASSIGN.match(statement)
            if match:
                tid, name, value = int(match.group(1)), match.group(2), match.group(3).strip()
                self.local_init.setdefault(tid, {})[name] = value
                self.add_register(tid, name)
                continue
            match = INIT_ASSIGN.search(statement)
            if match:
                self.shared_init[match.group(1)] = match.group(2).strip()
                self.shared.add(match.group(1))

    def add_register(self, thread_index, name):
        self.registers.setdefault(thread_index, set()).add(name)

    def read_locations(self, start):
        for line in self.lines[start:]:
            match = LOCATIONS_LINE.match(line.strip())
            if not match:
                continue
            for item in re.split(r"[;,]", match.group(1)):
                item = item.strip()
                if not item:
                    continue
                reg = THREAD_REGISTER.match(item)
                if reg:
                    self.add_register(int(reg.group(1)), reg.group(2))
                elif re.fullmatch(LOCATION, item):
                    self.shared.add(item)

    # threads

    def find_table_header(self, start):
        for i in range(start, len(self.lines)):
            trimmed = self.lines[i].strip()
            if SIGNATURE.match(trimmed):
                return None, None
            columns = parse_thread_header_row(trimmed)
            if columns:
                return i, columns
        return None, None

    def postcondition_text(self, start):
        for i in range(start, len(self.lines)):
            if POSTCONDITION_KEYWORD.match(self.lines[i].strip()):
                return "\n".join(self.lines[i:])
        return ""

    def read(self):
        header_index, _, name = self.header()
        init_end = self.init_block(header_index)
        self.read_locations(init_end + 1)

        table_index, columns = self.find_table_header(init_end + 1)
        if table_index is not None:
            logger.debug("Pipe-table dialect with %d thread columns", len(columns))
            threads, post_start = parse_pipe_threads(self.lines, table_index, columns)
        else:
            threads, params, last_line = parse_c_threads(self.lines, init_end + 1)
            logger.debug("C-style dialect with %d threads", len(threads))
            self.shared.update(params)
            post_start = last_line + 1
        if not threads:
            raise LitmusParseError("Failed to locate threads (pipe table or C thread blocks).")

        for code in threads:
            for register in code.declared:
                self.add_register(code.index, register)
            for _, parsed, _ in code.entries:
                self.shared.update(parsed.locations)
                for register in parsed.registers:
                    self.add_register(code.index, register)

        post_text = self.postcondition_text(post_start)
        clauses, post_registers = read_postconditions(post_text)
        for tid, register in post_registers:
            self.add_register(tid, register)

        title = (self.fallback_title or "").strip() or name
        graph = _GraphBuilder(self, threads).build(title)
        rendered = "\n".join(clause.render() for clause in clauses)
        # unparsed clauses are kept verbatim
        graph.postcondition = rendered or post_text.strip() or None
        return graph


# ---------- Materialisation ----------

class _GraphBuilder:
    def __init__(self, reader, threads):
        self.reader = reader
        self.threads = threads
        self.used_ids = set()
        self.memory = []
        self.shared_ids = {}
        self.local_ids = {}
        self.constant_ids = {}
        self.pending_constants = []
        self.condition_ids = itertools.count(1)

    def unique_id(self, base):
        candidate = base
        suffix = 2
        while candidate in self.used_ids:
            candidate = f"{base}-{suffix}"
            suffix += 1
        self.used_ids.add(candidate)
        return candidate

    def build_memory(self):
        self.memory.append(MemoryVariable(
            id=self.unique_id("const-null"), name="NULL", scope=MemoryScope.CONSTANTS, value="0"))
        for location in sorted(self.reader.shared):
            var_id = self.unique_id(f"mem-{id_token(location)}")
            self.shared_ids[location] = var_id
            self.memory.append(MemoryVariable(
                id=var_id, name=location, scope=MemoryScope.SHARED,
                value=self.reader.shared_init.get(location, DEFAULT_MEMORY_VALUE)))
        for code in self.threads:
            init = self.reader.local_init.get(code.index, {})
            for register in sorted(self.reader.registers.get(code.index, ())):
                var_id = self.unique_id(f"local-{code.thread_id.lower()}-{id_token(register)}")
                self.local_ids[(code.index, register)] = var_id
                self.memory.append(MemoryVariable(
                    id=var_id, name=register, scope=MemoryScope.LOCALS,
                    value=init.get(register, code.local_inits.get(register, ""))))

    def ensure_constant(self, literal):
        text = (literal or "").strip()
        key = normalize_literal(text)
        if not key:
            return "const-null"
        if key in self.constant_ids:
            return self.constant_ids[key]
        var_id = self.unique_id(f"const-int-{id_token(key)}")
        self.constant_ids[key] = var_id
        self.pending_constants.append(MemoryVariable(
            id=var_id, name=text, scope=MemoryScope.CONSTANTS, value=text))
        return var_id

    def operand_id(self, thread_index, token):
        token = (token or "").strip()
        if not token:
            return None
        if parse_int_literal(token) is not None:
            return self.ensure_constant(re.sub(r"^[$#]", "", token))
        return self.local_ids.get((thread_index, token)) or self.shared_ids.get(token)

    def build_operation(self, code, parsed):
        op = parsed.operation
        index = code.index
        if op.address and op.address in self.shared_ids:
            op.address_id = self.shared_ids[op.address]
        if op.type in (OperationType.LOAD, OperationType.RMW) and parsed.result_register:
            op.result_id = self.local_ids.get((index, parsed.result_register))
        if op.type == OperationType.STORE and parsed.value_register:
            local = self.local_ids.get((index, parsed.value_register))
            if local:
                op.value_id = local
                op.value = None
        if op.type == OperationType.RMW:
            op.expected_value_id = self.operand_id(index, parsed.expected)
            op.desired_value_id = self.operand_id(index, parsed.desired)
        if op.type == OperationType.BRANCH:
            builder = ConditionBuilder(
                lambda name: self.local_ids.get((index, name)) or self.shared_ids.get(name),
                self.ensure_constant,
                self.condition_ids,
            )
            op.branch_condition = builder.build_root(parse_condition(parsed.condition))
            op.branch_show_both_futures = True
        return op

    def build(self, title):
        self.build_memory()
        nodes = []
        edges = []
        edge_ids = itertools.count(0)
        for code in self.threads:
            tid = code.thread_id
            node_ids = {}
            for seq, parsed, context in code.entries:
                node_id = f"node-{tid.lower()}-op{seq}"
                node_ids[seq] = node_id
                branch_id = f"node-{tid.lower()}-op{context[0]}" if context else None
                nodes.append(TraceNode(
                    id=node_id,
                    thread_id=tid,
                    sequence_index=seq,
                    operation=self.build_operation(code, parsed),
                    branch_id=branch_id,
                    branch_path=context[1] if context else None,
                ))
            for source, target, handle in code.po:
                edges.append(RelationEdge(
                    id=f"edge-po-{next(edge_ids)}",
                    source=node_ids[source],
                    target=node_ids[target],
                    relation_type="po",
                    source_handle=handle,
                ))
        logger.debug("Imported %d nodes and %d po edges", len(nodes), len(edges))
        return TraceGraph(
            title=title,
            memory=self.memory + self.pending_constants,
            nodes=nodes,
            edges=edges,
            threads=[code.thread_id for code in self.threads],
            thread_labels={code.thread_id: code.label for code in self.threads},
            model=self.reader.model,
        )


def parse_litmus_text(text, fallback_title=None, model=None):
    """Parse a herd ``.litmus`` file into a TraceGraph.

    Raises ``LitmusParseError`` when no graph can be built (missing header,
    unbalanced braces, no threads). Unknown instructions never fail.
    """
    return _LitmusReader(text, fallback_title, model).read()
