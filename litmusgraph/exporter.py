"""
Trace graph -> herd ``.litmus`` text.

Each thread is walked along its ``po`` edges from its single entry node.
BRANCH nodes are turned back into ``if``/``else`` blocks by looking for the
node where both futures meet again; everything else becomes one statement
(or a short fixed sequence for CAS). Anything that cannot be written down
exactly raises ``LitmusExportError`` naming the node as ``T<n>-S<m>``.
"""

import logging
import re
from collections import deque

from jinja2 import Template

from .config import Dialect
from .errors import LitmusExportError
from .inference import PostconditionInference
from .literals import INT_LITERAL
from .locations import LocationTable, node_ref, resolve_location, to_c_identifier
from .memory import format_memory_label
from .model import BranchRule, MemoryScope, MemoryType, OperationType
from .visibility import get_visible_nodes

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "litmusgraph"
NOTE_AMBIGUOUS = ("litmusgraph: exported multiple branch futures; "
                  "edit the exists clause to match your intended outcome.")
NOTE_UNINFERRED = ("litmusgraph: could not infer a register postcondition; "
                   "edit the exists clause as needed.")
END = "__end__"
INDENT = "  "

LITMUS_TEMPLATE = Template("""\
C {{ title }}

{% if note %}
(*
 * {{ note }}
 *)

{% endif %}
{{ init }}
{% for thread in threads %}

{{ thread.signature }} {
{% for line in thread.lines %}
{{ line }}
{% endfor %}
}
{% endfor %}

exists ({{ condition }})
""", trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)

SMP_FENCE = re.compile(r"^smp_(mb|rmb|wmb)\s*\(\s*\)\s*;?$")
C11_FENCE = re.compile(r"^atomic_thread_fence\s*\(\s*memory_order_\w+\s*\)\s*;?$")


def normalize_memory_order(raw):
    return (raw or "Standard").strip()


def to_c11_memory_order(raw, kind):
    """Map an order label to a ``memory_order_*`` token for ``kind``.

    ``kind`` is one of load, store, rmw_success, rmw_failure, fence. Orders C11
    forbids in a position are weakened to relaxed.
    """
    order = normalize_memory_order(raw)
    if order == "SC":
        return "memory_order_seq_cst"
    if order == "Acquire":
        return "memory_order_relaxed" if kind == "store" else "memory_order_acquire"
    if order == "Release":
        return "memory_order_relaxed" if kind == "load" else "memory_order_release"
    if order == "Acq_Rel":
        return {
            "load": "memory_order_acquire",
            "store": "memory_order_release",
            "rmw_failure": "memory_order_relaxed",
        }.get(kind, "memory_order_acq_rel")
    return "memory_order_relaxed"


# ---------- Dialect statements ----------

class MacroStatements:
    """Linux-kernel style: READ_ONCE / WRITE_ONCE / smp_* helpers."""

    dialect = Dialect.MACRO
    cas_note = "/* NOTE: CAS is exported as load + conditional store (not atomic). */"

    def signature_param(self, name):
        return f"volatile int *{name}"

    def value_expr(self, location):
        return f"READ_ONCE(*{location})"

    def load_expr(self, location, order):
        if normalize_memory_order(order) in ("Acquire", "Acq_Rel"):
            return f"smp_load_acquire({location})"
        return f"READ_ONCE(*{location})"

    def load(self, dest, location, order):
        return f"{dest} = {self.load_expr(location, order)};"

    def store(self, location, value, order):
        if normalize_memory_order(order) in ("Release", "Acq_Rel"):
            return f"smp_store_release({location}, {value});"
        return f"WRITE_ONCE(*{location}, {value});"

    def fence(self, text):
        if SMP_FENCE.match(text):
            return text if text.endswith(";") else f"{text};"
        return "smp_mb();"

    def init_block(self, entries):
        lines = [f"{name}={value};" for name, value in entries if value != "0"]
        if not lines:
            return "{}"
        return "\n".join(["{"] + [INDENT + line for line in lines] + ["}"])


class AtomicStatements:
    """C11 style: atomic_*_explicit with memory_order_* arguments."""

    dialect = Dialect.EXPLICIT_ATOMICS
    cas_note = "/* NOTE: CAS is modelled as returning the old value (cmpxchg-style). */"

    def signature_param(self, name):
        return f"atomic_int *{name}"

    def value_expr(self, location):
        return f"atomic_load_explicit({location}, memory_order_relaxed)"

    def load(self, dest, location, order):
        return f"{dest} = atomic_load_explicit({location}, {to_c11_memory_order(order, 'load')});"

    def store(self, location, value, order):
        return f"atomic_store_explicit({location}, {value}, {to_c11_memory_order(order, 'store')});"

    def fence(self, text):
        if C11_FENCE.match(text):
            return text if text.endswith(";") else f"{text};"
        return "atomic_thread_fence(memory_order_seq_cst);"

    def init_block(self, entries):
        return "{ " + " ".join(f"[{name}] = {value};" for name, value in entries) + " }"


dialect_statements = {
    Dialect.MACRO: MacroStatements,
    Dialect.EXPLICIT_ATOMICS: AtomicStatements,
}


# ---------- Whole-file state ----------

class _Export:
    def __init__(self, graph, dialect, show_all_nodes):
        self.graph = graph
        self.out = dialect_statements[dialect]()
        self.memory_by_id = graph.memory_by_id()
        self.all_nodes = graph.node_by_id()
        self.visible = get_visible_nodes(graph, show_all_nodes)
        self.visible_ids = {node.id for node in self.visible}

        self.threads = list(graph.threads)
        for node in self.visible:
            if node.thread_id not in self.threads:
                self.threads.append(node.thread_id)
        self.thread_index = {tid: i for i, tid in enumerate(self.threads)}

        self.locations = LocationTable()
        self.shared = graph.memory_in_scope(MemoryScope.SHARED)
        for variable in self.shared:
            self.locations.add(variable.id, format_memory_label(variable, self.memory_by_id))

        self.scratch_keys = {}
        if dialect == Dialect.EXPLICIT_ATOMICS:
            for node in self.visible:
                if node.op_type == OperationType.RMW and node.thread_id not in self.scratch_keys:
                    key = f"cas_expected:{node.thread_id}"
                    self.scratch_keys[node.thread_id] = key
                    self.locations.add(key, f"cas_expected_{node.thread_id}")

        for node in self.visible:
            resolved = self.resolve(node)
            if resolved is not None:
                self.locations.add(*resolved)
        self.locations.freeze()

        self.shared_value_exprs = {
            key: self.out.value_expr(name)
            for key, name in self.locations.c_names.items()
            if key in self.memory_by_id and self.memory_by_id[key].scope == MemoryScope.SHARED
        }

        self.inference = PostconditionInference(
            self.visible, graph.edges, self.memory_by_id,
            lambda node: self.resolve(node)[0], self.ref)
        self.conjuncts = []
        self.ambiguous = False
        self.uninferrable = False

    def ref(self, node):
        if isinstance(node, str):
            node = self.all_nodes.get(node)
            if node is None:
                return "T?-S?"
        return node_ref(node, self.thread_index.get(node.thread_id, 0))

    def resolve(self, node):
        return resolve_location(node, self.memory_by_id, self.ref(node))

    def location_name(self, node):
        resolved = self.resolve(node)
        if resolved is None:
            return None
        return self.locations.name(resolved[0])

    def record_load(self, node, thread_index, dest):
        if self.ambiguous or self.uninferrable:
            return
        expected = self.inference.loaded_literal(node)
        if expected:
            self.conjuncts.append(f"{thread_index}:{dest}={expected}")
        else:
            self.uninferrable = True

    def postcondition(self):
        unique = list(dict.fromkeys(self.conjuncts))
        if unique and not self.ambiguous and not self.uninferrable:
            return " /\\ ".join(unique), None
        return "0=0", NOTE_AMBIGUOUS if self.ambiguous else NOTE_UNINFERRED

    def init_block(self):
        entries = []
        shared_by_id = {variable.id: variable for variable in self.shared}
        for key, name in self.locations.items_by_name():
            variable = shared_by_id.get(key)
            raw = (variable.value or "").strip() if variable and variable.type == MemoryType.INT else ""
            entries.append((name, raw or "0"))
        return self.out.init_block(entries)

    def render(self):
        threads = [_ThreadExport(self, thread_id).render() for thread_id in self.threads]
        condition, note = self.postcondition()
        title = re.sub(r"\s+", " ", (self.graph.title or "").strip()) or DEFAULT_TITLE
        return LITMUS_TEMPLATE.render(
            title=title,
            note=note,
            init=self.init_block(),
            threads=threads,
            condition=condition,
        )


# ---------- Per-thread walk ----------

class _ThreadExport:
    def __init__(self, export, thread_id):
        self.export = export
        self.out = export.out
        self.thread_id = thread_id
        self.index = export.thread_index[thread_id]
        self.nodes = [node for node in export.graph.nodes if node.thread_id == thread_id]
        self.node_by_id = {node.id: node for node in self.nodes}
        self.params = export.locations.sorted_names()
        self.used_names = set(self.params)
        self.local_names = self._declare_locals()
        self._build_po()

    def ref(self, node):
        return self.export.ref(node)

    # locals

    def _referenced_locals(self):
        memory = self.export.memory_by_id
        ids = {}

        def is_local(var_id):
            variable = memory.get(var_id)
            return variable is not None and variable.scope == MemoryScope.LOCALS

        for node in self.nodes:
            op = node.operation
            if op.type in (OperationType.LOAD, OperationType.RMW) and op.result_id:
                ids[op.result_id] = True
            if op.type == OperationType.STORE and op.value_id and is_local(op.value_id):
                ids[op.value_id] = True
            if op.type == OperationType.RMW:
                for var_id in (op.expected_value_id, op.desired_value_id):
                    if var_id and is_local(var_id):
                        ids[var_id] = True
            if op.type == OperationType.BRANCH and op.branch_condition is not None:
                for var_id in op.branch_condition.operand_ids():
                    if is_local(var_id):
                        ids[var_id] = True
        return list(ids)

    def _declare_locals(self):
        names = {}
        for var_id in self._referenced_locals():
            variable = self.export.memory_by_id.get(var_id)
            raw = variable.name if variable is not None else f"r{var_id}"
            names[var_id] = to_c_identifier(raw, self.used_names)
        return names

    def declarations(self):
        lines = []
        for var_id, name in sorted(self.local_names.items(), key=lambda item: item[1]):
            variable = self.export.memory_by_id.get(var_id)
            init = ""
            if variable is not None and variable.scope == MemoryScope.LOCALS and variable.type == MemoryType.INT:
                init = (variable.value or "").strip()
            if init and INT_LITERAL.match(init):
                lines.append(f"{INDENT}int {name} = {init};")
            else:
                lines.append(f"{INDENT}int {name};")
        return lines

    # program order

    def _build_po(self):
        self.succ = {node.id: {"then": [], "else": [], "next": []} for node in self.nodes}
        self.incoming = {node.id: 0 for node in self.nodes}
        count = 0
        for edge in self.export.graph.edges:
            if edge.relation_type != "po":
                continue
            if edge.source not in self.node_by_id or edge.target not in self.node_by_id:
                continue
            bucket = edge.source_handle if edge.source_handle in ("then", "else") else "next"
            self.succ[edge.source][bucket].append(edge.target)
            self.incoming[edge.target] += 1
            count += 1
        if count == 0:
            ordered = sorted(self.nodes, key=lambda node: (node.sequence_index, node.id))
            for current, following in zip(ordered, ordered[1:]):
                self.succ[current.id]["next"].append(following.id)
                self.incoming[following.id] += 1

    def successors(self, node_id):
        out = self.succ.get(node_id)
        if out is None:
            return []
        return out["then"] + out["else"] + out["next"]

    def single_successor(self, node_id):
        successors = self.successors(node_id)
        if len(successors) > 1:
            raise LitmusExportError(f"node {self.ref(node_id)} has multiple po successors.")
        return successors[0] if successors else None

    def branch_successors(self, node):
        out = self.succ[node.id]
        if len(out["then"]) > 1 or len(out["else"]) > 1 or len(out["next"]) > 1:
            raise LitmusExportError(f"BRANCH node {self.ref(node)} has too many outgoing po edges.")
        then_start = out["then"][0] if out["then"] else (out["next"][0] if out["next"] else None)
        else_start = out["else"][0] if out["else"] else None
        return then_start, else_start

    def _distances(self, start):
        dist = {start: 0}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for succ in self.successors(current):
                if succ not in dist:
                    dist[succ] = dist[current] + 1
                    queue.append(succ)
        return dist

    def find_join(self, then_start, else_start):
        """Earliest node reachable from both futures, or None."""
        if then_start == else_start:
            return then_start
        dist_then = self._distances(then_start)
        dist_else = self._distances(else_start)
        best = None
        for candidate, dt in dist_then.items():
            de = dist_else.get(candidate)
            if de is None:
                continue
            node = self.node_by_id.get(candidate)
            seq = node.sequence_index if node is not None else float("inf")
            key = (max(dt, de), dt + de, seq, candidate)
            if best is None or key < best:
                best = key
        return best[3] if best else None

    def has_visible_before(self, start, stop):
        queue = deque([start])
        seen = set()
        while queue:
            current = queue.popleft()
            if current is None or current == stop or current in seen:
                continue
            seen.add(current)
            if current in self.export.visible_ids:
                return True
            queue.extend(self.successors(current))
        return False

    # operands

    def condition_expr(self, node, condition):
        memory = self.export.memory_by_id
        where = f"BRANCH node {self.ref(node)}"

        def operand(var_id):
            if not var_id:
                raise LitmusExportError(f"{where} condition is missing an operand.")
            variable = memory.get(var_id)
            if variable is None:
                raise LitmusExportError(
                    f"{where} condition references a memory variable that does not exist.")
            if variable.scope == MemoryScope.LOCALS:
                name = self.local_names.get(var_id)
                if name is None:
                    raise LitmusExportError(
                        f'{where} condition references local register "{variable.name}" '
                        f'that is not declared in this thread.')
                return name
            if variable.scope == MemoryScope.SHARED:
                expr = self.export.shared_value_exprs.get(var_id)
                if expr is None:
                    raise LitmusExportError(
                        f'{where} condition references shared variable "{variable.name}" '
                        f'but its C identifier could not be resolved.')
                return expr
            if variable.type != MemoryType.INT:
                raise LitmusExportError(f'{where} condition references a non-int constant "{variable.name}".')
            raw = variable.literal()
            if not raw:
                raise LitmusExportError(f'{where} condition references an empty constant "{variable.name}".')
            return raw

        def emit(item):
            if isinstance(item, BranchRule):
                if item.evaluation == "true":
                    return "1"
                if item.evaluation == "false":
                    return "0"
                return f"({operand(item.lhs_id)} {item.op} {operand(item.rhs_id)})"
            if not item.items:
                return "0"
            expr = emit(item.items[0])
            for op, child in zip(item.operators, item.items[1:]):
                expr = f"({expr} {op} {emit(child)})"
            return expr

        return emit(condition)

    def value_expr(self, node, var_id, role):
        """Text for a STORE value or CAS operand held in memory id ``var_id``."""
        kind = node.op_type.value
        variable = self.export.memory_by_id.get(var_id)
        if variable is None:
            raise LitmusExportError(
                f"{kind} node {self.ref(node)} {role} refers to a memory variable that does not exist.")
        if variable.scope == MemoryScope.LOCALS:
            name = self.local_names.get(var_id)
            if name is None:
                raise LitmusExportError(
                    f"{kind} node {self.ref(node)} references an undeclared local ({variable.name}).")
            if kind == "STORE" and self.out.dialect == Dialect.MACRO:
                raise LitmusExportError(
                    f"STORE node {self.ref(node)} uses a local register ({name}) as its RHS. "
                    "Exporting local computations is not supported yet; "
                    "use an immediate or constant value instead.")
            return name
        if variable.scope == MemoryScope.CONSTANTS:
            raw = variable.literal()
            if kind == "STORE":
                return raw or "0"
            if variable.type != MemoryType.INT:
                raise LitmusExportError(
                    f"{kind} node {self.ref(node)} references a non-int constant ({variable.name}).")
            if not raw:
                raise LitmusExportError(
                    f"{kind} node {self.ref(node)} references an empty constant ({variable.name}).")
            return raw
        if self.out.dialect == Dialect.EXPLICIT_ATOMICS:
            expr = self.export.shared_value_exprs.get(var_id)
            if expr is None:
                raise LitmusExportError(
                    f"{kind} node {self.ref(node)} uses shared value ({variable.name}) "
                    "but its load expression could not be resolved.")
            return expr
        raise LitmusExportError(
            f"{kind} node {self.ref(node)} uses a shared value variable ({variable.name}) "
            "as an operand, which is not supported.")

    def store_value(self, node):
        op = node.operation
        if op.value_id:
            return self.value_expr(node, op.value_id, "value")
        if isinstance(op.value, int):
            return str(op.value)
        if isinstance(op.value, str) and op.value.strip():
            return op.value.strip()
        raise LitmusExportError(f"STORE node {self.ref(node)} is missing a value.")

    def destination(self, node, required):
        kind = node.op_type.value
        dest_id = node.operation.result_id
        if not dest_id:
            if required:
                raise LitmusExportError(
                    f"{kind} node {self.ref(node)} is missing a destination register. "
                    "Set a local register as the result.")
            return None
        variable = self.export.memory_by_id.get(dest_id)
        if variable is not None and variable.scope != MemoryScope.LOCALS:
            raise LitmusExportError(
                f"{kind} node {self.ref(node)} writes into {variable.scope.value} memory ({variable.name}). "
                f"{'Load' if kind == 'LOAD' else kind} results must be local registers.")
        name = self.local_names.get(dest_id)
        if name is None:
            raise LitmusExportError(f"{kind} node {self.ref(node)} destination register could not be resolved.")
        return name

    # statements

    def statement(self, node):
        op = node.operation
        if node.id not in self.export.visible_ids:
            return []
        if op.type.is_terminator:
            return ["return;"]
        if op.type == OperationType.FENCE:
            return [self.out.fence((op.text or "").strip())]
        if op.type == OperationType.BRANCH:
            return []

        location = self.export.location_name(node)
        if op.type == OperationType.LOAD:
            dest = self.destination(node, required=True)
            self.export.record_load(node, self.index, dest)
            return [self.out.load(dest, location, op.memory_order)]
        if op.type == OperationType.STORE:
            return [self.out.store(location, self.store_value(node), op.memory_order)]
        if op.type == OperationType.RMW:
            return self.cas(node, location)
        raise LitmusExportError(f"unsupported operation type {op.type.value} on node {self.ref(node)}.")

    def cas(self, node, location):
        op = node.operation
        dest = self.destination(node, required=False)
        if not op.expected_value_id or not op.desired_value_id:
            raise LitmusExportError(f"RMW node {self.ref(node)} is missing expected/desired values.")
        expected = self.value_expr(node, op.expected_value_id, "expected value")
        desired = self.value_expr(node, op.desired_value_id, "desired value")

        if self.out.dialect == Dialect.EXPLICIT_ATOMICS:
            key = self.export.scratch_keys.get(self.thread_id)
            if key is None:
                raise LitmusExportError(
                    f"RMW node {self.ref(node)} requires a CAS expected scratch location "
                    f"(thread {self.thread_id}).")
            scratch = self.export.locations.name(key)
            success = to_c11_memory_order(op.success_memory_order, "rmw_success")
            failure = to_c11_memory_order(op.failure_memory_order, "rmw_failure")
            lines = [
                self.out.cas_note,
                f"atomic_store_explicit({scratch}, {expected}, memory_order_relaxed);",
                f"(void)atomic_compare_exchange_strong_explicit({location}, {scratch}, {desired}, "
                f"{success}, {failure});",
            ]
            if dest:
                lines.append(f"{dest} = atomic_load_explicit({scratch}, memory_order_relaxed);")
            return lines

        # the failure order governs the read, the success order the write
        load_expr = self.out.load_expr(location, op.failure_memory_order)
        store = self.out.store(location, desired, op.success_memory_order)
        if dest:
            tmp, load = dest, f"{dest} = {load_expr};"
        else:
            tmp = to_c_identifier(f"rmw_{self.ref(node).lower()}", self.used_names)
            load = f"int {tmp} = {load_expr};"
        return [
            self.out.cas_note,
            load,
            f"if ({tmp} == {expected}) {{",
            INDENT + store,
            "}",
        ]

    # walk

    def emit_path(self, start, stop, depth, visited, lines):
        pad = INDENT * depth
        current = start
        while current is not None and current != stop:
            if current in visited:
                raise LitmusExportError(f"cycle or re-visit detected at node {self.ref(current)}.")
            visited.add(current)
            node = self.node_by_id.get(current)
            if node is None:
                break

            if node.op_type == OperationType.BRANCH:
                join = self.emit_branch(node, depth, visited, lines)
                if join is None:
                    return
                current = join
                continue

            lines.extend(pad + line for line in self.statement(node))
            if node.op_type.is_terminator:
                succ = self.single_successor(node.id)
                if succ is not None:
                    raise LitmusExportError(
                        f"{node.op_type.value} node {self.ref(node)} has a po successor ({self.ref(succ)}).")
                return
            current = self.single_successor(node.id)

    def emit_branch(self, node, depth, visited, lines):
        """Write the if/else for ``node``; return where the walk resumes (None: thread end)."""
        op = node.operation
        pad = INDENT * depth
        if op.branch_condition is None:
            raise LitmusExportError(f"BRANCH node {self.ref(node)} is missing a condition.")
        then_start, else_start = self.branch_successors(node)
        if then_start is None and else_start is None:
            raise LitmusExportError(f"BRANCH node {self.ref(node)} has no outgoing po edges.")

        join = self.find_join(then_start, else_start) if then_start and else_start else None
        stop = join if join is not None else END
        logger.debug("Branch %s joins at %s", self.ref(node), self.ref(join) if join else "thread end")

        then_visible = then_start is not None and self.has_visible_before(then_start, stop)
        else_visible = else_start is not None and self.has_visible_before(else_start, stop)
        if then_visible and else_visible:
            self.export.ambiguous = True
        if not then_visible and not else_visible:
            raise LitmusExportError(
                f"BRANCH node {self.ref(node)} has no visible operations in either future.")

        condition = self.condition_expr(node, op.branch_condition)
        if then_visible and not else_visible:
            lines.append(f"{pad}if ({condition}) {{")
            self.emit_path(then_start, stop, depth + 1, visited, lines)
        elif else_visible and not then_visible:
            lines.append(f"{pad}if (!({condition})) {{")
            self.emit_path(else_start, stop, depth + 1, visited, lines)
        else:
            lines.append(f"{pad}if ({condition}) {{")
            self.emit_path(then_start, stop, depth + 1, visited, lines)
            lines.append(f"{pad}}} else {{")
            self.emit_path(else_start, stop, depth + 1, visited, lines)
        lines.append(f"{pad}}}")
        return join

    def render(self):
        if self.params:
            params = ", ".join(self.out.signature_param(name) for name in self.params)
            signature = f"P{self.index}({params})"
        else:
            signature = f"P{self.index}()"

        lines = self.declarations()
        visited = set()
        if self.nodes:
            entries = [node for node in self.nodes if self.incoming[node.id] == 0]
            if len(entries) != 1:
                raise LitmusExportError(
                    f"thread {self.thread_id} must have exactly one entry node (found {len(entries)}).")
            self.emit_path(entries[0].id, END, 1, visited, lines)

        unreached = [node for node in self.nodes
                     if node.id in self.export.visible_ids and node.id not in visited]
        if unreached:
            refs = ", ".join(self.ref(node) for node in unreached)
            raise LitmusExportError(f"thread {self.thread_id} has visible nodes not reachable by po: {refs}.")
        logger.debug("Exported thread %s as P%d (%d lines)", self.thread_id, self.index, len(lines))
        return {"signature": signature, "lines": lines}


# ---------- Entry points ----------

def export_litmus_text(graph, dialect=Dialect.MACRO, show_all_nodes=False):
    """Render ``graph`` as a herd C litmus file in ``dialect``.

    Raises ``LitmusExportError`` rather than emitting approximate text.
    """
    return _Export(graph, Dialect.parse(dialect), show_all_nodes).render()


def export_lkmm_litmus(graph, show_all_nodes=False):
    return export_litmus_text(graph, Dialect.MACRO, show_all_nodes)


def export_c11_litmus(graph, show_all_nodes=False):
    return export_litmus_text(graph, Dialect.EXPLICIT_ATOMICS, show_all_nodes)
