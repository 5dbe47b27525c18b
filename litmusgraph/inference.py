"""
Facts derived from a graph's operations and relation edges.

- dependency edges (``ad`` / ``cd`` / ``dd``) from register reuse inside a thread;
- which earlier LOAD/RMW last wrote a register, and where a pointer loaded
  into it points;
- final register values for an ``exists`` clause, read off ``rf`` / ``fr``
  edges.
"""

import logging
from collections import defaultdict
from dataclasses import replace

from .config import DEPENDENCY_RELATION_TYPES
from .errors import LitmusExportError
from .literals import INT_LITERAL
from .memory import resolve_pointer_target
from .model import MemoryScope, MemoryType, OperationType, RelationEdge

logger = logging.getLogger(__name__)


def _order_key(node):
    return (node.sequence_index, node.id)


def nodes_by_thread(nodes):
    out = defaultdict(list)
    for node in nodes:
        out[node.thread_id].append(node)
    for items in out.values():
        items.sort(key=_order_key)
    return out


# ---------- Dependencies ----------

def _dependency_uses(node):
    """(kind, memory ids) pairs whose producers this node depends on."""
    op = node.operation
    kind = op.type
    if kind == OperationType.BRANCH:
        return [("cd", op.branch_condition.operand_ids() if op.branch_condition else [])]
    uses = []
    if kind.is_access:
        uses.append(("ad", [i for i in (op.index_id, op.address_id) if i]))
    if kind == OperationType.STORE:
        uses.append(("dd", [op.value_id] if op.value_id else []))
    elif kind == OperationType.RMW:
        uses.append(("dd", [i for i in (op.expected_value_id, op.desired_value_id) if i]))
    return uses


def derive_dependency_edges(graph, relation_types=None):
    """New ``ad``/``cd``/``dd`` edges implied by register reuse.

    Each thread is scanned in sequence order while remembering, per memory
    id, the last LOAD/RMW that wrote it. Only kinds present in
    ``relation_types`` (default: the graph's model) are produced, and an
    edge already in the graph is never repeated.
    """
    vocabulary = set(relation_types if relation_types is not None else graph.model.relation_types)
    wanted = [kind for kind in DEPENDENCY_RELATION_TYPES if kind in vocabulary]
    if not wanted:
        return []

    seen = {(edge.relation_type, edge.source, edge.target) for edge in graph.edges}
    out = []
    for thread_id, nodes in nodes_by_thread(graph.nodes).items():
        producer = {}
        for node in nodes:
            for kind, ids in _dependency_uses(node):
                if kind not in wanted:
                    continue
                for var_id in ids:
                    source = producer.get(var_id)
                    if source is None or (kind, source, node.id) in seen:
                        continue
                    seen.add((kind, source, node.id))
                    out.append(RelationEdge(
                        id=f"edge-{kind}-{source}-{node.id}",
                        source=source,
                        target=node.id,
                        relation_type=kind,
                        generated=True,
                    ))
            op = node.operation
            if op.type in (OperationType.LOAD, OperationType.RMW) and op.result_id:
                producer[op.result_id] = node.id
    logger.debug("Derived %d dependency edges", len(out))
    return out


def with_dependency_edges(graph, relation_types=None):
    return replace(graph, edges=list(graph.edges) + derive_dependency_edges(graph, relation_types))


# ---------- Register producers ----------

def find_last_writer(nodes, current, register_id):
    """Latest LOAD/RMW before ``current`` in its thread whose result is ``register_id``."""
    best = None
    for node in nodes:
        if node.thread_id != current.thread_id:
            continue
        if node.op_type not in (OperationType.LOAD, OperationType.RMW):
            continue
        if node.operation.result_id != register_id:
            continue
        if _order_key(node) >= _order_key(current):
            continue
        if best is None or _order_key(node) > _order_key(best):
            best = node
    return best


def infer_pointer_target(nodes, current, register_id, memory):
    """Id of what the value loaded into ``register_id`` points at, if known."""
    writer = find_last_writer(nodes, current, register_id)
    if writer is None:
        return None
    memory_by_id = {item.id: item for item in memory}
    resolved = resolve_pointer_target(writer.operation.address_id, memory_by_id).resolved
    if resolved is None:
        return None
    if resolved.type == MemoryType.ARRAY:
        if resolved.element_type == "ptr":
            return resolved.element_points_to_id
        if resolved.element_type == "struct":
            return resolved.element_struct_id
        return None
    if resolved.type == MemoryType.PTR:
        return resolved.points_to_id
    if resolved.type == MemoryType.STRUCT:
        return resolved.id
    return None


# ---------- Postcondition ----------

class PostconditionInference:
    """Final values of loaded registers, from ``rf``/``fr`` edges between visible nodes.

    ``locate(node)`` returns the node's location key; ``ref(node)`` its
    ``T<n>-S<m>`` coordinate. A ``None`` answer means the value cannot be
    inferred (for instance it comes from a register).
    """

    def __init__(self, visible_nodes, edges, memory_by_id, locate, ref):
        self.nodes = {node.id: node for node in visible_nodes}
        self.memory_by_id = memory_by_id
        self.locate = locate
        self.ref = ref

        self.writers_by_key = defaultdict(list)
        for node in visible_nodes:
            if node.op_type.is_write:
                self.writers_by_key[locate(node)].append(node)

        self.rf_source = {}
        self.fr_targets = defaultdict(set)
        for edge in edges:
            if edge.relation_type not in ("rf", "fr"):
                continue
            source = self.nodes.get(edge.source)
            target = self.nodes.get(edge.target)
            if source is None or target is None:
                continue
            if edge.relation_type == "rf":
                if target.op_type != OperationType.LOAD:
                    continue
                existing = self.rf_source.get(target.id)
                if existing is not None and existing != source.id:
                    raise LitmusExportError(f"LOAD node {ref(target)} has multiple incoming rf edges.")
                self.rf_source[target.id] = source.id
            elif source.op_type == OperationType.LOAD:
                self.fr_targets[source.id].add(target.id)

    def _constant_literal(self, variable, node, role):
        if variable.scope == MemoryScope.LOCALS:
            return None
        if variable.scope == MemoryScope.CONSTANTS and variable.type == MemoryType.INT:
            value = variable.literal()
            if not value:
                raise LitmusExportError(
                    f"{node.op_type.value} node {self.ref(node)} references an empty constant ({variable.name}).")
            return value
        raise LitmusExportError(
            f"{node.op_type.value} node {self.ref(node)} references a non-int constant ({variable.name}) "
            f"as its {role}.")

    def written_literal(self, writer):
        op = writer.operation
        if op.type == OperationType.RMW:
            if not op.desired_value_id:
                raise LitmusExportError(f"RMW node {self.ref(writer)} is missing a desired value.")
            variable = self.memory_by_id.get(op.desired_value_id)
            if variable is None:
                raise LitmusExportError(f"RMW node {self.ref(writer)} desired value was not found.")
            return self._constant_literal(variable, writer, "desired value")

        if op.type != OperationType.STORE:
            raise LitmusExportError(
                f"rf source {self.ref(writer)} is not a supported writer (expected STORE/RMW).")

        if op.value_id:
            variable = self.memory_by_id.get(op.value_id)
            if variable is None:
                raise LitmusExportError(f"STORE node {self.ref(writer)} value was not found.")
            return self._constant_literal(variable, writer, "value")

        if isinstance(op.value, int):
            return str(op.value)
        raw = (op.value or "").strip() if isinstance(op.value, str) else ""
        if not raw:
            raise LitmusExportError(f"STORE node {self.ref(writer)} is missing a value.")
        return raw if INT_LITERAL.match(raw) else None

    def _initial_value(self, key):
        variable = self.memory_by_id.get(key)
        if variable is not None and variable.type == MemoryType.INT:
            return (variable.value or "").strip() or "0"
        return "0"

    def loaded_literal(self, load):
        source_id = self.rf_source.get(load.id)
        if source_id is not None:
            return self.written_literal(self.nodes[source_id])

        key = self.locate(load)
        writers = self.writers_by_key.get(key, [])
        if not writers:
            # nothing else writes here, so only the initial value can be read
            return self._initial_value(key)
        if len(writers) == 1 and writers[0].id in self.fr_targets.get(load.id, ()):
            return self._initial_value(key)
        return None
