from dataclasses import dataclass, replace
from typing import Optional

from .config import PER_LOCATION_RELATION_TYPES
from .locations import address_label
from .model import OperationType

SAME_THREAD_MESSAGES = {
    "po": "Program-order edges must stay within a single thread.",
    "ad": "Address-dependency edges must stay within a single thread.",
    "cd": "Dependency edges must stay within a single thread.",
    "dd": "Dependency edges must stay within a single thread.",
}


@dataclass
class EdgeCheck:
    allowed: bool
    reason: Optional[str] = None
    shared_address: Optional[str] = None


def check_edge_constraints(relation_type, source, target, memory):
    """Structural check for drawing ``relation_type`` from ``source`` to ``target``.

    Missing endpoints are allowed; the editor resolves them later.
    """
    if source is None or target is None:
        return EdgeCheck(True)

    same_thread = source.thread_id == target.thread_id
    if relation_type in SAME_THREAD_MESSAGES and not same_thread:
        return EdgeCheck(False, SAME_THREAD_MESSAGES[relation_type])
    if same_thread or relation_type not in PER_LOCATION_RELATION_TYPES:
        return EdgeCheck(True)

    memory_by_id = {item.id: item for item in memory}
    source_address = address_label(source, memory_by_id)
    target_address = address_label(target, memory_by_id)
    if not source_address or not target_address:
        return EdgeCheck(False, f'A "{relation_type}" edge requires both endpoints '
                                f'to reference the same memory location.')
    if source_address != target_address:
        return EdgeCheck(False, f'A "{relation_type}" edge requires the same memory location '
                                f'("{source_address}" vs "{target_address}").')
    return EdgeCheck(True, shared_address=source_address)


def _reads_from_later_store(relation_type, source, target):
    return (relation_type == "rf"
            and source.thread_id == target.thread_id
            and source.op_type == OperationType.STORE
            and target.op_type == OperationType.LOAD
            and source.sequence_index > target.sequence_index)


def validate_edges(graph):
    """Copies of ``graph.edges`` with the derived ``invalid`` flag recomputed."""
    nodes = graph.node_by_id()
    out = []
    for edge in graph.edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if source is None or target is None:
            out.append(replace(edge, invalid=False))
            continue
        check = check_edge_constraints(edge.relation_type, source, target, graph.memory)
        invalid = not check.allowed or _reads_from_later_store(edge.relation_type, source, target)
        out.append(replace(edge, invalid=invalid))
    return out
