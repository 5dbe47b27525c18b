from collections import defaultdict, deque

from .condition import evaluate_branch_condition
from .model import OperationType


def _po_successors(edges):
    out = defaultdict(list)
    for edge in edges:
        if edge.relation_type == "po":
            out[edge.source].append(edge.target)
    return out


def _follow_po(starts, bucket, successors, known):
    queue = deque(starts)
    while queue:
        node_id = queue.popleft()
        if node_id in bucket or node_id not in known:
            continue
        bucket.add(node_id)
        queue.extend(t for t in successors.get(node_id, ()) if t not in bucket)


def get_visible_nodes(graph, show_all_nodes=False):
    """Nodes a viewer would see given each BRANCH's evaluated outcome.

    A BRANCH with "show both futures" switched off hides the nodes that only
    belong to the future its condition does not take.
    """
    if show_all_nodes:
        return list(graph.nodes)

    known = {node.id for node in graph.nodes}
    successors = _po_successors(graph.edges)
    hidden = set()

    for branch in graph.nodes:
        op = branch.operation
        if op.type != OperationType.BRANCH:
            continue
        if op.branch_show_both_futures is None or op.branch_show_both_futures:
            continue
        if op.branch_condition is None:
            continue

        then_set = {n.id for n in graph.nodes if n.branch_id == branch.id and n.branch_path == "then"}
        else_set = {n.id for n in graph.nodes if n.branch_id == branch.id and n.branch_path == "else"}
        for handle, bucket in (("then", then_set), ("else", else_set)):
            starts = [e.target for e in graph.edges
                      if e.source == branch.id and e.source_handle == handle]
            _follow_po(starts, bucket, successors, known)
        if not then_set and not else_set:
            continue

        taken = evaluate_branch_condition(op.branch_condition, graph.memory)
        if taken:
            hidden |= else_set - then_set
        else:
            hidden |= then_set - else_set

    return [node for node in graph.nodes if node.id not in hidden]
