from dataclasses import dataclass
from typing import Optional

from .config import MAX_POINTER_DEPTH
from .model import MemoryType, MemoryVariable


@dataclass
class ResolvedPointer:
    base: Optional[MemoryVariable]
    # last good target; equals base when nothing could be followed
    resolved: Optional[MemoryVariable]
    via_pointer: bool


def resolve_pointer_target(var_id, memory_by_id, max_depth=MAX_POINTER_DEPTH):
    """Follow ``ptr`` indirections starting from ``var_id``.

    Pointers may point to themselves or form cycles, so the walk stops on the
    first repeated id or after ``max_depth`` hops and returns the last
    variable it reached.
    """
    base = memory_by_id.get(var_id) if var_id else None
    if base is None:
        return ResolvedPointer(None, None, False)
    if base.type != MemoryType.PTR:
        return ResolvedPointer(base, base, False)

    visited = set()
    current = base
    depth = 0
    while current is not None and current.type == MemoryType.PTR:
        if current.id in visited or depth >= max_depth:
            break
        visited.add(current.id)
        depth += 1
        nxt = memory_by_id.get(current.points_to_id) if current.points_to_id else None
        if nxt is None:
            break
        current = nxt
    return ResolvedPointer(base, current, True)


def format_memory_label(variable, memory_by_id, max_depth=MAX_POINTER_DEPTH):
    """``x`` for plain variables, ``node.next`` for struct members."""
    parts = [variable.name.strip() or variable.id]
    seen = {variable.id}
    parent_id = variable.parent_id
    while parent_id and len(parts) <= max_depth:
        parent = memory_by_id.get(parent_id)
        if parent is None:
            parts.append(parent_id)
            break
        if parent.id in seen:
            break
        seen.add(parent.id)
        parts.append(parent.name.strip() or parent.id)
        parent_id = parent.parent_id
    return ".".join(reversed(parts))

