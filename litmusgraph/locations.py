"""
Location naming shared by the exporter and the edge checks.

Every memory access is reduced to a ``(key, raw_name)`` pair: the key says
which location is touched (so two accesses can be compared), the raw name is
what the user called it. ``LocationTable`` then gives each distinct key one
collision-free C identifier for the whole exported file.
"""

import re

from .errors import LitmusExportError
from .literals import INT_LITERAL
from .memory import format_memory_label, resolve_pointer_target
from .model import MemoryScope, MemoryType


def to_c_identifier(raw, used):
    """Coerce ``raw`` into a C identifier not yet in ``used`` and reserve it."""
    base = re.sub(r"[^A-Za-z0-9_]+", "_", re.sub(r"\s+", "_", (raw or "").strip()))
    first = base if re.match(r"^[A-Za-z_]", base) else f"v_{base or 'x'}"
    candidate = first
    suffix = 2
    while candidate in used:
        candidate = f"{first}_{suffix}"
        suffix += 1
    used.add(candidate)
    return candidate


def node_ref(node, thread_index):
    return f"T{thread_index}-S{node.sequence_index}"


def resolve_location(node, memory_by_id, ref):
    """Return ``(key, raw_name)`` for an access node, ``None`` for other kinds.

    ``ref`` is the node's ``T<n>-S<m>`` coordinate, used in error messages.
    """
    op = node.operation
    kind = op.type.value
    if not op.type.is_access:
        return None

    # struct members are locations of their own
    if op.member_id:
        member = memory_by_id.get(op.member_id)
        if member is None:
            raise LitmusExportError(f"{kind} node {ref} references missing member {op.member_id}.")
        if member.scope != MemoryScope.SHARED:
            raise LitmusExportError(f"{kind} node {ref} references a non-shared member ({member.name}).")
        return member.id, format_memory_label(member, memory_by_id)

    if op.index_id or op.index:
        base = memory_by_id.get(op.address_id) if op.address_id else None
        if not op.address_id:
            raise LitmusExportError(f"{kind} node {ref} uses indexed addressing without a base address.")
        if base is None or base.scope != MemoryScope.SHARED:
            raise LitmusExportError(f"{kind} node {ref} uses indexed addressing on a non-shared base.")
        index = (op.index or "").strip()
        if not index and op.index_id:
            variable = memory_by_id.get(op.index_id)
            if variable is not None and variable.type == MemoryType.INT:
                index = variable.literal()
        if not INT_LITERAL.match(index):
            raise LitmusExportError(f"{kind} node {ref} uses a non-literal index ({index or '?'}).")
        base_name = format_memory_label(base, memory_by_id)
        return f"idx:{base.id}[{index}]", f"{base_name}[{index}]"

    if op.address_id:
        variable = memory_by_id.get(op.address_id)
        if variable is not None:
            if variable.type == MemoryType.PTR:
                variable = resolve_pointer_target(variable.id, memory_by_id).resolved
            if variable.scope != MemoryScope.SHARED:
                raise LitmusExportError(
                    f"{kind} node {ref} targets {variable.scope.value} memory ({variable.name}). "
                    "Litmus locations must be shared.")
            return variable.id, format_memory_label(variable, memory_by_id)

    raw = (op.address or "").strip()
    if not raw:
        raise LitmusExportError(f"{kind} node {ref} is missing an address.")
    return f"addr:{raw}", raw


def address_label(node, memory_by_id):
    """Human-readable location of an access, or None; never raises."""
    op = node.operation
    index = ""
    if op.index_id and op.index_id in memory_by_id:
        index = format_memory_label(memory_by_id[op.index_id], memory_by_id)
    index = index or (op.index or "").strip()
    if op.address_id:
        item = memory_by_id.get(op.address_id)
        base = format_memory_label(item, memory_by_id) if item else op.address_id
        if index and (op.index_id or op.index or (item and item.type == MemoryType.ARRAY)):
            return f"{base}[{index}]"
        return base
    address = (op.address or "").strip()
    if not address:
        return None
    return f"{address}[{index}]" if index else address


class LocationTable:
    """Assigns one C identifier per location key, in first-seen order."""

    def __init__(self):
        self.raw_names = {}
        self.c_names = {}
        self._used = set()

    def add(self, key, raw_name):
        if key not in self.raw_names:
            self.raw_names[key] = raw_name

    def freeze(self):
        for key, raw in self.raw_names.items():
            if key not in self.c_names:
                self.c_names[key] = to_c_identifier(raw or "x", self._used)
        return self

    def name(self, key):
        try:
            return self.c_names[key]
        except KeyError:
            raise LitmusExportError(
                f"failed to resolve a stable C identifier for location {self.raw_names.get(key, key)!r}."
            ) from None

    def sorted_names(self):
        return sorted(self.c_names.values())

    def items_by_name(self):
        return sorted(self.c_names.items(), key=lambda item: item[1])
