from dataclasses import dataclass, field
from enum import Enum
from typing import List

DEFAULT_RELATION_TYPES = ("rf", "co", "fr", "po", "ad", "cd", "dd")
DEFAULT_MEMORY_ORDERS = ("Standard", "Relaxed", "Acquire", "Release", "Acq_Rel", "SC")

DEPENDENCY_RELATION_TYPES = ("ad", "cd", "dd")
PER_LOCATION_RELATION_TYPES = ("rf", "co", "fr")

# Pointer chains may be cyclic; never follow more than this many hops.
MAX_POINTER_DEPTH = 16


class Dialect(Enum):
    MACRO = "macro"
    EXPLICIT_ATOMICS = "explicit-atomics"

    @staticmethod
    def parse(value):
        if isinstance(value, Dialect):
            return value
        key = str(value).strip().lower()
        if key in dialect_names:
            return dialect_names[key]
        raise ValueError(f"Unknown litmus dialect: {value!r}")


dialect_names = {
    'macro': Dialect.MACRO,
    'lkmm': Dialect.MACRO,
    'explicit-atomics': Dialect.EXPLICIT_ATOMICS,
    'c11': Dialect.EXPLICIT_ATOMICS,
}


def unique_in_order(items):
    seen = set()
    out = []
    for item in items:
        normalized = str(item).strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        out.append(normalized)
    return out


@dataclass
class ModelConfig:
    """Relation vocabulary and memory-order labels owned by the session layer."""

    relation_types: List[str] = field(default_factory=lambda: list(DEFAULT_RELATION_TYPES))
    memory_orders: List[str] = field(default_factory=lambda: list(DEFAULT_MEMORY_ORDERS))

    def __post_init__(self):
        self.relation_types = unique_in_order(self.relation_types)
        self.memory_orders = unique_in_order(self.memory_orders)

    def to_dict(self):
        return {"relationTypes": list(self.relation_types), "memoryOrders": list(self.memory_orders)}

    @staticmethod
    def from_dict(data):
        if not data:
            return ModelConfig()
        return ModelConfig(
            relation_types=data.get("relationTypes") or list(DEFAULT_RELATION_TYPES),
            memory_orders=data.get("memoryOrders") or list(DEFAULT_MEMORY_ORDERS),
        )
