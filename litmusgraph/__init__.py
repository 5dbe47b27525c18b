from .condition import ConditionBuilder, evaluate_branch_condition, parse_condition, tokenize_condition
from .config import DEFAULT_MEMORY_ORDERS, DEFAULT_RELATION_TYPES, Dialect, ModelConfig
from .constraints import EdgeCheck, check_edge_constraints, validate_edges
from .errors import LitmusError, LitmusExportError, LitmusParseError
from .exporter import export_c11_litmus, export_litmus_text, export_lkmm_litmus, to_c11_memory_order
from .inference import (
    derive_dependency_edges,
    find_last_writer,
    infer_pointer_target,
    with_dependency_edges,
)
from .memory import format_memory_label, resolve_pointer_target
from .model import (
    BranchGroup,
    BranchRule,
    MemoryScope,
    MemoryType,
    MemoryVariable,
    Operation,
    OperationType,
    RelationEdge,
    TraceGraph,
    TraceNode,
)
from .parser import parse_litmus_text
from .visibility import get_visible_nodes

__version__ = "0.1.0"
