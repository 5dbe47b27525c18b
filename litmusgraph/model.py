"""
Trace graph model shared by the importer, the exporter and the editor.

The dictionary forms produced by ``to_dict`` follow the editor's session
snapshot layout (camelCase keys), so graphs can be handed back and forth as
JSON without a separate schema.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from .config import ModelConfig


class MemoryScope(Enum):
    CONSTANTS = "constants"
    LOCALS = "locals"
    SHARED = "shared"


class MemoryType(Enum):
    INT = "int"
    ARRAY = "array"
    PTR = "ptr"
    STRUCT = "struct"


class OperationType(Enum):
    LOAD = "LOAD"
    STORE = "STORE"
    RMW = "RMW"
    FENCE = "FENCE"
    BRANCH = "BRANCH"
    RETRY = "RETRY"
    RETURN_TRUE = "RETURN_TRUE"
    RETURN_FALSE = "RETURN_FALSE"

    @property
    def is_terminator(self):
        return self in (OperationType.RETRY, OperationType.RETURN_TRUE, OperationType.RETURN_FALSE)

    @property
    def is_access(self):
        return self in (OperationType.LOAD, OperationType.STORE, OperationType.RMW)

    @property
    def is_write(self):
        return self in (OperationType.STORE, OperationType.RMW)


COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")
LOGICAL_OPS = ("&&", "||")
RULE_EVALUATIONS = ("natural", "true", "false")
BRANCH_PATHS = ("then", "else")


# ---------- Memory ----------

@dataclass
class MemoryVariable:
    id: str
    name: str
    scope: MemoryScope
    type: MemoryType = MemoryType.INT
    parent_id: Optional[str] = None
    # int
    value: Optional[str] = None
    # array
    size: Optional[int] = None
    element_type: Optional[str] = None
    element_struct_id: Optional[str] = None
    element_points_to_id: Optional[str] = None
    # ptr
    points_to_id: Optional[str] = None

    @property
    def is_int(self):
        return self.type == MemoryType.INT

    def literal(self):
        """Textual value of an int variable, falling back to its name."""
        return (self.value or "").strip() or self.name.strip()

    def to_dict(self):
        out = {"id": self.id, "name": self.name, "type": self.type.value, "scope": self.scope.value}
        if self.parent_id:
            out["parentId"] = self.parent_id
        for key, attr in _MEMORY_PAYLOAD_KEYS:
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        return out

    @staticmethod
    def from_dict(data):
        return MemoryVariable(
            id=data["id"],
            name=data.get("name", ""),
            scope=MemoryScope(data.get("scope", "shared")),
            type=MemoryType(data.get("type", "int")),
            parent_id=data.get("parentId"),
            **{attr: data.get(key) for key, attr in _MEMORY_PAYLOAD_KEYS},
        )


_MEMORY_PAYLOAD_KEYS = (
    ("value", "value"),
    ("size", "size"),
    ("elementType", "element_type"),
    ("elementStructId", "element_struct_id"),
    ("elementPointsToId", "element_points_to_id"),
    ("pointsToId", "points_to_id"),
)


# ---------- Branch conditions ----------

@dataclass
class BranchRule:
    id: str
    op: str = "=="
    lhs_id: Optional[str] = None
    rhs_id: Optional[str] = None
    evaluation: str = "natural"

    kind = "rule"

    def operand_ids(self):
        return [i for i in (self.lhs_id, self.rhs_id) if i and i.strip()]

    def to_dict(self):
        out = {"kind": "rule", "id": self.id, "op": self.op, "evaluation": self.evaluation}
        if self.lhs_id is not None:
            out["lhsId"] = self.lhs_id
        if self.rhs_id is not None:
            out["rhsId"] = self.rhs_id
        return out


@dataclass
class BranchGroup:
    id: str
    items: List["BranchCondition"] = field(default_factory=list)
    operators: List[str] = field(default_factory=list)

    kind = "group"

    def __post_init__(self):
        # one operator between each adjacent pair of items
        wanted = max(0, len(self.items) - 1)
        self.operators = (list(self.operators) + ["&&"] * wanted)[:wanted]

    def operand_ids(self):
        out = []
        for item in self.items:
            out.extend(item.operand_ids())
        return out

    def to_dict(self):
        return {
            "kind": "group",
            "id": self.id,
            "items": [item.to_dict() for item in self.items],
            "operators": list(self.operators),
        }


BranchCondition = Union[BranchRule, BranchGroup]


def condition_from_dict(data):
    if data.get("kind") == "group":
        return BranchGroup(
            id=data.get("id", "group"),
            items=[condition_from_dict(item) for item in data.get("items", [])],
            operators=data.get("operators", []),
        )
    return BranchRule(
        id=data.get("id", "rule"),
        op=data.get("op", "=="),
        lhs_id=data.get("lhsId"),
        rhs_id=data.get("rhsId"),
        evaluation=data.get("evaluation", "natural"),
    )


# ---------- Operations / nodes / edges ----------

@dataclass
class Operation:
    type: OperationType
    address_id: Optional[str] = None
    index_id: Optional[str] = None
    member_id: Optional[str] = None
    result_id: Optional[str] = None
    value_id: Optional[str] = None
    expected_value_id: Optional[str] = None
    desired_value_id: Optional[str] = None
    address: Optional[str] = None
    index: Optional[str] = None
    value: Optional[Union[str, int]] = None
    memory_order: Optional[str] = None
    success_memory_order: Optional[str] = None
    failure_memory_order: Optional[str] = None
    branch_condition: Optional[BranchGroup] = None
    branch_show_both_futures: Optional[bool] = None
    text: Optional[str] = None

    def to_dict(self):
        out = {"type": self.type.value}
        for key, attr in _OPERATION_KEYS:
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        if self.branch_condition is not None:
            out["branchCondition"] = self.branch_condition.to_dict()
        return out

    @staticmethod
    def from_dict(data):
        condition = data.get("branchCondition")
        if condition is not None:
            condition = condition_from_dict(condition)
            if isinstance(condition, BranchRule):
                condition = BranchGroup(id=f"group-{condition.id}", items=[condition])
        return Operation(
            type=OperationType(data["type"]),
            branch_condition=condition,
            **{attr: data.get(key) for key, attr in _OPERATION_KEYS},
        )


_OPERATION_KEYS = (
    ("addressId", "address_id"),
    ("indexId", "index_id"),
    ("memberId", "member_id"),
    ("resultId", "result_id"),
    ("valueId", "value_id"),
    ("expectedValueId", "expected_value_id"),
    ("desiredValueId", "desired_value_id"),
    ("address", "address"),
    ("index", "index"),
    ("value", "value"),
    ("memoryOrder", "memory_order"),
    ("successMemoryOrder", "success_memory_order"),
    ("failureMemoryOrder", "failure_memory_order"),
    ("branchShowBothFutures", "branch_show_both_futures"),
    ("text", "text"),
)


@dataclass
class TraceNode:
    id: str
    thread_id: str
    sequence_index: int
    operation: Operation
    branch_id: Optional[str] = None
    branch_path: Optional[str] = None

    @property
    def op_type(self):
        return self.operation.type

    def to_dict(self):
        data = {
            "threadId": self.thread_id,
            "sequenceIndex": self.sequence_index,
            "operation": self.operation.to_dict(),
        }
        if self.branch_id:
            data["branchId"] = self.branch_id
            data["branchPath"] = self.branch_path or "then"
        return {"id": self.id, "data": data}

    @staticmethod
    def from_dict(data):
        payload = data.get("data", {})
        return TraceNode(
            id=data["id"],
            thread_id=payload["threadId"],
            sequence_index=int(payload.get("sequenceIndex", 0)),
            operation=Operation.from_dict(payload["operation"]),
            branch_id=payload.get("branchId"),
            branch_path=payload.get("branchPath"),
        )


@dataclass
class RelationEdge:
    id: str
    source: str
    target: str
    relation_type: str = "po"
    source_handle: Optional[str] = None
    invalid: bool = False
    generated: bool = False

    def to_dict(self):
        out = {"id": self.id, "source": self.source, "target": self.target}
        if self.source_handle:
            out["sourceHandle"] = self.source_handle
        data = {"relationType": self.relation_type, "invalid": self.invalid}
        if self.generated:
            data["generated"] = True
        out["data"] = data
        return out

    @staticmethod
    def from_dict(data):
        payload = data.get("data") or {}
        return RelationEdge(
            id=data["id"],
            source=data["source"],
            target=data["target"],
            relation_type=payload.get("relationType") or "po",
            source_handle=data.get("sourceHandle"),
            invalid=bool(payload.get("invalid", False)),
            generated=bool(payload.get("generated", False)),
        )


# ---------- Graph ----------

@dataclass
class TraceGraph:
    title: Optional[str] = None
    memory: List[MemoryVariable] = field(default_factory=list)
    nodes: List[TraceNode] = field(default_factory=list)
    edges: List[RelationEdge] = field(default_factory=list)
    threads: List[str] = field(default_factory=list)
    thread_labels: Dict[str, str] = field(default_factory=dict)
    model: ModelConfig = field(default_factory=ModelConfig)
    postcondition: Optional[str] = None

    def memory_by_id(self):
        return {item.id: item for item in self.memory}

    def node_by_id(self):
        return {node.id: node for node in self.nodes}

    def memory_in_scope(self, scope):
        return [item for item in self.memory if item.scope == scope]

    def to_dict(self):
        out = {}
        if self.title and self.title.strip():
            out["title"] = self.title.strip()
        out["model"] = self.model.to_dict()
        out["memory"] = {
            scope.value: [item.to_dict() for item in self.memory_in_scope(scope)]
            for scope in MemoryScope
        }
        out["nodes"] = [node.to_dict() for node in self.nodes]
        out["edges"] = [edge.to_dict() for edge in self.edges]
        out["threads"] = list(self.threads)
        labels = {t: self.thread_labels[t].strip() for t in self.threads
                  if (self.thread_labels.get(t) or "").strip()}
        if labels:
            out["threadLabels"] = labels
        if self.postcondition:
            out["postcondition"] = self.postcondition
        return out

    @staticmethod
    def from_dict(data):
        memory = data.get("memory") or {}
        if isinstance(memory, dict):
            flat = [item for scope in MemoryScope for item in memory.get(scope.value, [])]
        else:
            flat = list(memory)
        return TraceGraph(
            title=data.get("title"),
            memory=[MemoryVariable.from_dict(item) for item in flat],
            nodes=[TraceNode.from_dict(item) for item in data.get("nodes", [])],
            edges=[RelationEdge.from_dict(item) for item in data.get("edges", [])],
            threads=list(data.get("threads", [])),
            thread_labels=dict(data.get("threadLabels") or {}),
            model=ModelConfig.from_dict(data.get("model")),
            postcondition=data.get("postcondition"),
        )
