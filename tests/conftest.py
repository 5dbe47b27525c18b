import pytest

from litmusgraph.model import (
    MemoryScope,
    MemoryType,
    MemoryVariable,
    Operation,
    OperationType,
    RelationEdge,
    TraceGraph,
    TraceNode,
)

MP_PIPE = r"""X86 MP
"Message passing, x86 flavour"
{ x=0; y=0; }
 P0          | P1          ;
 MOV [x],$1  | MOV EAX,[y] ;
 MOV [y],$1  | MOV EBX,[x] ;
exists (1:EAX=1 /\ 1:EBX=0)
"""

LB_CTRL_C = r"""C LB+ctrl+mb
(* load buffering with a control dependency *)
{}

P0(int *x, int *y)
{
	int r0;

	r0 = READ_ONCE(*x);
	if (r0 == 1) {
		WRITE_ONCE(*y, 1);
	}
}

P1(int *x, int *y)
{
	int r1;

	r1 = READ_ONCE(*y);
	smp_mb();
	WRITE_ONCE(*x, r1);
}

exists (0:r0=1 /\ 1:r1=1)
"""

IF_ELSE_C = r"""C if-else
{ x=0; y=0; }

P0(int *x, int *y) {
  int r0 = READ_ONCE(*x);
  if (r0) WRITE_ONCE(*y, 1);
  else WRITE_ONCE(*y, 2);
  smp_mb();
}

exists (0:r0=0)
"""


@pytest.fixture
def mp_pipe_text():
    return MP_PIPE


@pytest.fixture
def lb_ctrl_text():
    return LB_CTRL_C


@pytest.fixture
def if_else_text():
    return IF_ELSE_C


class GraphFactory:
    """Small builder for hand-made graphs in tests."""

    def __init__(self):
        self.memory = []
        self.nodes = []
        self.edges = []
        self.threads = []

    def var(self, var_id, name, scope="shared", value="0", **kw):
        self.memory.append(MemoryVariable(id=var_id, name=name, scope=MemoryScope(scope), value=value, **kw))
        return var_id

    def local(self, var_id, name, value=""):
        return self.var(var_id, name, scope="locals", value=value)

    def const(self, value):
        return self.var(f"const-{value}", str(value), scope="constants", value=str(value))

    def ptr(self, var_id, name, points_to_id, scope="shared"):
        return self.var(var_id, name, scope=scope, value=None, type=MemoryType.PTR, points_to_id=points_to_id)

    def node(self, node_id, thread, seq, kind, branch_id=None, branch_path=None, **op):
        if thread not in self.threads:
            self.threads.append(thread)
        self.nodes.append(TraceNode(
            id=node_id,
            thread_id=thread,
            sequence_index=seq,
            operation=Operation(OperationType(kind), **op),
            branch_id=branch_id,
            branch_path=branch_path,
        ))
        return node_id

    def edge(self, source, target, kind="po", handle=None):
        self.edges.append(RelationEdge(
            id=f"edge-{kind}-{len(self.edges)}",
            source=source,
            target=target,
            relation_type=kind,
            source_handle=handle,
        ))

    def chain(self, *node_ids):
        for source, target in zip(node_ids, node_ids[1:]):
            self.edge(source, target)

    def build(self, title="test"):
        return TraceGraph(
            title=title,
            memory=list(self.memory),
            nodes=list(self.nodes),
            edges=list(self.edges),
            threads=list(self.threads),
        )


@pytest.fixture
def factory():
    return GraphFactory()
