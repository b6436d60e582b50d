import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from flowcore.config import ExecutionConfig, reset_configs
from flowcore.workflow.nodes.base import NodeInput
from flowcore.workflow.workflow_model import (
    BranchLabel,
    NodeKind,
    WorkflowEdge,
    WorkflowNode,
    add_anchors,
)


class FakeExecutors:
    """Scriptable stand-in for the node registry's ``resolve_executor``."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.inputs: Dict[str, NodeInput] = {}
        self.outputs: Dict[str, Any] = {}
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.hooks: Dict[str, Callable[[NodeInput], None]] = {}
        self.active = 0
        self.max_active = 0

    def resolve(self, node: WorkflowNode):
        async def _execute(node_input: NodeInput) -> Any:
            node_id = node_input.node.id
            self.calls.append(node_id)
            self.inputs[node_id] = node_input
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                if node_id in self.delays:
                    await asyncio.sleep(self.delays[node_id])
                if node_id in self.hooks:
                    self.hooks[node_id](node_input)
                if node_id in self.failures:
                    raise self.failures[node_id]
                return self.outputs.get(node_id, {"node": node_id})
            finally:
                self.active -= 1

        return _execute


@pytest.fixture(autouse=True)
def _fresh_configs():
    reset_configs()
    yield
    reset_configs()


@pytest.fixture
def fake() -> FakeExecutors:
    return FakeExecutors()


@pytest.fixture
def exec_config() -> ExecutionConfig:
    return ExecutionConfig(max_concurrency=4)


@pytest.fixture
def make_node() -> Callable[..., WorkflowNode]:
    def _make(
        node_id: str,
        kind: NodeKind = NodeKind.ACTION,
        name: str = "fake",
        label: str = "",
        outgoing: int = 1,
        branches: Optional[Sequence[BranchLabel]] = None,
        **params: Any,
    ) -> WorkflowNode:
        node = WorkflowNode(
            id=node_id,
            name=name,
            label=label or node_id,
            type=kind.value,
            inputParameters=params,
        )
        incoming = 0 if kind is not NodeKind.ACTION else 1
        return add_anchors(node, incoming, outgoing, branches)

    return _make


@pytest.fixture
def make_edge() -> Callable[..., WorkflowEdge]:
    def _make(source: str, target: str, out_index: int = 0) -> WorkflowEdge:
        return WorkflowEdge(
            id=f"{source}->{target}",
            source=source,
            target=target,
            sourceHandle=f"{source}-output-{out_index}",
            targetHandle=f"{target}-input-0",
        )

    return _make
