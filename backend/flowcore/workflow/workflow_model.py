"""
Workflow Data Models — definitions, node instances, and edges.

These are the serializable data structures that describe
a user-drawn workflow graph. They are persisted by
``WorkflowStore`` and executed by ``WorkflowExecutor``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from flowcore.workflow.execution_model import ExecutionRun

INPUT_MARKER = "-input-"
OUTPUT_MARKER = "-output-"

# Parameter sets that may carry ``{{...}}`` variables.
VARIABLE_PARAMETER_SETS = ("actions", "networks", "input_parameters")


class NodeKind(str, Enum):
    """Node type discriminator. Other strings are allowed on nodes."""

    TRIGGER = "trigger"
    WEBHOOK = "webhook"
    ACTION = "action"


class BranchLabel(str, Enum):
    """Explicit tag of a branch output anchor."""

    TRUE = "true"
    FALSE = "false"


class NodeAnchor(BaseModel):
    """An input or output connection point on a node."""

    id: str
    branch: Optional[BranchLabel] = None


class WorkflowNode(BaseModel):
    """A single node placed on the workflow canvas.

    ``name`` references a registered ``BaseNode.node_type``.
    Parameter sets hold user-set values; ``output_responses`` is
    written back after a run.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str
    label: str = ""
    type: str = NodeKind.ACTION.value
    version: float = 1.0
    incoming: int = 0
    outgoing: int = 0
    input_anchors: List[NodeAnchor] = Field(default_factory=list, alias="inputAnchors")
    output_anchors: List[NodeAnchor] = Field(default_factory=list, alias="outputAnchors")
    actions: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Any] = Field(default_factory=dict)
    networks: Dict[str, Any] = Field(default_factory=dict)
    input_parameters: Dict[str, Any] = Field(default_factory=dict, alias="inputParameters")
    output_responses: Dict[str, Any] = Field(default_factory=dict, alias="outputResponses")
    webhook_endpoint: Optional[str] = Field(default=None, alias="webhookEndpoint")
    position: Dict[str, float] = Field(
        default_factory=lambda: {"x": 0, "y": 0}
    )

    @property
    def display_name(self) -> str:
        return self.label or self.name or self.id

    @property
    def is_starter_kind(self) -> bool:
        """True for node kinds that may start a run."""
        return self.type in (NodeKind.TRIGGER.value, NodeKind.WEBHOOK.value)

    def parameter_sets(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        for attr in VARIABLE_PARAMETER_SETS:
            yield attr, getattr(self, attr)

    def get_output_anchor(self, anchor_id: str) -> Optional[NodeAnchor]:
        for anchor in self.output_anchors:
            if anchor.id == anchor_id:
                return anchor
        return None


class WorkflowEdge(BaseModel):
    """A directed edge ``(source, source_handle) -> (target, target_handle)``.

    ``branch`` is set for edges leaving a branch anchor. When left empty
    it is filled from the source anchor by ``WorkflowDefinition``.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str
    target: str
    source_handle: str = Field(default="", alias="sourceHandle")
    target_handle: str = Field(default="", alias="targetHandle")
    branch: Optional[BranchLabel] = None

    @model_validator(mode="after")
    def _default_handles(self) -> "WorkflowEdge":
        if not self.source_handle:
            self.source_handle = f"{self.source}{OUTPUT_MARKER}0"
        if not self.target_handle:
            self.target_handle = f"{self.target}{INPUT_MARKER}0"
        return self

    @property
    def is_input(self) -> bool:
        """True when the edge lands on a data input anchor."""
        return INPUT_MARKER in self.target_handle

    @property
    def label(self) -> str:
        return self.branch.value if self.branch else ""


def add_anchors(
    node: WorkflowNode,
    incoming: int,
    outgoing: int,
    branches: Optional[Sequence[BranchLabel]] = None,
) -> WorkflowNode:
    """Create input/output anchors for a freshly placed node.

    Output anchor ``i`` is tagged with ``branches[i]`` when given.
    """
    node.incoming = incoming
    node.outgoing = outgoing
    node.input_anchors = [
        NodeAnchor(id=f"{node.id}{INPUT_MARKER}{i}") for i in range(incoming)
    ]
    tags = list(branches or [])
    node.output_anchors = [
        NodeAnchor(
            id=f"{node.id}{OUTPUT_MARKER}{i}",
            branch=tags[i] if i < len(tags) else None,
        )
        for i in range(outgoing)
    ]
    return node


class WorkflowDefinition(BaseModel):
    """A complete workflow graph definition.

    Contains all node instances, edges, and metadata.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    short_id: str = ""
    name: str = "Untitled Workflow"
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    deployed: bool = False
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @model_validator(mode="after")
    def _tag_branch_edges(self) -> "WorkflowDefinition":
        tag_edge_branches(self.nodes, self.edges)
        return self

    def touch(self) -> None:
        """Update the ``updated_at`` timestamp."""
        self.updated_at = datetime.now(timezone.utc).isoformat()

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Find a node instance by ID."""
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def get_edges_from(self, node_id: str) -> List[WorkflowEdge]:
        """Get all edges originating from a node."""
        return [e for e in self.edges if e.source == node_id]

    def get_edges_to(self, node_id: str) -> List[WorkflowEdge]:
        """Get all edges pointing to a node."""
        return [e for e in self.edges if e.target == node_id]

    def validate_graph(self) -> List[str]:
        """Validate the workflow graph structure.

        Returns a list of error messages (empty = valid).
        """
        errors: List[str] = []

        seen = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id: {node.id}")
            seen.add(node.id)

        for edge in self.edges:
            if edge.source not in seen:
                errors.append(f"Edge references unknown source node: {edge.source}")
            if edge.target not in seen:
                errors.append(f"Edge references unknown target node: {edge.target}")

        return errors

    def apply_execution(self, run: "ExecutionRun") -> None:
        """Write each executed node's items into its ``outputResponses``."""
        for record in run.executed_data:
            node = self.get_node(record.node_id)
            if node is None:
                continue
            node.output_responses = {
                "output": [item.model_dump(by_alias=True, exclude_none=True) for item in record.data],
            }
        if run.error_node_id:
            failed = self.get_node(run.error_node_id)
            if failed is not None:
                failed.output_responses = {"output": [], "error": run.error}


def tag_edge_branches(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> None:
    """Fill ``edge.branch`` from the source node's tagged output anchor."""
    node_map = {n.id: n for n in nodes}
    for edge in edges:
        if edge.branch is not None:
            continue
        source = node_map.get(edge.source)
        if source is None:
            continue
        anchor = source.get_output_anchor(edge.source_handle)
        if anchor is not None and anchor.branch is not None:
            edge.branch = anchor.branch
