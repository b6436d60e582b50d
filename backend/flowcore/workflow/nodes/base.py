"""
Node Base — capability interface and registry for workflow node types.

Every node type is a ``BaseNode`` subclass tagged with a unique
``node_type``. The registry dispatches on that tag only: a
``WorkflowNode`` whose ``name`` is not registered is a configuration
error, never a structural guess.

Trigger and webhook nodes extend the base with listener lifecycle
(``TriggerNode.start`` / ``stop``) and HTTP request handling
(``WebhookNode.run_webhook``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type, Union

from flowcore.logging import RunLogger
from flowcore.workflow.errors import UnknownNodeTypeError
from flowcore.workflow.execution_model import ExecutionItem, NodeExecutionRecord, NodeResult
from flowcore.workflow.workflow_model import BranchLabel, NodeKind, WorkflowNode

logger = getLogger(__name__)

# Called by a trigger when it fires; receives the trigger's output.
EmitCallback = Callable[[Any], Awaitable[None]]

# ``resolve_executor(node)`` returns one of these. Coroutine functions
# and plain callables are both accepted.
NodeExecutor = Callable[["NodeInput"], Union[Awaitable[Any], Any]]


@dataclass
class NodeParameter:
    """A single user-editable parameter of a node type.

    ``group`` names the parameter set the value lives in
    (``actions``, ``networks``, ``inputParameters`` or ``credentials``).
    """

    name: str
    label: str
    type: str = "string"
    default: Any = None
    required: bool = False
    description: str = ""
    placeholder: str = ""
    options: Optional[List[Dict[str, Any]]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    group: str = "actions"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "label": self.label,
            "type": self.type,
            "default": self.default,
            "required": self.required,
            "group": self.group,
        }
        if self.description:
            data["description"] = self.description
        if self.placeholder:
            data["placeholder"] = self.placeholder
        if self.options is not None:
            data["options"] = self.options
        if self.min is not None:
            data["min"] = self.min
        if self.max is not None:
            data["max"] = self.max
        return data


@dataclass
class ExecutionContext:
    """Shared, read-only context handed to every node of one run."""

    run_id: str = ""
    workflow_id: str = ""
    run_logger: Optional[RunLogger] = None
    client_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NodeInput:
    """What a node executor receives.

    ``node`` already has its ``{{...}}`` variables resolved.
    ``inputs`` maps each target handle to the items delivered over it.
    ``executed`` is the run trace so far.
    """

    node: WorkflowNode
    inputs: Dict[str, List[ExecutionItem]] = field(default_factory=dict)
    executed: Sequence[NodeExecutionRecord] = field(default_factory=list)
    context: ExecutionContext = field(default_factory=ExecutionContext)

    @property
    def items(self) -> List[ExecutionItem]:
        """All delivered items, flattened in handle order."""
        merged: List[ExecutionItem] = []
        for handle in sorted(self.inputs):
            merged.extend(self.inputs[handle])
        return merged

    def param(self, name: str, default: Any = None) -> Any:
        """Look a parameter up across the node's parameter sets."""
        for _set_name, params in self.node.parameter_sets():
            if name in params:
                return params[name]
        return default


class BaseNode(ABC):
    """Abstract node type.

    Subclasses set the class attributes and implement ``execute``.
    """

    node_type: str = ""
    label: str = ""
    description: str = ""
    category: str = "general"
    kind: NodeKind = NodeKind.ACTION
    version: float = 1.0
    incoming: int = 1
    outgoing: int = 1
    branches: Sequence[BranchLabel] = ()
    parameters: List[NodeParameter] = []

    def describe(self) -> Dict[str, Any]:
        """Parameter schema and anchor layout shown in the node picker."""
        return {
            "name": self.node_type,
            "label": self.label,
            "description": self.description,
            "category": self.category,
            "type": self.kind.value,
            "version": self.version,
            "incoming": self.incoming,
            "outgoing": self.outgoing,
            "branches": [b.value for b in self.branches],
            "parameters": [p.to_dict() for p in self.parameters],
        }

    def defaults(self) -> Dict[str, Dict[str, Any]]:
        """Default values grouped by parameter set."""
        groups: Dict[str, Dict[str, Any]] = {}
        for param in self.parameters:
            if param.default is not None:
                groups.setdefault(param.group, {})[param.name] = param.default
        return groups

    def create_instance(self, node_id: str, label: str = "", **params: Any) -> WorkflowNode:
        """Build a ``WorkflowNode`` of this type with anchors and defaults."""
        from flowcore.workflow.workflow_model import add_anchors

        values = self.defaults()
        by_group = {p.name: p.group for p in self.parameters}
        for name, value in params.items():
            values.setdefault(by_group.get(name, "actions"), {})[name] = value

        node = WorkflowNode(
            id=node_id,
            name=self.node_type,
            label=label or self.label,
            type=self.kind.value,
            version=self.version,
            actions=values.get("actions", {}),
            networks=values.get("networks", {}),
            inputParameters=values.get("inputParameters", {}),
            credentials=values.get("credentials", {}),
        )
        return add_anchors(node, self.incoming, self.outgoing, self.branches)

    @abstractmethod
    async def execute(self, node_input: NodeInput) -> Any:
        """Run the node. Return a ``NodeResult``, items, a dict or None."""


class TriggerNode(BaseNode):
    """A node that fires on its own (schedule, chain event, ...)."""

    kind = NodeKind.TRIGGER
    incoming = 0

    @abstractmethod
    async def start(self, node: WorkflowNode, emit: EmitCallback) -> Any:
        """Begin listening; return a handle for the listener registry."""

    async def stop(self, handle: Any) -> None:
        """Stop a handle returned by ``start``."""

    async def execute(self, node_input: NodeInput) -> Any:
        # Test runs fire the trigger once by hand.
        return NodeResult(items=[ExecutionItem(data={"triggered": True})])


class WebhookNode(BaseNode):
    """A node started by an incoming HTTP request."""

    kind = NodeKind.WEBHOOK
    incoming = 0

    @abstractmethod
    async def run_webhook(self, node: WorkflowNode, request: Dict[str, Any]) -> NodeResult:
        """Turn the HTTP request into the node's output."""

    async def execute(self, node_input: NodeInput) -> Any:
        request = node_input.context.extra.get("request", {})
        return await self.run_webhook(node_input.node, request)


class NodeRegistry:
    """Node type tag → node instance."""

    def __init__(self) -> None:
        self._nodes: Dict[str, BaseNode] = {}

    def register(self, node_cls: Type[BaseNode]) -> BaseNode:
        if not node_cls.node_type:
            raise ValueError(f"{node_cls.__name__} has no node_type")
        instance = node_cls()
        if node_cls.node_type in self._nodes:
            logger.warning(f"Node type '{node_cls.node_type}' re-registered by {node_cls.__name__}")
        self._nodes[node_cls.node_type] = instance
        return instance

    def get(self, node_type: str) -> Optional[BaseNode]:
        return self._nodes.get(node_type)

    def require(self, node_type: str, node_id: Optional[str] = None) -> BaseNode:
        node = self._nodes.get(node_type)
        if node is None:
            raise UnknownNodeTypeError(node_type, node_id)
        return node

    def list_all(self) -> List[BaseNode]:
        return list(self._nodes.values())

    def describe_all(self) -> List[Dict[str, Any]]:
        return [n.describe() for n in self._nodes.values()]

    def resolve_executor(self, node: WorkflowNode) -> NodeExecutor:
        """Return the ``execute`` callable for a workflow node.

        Raises:
            UnknownNodeTypeError: if ``node.name`` is not registered.
        """
        return self.require(node.name, node.id).execute

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)


_registry: Optional[NodeRegistry] = None


def get_node_registry() -> NodeRegistry:
    """Process-wide registry singleton."""
    global _registry
    if _registry is None:
        _registry = NodeRegistry()
    return _registry


def register_node(node_cls: Type[BaseNode]) -> Type[BaseNode]:
    """Class decorator adding a node type to the global registry."""
    get_node_registry().register(node_cls)
    return node_cls
