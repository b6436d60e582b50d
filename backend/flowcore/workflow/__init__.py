"""
Workflow Engine — graph model and execution core.

Provides the infrastructure for defining, storing, deploying and
executing user-drawn workflow graphs.

Architecture:
    nodes/             — BaseNode ABC, registry and built-in nodes
    workflow_model     — Data models for workflow definitions
    execution_model    — Per-node results and the run trace
    graph              — Adjacency, starting nodes, path/ancestor search
    variables          — ``{{nodeId[...]}}`` resolution
    workflow_executor  — Dependency-ordered, branch-aware scheduler
    listeners          — Owned table of active trigger listeners
    deployment         — Deployed workflows and their background runs
    webhook_pool       — Test webhooks and incoming webhook handling
    channels           — Client-keyed pub/sub for test results
    workflow_store     — Persistence layer for workflows and executions
    workflow_inspector — Static execution report
    templates          — Pre-built workflow templates
"""

from flowcore.workflow.errors import (
    BudgetExceeded,
    CancellationSignal,
    ConfigurationError,
    ExecutionCancelled,
    ExecutorError,
    InvalidStateTransition,
    UnknownNodeTypeError,
    WorkflowError,
)
from flowcore.workflow.workflow_model import (
    BranchLabel,
    NodeAnchor,
    NodeKind,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    add_anchors,
)
from flowcore.workflow.execution_model import (
    ExecutionAttachment,
    ExecutionItem,
    ExecutionRun,
    ExecutionState,
    NodeExecutionRecord,
    NodeResult,
    short_id,
)
from flowcore.workflow.graph import (
    NodeGraph,
    all_paths,
    available_variable_sources,
    build_graph,
    connected_ancestors,
    construct_graph_and_starting_nodes,
    find_starting_nodes,
)
from flowcore.workflow.nodes import register_all_nodes
from flowcore.workflow.nodes.base import (
    BaseNode,
    ExecutionContext,
    NodeInput,
    NodeParameter,
    NodeRegistry,
    TriggerNode,
    WebhookNode,
    get_node_registry,
    register_node,
)
from flowcore.workflow.variables import resolve_variables
from flowcore.workflow.workflow_executor import WorkflowExecutor, execute_workflow
from flowcore.workflow.workflow_store import WorkflowStore, get_workflow_store

__all__ = [
    "BudgetExceeded",
    "CancellationSignal",
    "ConfigurationError",
    "ExecutionCancelled",
    "ExecutorError",
    "InvalidStateTransition",
    "UnknownNodeTypeError",
    "WorkflowError",
    "BranchLabel",
    "NodeAnchor",
    "NodeKind",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "add_anchors",
    "ExecutionAttachment",
    "ExecutionItem",
    "ExecutionRun",
    "ExecutionState",
    "NodeExecutionRecord",
    "NodeResult",
    "short_id",
    "NodeGraph",
    "all_paths",
    "available_variable_sources",
    "build_graph",
    "connected_ancestors",
    "construct_graph_and_starting_nodes",
    "find_starting_nodes",
    "register_all_nodes",
    "BaseNode",
    "ExecutionContext",
    "NodeInput",
    "NodeParameter",
    "NodeRegistry",
    "TriggerNode",
    "WebhookNode",
    "get_node_registry",
    "register_node",
    "resolve_variables",
    "WorkflowExecutor",
    "execute_workflow",
    "WorkflowStore",
    "get_workflow_store",
]
