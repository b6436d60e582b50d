"""
Workflow Errors — exception hierarchy for graph validation and execution.

``ConfigurationError`` is raised before any node runs.
``ExecutorError`` wraps the exception a node executor raised.
``ExecutionCancelled`` and ``BudgetExceeded`` are control signals that
end a run as TERMINATED / TIMEOUT rather than true failures.
"""

from __future__ import annotations

from typing import List, Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class ConfigurationError(WorkflowError):
    """The workflow graph cannot be executed as drawn."""

    def __init__(self, message: str, faulty_nodes: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.faulty_nodes: List[str] = list(faulty_nodes or [])


class UnknownNodeTypeError(ConfigurationError):
    """A node references a type name that is not in the registry."""

    def __init__(self, node_type: str, node_id: Optional[str] = None) -> None:
        where = f" for node '{node_id}'" if node_id else ""
        super().__init__(
            f"Unknown node type '{node_type}'{where}",
            faulty_nodes=[node_id] if node_id else [],
        )
        self.node_type = node_type


class ExecutorError(WorkflowError):
    """A node's executor raised while running."""

    def __init__(self, node_id: str, node_label: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.node_label = node_label
        self.message = message

    def __str__(self) -> str:
        return f"Node '{self.node_label or self.node_id}' failed: {self.message}"


class ExecutionCancelled(WorkflowError):
    """Cancellation was requested while the run was in progress."""


# Alias matching the error-kind name used by the surrounding server.
CancellationSignal = ExecutionCancelled


class BudgetExceeded(WorkflowError):
    """The run (or a single node) exceeded its wall-clock budget."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class InvalidStateTransition(WorkflowError):
    """An ExecutionRun was mutated after reaching a terminal state."""
