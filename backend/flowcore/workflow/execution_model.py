"""
Execution Data Models — per-node results and the run trace.

An ``ExecutionRun`` is created INPROGRESS when a test or deployed
run starts, appended to as nodes complete, and frozen once it
reaches a terminal state.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from flowcore.workflow.errors import InvalidStateTransition
from flowcore.workflow.workflow_model import BranchLabel

WORKFLOW_ID_PREFIX = "W"
EXECUTION_ID_PREFIX = "E"

_DICTIONARY_UPPER = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
_DICTIONARY_MIXED = "23456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz"


def short_id(
    prefix: str,
    date: Optional[datetime] = None,
    random_length: int = 8,
    lowercase: bool = False,
) -> str:
    """Return a short id such as ``E10JAN21-2CH9PX8N``.

    Format: prefix, ``DDMMMYY`` of ``date``, hyphen, random part.
    """
    if prefix not in (WORKFLOW_ID_PREFIX, EXECUTION_ID_PREFIX):
        raise ValueError('Invalid short id prefix, only possible values "W" or "E".')
    created = date or datetime.now(timezone.utc)
    dictionary = _DICTIONARY_MIXED if lowercase else _DICTIONARY_UPPER
    random_part = "".join(random.choice(dictionary) for _ in range(random_length))
    return f"{prefix}{created.strftime('%d%b%y').upper()}-{random_part}"


class ExecutionState(str, Enum):
    """Run state. INPROGRESS moves one way to a terminal value."""

    INPROGRESS = "INPROGRESS"
    FINISHED = "FINISHED"
    ERROR = "ERROR"
    TERMINATED = "TERMINATED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionState.INPROGRESS


class ExecutionAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    content_type: str = Field(default="application/octet-stream", alias="contentType")
    content: Any = None
    size: Optional[int] = None


class ExecutionItem(BaseModel):
    """One output item: structured data plus optional html/attachments."""

    data: Dict[str, Any] = Field(default_factory=dict)
    html: Optional[str] = None
    attachments: Optional[List[ExecutionAttachment]] = None

    @classmethod
    def from_value(cls, value: Any) -> "ExecutionItem":
        if isinstance(value, ExecutionItem):
            return value
        if not isinstance(value, dict):
            return cls(data={"value": value})
        item = cls(data=dict(value))
        attachments = value.get("attachments")
        if attachments:
            if not isinstance(attachments, list):
                attachments = [attachments]
            item.attachments = [
                a if isinstance(a, ExecutionAttachment) else ExecutionAttachment(**a)
                for a in attachments
            ]
        if value.get("html"):
            item.html = value["html"]
        return item

    @property
    def is_empty(self) -> bool:
        return not self.data and not self.html and not self.attachments


class NodeResult(BaseModel):
    """What a node executor hands back to the scheduler.

    ``branch`` is set by branch nodes and selects which tagged
    outgoing edges are followed.
    """

    items: List[ExecutionItem] = Field(default_factory=list)
    branch: Optional[BranchLabel] = None

    @classmethod
    def normalize(cls, value: Any) -> "NodeResult":
        """Coerce executor return values into a ``NodeResult``."""
        if isinstance(value, NodeResult):
            return value
        if value is None:
            return cls()
        if isinstance(value, (list, tuple)):
            return cls(items=[ExecutionItem.from_value(v) for v in value])
        return cls(items=[ExecutionItem.from_value(value)])


class NodeExecutionRecord(BaseModel):
    """Trace entry for a single executed node."""

    node_id: str
    node_label: str = ""
    data: List[ExecutionItem] = Field(default_factory=list)

    def to_trace(self) -> Dict[str, Any]:
        """Shape persisted by the storage layer and rendered by the UI."""
        return {
            "nodeId": self.node_id,
            "nodeLabel": self.node_label,
            "data": [item.model_dump(by_alias=True, exclude_none=True) for item in self.data],
        }


class ExecutionRun(BaseModel):
    """Ordered per-node results plus a terminal state."""

    id: str = Field(default_factory=lambda: short_id(EXECUTION_ID_PREFIX))
    workflow_id: str = ""
    state: ExecutionState = ExecutionState.INPROGRESS
    executed_data: List[NodeExecutionRecord] = Field(default_factory=list)
    error: Optional[str] = None
    error_node_id: Optional[str] = None
    created_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stopped_date: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal

    def record(
        self,
        node_id: str,
        node_label: str,
        data: Union[NodeResult, Iterable[ExecutionItem], None],
    ) -> NodeExecutionRecord:
        """Append a node's output to the trace."""
        if self.state.is_terminal:
            raise InvalidStateTransition(
                f"Execution {self.id} is {self.state.value}; trace is immutable"
            )
        items = data.items if isinstance(data, NodeResult) else list(data or [])
        entry = NodeExecutionRecord(
            node_id=node_id, node_label=node_label, data=items,
        )
        self.executed_data.append(entry)
        return entry

    def finish(
        self,
        state: ExecutionState,
        error: Optional[str] = None,
        error_node_id: Optional[str] = None,
    ) -> None:
        """Move INPROGRESS to a terminal state (one way)."""
        if self.state.is_terminal:
            raise InvalidStateTransition(
                f"Execution {self.id} already {self.state.value}"
            )
        if not state.is_terminal:
            raise InvalidStateTransition("Cannot finish an execution as INPROGRESS")
        self.state = state
        self.error = error
        self.error_node_id = error_node_id
        self.stopped_date = datetime.now(timezone.utc)

    def executed_node_ids(self) -> List[str]:
        return [r.node_id for r in self.executed_data]

    def outputs_by_node(self) -> Dict[str, List[ExecutionItem]]:
        return {r.node_id: r.data for r in self.executed_data}

    def to_trace(self) -> List[Dict[str, Any]]:
        return [r.to_trace() for r in self.executed_data]
