"""
Run Logger — structured per-execution log of node activity.

Each workflow run gets its own ``RunLogger``. Entries are kept in
memory for the execution viewer and forwarded to the module logger.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from logging import DEBUG, ERROR, INFO, getLogger
from typing import Any, Dict, List, Optional

logger = getLogger(__name__)


@dataclass
class LogEntry:
    """A single run log line."""
    event: str
    node_name: Optional[str] = None
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class RunLogger:
    """Collects node enter/exit/error and branch decisions for one run."""

    def __init__(self, run_id: str, workflow_id: str = "") -> None:
        self.run_id = run_id
        self.workflow_id = workflow_id
        self.entries: List[LogEntry] = []

    def _emit(self, level: int, entry: LogEntry) -> None:
        self.entries.append(entry)
        logger.log(
            level,
            f"[{self.run_id}] {entry.event}"
            + (f" '{entry.node_name}'" if entry.node_name else "")
            + (f": {entry.message}" if entry.message else ""),
        )

    def log_node_enter(self, node_name: str, node_type: str, inputs: Optional[Dict[str, int]] = None) -> None:
        self._emit(DEBUG, LogEntry(
            event="node_enter",
            node_name=node_name,
            data={"node_type": node_type, "inputs": inputs or {}},
        ))

    def log_node_exit(
        self,
        node_name: str,
        duration_ms: int,
        output_preview: Optional[str] = None,
        item_count: int = 0,
    ) -> None:
        self._emit(INFO, LogEntry(
            event="node_exit",
            node_name=node_name,
            message=f"{item_count} items in {duration_ms}ms",
            data={"duration_ms": duration_ms, "output_preview": output_preview, "item_count": item_count},
        ))

    def log_node_error(self, node_name: str, error_message: str, error_type: str, duration_ms: int = 0) -> None:
        self._emit(ERROR, LogEntry(
            event="node_error",
            node_name=node_name,
            message=f"{error_type}: {error_message}",
            data={"error_type": error_type, "duration_ms": duration_ms},
        ))

    def log_edge_decision(self, from_node: str, decision: str, targets: List[str]) -> None:
        self._emit(DEBUG, LogEntry(
            event="edge_decision",
            node_name=from_node,
            message=f"{decision} → {', '.join(targets) or '(none)'}",
            data={"decision": decision, "targets": targets},
        ))

    def log_run_finished(self, state: str, executed: int, error: Optional[str] = None) -> None:
        self._emit(ERROR if error else INFO, LogEntry(
            event="run_finished",
            message=f"{state} after {executed} nodes" + (f" ({error})" if error else ""),
            data={"state": state, "executed": executed, "error": error},
        ))

    def events(self, event: str) -> List[LogEntry]:
        return [e for e in self.entries if e.event == event]


_run_loggers: Dict[str, RunLogger] = {}


def get_run_logger(run_id: str, workflow_id: str = "") -> RunLogger:
    """Return the logger for a run, creating it on first use."""
    if run_id not in _run_loggers:
        _run_loggers[run_id] = RunLogger(run_id, workflow_id)
    return _run_loggers[run_id]


def release_run_logger(run_id: str) -> Optional[RunLogger]:
    """Forget a finished run's logger and return it."""
    return _run_loggers.pop(run_id, None)
