"""
Workflow Store — JSON-file persistence for workflows and executions.

Stores workflow definitions and execution runs as individual JSON
files under configurable directories.
"""

from __future__ import annotations

import json
from logging import getLogger
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from flowcore.config import StorageConfig, get_config
from flowcore.workflow.execution_model import WORKFLOW_ID_PREFIX, ExecutionRun, short_id
from flowcore.workflow.workflow_model import WorkflowDefinition

logger = getLogger(__name__)


class WorkflowStore:
    """Persist and load WorkflowDefinition / ExecutionRun objects as JSON files."""

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        execution_dir: Optional[Path] = None,
    ) -> None:
        config: StorageConfig = get_config("storage")
        self._dir = Path(storage_dir or config.workflow_dir)
        self._exec_dir = Path(execution_dir or (
            self._dir.parent / "executions" if storage_dir else config.execution_dir
        ))
        self._dir.mkdir(parents=True, exist_ok=True)
        self._exec_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"WorkflowStore initialized at {self._dir}")

    # ── Workflows ──

    def save(self, workflow: WorkflowDefinition) -> None:
        """Save (create or update) a workflow definition."""
        workflow.touch()
        if not workflow.short_id:
            workflow.short_id = short_id(WORKFLOW_ID_PREFIX)
        path = self._path_for(self._dir, workflow.id)
        path.write_text(
            workflow.model_dump_json(indent=2, by_alias=True),
            encoding="utf-8",
        )
        logger.info(f"Workflow saved: {workflow.name} ({workflow.id})")

    def load(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Load a single workflow by ID."""
        path = self._path_for(self._dir, workflow_id)
        if not path.exists():
            return None
        try:
            return WorkflowDefinition.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            logger.error(f"Failed to load workflow {workflow_id}: {e}")
            return None

    def delete(self, workflow_id: str) -> bool:
        """Delete a workflow definition and its executions."""
        path = self._path_for(self._dir, workflow_id)
        if not path.exists():
            return False
        workflow = self.load(workflow_id)
        path.unlink()
        if workflow is not None:
            for run in self.list_executions(workflow.short_id or workflow.id):
                self._path_for(self._exec_dir, run.id).unlink(missing_ok=True)
        logger.info(f"Workflow deleted: {workflow_id}")
        return True

    def list_all(self) -> List[WorkflowDefinition]:
        """List all saved workflow definitions."""
        workflows: List[WorkflowDefinition] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                workflows.append(WorkflowDefinition(**data))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping malformed workflow file {path.name}: {e}")
        return workflows

    def list_deployed(self) -> List[WorkflowDefinition]:
        """List only deployed workflows."""
        return [w for w in self.list_all() if w.deployed]

    def exists(self, workflow_id: str) -> bool:
        return self._path_for(self._dir, workflow_id).exists()

    # ── Executions ──

    def save_execution(self, run: ExecutionRun) -> None:
        path = self._path_for(self._exec_dir, run.id)
        path.write_text(run.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Execution saved: {run.id} ({run.state.value})")

    def load_execution(self, execution_id: str) -> Optional[ExecutionRun]:
        path = self._path_for(self._exec_dir, execution_id)
        if not path.exists():
            return None
        try:
            return ExecutionRun.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            logger.error(f"Failed to load execution {execution_id}: {e}")
            return None

    def list_executions(self, workflow_id: Optional[str] = None) -> List[ExecutionRun]:
        """Executions, oldest first, optionally for one workflow."""
        runs: List[ExecutionRun] = []
        for path in self._exec_dir.glob("*.json"):
            try:
                run = ExecutionRun.model_validate_json(path.read_text(encoding="utf-8"))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping malformed execution file {path.name}: {e}")
                continue
            if workflow_id is None or run.workflow_id == workflow_id:
                runs.append(run)
        return sorted(runs, key=lambda r: r.created_date)

    # ── Internals ──

    @staticmethod
    def _path_for(directory: Path, item_id: str) -> Path:
        # Sanitize ID for filesystem
        safe_id = "".join(c for c in item_id if c.isalnum() or c in "-_")
        return directory / f"{safe_id}.json"


# ── Singleton ──

_store_instance: Optional[WorkflowStore] = None


def get_workflow_store() -> WorkflowStore:
    """Return the global WorkflowStore singleton."""
    global _store_instance
    if _store_instance is None:
        _store_instance = WorkflowStore()
    return _store_instance
