"""
Deployed Workflow Pool — keeps deployed workflows listening.

Deploying a workflow starts every trigger node through the listener
registry and records every webhook endpoint. When a trigger fires,
the rest of the graph runs in a background task with the trigger's
output as the starting node's data.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Dict, List, Optional, Tuple

from flowcore.config import ExecutionConfig, WebhookConfig, get_config
from flowcore.workflow.errors import ConfigurationError
from flowcore.workflow.execution_model import (
    WORKFLOW_ID_PREFIX,
    ExecutionRun,
    ExecutionState,
    short_id,
)
from flowcore.workflow.graph import construct_graph_and_starting_nodes
from flowcore.workflow.listeners import ListenerRegistry, listener_key
from flowcore.workflow.nodes.base import (
    NodeRegistry,
    TriggerNode,
    WebhookNode,
    get_node_registry,
)
from flowcore.workflow.workflow_executor import WorkflowExecutor
from flowcore.workflow.workflow_model import WorkflowDefinition, WorkflowNode
from flowcore.workflow.workflow_store import WorkflowStore

logger = getLogger(__name__)


def webhook_key(endpoint: str, method: str) -> str:
    return f"{endpoint}_{method.upper()}"


@dataclass
class ActiveRun:
    workflow_id: str
    executor: WorkflowExecutor
    task: "asyncio.Task[ExecutionRun]"


class DeployedWorkflowPool:
    """Deployed workflow id → workflow, plus its listeners and runs."""

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        registry: Optional[NodeRegistry] = None,
        listeners: Optional[ListenerRegistry] = None,
        config: Optional[ExecutionConfig] = None,
    ) -> None:
        self._store = store
        self._registry = registry or get_node_registry()
        self.listeners = listeners or ListenerRegistry()
        self._config = config
        self._deployed: Dict[str, WorkflowDefinition] = {}
        self._webhooks: Dict[str, Tuple[str, str]] = {}
        self._runs: Dict[str, ActiveRun] = {}

    @property
    def config(self) -> ExecutionConfig:
        return self._config or get_config("execution")

    # ── Deploy / undeploy ──

    async def deploy(self, workflow: WorkflowDefinition) -> None:
        """Start listening for every starting node of ``workflow``.

        Raises:
            ConfigurationError: faulty graph or unknown node type.
        """
        if workflow.id in self._deployed:
            await self.undeploy(workflow.id)

        _graph, starting = construct_graph_and_starting_nodes(
            workflow.nodes, workflow.edges, self.config.require_single_start,
        )
        if not starting:
            raise ConfigurationError(f"Workflow '{workflow.name}' has no trigger or webhook node")

        if not workflow.short_id:
            workflow.short_id = short_id(
                WORKFLOW_ID_PREFIX, random_length=self.config.short_id_random_length,
            )
        key_prefix = workflow.short_id
        started: List[str] = []
        webhooks: List[str] = []
        try:
            for node_id in starting:
                node = workflow.get_node(node_id)
                base = self._registry.require(node.name, node.id)
                if isinstance(base, TriggerNode):
                    handle = await base.start(node, self._make_emit(workflow.id, node.id))
                    lid = listener_key(key_prefix, node.id)
                    await self.listeners.register(lid, handle, base.stop, node.input_parameters)
                    started.append(lid)
                elif isinstance(base, WebhookNode):
                    key = webhook_key(self._endpoint(node), self._method(node))
                    self._webhooks[key] = (workflow.id, node.id)
                    webhooks.append(key)
        except Exception:
            for lid in started:
                await self.listeners.unregister(lid)
            for key in webhooks:
                self._webhooks.pop(key, None)
            raise

        workflow.deployed = True
        self._deployed[workflow.id] = workflow
        if self._store is not None:
            self._store.save(workflow)
        logger.info(
            f"Workflow '{workflow.name}' deployed: {len(started)} listeners, {len(webhooks)} webhooks"
        )

    async def undeploy(self, workflow_id: str) -> bool:
        """Stop listeners, drop webhooks and terminate in-progress runs."""
        workflow = self._deployed.pop(workflow_id, None)
        if workflow is None:
            return False

        await self.listeners.unregister_prefix(f"{workflow.short_id or workflow.id}_")
        for key in [k for k, (wid, _nid) in self._webhooks.items() if wid == workflow_id]:
            del self._webhooks[key]

        runs = [r for r in self._runs.values() if r.workflow_id == workflow_id]
        for active in runs:
            active.executor.cancel()
        if runs:
            await asyncio.gather(*(r.task for r in runs), return_exceptions=True)

        workflow.deployed = False
        if self._store is not None:
            self._store.save(workflow)
        logger.info(f"Workflow '{workflow.name}' undeployed ({len(runs)} runs terminated)")
        return True

    async def initialize(self, store: Optional[WorkflowStore] = None) -> List[str]:
        """Redeploy every stored deployed workflow.

        Workflows that no longer validate are flipped to undeployed.
        Returns the ids that were deployed.
        """
        if store is not None:
            self._store = store
        if self._store is None:
            return []

        deployed: List[str] = []
        for workflow in self._store.list_deployed():
            try:
                await self.deploy(workflow)
                deployed.append(workflow.id)
            except ConfigurationError as e:
                logger.warning(f"Cannot redeploy '{workflow.name}': {e}")
                workflow.deployed = False
                self._store.save(workflow)
        return deployed

    async def shutdown(self) -> None:
        for workflow_id in list(self._deployed):
            await self.undeploy(workflow_id)

    # ── Runs ──

    def start_workflow(
        self,
        workflow_id: str,
        starting_node_id: str,
        initial_data: Any,
    ) -> "asyncio.Task[ExecutionRun]":
        """Run ``workflow_id`` from a fired starting node in the background."""
        workflow = self._deployed.get(workflow_id)
        if workflow is None:
            raise KeyError(f"Workflow '{workflow_id}' is not deployed")

        executor = WorkflowExecutor(
            workflow.nodes,
            workflow.edges,
            [starting_node_id],
            self._registry.resolve_executor,
            workflow_id=workflow.short_id or workflow.id,
            initial_data={starting_node_id: initial_data},
            config=self.config,
            registry=self._registry,
        )
        run_id = executor.run_state.id
        task = asyncio.create_task(self._execute(executor), name=f"run-{run_id}")
        self._runs[run_id] = ActiveRun(workflow_id, executor, task)
        task.add_done_callback(lambda _t: self._runs.pop(run_id, None))
        return task

    async def _execute(self, executor: WorkflowExecutor) -> ExecutionRun:
        try:
            run = await executor.run()
        except ConfigurationError as e:
            # Nobody awaits this task; the rejected run is returned as ERROR.
            logger.error(f"Deployed run {executor.run_state.id} rejected: {e}")
            run = executor.run_state
            run.finish(ExecutionState.ERROR, str(e))
            return run
        if self._store is not None:
            self._store.save_execution(run)
        logger.info(f"Deployed run {run.id} {run.state.value}")
        return run

    def stop_run(self, run_id: str) -> bool:
        active = self._runs.get(run_id)
        if active is None:
            return False
        active.executor.cancel()
        return True

    def active_runs(self) -> List[str]:
        return list(self._runs)

    # ── Lookup ──

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._deployed.get(workflow_id)

    def is_deployed(self, workflow_id: str) -> bool:
        return workflow_id in self._deployed

    def find_webhook(
        self, endpoint: str, method: str,
    ) -> Optional[Tuple[WorkflowDefinition, WorkflowNode]]:
        entry = self._webhooks.get(webhook_key(endpoint, method))
        if entry is None:
            return None
        workflow = self._deployed[entry[0]]
        return workflow, workflow.get_node(entry[1])

    # ── Internals ──

    def _make_emit(self, workflow_id: str, node_id: str):
        async def _emit(data: Any) -> None:
            self.start_workflow(workflow_id, node_id, data)
        return _emit

    @staticmethod
    def _endpoint(node: WorkflowNode) -> str:
        return node.webhook_endpoint or node.id

    @staticmethod
    def _method(node: WorkflowNode) -> str:
        webhook_config: WebhookConfig = get_config("webhook")
        return str(node.input_parameters.get("httpMethod") or webhook_config.default_http_method)
