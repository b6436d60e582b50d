"""
Webhook handling — test webhooks, single-node tests and incoming
webhook requests.

A test webhook is registered while a user waits on the canvas. When
its endpoint is called, the result is published to the user's client
channel instead of being returned by the call that registered it.
Calls to endpoints of deployed workflows start a run.

A single-node test runs an action once with its variables resolved,
or starts a trigger that is stopped again after its first fire.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Dict, List, Optional, Sequence, Tuple

from flowcore.config import WebhookConfig, get_config
from flowcore.workflow.channels import (
    TEST_NODE_RESPONSE,
    TEST_WORKFLOW_FINISHED,
    TEST_WORKFLOW_NODE_RESPONSE,
    ExecutionChannel,
)
from flowcore.workflow.deployment import DeployedWorkflowPool, webhook_key
from flowcore.workflow.errors import ConfigurationError
from flowcore.workflow.execution_model import ExecutionRun, NodeExecutionRecord, NodeResult
from flowcore.workflow.graph import construct_graph_and_starting_nodes
from flowcore.workflow.nodes.base import (
    NodeInput,
    NodeRegistry,
    TriggerNode,
    WebhookNode,
    get_node_registry,
)
from flowcore.workflow.variables import resolve_variables
from flowcore.workflow.workflow_executor import WorkflowExecutor
from flowcore.workflow.workflow_model import WorkflowDefinition, WorkflowNode

logger = getLogger(__name__)


@dataclass
class ActiveTestWebhook:
    """A webhook waiting for its first call during a test."""

    workflow: WorkflowDefinition
    node_id: str
    client_id: str
    test_workflow: bool = False


@dataclass
class WebhookResponse:
    status_code: int
    body: Any
    execution: Optional["asyncio.Task[ExecutionRun]"] = field(default=None, repr=False)


class WebhookTestPool:
    """Active test webhooks keyed ``"{endpoint}_{method}"``."""

    def __init__(self) -> None:
        self._entries: Dict[str, ActiveTestWebhook] = {}

    def add(self, endpoint: str, method: str, entry: ActiveTestWebhook) -> str:
        key = webhook_key(endpoint, method)
        self._entries[key] = entry
        logger.debug(f"Test webhook '{key}' added for client '{entry.client_id}'")
        return key

    def get(self, endpoint: str, method: str) -> Optional[ActiveTestWebhook]:
        return self._entries.get(webhook_key(endpoint, method))

    def remove(self, endpoint: str, method: str) -> Optional[ActiveTestWebhook]:
        return self._entries.pop(webhook_key(endpoint, method), None)

    def remove_all(self, workflow_id: Optional[str] = None) -> List[str]:
        """Drop every entry, or only those of one workflow."""
        keys = [
            k for k, e in self._entries.items()
            if workflow_id is None or e.workflow.id == workflow_id
        ]
        for key in keys:
            del self._entries[key]
        return keys

    def __len__(self) -> int:
        return len(self._entries)


def webhook_response(node: WorkflowNode, endpoint: str) -> WebhookResponse:
    """Status code and body configured on a webhook node."""
    config: WebhookConfig = get_config("webhook")
    params = node.input_parameters
    return WebhookResponse(
        status_code=int(params.get("responseCode") or config.default_response_code),
        body=params.get("responseData") or f"Webhook {endpoint} received!",
    )


async def process_webhook(
    endpoint: str,
    method: str,
    request: Dict[str, Any],
    *,
    test_pool: WebhookTestPool,
    deployed_pool: DeployedWorkflowPool,
    channel: ExecutionChannel,
    registry: Optional[NodeRegistry] = None,
) -> WebhookResponse:
    """Handle an incoming call to ``/webhook/{endpoint}``."""
    registry = registry or get_node_registry()

    test = test_pool.remove(endpoint, method)
    if test is not None:
        return await _process_test_webhook(endpoint, request, test, channel, registry)

    found = deployed_pool.find_webhook(endpoint, method)
    if found is None:
        return WebhookResponse(404, f"Webhook {endpoint} not found")

    workflow, node = found
    try:
        construct_graph_and_starting_nodes(workflow.nodes, workflow.edges)
    except ConfigurationError as e:
        return WebhookResponse(500, str(e))

    base = registry.require(node.name, node.id)
    if not isinstance(base, WebhookNode):
        return WebhookResponse(404, f"Node {node.name} is not a webhook")

    result = await base.run_webhook(node, request)
    response = webhook_response(node, endpoint)
    response.execution = deployed_pool.start_workflow(workflow.id, node.id, result)
    return response


async def _process_test_webhook(
    endpoint: str,
    request: Dict[str, Any],
    test: ActiveTestWebhook,
    channel: ExecutionChannel,
    registry: NodeRegistry,
) -> WebhookResponse:
    node = test.workflow.get_node(test.node_id)
    if node is None:
        return WebhookResponse(404, f"Node {test.node_id} not found")
    base = registry.get(node.name)
    if not isinstance(base, WebhookNode):
        return WebhookResponse(404, f"Node {node.name} not found")

    result = await base.run_webhook(resolve_variables(node, []), request)
    response = webhook_response(node, endpoint)

    if not test.test_workflow:
        channel.publish(test.client_id, TEST_NODE_RESPONSE, [
            item.model_dump(by_alias=True, exclude_none=True) for item in result.items
        ])
        return response

    def _publish_record(record: NodeExecutionRecord) -> None:
        channel.publish(test.client_id, TEST_WORKFLOW_NODE_RESPONSE, record.to_trace())

    executor = WorkflowExecutor(
        test.workflow.nodes,
        test.workflow.edges,
        [node.id],
        registry.resolve_executor,
        workflow_id=test.workflow.short_id or test.workflow.id,
        initial_data={node.id: result},
        registry=registry,
        on_record=_publish_record,
        client_id=test.client_id,
    )
    try:
        executor.validate()
    except ConfigurationError as e:
        return WebhookResponse(500, str(e))

    async def _run_test() -> ExecutionRun:
        run = await executor.run()
        test.workflow.apply_execution(run)
        channel.publish(test.client_id, TEST_WORKFLOW_FINISHED, {
            "executionId": run.id,
            "state": run.state.value,
            "error": run.error,
            "executedData": run.to_trace(),
        })
        return run

    response.execution = asyncio.create_task(_run_test(), name=f"test-{executor.run_state.id}")
    return response


# ── Single-node tests ──


class TriggerTestPool:
    """Triggers started by a node test, keyed by node id.

    Entries are cleared once the trigger fires, or with ``remove_all``
    when the user leaves the canvas.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[TriggerNode, Any]] = {}

    async def add(self, node_id: str, trigger: TriggerNode, handle: Any) -> None:
        await self.remove(node_id)
        self._entries[node_id] = (trigger, handle)
        logger.debug(f"Test trigger '{node_id}' added")

    async def remove(self, node_id: str) -> bool:
        """Stop and drop one test trigger. Returns False when unknown."""
        entry = self._entries.pop(node_id, None)
        if entry is None:
            return False
        trigger, handle = entry
        await trigger.stop(handle)
        logger.debug(f"Test trigger '{node_id}' removed")
        return True

    async def remove_all(self) -> List[str]:
        removed = list(self._entries)
        for node_id in removed:
            await self.remove(node_id)
        return removed

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class NodeTestResponse:
    status_code: int
    body: Any
    fired: Optional["asyncio.Future[Any]"] = field(default=None, repr=False)


def _dump_items(result: NodeResult) -> List[Dict[str, Any]]:
    return [item.model_dump(by_alias=True, exclude_none=True) for item in result.items]


async def run_node_test(
    node: WorkflowNode,
    executed: Sequence[NodeExecutionRecord] = (),
    *,
    client_id: str,
    channel: ExecutionChannel,
    trigger_pool: TriggerTestPool,
    test_pool: Optional[WebhookTestPool] = None,
    registry: Optional[NodeRegistry] = None,
) -> NodeTestResponse:
    """Test a single node from the canvas.

    - Actions run once against ``executed`` and return their items.
    - Triggers are started; the first output is published to
      ``client_id`` and resolves ``fired``, then the trigger is stopped.
    - Webhooks are registered as test webhooks on ``test_pool``.
    """
    registry = registry or get_node_registry()
    base = registry.get(node.name)
    if base is None:
        return NodeTestResponse(404, f"Node {node.name} not found")

    if isinstance(base, TriggerNode):
        return await _start_test_trigger(base, node, client_id, channel, trigger_pool)

    if isinstance(base, WebhookNode):
        if test_pool is None:
            return NodeTestResponse(500, f"No test webhook pool for node {node.name}")
        endpoint = node.webhook_endpoint or node.id
        config: WebhookConfig = get_config("webhook")
        method = str(node.input_parameters.get("httpMethod") or config.default_http_method)
        workflow = WorkflowDefinition(id=node.id, nodes=[node])
        key = test_pool.add(endpoint, method, ActiveTestWebhook(workflow, node.id, client_id))
        return NodeTestResponse(200, {"webhookEndpoint": endpoint, "httpMethod": method, "key": key})

    resolved = resolve_variables(node, executed)
    try:
        value = await base.execute(NodeInput(node=resolved, executed=list(executed)))
    except Exception as e:
        logger.exception(f"Node test '{node.display_name}' failed")
        return NodeTestResponse(500, f"Node test error: {e}")
    return NodeTestResponse(200, _dump_items(NodeResult.normalize(value)))


async def _start_test_trigger(
    trigger: TriggerNode,
    node: WorkflowNode,
    client_id: str,
    channel: ExecutionChannel,
    trigger_pool: TriggerTestPool,
) -> NodeTestResponse:
    fired: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()

    async def _emit(data: Any) -> None:
        if fired.done():
            return
        items = _dump_items(NodeResult.normalize(data))
        channel.publish(client_id, TEST_NODE_RESPONSE, items)
        fired.set_result(items)
        await trigger_pool.remove(node.id)

    handle = await trigger.start(resolve_variables(node, []), _emit)
    await trigger_pool.add(node.id, trigger, handle)
    if fired.done():
        # Fired before ``start`` returned its handle.
        await trigger_pool.remove(node.id)
    return NodeTestResponse(200, f"Trigger {node.display_name} started", fired)
