"""
Workflow Executor — run a workflow graph node by node.

Takes the user-drawn node/edge lists and one or more starting nodes
and invokes every reachable node's executor in dependency order,
feeding each node the outputs of its parents.

Scheduling is Kahn-style over the subgraph reachable from the
starting set. Independent nodes may run concurrently up to
``max_concurrency``. The first failing node ends the run as ERROR;
work already in flight is cancelled and completed outputs are kept.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from logging import getLogger
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from flowcore.config import ExecutionConfig, get_config
from flowcore.logging import RunLogger, get_run_logger, release_run_logger
from flowcore.workflow.errors import (
    BudgetExceeded,
    ConfigurationError,
    ExecutionCancelled,
    ExecutorError,
)
from flowcore.workflow.execution_model import (
    EXECUTION_ID_PREFIX,
    ExecutionRun,
    ExecutionState,
    NodeExecutionRecord,
    NodeResult,
    short_id,
)
from flowcore.workflow.graph import (
    build_graph,
    construct_graph_and_starting_nodes,
    find_faulty_nodes,
    topological_order,
)
from flowcore.workflow.nodes.base import (
    ExecutionContext,
    NodeExecutor,
    NodeInput,
    NodeRegistry,
    get_node_registry,
)
from flowcore.workflow.variables import resolve_variables
from flowcore.workflow.workflow_model import (
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    tag_edge_branches,
)

logger = getLogger(__name__)

ResolveExecutor = Callable[[WorkflowNode], NodeExecutor]
RecordCallback = Callable[[NodeExecutionRecord], Any]


class WorkflowExecutor:
    """Execute one workflow run.

    Steps:
        1. Validate the graph (endpoints, starting ids, faulty nodes,
           cycles, node types). Nothing runs when this fails.
        2. Start every starting node; a node becomes eligible once all
           of its reachable parents have resolved.
        3. Follow untagged edges always and tagged (branch) edges only
           when they match the branch a node reported. A node none of
           whose parents delivered output is pruned, and so is
           everything only it feeds.
        4. Finish the run as FINISHED, ERROR, TERMINATED or TIMEOUT.

    Usage::

        executor = WorkflowExecutor(nodes, edges, ["trigger_0"])
        run = await executor.run()
    """

    def __init__(
        self,
        nodes: Sequence[WorkflowNode],
        edges: Sequence[WorkflowEdge],
        starting_node_ids: Sequence[str],
        resolve_executor: Optional[ResolveExecutor] = None,
        *,
        workflow_id: str = "",
        initial_data: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        config: Optional[ExecutionConfig] = None,
        registry: Optional[NodeRegistry] = None,
        on_record: Optional[RecordCallback] = None,
        context_extra: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> None:
        self._nodes: Dict[str, WorkflowNode] = {n.id: n for n in nodes}
        self._node_list = list(nodes)
        self._edges = [e.model_copy() for e in edges]
        tag_edge_branches(self._node_list, self._edges)
        self._starting_ids = list(dict.fromkeys(starting_node_ids))
        self._registry = registry or get_node_registry()
        self._resolve_executor = resolve_executor or self._registry.resolve_executor
        self._initial_data = dict(initial_data or {})
        self._cancel_event = cancel_event or asyncio.Event()
        self._config: ExecutionConfig = config or get_config("execution")
        self._on_record = on_record

        self.run_state = ExecutionRun(
            id=short_id(
                EXECUTION_ID_PREFIX,
                random_length=self._config.short_id_random_length,
                lowercase=self._config.short_id_lowercase,
            ),
            workflow_id=workflow_id,
        )
        self.run_logger: RunLogger = get_run_logger(self.run_state.id, workflow_id)
        self._context = ExecutionContext(
            run_id=self.run_state.id,
            workflow_id=workflow_id,
            run_logger=self.run_logger,
            client_id=client_id,
            extra=dict(context_extra or {}),
        )

        self._order: List[str] = []
        self._executors: Dict[str, NodeExecutor] = {}
        self._in_edges: Dict[str, List[WorkflowEdge]] = {}
        self._out_edges: Dict[str, List[WorkflowEdge]] = {}
        self._validated = False

        # Scheduling state, reset per run.
        self._remaining: Dict[str, int] = {}
        self._delivered: Dict[str, int] = {}
        self._inputs: Dict[str, Dict[str, list]] = {}
        self._failed_node: Optional[str] = None
        self.skipped: List[str] = []

    @classmethod
    def from_workflow(
        cls,
        workflow: WorkflowDefinition,
        resolve_executor: Optional[ResolveExecutor] = None,
        **kwargs: Any,
    ) -> "WorkflowExecutor":
        """Build an executor starting from every trigger/webhook of ``workflow``."""
        config: ExecutionConfig = kwargs.get("config") or get_config("execution")
        _graph, starting = construct_graph_and_starting_nodes(
            workflow.nodes, workflow.edges, config.require_single_start,
        )
        kwargs.setdefault("workflow_id", workflow.short_id or workflow.id)
        return cls(workflow.nodes, workflow.edges, starting, resolve_executor, **kwargs)

    @property
    def order(self) -> List[str]:
        """Topological order of the reachable subgraph (after validation)."""
        return list(self._order)

    def cancel(self) -> None:
        """Request cancellation; observed before the next node starts."""
        self._cancel_event.set()

    # ========================================================================
    # Validation
    # ========================================================================

    def validate(self) -> None:
        """Check the graph can run.

        Raises:
            ConfigurationError: on any structural problem.
        """
        if self._validated:
            return
        try:
            self._check_graph()
        except ConfigurationError:
            # The run never starts; its logger is released here.
            release_run_logger(self.run_state.id)
            raise
        self._validated = True

    def _check_graph(self) -> None:
        errors: List[str] = []
        for edge in self._edges:
            if edge.source not in self._nodes:
                errors.append(f"Edge '{edge.id}' references unknown source node: {edge.source}")
            if edge.target not in self._nodes:
                errors.append(f"Edge '{edge.id}' references unknown target node: {edge.target}")
        if errors:
            raise ConfigurationError("Workflow validation failed:\n" + "\n".join(f"  • {e}" for e in errors))

        if not self._starting_ids:
            raise ConfigurationError("Workflow has no starting node")
        unknown = [s for s in self._starting_ids if s not in self._nodes]
        if unknown:
            raise ConfigurationError(
                f"Starting node(s) not in workflow: {', '.join(unknown)}",
                faulty_nodes=unknown,
            )
        if self._config.require_single_start and len(self._starting_ids) > 1:
            raise ConfigurationError(
                f"Workflow must have exactly one starting node (found {len(self._starting_ids)}).",
                faulty_nodes=list(self._starting_ids),
            )

        graph = build_graph(self._node_list, self._edges)
        faulty = [
            n for n in find_faulty_nodes(self._node_list, graph.in_degree)
            if n.id not in self._starting_ids
        ]
        if faulty:
            raise ConfigurationError(
                "Action nodes must connected to source. Faulty nodes: "
                + ", ".join(n.display_name for n in faulty),
                faulty_nodes=[n.id for n in faulty],
            )

        labels = {node_id: node.display_name for node_id, node in self._nodes.items()}
        self._order = topological_order(graph, self._starting_ids, labels)
        reachable = set(self._order)

        for node_id in self._order:
            self._in_edges[node_id] = []
            self._out_edges[node_id] = []
        for edge in self._edges:
            if edge.source in reachable:
                self._out_edges[edge.source].append(edge)
                self._in_edges[edge.target].append(edge)

        for node_id in self._order:
            if node_id in self._initial_data:
                continue
            self._executors[node_id] = self._resolve_executor(self._nodes[node_id])

    # ========================================================================
    # Execution
    # ========================================================================

    async def run(self, raise_on_error: bool = False) -> ExecutionRun:
        """Validate, execute and return the finished run.

        Raises:
            ConfigurationError: before any node runs.
            ExecutorError: only with ``raise_on_error``, after recording.
        """
        self.validate()
        run = self.run_state
        timeout = self._config.run_timeout
        logger.info(
            f"[{run.id}] Running workflow '{run.workflow_id or '-'}' "
            f"from {', '.join(self._starting_ids)} ({len(self._order)} reachable nodes)"
        )

        failure: Optional[ExecutorError] = None
        try:
            if timeout:
                await asyncio.wait_for(self._schedule(), timeout)
            else:
                await self._schedule()
        except asyncio.TimeoutError:
            self._finish(ExecutionState.TIMEOUT, str(BudgetExceeded(
                f"Execution exceeded {timeout}s budget", timeout,
            )))
        except BudgetExceeded as e:
            self._finish(ExecutionState.TIMEOUT, str(e), self._failed_node)
        except ExecutionCancelled as e:
            self._finish(ExecutionState.TERMINATED, str(e) or None)
        except ExecutorError as e:
            failure = e
            self._finish(ExecutionState.ERROR, str(e), e.node_id)
        except asyncio.CancelledError:
            self._finish(ExecutionState.TERMINATED, "Execution cancelled")
            raise
        except Exception as e:
            self._finish(ExecutionState.ERROR, str(e) or type(e).__name__, self._failed_node)
            raise
        else:
            self._finish(ExecutionState.FINISHED)
        finally:
            release_run_logger(run.id)

        if failure is not None and raise_on_error:
            raise failure
        return run

    def _finish(self, state: ExecutionState, error: Optional[str] = None, node_id: Optional[str] = None) -> None:
        self.run_state.finish(state, error, node_id)
        self.run_logger.log_run_finished(state.value, len(self.run_state.executed_data), error)

    async def _schedule(self) -> None:
        self._remaining = {n: len(self._in_edges[n]) for n in self._order}
        self._delivered = {n: 0 for n in self._order}
        self._inputs = {n: {} for n in self._order}
        self._failed_node = None
        position = {node_id: i for i, node_id in enumerate(self._order)}

        ready: Deque[str] = deque(s for s in self._starting_ids if self._remaining[s] == 0)
        pending: Dict[asyncio.Task, str] = {}
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())
        max_concurrency = max(1, self._config.max_concurrency)

        try:
            while ready or pending:
                while ready and len(pending) < max_concurrency:
                    if self._cancel_event.is_set():
                        raise ExecutionCancelled(f"Execution {self.run_state.id} was stopped")
                    node_id = ready.popleft()
                    task = asyncio.create_task(self._run_node(node_id), name=f"node-{node_id}")
                    pending[task] = node_id

                done, _ = await asyncio.wait(
                    [*pending, cancel_waiter], return_when=asyncio.FIRST_COMPLETED,
                )
                finished = sorted(
                    (t for t in done if t is not cancel_waiter),
                    key=lambda t: position[pending[t]],
                )
                for task in finished:
                    node_id = pending.pop(task)
                    try:
                        result = task.result()
                    except (ExecutorError, BudgetExceeded):
                        self._failed_node = node_id
                        raise
                    await self._record(node_id, result)
                    self._propagate(node_id, result, ready)

                if self._cancel_event.is_set():
                    raise ExecutionCancelled(f"Execution {self.run_state.id} was stopped")
        finally:
            cancel_waiter.cancel()
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            await asyncio.gather(cancel_waiter, return_exceptions=True)

    async def _run_node(self, node_id: str) -> NodeResult:
        node = self._nodes[node_id]
        label = node.display_name
        if node_id in self._initial_data:
            return NodeResult.normalize(self._initial_data[node_id])

        executed = list(self.run_state.executed_data)
        node_input = NodeInput(
            node=resolve_variables(node, executed),
            inputs={h: list(items) for h, items in self._inputs[node_id].items()},
            executed=executed,
            context=self._context,
        )
        self.run_logger.log_node_enter(
            label, node.name, {h: len(items) for h, items in node_input.inputs.items()},
        )

        budget = self._config.per_node_timeout
        start = time.time()
        if budget:
            # _invoke turns executor errors into ExecutorError, so a
            # TimeoutError here can only be the budget expiring.
            try:
                result = await asyncio.wait_for(self._invoke(node_id, node_input, start), budget)
            except asyncio.TimeoutError:
                duration_ms = int((time.time() - start) * 1000)
                self.run_logger.log_node_error(label, f"exceeded {budget}s", "BudgetExceeded", duration_ms)
                raise BudgetExceeded(f"Node '{label}' exceeded {budget}s budget", budget)
        else:
            result = await self._invoke(node_id, node_input, start)

        duration_ms = int((time.time() - start) * 1000)
        self.run_logger.log_node_exit(
            label, duration_ms, self._make_output_preview(result), len(result.items),
        )
        return result

    async def _invoke(self, node_id: str, node_input: NodeInput, start: float) -> NodeResult:
        """Call the node's executor; plain return values are accepted too."""
        node = self._nodes[node_id]
        label = node.display_name
        try:
            value = self._executors[node_id](node_input)
            if inspect.isawaitable(value):
                value = await value
            return NodeResult.normalize(value)
        except Exception as e:
            duration_ms = int((time.time() - start) * 1000)
            message = str(e) or type(e).__name__
            logger.error(
                f"[{self.run_state.id}] Node '{label}' ({node.name}) "
                f"failed after {duration_ms}ms: {message}"
            )
            self.run_logger.log_node_error(label, message[:500], type(e).__name__, duration_ms)
            raise ExecutorError(node_id, label, message) from e

    async def _record(self, node_id: str, result: NodeResult) -> None:
        record = self.run_state.record(node_id, self._nodes[node_id].display_name, result)
        if self._on_record is None:
            return
        # A failing listener never changes the outcome of the run.
        try:
            outcome = self._on_record(record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(
                f"[{self.run_state.id}] on_record callback failed for node '{record.node_label}'"
            )

    def _propagate(self, node_id: str, result: NodeResult, ready: Deque[str]) -> None:
        """Resolve every outgoing edge of a completed node."""
        edges = self._out_edges[node_id]
        if result.branch is not None:
            taken = [e.target for e in edges if e.branch is None or e.branch == result.branch]
            self.run_logger.log_edge_decision(
                self._nodes[node_id].display_name, result.branch.value, taken,
            )
        for edge in edges:
            followed = edge.branch is None or edge.branch == result.branch
            self._resolve_edge(edge, result.items if followed else None, ready)

    def _resolve_edge(self, edge: WorkflowEdge, items: Optional[list], ready: Deque[str]) -> None:
        target = edge.target
        self._remaining[target] -= 1
        if items is not None:
            self._delivered[target] += 1
            self._inputs[target].setdefault(edge.target_handle, []).extend(items)
        if self._remaining[target] > 0:
            return
        if self._delivered[target] > 0:
            ready.append(target)
        else:
            self._prune(target, ready)

    def _prune(self, node_id: str, ready: Deque[str]) -> None:
        logger.debug(f"[{self.run_state.id}] Skipping '{self._nodes[node_id].display_name}': no active input")
        self.skipped.append(node_id)
        for edge in self._out_edges[node_id]:
            self._resolve_edge(edge, None, ready)

    @staticmethod
    def _make_output_preview(result: NodeResult) -> Optional[str]:
        """Extract a short preview string from a node's output."""
        if not result.items:
            return None
        first = result.items[0].data
        if not first:
            return None
        keys = list(first)[:5]
        return f"Keys: {', '.join(str(k) for k in keys)}"


async def execute_workflow(
    nodes: Sequence[WorkflowNode],
    edges: Sequence[WorkflowEdge],
    starting_node_ids: Sequence[str],
    resolve_executor: Optional[ResolveExecutor] = None,
    **kwargs: Any,
) -> ExecutionRun:
    """Run a workflow once and return its ``ExecutionRun``.

    Keyword arguments are passed to ``WorkflowExecutor``; ``raise_on_error``
    is passed to ``run``.
    """
    raise_on_error = kwargs.pop("raise_on_error", False)
    executor = WorkflowExecutor(nodes, edges, starting_node_ids, resolve_executor, **kwargs)
    return await executor.run(raise_on_error=raise_on_error)

