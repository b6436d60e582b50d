import asyncio

import pytest

from flowcore.config import ExecutionConfig
from flowcore.logging import release_run_logger
from flowcore.workflow import templates
from flowcore.workflow.errors import ConfigurationError, ExecutorError, UnknownNodeTypeError
from flowcore.workflow.execution_model import ExecutionItem, ExecutionState, NodeResult
from flowcore.workflow.nodes.base import NodeRegistry
from flowcore.workflow.workflow_executor import WorkflowExecutor, execute_workflow
from flowcore.workflow.workflow_model import BranchLabel, NodeKind, WorkflowEdge


def _chain(make_node, make_edge):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A"), make_node("B")]
    edges = [make_edge("T", "A"), make_edge("A", "B")]
    return nodes, edges


# ============================================================================
# End-to-end runs
# ============================================================================


@pytest.mark.asyncio
async def test_linear_chain_runs_in_order(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)

    run = await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    assert run.state is ExecutionState.FINISHED
    assert fake.calls == ["T", "A", "B"]
    assert run.executed_node_ids() == ["T", "A", "B"]
    assert run.error is None
    assert run.stopped_date is not None


@pytest.mark.asyncio
async def test_failing_node_stops_the_run(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    fake.failures["A"] = RuntimeError("boom")

    run = await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    assert run.state is ExecutionState.ERROR
    assert run.executed_node_ids() == ["T"]
    assert "B" not in fake.calls
    assert run.error_node_id == "A"
    assert run.error == "Node 'A' failed: boom"


@pytest.mark.asyncio
@pytest.mark.parametrize("node_timeout", [0, 5])
async def test_timeout_raised_by_executor_is_an_error(make_node, make_edge, fake, node_timeout):
    nodes, edges = _chain(make_node, make_edge)
    fake.failures["A"] = asyncio.TimeoutError("upstream read timed out")

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=ExecutionConfig(node_timeout=node_timeout),
    )

    assert run.state is ExecutionState.ERROR
    assert run.error == "Node 'A' failed: upstream read timed out"
    assert run.error_node_id == "A"


@pytest.mark.asyncio
async def test_plain_callable_executor(make_node, make_edge, exec_config):
    nodes, edges = _chain(make_node, make_edge)

    def resolve(node):
        return lambda node_input: {"node": node_input.node.id}

    run = await execute_workflow(nodes, edges, ["T"], resolve, config=exec_config)

    assert run.state is ExecutionState.FINISHED
    assert run.outputs_by_node()["B"][0].data == {"node": "B"}


@pytest.mark.asyncio
async def test_raise_on_error_reraises_after_recording(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    fake.failures["A"] = ValueError()
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    with pytest.raises(ExecutorError) as exc:
        await executor.run(raise_on_error=True)

    assert exc.value.node_id == "A"
    assert exc.value.message == "ValueError"
    assert isinstance(exc.value.__cause__, ValueError)
    assert executor.run_state.state is ExecutionState.ERROR


@pytest.mark.asyncio
async def test_branch_follows_only_the_taken_side(make_node, make_edge, fake, exec_config):
    nodes = [
        make_node("T", NodeKind.TRIGGER),
        make_node("IF", outgoing=2, branches=[BranchLabel.TRUE, BranchLabel.FALSE]),
        make_node("X"),
        make_node("Y"),
        make_node("Z"),
    ]
    edges = [
        make_edge("T", "IF"),
        make_edge("IF", "X", out_index=0),
        make_edge("IF", "Y", out_index=1),
        make_edge("Y", "Z"),
    ]
    fake.outputs["IF"] = NodeResult(items=[ExecutionItem(data={"ok": True})], branch=BranchLabel.TRUE)
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    run = await executor.run()

    assert run.state is ExecutionState.FINISHED
    assert fake.calls == ["T", "IF", "X"]
    assert sorted(executor.skipped) == ["Y", "Z"]
    assert fake.inputs["X"].items[0].data == {"ok": True}


@pytest.mark.asyncio
async def test_join_after_branch_runs_from_live_side(make_node, make_edge, fake, exec_config):
    nodes = [
        make_node("T", NodeKind.TRIGGER),
        make_node("IF", outgoing=2, branches=[BranchLabel.TRUE, BranchLabel.FALSE]),
        make_node("X"),
        make_node("Y"),
        make_node("J"),
    ]
    edges = [
        make_edge("T", "IF"),
        make_edge("IF", "X", out_index=0),
        make_edge("IF", "Y", out_index=1),
        make_edge("X", "J"),
        make_edge("Y", "J"),
    ]
    fake.outputs["IF"] = NodeResult(branch=BranchLabel.FALSE)

    run = await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    assert run.state is ExecutionState.FINISHED
    assert fake.calls == ["T", "IF", "Y", "J"]
    assert [i.data for i in fake.inputs["J"].items] == [{"node": "Y"}]


@pytest.mark.asyncio
async def test_diamond_joins_once_after_both_parents(make_node, make_edge, fake, exec_config):
    nodes = [make_node("A", NodeKind.TRIGGER), make_node("B"), make_node("C"), make_node("D")]
    edges = [make_edge("A", "B"), make_edge("A", "C"), make_edge("B", "D"), make_edge("C", "D")]
    fake.delays["B"] = 0.02
    completed = []
    fake.hooks["B"] = lambda _: completed.append("B")
    fake.hooks["C"] = lambda _: completed.append("C")
    fake.hooks["D"] = lambda _: completed.append("D")

    run = await execute_workflow(nodes, edges, ["A"], fake.resolve, config=exec_config)

    assert run.state is ExecutionState.FINISHED
    assert fake.calls.count("D") == 1
    assert completed[-1] == "D"
    assert [i.data for i in fake.inputs["D"].items] == [{"node": "C"}, {"node": "B"}]
    assert run.executed_node_ids()[-1] == "D"


@pytest.mark.asyncio
async def test_independent_branches_run_concurrently(make_node, make_edge, fake, exec_config):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("B"), make_node("C")]
    edges = [make_edge("T", "B"), make_edge("T", "C")]
    fake.delays.update({"B": 0.02, "C": 0.02})

    await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    assert fake.max_active == 2


@pytest.mark.asyncio
async def test_max_concurrency_one_serializes(make_node, make_edge, fake):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("B"), make_node("C")]
    edges = [make_edge("T", "B"), make_edge("T", "C")]
    fake.delays.update({"B": 0.01, "C": 0.01})

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=ExecutionConfig(max_concurrency=1),
    )

    assert fake.max_active == 1
    assert run.executed_node_ids() == ["T", "B", "C"]


# ============================================================================
# Inputs
# ============================================================================


@pytest.mark.asyncio
async def test_variables_resolve_from_upstream_output(make_node, make_edge, fake, exec_config):
    nodes = [
        make_node("T", NodeKind.TRIGGER),
        make_node("A"),
        make_node("B", raw="{{A[0].data.amount}}", text="Total: {{A[0].data.amount}}"),
    ]
    edges = [make_edge("T", "A"), make_edge("A", "B")]
    fake.outputs["A"] = {"amount": 5}

    await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    params = fake.inputs["B"].node.input_parameters
    assert params["raw"] == 5
    assert params["text"] == "Total: 5"
    assert nodes[2].input_parameters["raw"] == "{{A[0].data.amount}}"


@pytest.mark.asyncio
async def test_initial_data_replaces_starting_executor(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve,
        config=exec_config, initial_data={"T": {"body": {"x": 1}}},
    )

    assert "T" not in fake.calls
    assert run.outputs_by_node()["T"][0].data == {"body": {"x": 1}}
    assert fake.inputs["A"].items[0].data == {"body": {"x": 1}}


@pytest.mark.asyncio
async def test_on_record_sees_every_completed_node(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    seen = []

    async def on_record(record):
        seen.append(record.node_id)

    await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=exec_config, on_record=on_record,
    )

    assert seen == ["T", "A", "B"]


@pytest.mark.asyncio
async def test_failing_on_record_does_not_stall_the_run(make_node, make_edge, fake, exec_config, caplog):
    nodes, edges = _chain(make_node, make_edge)

    def on_record(record):
        raise RuntimeError("client went away")

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=exec_config, on_record=on_record,
    )

    assert run.state is ExecutionState.FINISHED
    assert run.executed_node_ids() == ["T", "A", "B"]
    assert "on_record callback failed" in caplog.text


# ============================================================================
# Cancellation and budgets
# ============================================================================


@pytest.mark.asyncio
async def test_cancel_between_nodes_terminates(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)
    fake.hooks["A"] = lambda _: executor.cancel()

    run = await executor.run()

    assert run.state is ExecutionState.TERMINATED
    assert run.executed_node_ids() == ["T", "A"]
    assert "B" not in fake.calls


@pytest.mark.asyncio
async def test_cancel_while_node_in_flight(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    fake.delays["A"] = 5
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)
    asyncio.get_running_loop().call_later(0.05, executor.cancel)

    run = await executor.run()

    assert run.state is ExecutionState.TERMINATED
    assert run.executed_node_ids() == ["T"]
    assert fake.active == 0


@pytest.mark.asyncio
async def test_cancel_before_start_runs_nothing(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    event = asyncio.Event()
    event.set()

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=exec_config, cancel_event=event,
    )

    assert run.state is ExecutionState.TERMINATED
    assert fake.calls == []
    assert run.executed_data == []


@pytest.mark.asyncio
async def test_run_budget_ends_as_timeout(make_node, make_edge, fake):
    nodes, edges = _chain(make_node, make_edge)
    fake.delays["A"] = 5

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=ExecutionConfig(execution_timeout=0.05),
    )

    assert run.state is ExecutionState.TIMEOUT
    assert run.executed_node_ids() == ["T"]
    assert "budget" in run.error


@pytest.mark.asyncio
async def test_node_budget_ends_as_timeout(make_node, make_edge, fake):
    nodes, edges = _chain(make_node, make_edge)
    fake.delays["A"] = 5

    run = await execute_workflow(
        nodes, edges, ["T"], fake.resolve, config=ExecutionConfig(node_timeout=0.05),
    )

    assert run.state is ExecutionState.TIMEOUT
    assert run.error_node_id == "A"
    assert "B" not in fake.calls


# ============================================================================
# Validation
# ============================================================================


@pytest.mark.asyncio
async def test_cycle_is_rejected_before_running(make_node, make_edge, fake, exec_config):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A"), make_node("B")]
    edges = [make_edge("T", "A"), make_edge("A", "B"), make_edge("B", "A")]

    with pytest.raises(ConfigurationError) as exc:
        await execute_workflow(nodes, edges, ["T"], fake.resolve, config=exec_config)

    assert "Circular dependency" in str(exc.value)
    assert fake.calls == []


@pytest.mark.asyncio
async def test_rejected_run_releases_its_logger(make_node, make_edge, fake, exec_config):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A")]
    edges = [make_edge("T", "A"), make_edge("A", "T")]
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    with pytest.raises(ConfigurationError):
        await executor.run()

    assert release_run_logger(executor.run_state.id) is None


def test_faulty_action_node_is_rejected(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    nodes.append(make_node("X", label="Floating"))
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    with pytest.raises(ConfigurationError) as exc:
        executor.validate()

    assert "Faulty nodes: Floating" in str(exc.value)


def test_dangling_edge_is_rejected(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    edges.append(WorkflowEdge(id="ghost", source="B", target="nowhere"))
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    with pytest.raises(ConfigurationError, match="unknown target node: nowhere"):
        executor.validate()


def test_unknown_starting_node_is_rejected(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    executor = WorkflowExecutor(nodes, edges, ["missing"], fake.resolve, config=exec_config)

    with pytest.raises(ConfigurationError) as exc:
        executor.validate()

    assert exc.value.faulty_nodes == ["missing"]


def test_no_starting_node_is_rejected(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)

    with pytest.raises(ConfigurationError, match="no starting node"):
        WorkflowExecutor(nodes, edges, [], fake.resolve, config=exec_config).validate()


def test_single_start_policy(make_node, make_edge, fake):
    nodes = [make_node("T1", NodeKind.TRIGGER), make_node("T2", NodeKind.TRIGGER), make_node("A")]
    edges = [make_edge("T1", "A"), make_edge("T2", "A")]
    executor = WorkflowExecutor(
        nodes, edges, ["T1", "T2"], fake.resolve,
        config=ExecutionConfig(require_single_start=True),
    )

    with pytest.raises(ConfigurationError, match="exactly one starting node"):
        executor.validate()


def test_unknown_node_type_is_rejected(make_node, make_edge, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    executor = WorkflowExecutor(
        nodes, edges, ["T"], config=exec_config, registry=NodeRegistry(),
    )

    with pytest.raises(UnknownNodeTypeError):
        executor.validate()


def test_order_covers_reachable_nodes(make_node, make_edge, fake, exec_config):
    nodes, edges = _chain(make_node, make_edge)
    executor = WorkflowExecutor(nodes, edges, ["T"], fake.resolve, config=exec_config)

    executor.validate()

    assert executor.order == ["T", "A", "B"]


# ============================================================================
# Built-in nodes
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,expected", [(150, "wait_0"), (20, "wait_1")])
async def test_webhook_branch_template_routes_on_amount(amount, expected, exec_config):
    workflow = templates.create_webhook_branch_template()
    for node in workflow.nodes:
        if node.name == "wait":
            node.input_parameters["duration"] = 0

    executor = WorkflowExecutor.from_workflow(
        workflow, config=exec_config, initial_data={"webhook_0": {"body": {"amount": amount}}},
    )
    run = await executor.run()

    assert run.state is ExecutionState.FINISHED
    assert run.executed_node_ids() == ["webhook_0", "ifElse_0", expected]
    assert run.workflow_id == "template-webhook-branch"
