from flowcore.workflow.execution_model import ExecutionItem, ExecutionRun, ExecutionState
from flowcore.workflow.workflow_model import (
    BranchLabel,
    NodeKind,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    add_anchors,
)


def test_edge_handles_default_from_endpoints():
    edge = WorkflowEdge(source="a", target="b")

    assert edge.source_handle == "a-output-0"
    assert edge.target_handle == "b-input-0"
    assert edge.is_input
    assert edge.label == ""


def test_node_accepts_ui_aliases():
    node = WorkflowNode.model_validate({
        "id": "n1",
        "name": "wait",
        "inputParameters": {"duration": 3},
        "outputResponses": {"output": []},
        "webhookEndpoint": "hook",
    })

    assert node.input_parameters == {"duration": 3}
    assert node.webhook_endpoint == "hook"
    assert node.model_dump(by_alias=True)["inputParameters"] == {"duration": 3}
    assert [name for name, _ in node.parameter_sets()] == ["actions", "networks", "input_parameters"]


def test_add_anchors_tags_branch_outputs():
    node = add_anchors(
        WorkflowNode(id="if", name="ifElse"), 1, 2, [BranchLabel.TRUE, BranchLabel.FALSE],
    )

    assert [a.id for a in node.input_anchors] == ["if-input-0"]
    assert [(a.id, a.branch) for a in node.output_anchors] == [
        ("if-output-0", BranchLabel.TRUE),
        ("if-output-1", BranchLabel.FALSE),
    ]


def test_definition_tags_edges_from_source_anchor():
    branch = add_anchors(
        WorkflowNode(id="if", name="ifElse"), 1, 2, [BranchLabel.TRUE, BranchLabel.FALSE],
    )
    workflow = WorkflowDefinition(
        nodes=[branch, WorkflowNode(id="x", name="wait"), WorkflowNode(id="y", name="wait")],
        edges=[
            WorkflowEdge(source="if", target="x", sourceHandle="if-output-0"),
            WorkflowEdge(source="if", target="y", sourceHandle="if-output-1"),
        ],
    )

    assert [e.branch for e in workflow.edges] == [BranchLabel.TRUE, BranchLabel.FALSE]
    assert [e.label for e in workflow.edges] == ["true", "false"]


def test_validate_graph_reports_duplicates_and_dangling_edges():
    workflow = WorkflowDefinition(
        nodes=[WorkflowNode(id="a", name="wait"), WorkflowNode(id="a", name="wait")],
        edges=[WorkflowEdge(source="a", target="missing")],
    )

    errors = workflow.validate_graph()

    assert "Duplicate node id: a" in errors
    assert "Edge references unknown target node: missing" in errors


def test_starter_kinds():
    assert WorkflowNode(name="x", type=NodeKind.TRIGGER.value).is_starter_kind
    assert WorkflowNode(name="x", type=NodeKind.WEBHOOK.value).is_starter_kind
    assert not WorkflowNode(name="x", type=NodeKind.ACTION.value).is_starter_kind
    assert not WorkflowNode(name="x", type="custom").is_starter_kind


def test_apply_execution_writes_output_responses():
    workflow = WorkflowDefinition(nodes=[
        WorkflowNode(id="t", name="webhook"),
        WorkflowNode(id="a", name="wait"),
    ])
    run = ExecutionRun()
    run.record("t", "Trigger", [ExecutionItem(data={"k": 1})])
    run.finish(ExecutionState.ERROR, "Node 'a' failed: boom", "a")

    workflow.apply_execution(run)

    assert workflow.get_node("t").output_responses == {"output": [{"data": {"k": 1}}]}
    assert workflow.get_node("a").output_responses == {"output": [], "error": "Node 'a' failed: boom"}
