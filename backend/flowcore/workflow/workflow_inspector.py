"""
Workflow Inspector — static report of how a workflow would run.

Produces the same starting nodes, faulty nodes and execution order
``WorkflowExecutor`` computes, without invoking any node:

* Per-node detail (in-degree, downstream nodes, variable sources)
* Per-edge detail (input vs branch wiring)
* Starting and faulty nodes
* Topological execution order from the starting set
* A readable execution plan
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Dict, List, Optional

from flowcore.workflow.errors import ConfigurationError
from flowcore.workflow.graph import (
    NodeGraph,
    available_variable_sources,
    build_graph,
    find_faulty_nodes,
    find_starting_nodes,
    topological_order,
)
from flowcore.workflow.nodes.base import NodeRegistry, get_node_registry
from flowcore.workflow.workflow_model import WorkflowDefinition, WorkflowNode

logger = getLogger(__name__)


# ====================================================================
# Public API
# ====================================================================


def inspect_workflow(
    workflow: WorkflowDefinition,
    registry: Optional[NodeRegistry] = None,
) -> Dict[str, Any]:
    """Inspect a workflow and produce the execution report.

    Returns a dict containing:
        - ``nodes``           : Per-node detail list
        - ``edges``           : Per-edge detail list
        - ``starting_nodes``  : Ids that can start a run
        - ``faulty_nodes``    : Unconnected action node ids
        - ``execution_order`` : Topological order (empty when cyclic)
        - ``plan``            : Readable execution plan
        - ``summary``         : High-level stats
        - ``validation``      : Validation result
    """
    reg = registry or get_node_registry()
    errors = workflow.validate_graph()

    graph = build_graph(workflow.nodes, workflow.edges)
    starting = find_starting_nodes(workflow.nodes, graph.in_degree)
    faulty = find_faulty_nodes(workflow.nodes, graph.in_degree)
    if faulty:
        errors.append(
            "Action nodes must connected to source. Faulty nodes: "
            + ", ".join(n.display_name for n in faulty)
        )
    if not starting:
        errors.append("Workflow has no trigger or webhook node")

    for node in workflow.nodes:
        if node.name not in reg:
            errors.append(f"Unknown node type '{node.name}' for node '{node.display_name}'")

    order: List[str] = []
    if starting and not errors:
        labels = {n.id: n.display_name for n in workflow.nodes}
        try:
            order = topological_order(graph, starting, labels)
        except ConfigurationError as e:
            errors.append(str(e))

    node_details = _build_node_details(workflow, graph, reg)
    edge_details = _build_edge_details(workflow)
    branch_count = sum(1 for d in edge_details if d["wiring"] == "branch")

    return {
        "nodes": node_details,
        "edges": edge_details,
        "starting_nodes": starting,
        "faulty_nodes": [n.id for n in faulty],
        "execution_order": order,
        "plan": _generate_plan(workflow, order),
        "summary": {
            "workflow_name": workflow.name,
            "workflow_id": workflow.id,
            "total_nodes": len(workflow.nodes),
            "total_edges": len(workflow.edges),
            "branch_edges": branch_count,
            "input_edges": len(edge_details) - branch_count,
            "starting_nodes": len(starting),
            "is_valid": len(errors) == 0,
        },
        "validation": {
            "valid": len(errors) == 0,
            "errors": errors,
        },
    }


# ====================================================================
# Detail builders
# ====================================================================


def _build_node_details(
    workflow: WorkflowDefinition,
    graph: NodeGraph,
    registry: NodeRegistry,
) -> List[Dict[str, Any]]:
    details = []
    for node in workflow.nodes:
        base = registry.get(node.name)
        details.append({
            "id": node.id,
            "label": node.display_name,
            "name": node.name,
            "type": node.type,
            "description": base.description if base else f"Unknown node type: {node.name}",
            "in_degree": graph.in_degree.get(node.id, 0),
            "downstream": graph.downstream(node.id),
            "variable_sources": available_variable_sources(workflow.nodes, workflow.edges, node.id),
            "branches": [a.branch.value for a in node.output_anchors if a.branch],
        })
    return details


def _build_edge_details(workflow: WorkflowDefinition) -> List[Dict[str, Any]]:
    details = []
    for edge in workflow.edges:
        source = workflow.get_node(edge.source)
        target = workflow.get_node(edge.target)
        source_label = source.display_name if source else edge.source
        target_label = target.display_name if target else edge.target
        details.append({
            "source": edge.source,
            "source_label": source_label,
            "target": edge.target,
            "target_label": target_label,
            "is_input": edge.is_input,
            "branch": edge.label or None,
            "wiring": "branch" if edge.branch else "input",
            "description": (
                f"\"{source_label}\" --{edge.label}--> \"{target_label}\""
                if edge.branch else f"\"{source_label}\" → \"{target_label}\""
            ),
        })
    return details


# ====================================================================
# Plan generator
# ====================================================================


def _generate_plan(workflow: WorkflowDefinition, order: List[str]) -> str:
    lines: List[str] = []
    lines.append("# " + "═" * 60)
    lines.append(f"# Execution Plan: {workflow.name}")
    lines.append(f"# Nodes: {len(workflow.nodes)} | Edges: {len(workflow.edges)}")
    lines.append("# " + "═" * 60)

    if not order:
        lines.append("")
        lines.append("# (not executable)")
        return "\n".join(lines)

    lines.append("")
    for step, node_id in enumerate(order, start=1):
        node = workflow.get_node(node_id)
        lines.append(f"{step:>3}. {_describe(node)}")
        for edge in workflow.get_edges_from(node_id):
            target = workflow.get_node(edge.target)
            when = f" [if {edge.label}]" if edge.branch else ""
            lines.append(f"       → {target.display_name if target else edge.target}{when}")
    return "\n".join(lines)


def _describe(node: Optional[WorkflowNode]) -> str:
    if node is None:
        return "?"
    return f"{node.display_name} ({node.name}, {node.type})"
