"""
Pre-built Workflow Templates.

Provides factory functions that return ready-made
``WorkflowDefinition`` objects built from the built-in nodes.

These templates are saved to the WorkflowStore on first
startup so users can clone or study them.
"""

from __future__ import annotations

from typing import List, Optional

from flowcore.workflow.nodes.base import NodeRegistry, get_node_registry
from flowcore.workflow.workflow_model import (
    INPUT_MARKER,
    OUTPUT_MARKER,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
)


def _edge(src: str, tgt: str, out_index: int = 0) -> WorkflowEdge:
    return WorkflowEdge(
        source=src,
        target=tgt,
        sourceHandle=f"{src}{OUTPUT_MARKER}{out_index}",
        targetHandle=f"{tgt}{INPUT_MARKER}0",
    )


# ============================================================================
# Webhook → If/Else Template
# ============================================================================


def create_webhook_branch_template(registry: Optional[NodeRegistry] = None) -> WorkflowDefinition:
    """Webhook request routed on its body.

    Topology::
        webhook → check_amount
          ↓ [true]  wait_approved
          ↓ [false] wait_rejected
    """
    reg = registry or get_node_registry()
    nodes: List[WorkflowNode] = []

    def _add(ntype: str, nid: str, label: str, x: float, y: float, **params) -> None:
        node = reg.require(ntype).create_instance(nid, label, **params)
        node.position = {"x": x, "y": y}
        nodes.append(node)

    _add("webhook", "webhook_0", "Incoming Order", 288, 96, httpMethod="POST")
    nodes[-1].webhook_endpoint = "orders"
    _add("ifElse", "ifElse_0", "Large Order?", 288, 256, mode="and", conditions=[{
        "type": "number",
        "value1": "{{webhook_0[0].data.body.amount}}",
        "operation": "largerEqual",
        "value2": 100,
    }])
    _add("wait", "wait_0", "Hold For Review", 96, 416, unit="seconds", duration=1)
    _add("wait", "wait_1", "Pass Through", 480, 416, unit="seconds", duration=0)

    edges = [
        _edge("webhook_0", "ifElse_0"),
        _edge("ifElse_0", "wait_0", out_index=0),
        _edge("ifElse_0", "wait_1", out_index=1),
    ]

    return WorkflowDefinition(
        id="template-webhook-branch",
        name="Webhook Branch",
        nodes=nodes,
        edges=edges,
    )


# ============================================================================
# Scheduled Template
# ============================================================================


def create_scheduled_template(registry: Optional[NodeRegistry] = None) -> WorkflowDefinition:
    """Daily scheduler followed by a short wait."""
    reg = registry or get_node_registry()

    scheduler = reg.require("scheduler").create_instance(
        "scheduler_0", "Every Morning",
        pattern="repetitive",
        scheduleTimes=[{"mode": "everyDay", "hour": 9, "minute": 0}],
    )
    scheduler.position = {"x": 288, "y": 96}
    wait = reg.require("wait").create_instance("wait_0", "Settle", unit="seconds", duration=5)
    wait.position = {"x": 288, "y": 256}

    return WorkflowDefinition(
        id="template-scheduled",
        name="Scheduled",
        nodes=[scheduler, wait],
        edges=[_edge("scheduler_0", "wait_0")],
    )


# ============================================================================
# Template Registry
# ============================================================================

ALL_TEMPLATES = [
    create_webhook_branch_template,
    create_scheduled_template,
]


def install_templates(store) -> int:
    """Install built-in templates into the workflow store.

    Always overwrites existing templates to keep them up-to-date.
    Returns the number of templates installed.
    """
    installed = 0
    for factory in ALL_TEMPLATES:
        template = factory()
        store.save(template)
        installed += 1
    return installed
