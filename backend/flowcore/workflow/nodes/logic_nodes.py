"""
Logic Nodes — branching and flow-control nodes.

These nodes make pure decisions on their resolved parameters
and never call out to third-party services.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import Any, Callable, Dict, List

from flowcore.workflow.execution_model import ExecutionItem, NodeResult
from flowcore.workflow.nodes.base import (
    BaseNode,
    NodeInput,
    NodeParameter,
    register_node,
)
from flowcore.workflow.workflow_model import BranchLabel

logger = getLogger(__name__)


# ============================================================================
# If / Else
# ============================================================================


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    return float(value)


def _boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


COERCERS: Dict[str, Callable[[Any], Any]] = {
    "string": _text,
    "number": _number,
    "boolean": _boolean,
}

OPERATIONS: Dict[str, Callable[[Any, Any], bool]] = {
    "contains": lambda a, b: _text(b) in _text(a),
    "notContains": lambda a, b: _text(b) not in _text(a),
    "startsWith": lambda a, b: _text(a).startswith(_text(b)),
    "endsWith": lambda a, b: _text(a).endswith(_text(b)),
    "regex": lambda a, b: re.search(_text(b), _text(a)) is not None,
    "equal": lambda a, b: a == b,
    "notEqual": lambda a, b: a != b,
    "larger": lambda a, b: a > b,
    "largerEqual": lambda a, b: a >= b,
    "smaller": lambda a, b: a < b,
    "smallerEqual": lambda a, b: a <= b,
}


def evaluate_condition(condition: Dict[str, Any]) -> bool:
    """Evaluate one ``{type, value1, operation, value2}`` condition.

    Raises:
        ValueError: on an unknown type or operation.
    """
    value_type = condition.get("type", "string")
    operation = condition.get("operation", "equal")
    raw1, raw2 = condition.get("value1"), condition.get("value2")

    if operation == "isEmpty":
        return raw1 in (None, "")

    coerce = COERCERS.get(value_type)
    if coerce is None:
        raise ValueError(f"Unknown condition type '{value_type}'")
    compare = OPERATIONS.get(operation)
    if compare is None:
        raise ValueError(f"Unknown operation '{operation}'")
    return compare(coerce(raw1), coerce(raw2))


@register_node
class IfElseNode(BaseNode):
    """Split the flow according to a set of conditions.

    Output anchor 0 is the ``true`` branch, anchor 1 the ``false``
    branch. Mode ``or`` is true when any condition holds, ``and``
    when all of them do.
    """

    node_type = "ifElse"
    label = "If Else"
    description = "Split flows according to conditions set"
    category = "logic"
    outgoing = 2
    branches = (BranchLabel.TRUE, BranchLabel.FALSE)

    parameters = [
        NodeParameter(
            name="mode",
            label="Mode",
            type="options",
            default="or",
            options=[
                {"label": "AND", "name": "and", "description": "When all conditions are met"},
                {"label": "OR", "name": "or", "description": "When any of the conditions is met"},
            ],
            group="inputParameters",
        ),
        NodeParameter(
            name="conditions",
            label="Conditions",
            type="array",
            default=[],
            required=True,
            description="Values to compare",
            group="inputParameters",
        ),
    ]

    async def execute(self, node_input: NodeInput) -> NodeResult:
        params = node_input.node.input_parameters
        mode = params.get("mode", "or")
        conditions: List[Dict[str, Any]] = params.get("conditions") or []

        met: List[Dict[str, Any]] = []
        unmet: List[Dict[str, Any]] = []
        for condition in conditions:
            summary = {
                "value1": condition.get("value1"),
                "operation": condition.get("operation", "equal"),
                "value2": condition.get("value2"),
            }
            (met if evaluate_condition(condition) else unmet).append(summary)

        if mode == "and":
            taken = bool(conditions) and len(met) == len(conditions)
        elif mode == "or":
            taken = bool(met)
        else:
            raise ValueError(f"Unknown mode '{mode}'")

        branch = BranchLabel.TRUE if taken else BranchLabel.FALSE
        logger.debug(
            f"ifElse '{node_input.node.display_name}': {len(met)}/{len(conditions)} met → {branch.value}"
        )
        return NodeResult(
            items=[ExecutionItem(data={"mode": mode, "metConditions": met, "unmetConditions": unmet})],
            branch=branch,
        )


# ============================================================================
# Wait
# ============================================================================


_UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 60 * 60 * 24,
}


@register_node
class WaitNode(BaseNode):
    """Wait before continuing with the execution."""

    node_type = "wait"
    label = "Wait"
    description = "Wait before continuing with the execution"
    category = "logic"

    parameters = [
        NodeParameter(
            name="unit",
            label="Unit",
            type="options",
            default="seconds",
            options=[{"label": u.capitalize(), "name": u} for u in _UNIT_SECONDS],
            description="The time unit of the duration to wait",
            group="inputParameters",
        ),
        NodeParameter(
            name="duration",
            label="Duration",
            type="number",
            default=10,
            min=0,
            description="Duration to wait before continuing with the execution",
            group="inputParameters",
        ),
    ]

    async def execute(self, node_input: NodeInput) -> NodeResult:
        params = node_input.node.input_parameters
        unit = params.get("unit", "seconds")
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"Unknown unit '{unit}'")
        duration = params.get("duration")
        seconds = float(1 if duration in (None, "") else duration) * _UNIT_SECONDS[unit]

        started = datetime.now(timezone.utc)
        await asyncio.sleep(seconds)
        return NodeResult(items=[ExecutionItem(data={
            "start": started.isoformat(),
            "end": (started + timedelta(seconds=seconds)).isoformat(),
            "duration": int(seconds * 1000),
            "unit": unit,
        })])
