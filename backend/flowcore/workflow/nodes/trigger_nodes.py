"""
Trigger Nodes — nodes that start a run on their own.

``webhook`` turns an incoming HTTP request into output items.
``scheduler`` fires on cron schedules computed with ``croniter``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from logging import getLogger
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import croniter

from flowcore.workflow.execution_model import ExecutionItem, NodeResult
from flowcore.workflow.nodes.base import (
    EmitCallback,
    NodeParameter,
    TriggerNode,
    WebhookNode,
    register_node,
)
from flowcore.workflow.workflow_model import WorkflowNode

logger = getLogger(__name__)


# ============================================================================
# Webhook
# ============================================================================


@register_node
class WebhookTriggerNode(WebhookNode):
    """Start a workflow when its endpoint is called."""

    node_type = "webhook"
    label = "Webhook"
    description = "Start workflow when webhook is called"
    category = "trigger"

    parameters = [
        NodeParameter(
            name="httpMethod",
            label="HTTP Method",
            type="options",
            default="GET",
            options=[{"label": "GET", "name": "GET"}, {"label": "POST", "name": "POST"}],
            description="The HTTP method to listen to.",
            group="inputParameters",
        ),
        NodeParameter(
            name="responseCode",
            label="Response Code",
            type="number",
            default=200,
            min=100,
            max=599,
            description="HTTP response code returned to the caller.",
            group="inputParameters",
        ),
        NodeParameter(
            name="responseData",
            label="Response Data",
            type="string",
            default="",
            description="Custom response body returned to the caller.",
            group="inputParameters",
        ),
    ]

    async def run_webhook(self, node: WorkflowNode, request: Dict[str, Any]) -> NodeResult:
        data = {
            "headers": request.get("headers", {}),
            "params": request.get("params", {}),
            "query": request.get("query", {}),
            "body": request.get("body"),
            "rawBody": request.get("rawBody"),
            "url": request.get("url", ""),
        }
        return NodeResult(items=[ExecutionItem(data=data)])


# ============================================================================
# Scheduler
# ============================================================================


@dataclass
class ScheduleHandle:
    """Running schedule tasks of one deployed scheduler node."""

    node_id: str
    expressions: List[str] = field(default_factory=list)
    tasks: List[asyncio.Task] = field(default_factory=list)

    def cancel(self) -> None:
        for task in self.tasks:
            task.cancel()


def date_to_cron(value: datetime) -> str:
    """Cron expression matching a single minute of ``value``."""
    return f"{value.minute} {value.hour} {value.day} {value.month} *"


def schedule_expressions(params: Dict[str, Any]) -> List[str]:
    """Build cron expressions from the scheduler's parameters.

    ``everyX`` in seconds is returned as ``@every:<n>``; cron has no
    seconds field in the five-field form.
    """
    if params.get("pattern", "repetitive") == "once":
        specific = params.get("specificDateTime")
        if not specific:
            raise ValueError("Scheduler 'once' pattern requires specificDateTime")
        return [date_to_cron(_parse_datetime(specific))]

    expressions: List[str] = []
    for item in params.get("scheduleTimes") or []:
        mode = item.get("mode", "everyDay")
        minute = item.get("minute") or 0
        hour = item.get("hour") or 0
        if mode == "everyX":
            value = int(item.get("value") or 1)
            unit = item.get("unit", "hours")
            if unit == "seconds":
                expressions.append(f"@every:{value}")
            elif unit == "minutes":
                expressions.append(f"*/{value} * * * *")
            else:
                expressions.append(f"0 */{value} * * *")
        elif mode == "everyDay":
            expressions.append(f"{minute} {hour} * * *")
        elif mode == "everyWeek":
            expressions.append(f"{minute} {hour} * * {item.get('weekday') or 0}")
        elif mode == "everyMonth":
            expressions.append(f"{minute} {hour} {item.get('dayOfMonth') or 1} * *")
        elif mode == "specific":
            expressions.append(date_to_cron(_parse_datetime(item["specificDateTime"])))
        else:
            raise ValueError(f"Unknown schedule mode '{mode}'")

    for expr in expressions:
        if not expr.startswith("@every:") and not croniter.croniter.is_valid(expr):
            raise ValueError(f"Invalid cron expression '{expr}'")
    return expressions


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def seconds_until_next(expr: str, now: datetime) -> float:
    """Seconds from ``now`` to the next fire of ``expr``."""
    if expr.startswith("@every:"):
        return float(expr.split(":", 1)[1])
    next_run = croniter.croniter(expr, now).get_next(datetime)
    return max((next_run - now).total_seconds(), 0.0)


@register_node
class SchedulerNode(TriggerNode):
    """Start workflow at scheduled times."""

    node_type = "scheduler"
    label = "Scheduler"
    description = "Start workflow at scheduled times"
    category = "trigger"
    version = 1.1

    parameters = [
        NodeParameter(
            name="pattern",
            label="Pattern",
            type="options",
            default="repetitive",
            options=[
                {"label": "Repetitive", "name": "repetitive"},
                {"label": "Once", "name": "once"},
            ],
            group="inputParameters",
        ),
        NodeParameter(
            name="specificDateTime",
            label="Date Time",
            type="date",
            description="Trigger the workflow once at this time.",
            group="inputParameters",
        ),
        NodeParameter(
            name="scheduleTimes",
            label="Schedules",
            type="array",
            default=[],
            description="everyDay / everyWeek / everyMonth / everyX / specific entries.",
            group="inputParameters",
        ),
        NodeParameter(
            name="timezone",
            label="Timezone",
            type="string",
            default="",
            description="IANA timezone; local time when empty.",
            group="inputParameters",
        ),
    ]

    async def start(self, node: WorkflowNode, emit: EmitCallback) -> ScheduleHandle:
        params = node.input_parameters
        tz_name = params.get("timezone") or ""
        tz: Optional[ZoneInfo] = ZoneInfo(tz_name) if tz_name else None
        once = params.get("pattern") == "once"

        handle = ScheduleHandle(node_id=node.id, expressions=schedule_expressions(params))
        for expr in handle.expressions:
            handle.tasks.append(asyncio.create_task(
                self._run_schedule(node.id, expr, tz, once, emit),
                name=f"schedule-{node.id}",
            ))
        logger.info(f"Scheduler '{node.display_name}' started: {', '.join(handle.expressions)}")
        return handle

    async def stop(self, handle: Any) -> None:
        if isinstance(handle, ScheduleHandle):
            handle.cancel()
            logger.info(f"Scheduler for node '{handle.node_id}' stopped")

    async def _run_schedule(
        self,
        node_id: str,
        expr: str,
        tz: Optional[ZoneInfo],
        once: bool,
        emit: EmitCallback,
    ) -> None:
        while True:
            await asyncio.sleep(seconds_until_next(expr, datetime.now(tz)))
            fired = datetime.now(tz)
            logger.debug(f"Scheduler '{node_id}' fired ({expr})")
            await emit(NodeResult(items=[ExecutionItem(data={
                "date": fired.date().isoformat(),
                "time": fired.time().isoformat(timespec="seconds"),
                "cron": "SUCCESS",
            })]))
            if once:
                return
