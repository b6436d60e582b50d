"""
Execution Channel — in-process publish/subscribe keyed by client id.

Webhook test runs finish independently of the call that started them,
so their results are published here for the waiting client.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Dict, List, Optional

logger = getLogger(__name__)

TEST_NODE_RESPONSE = "testNodeResponse"
TEST_WORKFLOW_NODE_RESPONSE = "testWorkflowNodeResponse"
TEST_WORKFLOW_FINISHED = "testWorkflowFinished"


@dataclass
class ChannelMessage:
    event: str
    payload: Any = None
    client_id: str = ""


class ExecutionChannel:
    """Client id → subscriber queues."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, client_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(client_id, []).append(queue)
        return queue

    def unsubscribe(self, client_id: str, queue: Optional[asyncio.Queue] = None) -> None:
        """Drop one queue, or every queue of the client when none is given."""
        if queue is None:
            self._subscribers.pop(client_id, None)
            return
        queues = self._subscribers.get(client_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(client_id, None)

    def publish(self, client_id: str, event: str, payload: Any = None) -> int:
        """Deliver to every subscriber of ``client_id``; returns the count."""
        queues = self._subscribers.get(client_id, [])
        if not queues:
            logger.debug(f"No subscriber for client '{client_id}' ({event})")
            return 0
        message = ChannelMessage(event=event, payload=payload, client_id=client_id)
        for queue in queues:
            queue.put_nowait(message)
        return len(queues)

    def has_subscribers(self, client_id: str) -> bool:
        return bool(self._subscribers.get(client_id))
