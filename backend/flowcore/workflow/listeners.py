"""
Listener Registry — owned table of active trigger listeners.

Each deployed trigger node registers exactly one listener under
``"{workflowShortId}_{nodeId}"``. Unregistering stops the listener's
handle and removes the entry; re-registering an id stops the old
handle first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = getLogger(__name__)

StopCallback = Callable[[Any], Awaitable[None]]


def listener_key(workflow_short_id: str, node_id: str) -> str:
    return f"{workflow_short_id}_{node_id}"


@dataclass
class ListenerEntry:
    listener_id: str
    handle: Any
    stop: Optional[StopCallback] = None
    filter: Dict[str, Any] = field(default_factory=dict)


class ListenerRegistry:
    """Listener id → running listener handle."""

    def __init__(self) -> None:
        self._entries: Dict[str, ListenerEntry] = {}

    async def register(
        self,
        listener_id: str,
        handle: Any,
        stop: Optional[StopCallback] = None,
        filter: Optional[Dict[str, Any]] = None,
    ) -> ListenerEntry:
        previous = self._entries.get(listener_id)
        if previous is not None:
            logger.warning(f"Listener '{listener_id}' already registered; replacing")
            await self._stop(previous)

        entry = ListenerEntry(listener_id, handle, stop, dict(filter or {}))
        self._entries[listener_id] = entry
        logger.info(f"Listener '{listener_id}' registered")
        return entry

    async def unregister(self, listener_id: str) -> bool:
        """Stop and remove a listener. Returns False when unknown."""
        entry = self._entries.pop(listener_id, None)
        if entry is None:
            return False
        await self._stop(entry)
        logger.info(f"Listener '{listener_id}' unregistered")
        return True

    async def unregister_prefix(self, prefix: str) -> List[str]:
        """Unregister every listener whose id starts with ``prefix``."""
        removed = [lid for lid in self._entries if lid.startswith(prefix)]
        for listener_id in removed:
            await self.unregister(listener_id)
        return removed

    def get(self, listener_id: str) -> Optional[ListenerEntry]:
        return self._entries.get(listener_id)

    def update_filter(self, listener_id: str, filter: Dict[str, Any]) -> None:
        entry = self._entries.get(listener_id)
        if entry is None:
            raise KeyError(listener_id)
        entry.filter = dict(filter)

    def active_ids(self) -> List[str]:
        return list(self._entries)

    async def clear(self) -> None:
        for listener_id in list(self._entries):
            await self.unregister(listener_id)

    def __contains__(self, listener_id: str) -> bool:
        return listener_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    async def _stop(entry: ListenerEntry) -> None:
        if entry.stop is not None:
            await entry.stop(entry.handle)
