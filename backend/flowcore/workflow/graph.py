"""
Workflow Graph — adjacency construction and traversal helpers.

The graph is derived, never stored: it is rebuilt from the current
node and edge lists whenever it is needed.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from logging import getLogger
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from flowcore.workflow.errors import ConfigurationError
from flowcore.workflow.workflow_model import WorkflowEdge, WorkflowNode

logger = getLogger(__name__)

Adjacency = Dict[str, List[str]]


@dataclass
class NodeGraph:
    """Adjacency list plus per-node in-degree."""

    adjacency: Adjacency = field(default_factory=dict)
    in_degree: Dict[str, int] = field(default_factory=dict)

    def downstream(self, node_id: str) -> List[str]:
        return self.adjacency.get(node_id, [])


def build_graph(
    nodes: Sequence[WorkflowNode],
    edges: Sequence[WorkflowEdge],
    reverse: bool = False,
) -> NodeGraph:
    """Build adjacency and in-degree maps.

    Every node id gets an entry even when isolated. With ``reverse``
    the source is also appended to ``adjacency[target]`` so the same
    map can be walked upstream. Edges whose endpoints are not in
    ``nodes`` create entries on the fly.
    """
    graph = NodeGraph()
    for node in nodes:
        graph.adjacency[node.id] = []
        graph.in_degree[node.id] = 0

    for edge in edges:
        graph.adjacency.setdefault(edge.source, []).append(edge.target)
        if reverse:
            graph.adjacency.setdefault(edge.target, []).append(edge.source)
        graph.in_degree[edge.target] = graph.in_degree.get(edge.target, 0) + 1

    return graph


def find_starting_nodes(
    nodes: Sequence[WorkflowNode],
    in_degree: Dict[str, int],
) -> List[str]:
    """Zero in-degree nodes whose kind is ``trigger`` or ``webhook``."""
    node_map = {n.id: n for n in nodes}
    starting: List[str] = []
    for node_id, degree in in_degree.items():
        if degree != 0:
            continue
        node = node_map.get(node_id)
        if node is not None and node.is_starter_kind:
            starting.append(node_id)
    return starting


def find_faulty_nodes(
    nodes: Sequence[WorkflowNode],
    in_degree: Dict[str, int],
) -> List[WorkflowNode]:
    """Zero in-degree nodes that cannot start a run (e.g. actions)."""
    return [
        n for n in nodes
        if in_degree.get(n.id, 0) == 0 and n.type and not n.is_starter_kind
    ]


def construct_graph_and_starting_nodes(
    nodes: Sequence[WorkflowNode],
    edges: Sequence[WorkflowEdge],
    require_single_start: bool = False,
) -> Tuple[NodeGraph, List[str]]:
    """Build the graph and starting ids, rejecting unconnected actions.

    Raises:
        ConfigurationError: faulty nodes, or several starting nodes
            when ``require_single_start`` is set.
    """
    graph = build_graph(nodes, edges)
    faulty = find_faulty_nodes(nodes, graph.in_degree)
    if faulty:
        labels = [n.display_name for n in faulty]
        raise ConfigurationError(
            "Action nodes must connected to source. Faulty nodes: " + ", ".join(labels),
            faulty_nodes=[n.id for n in faulty],
        )

    starting = find_starting_nodes(nodes, graph.in_degree)
    if require_single_start and len(starting) > 1:
        raise ConfigurationError(
            f"Workflow must have exactly one starting node (found {len(starting)}).",
            faulty_nodes=starting,
        )
    return graph, starting


def all_paths(start_id: str, end_id: str, adjacency: Adjacency) -> List[List[str]]:
    """Every simple path from ``start_id`` to ``end_id`` (backtracking DFS).

    The visited set is scoped to the current path, so a node may appear
    on several discovered paths but never twice on the same one.
    """
    paths: List[List[str]] = []
    visited: Set[str] = set()

    def _dfs(current: str, path: List[str]) -> None:
        if current == end_id:
            paths.append(list(path))
            return

        visited.add(current)
        for neighbour in adjacency.get(current, []):
            if neighbour not in visited:
                path.append(neighbour)
                _dfs(neighbour, path)
                path.pop()
        visited.discard(current)

    _dfs(start_id, [start_id])
    return paths


def connected_ancestors(
    target_id: str,
    edges: Sequence[WorkflowEdge],
    reversed_adjacency: Adjacency,
) -> List[str]:
    """All upstream nodes feeding ``target_id`` through input edges.

    Breadth-first over a graph built with ``reverse=True``; only
    neighbours that are direct input parents are followed. The result
    starts with ``target_id`` itself.
    """
    queue = deque([target_id])
    explored: List[str] = [target_id]
    seen = {target_id}

    while queue:
        node_id = queue.popleft()
        parents = {e.source for e in edges if e.target == node_id and e.is_input}

        neighbours = reversed_adjacency.get(node_id)
        if neighbours is None:
            logger.warning(f"Node '{node_id}' is missing from the reversed graph")
            continue

        for neighbour in neighbours:
            if neighbour in parents and neighbour not in seen:
                seen.add(neighbour)
                explored.append(neighbour)
                queue.append(neighbour)

    return explored


def available_variable_sources(
    nodes: Sequence[WorkflowNode],
    edges: Sequence[WorkflowEdge],
    target_id: str,
) -> List[str]:
    """Node ids whose outputs the target's parameters may reference."""
    graph = build_graph(nodes, edges, reverse=True)
    return [
        node_id for node_id in connected_ancestors(target_id, edges, graph.adjacency)
        if node_id != target_id
    ]


def reachable_from(start_ids: Iterable[str], adjacency: Adjacency) -> Set[str]:
    """Node ids reachable from any of ``start_ids`` (inclusive)."""
    reached: Set[str] = set()
    queue = deque(start_ids)
    while queue:
        node_id = queue.popleft()
        if node_id in reached:
            continue
        reached.add(node_id)
        queue.extend(adjacency.get(node_id, []))
    return reached


def topological_order(
    graph: NodeGraph,
    start_ids: Sequence[str],
    labels: Optional[Dict[str, str]] = None,
) -> List[str]:
    """Kahn order of the subgraph reachable from ``start_ids``.

    In-degrees only count parents inside that subgraph.

    Raises:
        ConfigurationError: if the reachable subgraph has a cycle.
    """
    reachable = reachable_from(start_ids, graph.adjacency)
    remaining = {node_id: 0 for node_id in reachable}
    for source in reachable:
        for target in graph.adjacency.get(source, []):
            remaining[target] += 1

    queue = deque(node_id for node_id in start_ids if remaining.get(node_id) == 0)
    order: List[str] = []
    while queue:
        node_id = queue.popleft()
        if node_id in order:
            continue
        order.append(node_id)
        for target in graph.adjacency.get(node_id, []):
            remaining[target] -= 1
            if remaining[target] == 0:
                queue.append(target)

    if len(order) != len(reachable):
        stuck = sorted(reachable - set(order))
        names = [(labels or {}).get(n, n) for n in stuck]
        raise ConfigurationError(
            f"Circular dependency detected in workflow: {', '.join(names)}",
            faulty_nodes=stuck,
        )
    return order
