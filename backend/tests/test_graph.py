import pytest

from flowcore.workflow.errors import ConfigurationError
from flowcore.workflow.graph import (
    all_paths,
    available_variable_sources,
    build_graph,
    connected_ancestors,
    construct_graph_and_starting_nodes,
    find_starting_nodes,
    reachable_from,
    topological_order,
)
from flowcore.workflow.workflow_model import NodeKind, WorkflowEdge


def _chain(make_node, make_edge):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A"), make_node("B")]
    edges = [make_edge("T", "A"), make_edge("A", "B")]
    return nodes, edges


def test_build_graph_covers_every_node(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)
    nodes.append(make_node("lonely"))

    graph = build_graph(nodes, edges)

    assert set(graph.adjacency) == {n.id for n in nodes}
    assert graph.adjacency["lonely"] == []
    assert sum(graph.in_degree.values()) == len(edges)
    assert graph.adjacency["T"] == ["A"]
    assert graph.in_degree == {"T": 0, "A": 1, "B": 1, "lonely": 0}


def test_build_graph_is_idempotent(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)
    assert build_graph(nodes, edges) == build_graph(nodes, edges)


def test_build_graph_reverse_adds_upstream_links(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)

    graph = build_graph(nodes, edges, reverse=True)

    assert graph.adjacency["A"] == ["T", "B"]
    assert graph.adjacency["B"] == ["A"]
    assert graph.in_degree["B"] == 1


def test_build_graph_tolerates_dangling_endpoints(make_node):
    nodes = [make_node("T", NodeKind.TRIGGER)]
    edges = [WorkflowEdge(source="T", target="ghost")]

    graph = build_graph(nodes, edges)

    assert graph.adjacency["T"] == ["ghost"]
    assert graph.in_degree["ghost"] == 1


def test_find_starting_nodes_never_returns_actions(make_node, make_edge):
    nodes = [
        make_node("T", NodeKind.TRIGGER),
        make_node("W", NodeKind.WEBHOOK),
        make_node("A"),
        make_node("orphan"),
    ]
    edges = [make_edge("T", "A")]
    graph = build_graph(nodes, edges)

    starting = find_starting_nodes(nodes, graph.in_degree)

    assert sorted(starting) == ["T", "W"]
    assert "orphan" not in starting


def test_construct_rejects_faulty_action_nodes(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)
    nodes.append(make_node("X", label="Lonely Action"))

    with pytest.raises(ConfigurationError) as exc:
        construct_graph_and_starting_nodes(nodes, edges)

    assert "Faulty nodes: Lonely Action" in str(exc.value)
    assert exc.value.faulty_nodes == ["X"]


def test_construct_single_start_policy(make_node, make_edge):
    nodes = [make_node("T1", NodeKind.TRIGGER), make_node("T2", NodeKind.WEBHOOK), make_node("A")]
    edges = [make_edge("T1", "A"), make_edge("T2", "A")]

    _graph, starting = construct_graph_and_starting_nodes(nodes, edges)
    assert starting == ["T1", "T2"]

    with pytest.raises(ConfigurationError):
        construct_graph_and_starting_nodes(nodes, edges, require_single_start=True)


def test_all_paths_simple_chain(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)
    graph = build_graph(nodes, edges)

    assert all_paths("T", "B", graph.adjacency) == [["T", "A", "B"]]


def test_all_paths_diamond_shares_nodes():
    adjacency = {"A": ["B", "C"], "B": ["D"], "C": ["D"], "D": []}

    paths = all_paths("A", "D", adjacency)

    assert sorted(paths) == [["A", "B", "D"], ["A", "C", "D"]]


def test_all_paths_unreachable_is_empty():
    adjacency = {"A": ["B"], "B": [], "C": []}
    assert all_paths("A", "C", adjacency) == []


def test_all_paths_survives_cycles():
    adjacency = {"A": ["B"], "B": ["A", "C"], "C": []}
    assert all_paths("A", "C", adjacency) == [["A", "B", "C"]]


def test_connected_ancestors_follows_input_edges_only(make_node, make_edge):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A"), make_node("B"), make_node("C")]
    edges = [
        make_edge("T", "A"),
        make_edge("A", "B"),
        make_edge("C", "B"),
        WorkflowEdge(source="C", target="A", sourceHandle="C-output-0", targetHandle="A-decor"),
    ]
    graph = build_graph(nodes, edges, reverse=True)

    explored = connected_ancestors("B", edges, graph.adjacency)

    assert explored[0] == "B"
    assert set(explored) == {"B", "A", "C", "T"}
    assert len(explored) == len(set(explored))

    explored_a = connected_ancestors("A", edges, graph.adjacency)
    assert set(explored_a) == {"A", "T"}


def test_available_variable_sources_excludes_target(make_node, make_edge):
    nodes, edges = _chain(make_node, make_edge)

    sources = available_variable_sources(nodes, edges, "B")

    assert "B" not in sources
    assert set(sources) == {"A", "T"}


def test_topological_order_restricted_to_reachable(make_node, make_edge):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A"), make_node("B"), make_node("U", NodeKind.TRIGGER)]
    edges = [make_edge("T", "A"), make_edge("A", "B"), make_edge("U", "B")]
    graph = build_graph(nodes, edges)

    assert topological_order(graph, ["T"]) == ["T", "A", "B"]
    assert reachable_from(["U"], graph.adjacency) == {"U", "B"}


def test_topological_order_reports_cycle(make_node, make_edge):
    nodes = [make_node("T", NodeKind.TRIGGER), make_node("A", label="Alpha"), make_node("B", label="Beta")]
    edges = [make_edge("T", "A"), make_edge("A", "B"), make_edge("B", "A")]
    graph = build_graph(nodes, edges)

    with pytest.raises(ConfigurationError) as exc:
        topological_order(graph, ["T"], {n.id: n.display_name for n in nodes})

    assert "Circular dependency" in str(exc.value)
    assert sorted(exc.value.faulty_nodes) == ["A", "B"]
