import pytest

from layerforge.dag import DAGResult, GraphEdge, GraphNode, build_dag, validate_network_structure


def node(node_id, layer_type="Dense", **params):
    return {"id": node_id, "type": layer_type, "params": params}


def edge(source, target):
    return {"source": source, "target": target}


def assert_topological(result, edges):
    position = {layer.id: i for i, layer in enumerate(result.ordered_layers)}
    for e in edges:
        assert position[e["source"]] < position[e["target"]]


def test_empty_graph():
    result = build_dag([], [])
    assert not result.is_valid
    assert result.errors == ("Network must have at least one layer",)
    assert result.ordered_layers == ()


def test_linear_chain():
    nodes = [node("c", "Output"), node("a", "Input"), node("b")]
    edges = [edge("a", "b"), edge("b", "c")]
    result = build_dag(nodes, edges)

    assert result.is_valid
    assert result.errors == ()
    assert [layer.id for layer in result.ordered_layers] == ["a", "b", "c"]
    assert result.successors == {"a": ("b",), "b": ("c",), "c": ()}
    assert result.is_linear()


def test_diamond_is_topologically_sorted():
    nodes = [node("in", "Input"), node("l"), node("r"), node("m", "Merge"), node("out", "Output")]
    edges = [edge("in", "l"), edge("in", "r"), edge("l", "m"), edge("r", "m"), edge("m", "out")]
    result = build_dag(nodes, edges)

    assert result.is_valid
    assert_topological(result, edges)
    assert result.predecessors("m") == ["l", "r"]
    assert result.sources() == ["in"]
    assert result.sinks() == ["out"]
    assert not result.is_linear()


def test_tie_break_follows_node_order():
    nodes = [node("a", "Input"), node("c"), node("b")]
    result = build_dag(nodes, [edge("a", "b"), edge("a", "c")])
    assert [layer.id for layer in result.ordered_layers] == ["a", "c", "b"]


def test_predecessors_follow_topological_order_not_edge_order():
    nodes = [node("in", "Input"), node("x"), node("y"), node("m", "Merge")]
    edges = [edge("in", "x"), edge("in", "y"), edge("y", "m"), edge("x", "m")]
    result = build_dag(nodes, edges)
    assert result.predecessors("m") == ["x", "y"]


def test_variable_names_are_suffixed_per_type():
    nodes = [node("i", "Input"), node("d1"), node("d2"), node("f", "Flatten"), node("d3")]
    edges = [edge("i", "d1"), edge("d1", "d2"), edge("d2", "f"), edge("f", "d3")]
    result = build_dag(nodes, edges)
    names = [layer.variable_name for layer in result.ordered_layers]
    assert names == ["input", "dense", "dense_1", "flatten", "dense_2"]


def test_variable_names_are_identifiers():
    result = build_dag([node("a", "Conv2D-Transpose")], [])
    assert result.ordered_layers[0].variable_name == "conv2d_transpose"


def test_cycle_is_reported_with_empty_ordering():
    nodes = [node("a", "Input"), node("b"), node("c"), node("d", "Output")]
    edges = [edge("a", "b"), edge("b", "c"), edge("c", "b"), edge("c", "d")]
    result = build_dag(nodes, edges)

    assert not result.is_valid
    assert "Network contains cycles - DAG structure required" in result.errors
    assert result.ordered_layers == ()
    assert result.successors == {}


def test_pure_cycle_reports_all_structural_errors():
    result = build_dag([node("a"), node("b")], [edge("a", "b"), edge("b", "a")])
    assert len(result.errors) == 3
    assert any("input layer" in e for e in result.errors)
    assert any("output layer" in e for e in result.errors)
    assert any("cycles" in e for e in result.errors)


def test_cycle_without_any_output_layer():
    result = build_dag([node("a", "Input"), node("b"), node("c")],
                       [edge("a", "b"), edge("b", "c"), edge("c", "b")])
    assert result.errors == (
        "Network must have at least one output layer (a layer with no outgoing connections)",
        "Network contains cycles - DAG structure required",
    )


def test_cycle_without_any_input_layer():
    result = build_dag([node("a"), node("b"), node("c", "Output")],
                       [edge("a", "b"), edge("b", "a"), edge("a", "c")])
    assert result.errors == (
        "Network must have at least one input layer (a layer with no incoming connections)",
        "Network contains cycles - DAG structure required",
    )


def test_self_loop_is_a_cycle():
    result = build_dag([node("a", "Input"), node("b")], [edge("a", "b"), edge("b", "b")])
    assert "Network contains cycles - DAG structure required" in result.errors


def test_unknown_edge_endpoint_is_rejected():
    result = build_dag([node("a", "Input"), node("b")], [edge("a", "b"), edge("b", "ghost")])
    assert not result.is_valid
    assert result.errors == ("Connection b -> ghost references unknown layer 'ghost'",)


def test_duplicate_edges_collapse():
    result = build_dag([node("a", "Input"), node("b")], [edge("a", "b"), edge("a", "b")])
    assert result.is_valid
    assert result.successors["a"] == ("b",)
    assert result.predecessors("b") == ["a"]


def test_duplicate_node_ids_are_rejected():
    result = build_dag([node("a", "Input"), node("a")], [])
    assert "Duplicate layer id 'a'" in result.errors


def test_node_from_editor_payload():
    graph_node = GraphNode.from_dict({
        "id": 7,
        "data": {"type": "Dense", "params": {"units": 5, "bias": None, "shape": [1, 2]}},
    })
    assert graph_node == GraphNode(id="7", type="Dense", params={"units": 5, "shape": "[1, 2]"})


def test_node_from_litegraph_payload():
    graph_node = GraphNode.from_dict({"id": 3, "type": "Dropout", "properties": {"rate": 0.2}})
    assert graph_node.params == {"rate": 0.2}


def test_node_without_type_is_rejected():
    with pytest.raises(ValueError):
        GraphNode.from_dict({"id": 1, "params": {}})


def test_edge_payloads():
    assert GraphEdge.from_dict({"source": 1, "target": 2}) == GraphEdge("1", "2")
    assert GraphEdge.from_dict([10, 1, 0, 2, 0, "tensor"]) == GraphEdge("1", "2")
    with pytest.raises(ValueError):
        GraphEdge.from_dict({"from": 1})


def test_validate_network_structure():
    ok, errors = validate_network_structure([node("a", "Input"), node("b")], [edge("a", "b")])
    assert ok and errors == []
    ok, errors = validate_network_structure([], [])
    assert not ok and errors == ["Network must have at least one layer"]


def test_default_result_successors_are_read_only():
    for result in (DAGResult(), build_dag([], [])):
        with pytest.raises(TypeError):
            result.successors["a"] = ("b",)
