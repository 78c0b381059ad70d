"""
Graph validation and topological ordering.

Turns the editor's node and edge lists into an ordered, named layer list.
Structural problems (empty graph, no input, no output, cycles, dangling
connections) are collected together and returned as data.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


def _clean_params(params: Any) -> Dict[str, Any]:
    """Drop None values and stringify anything that is not a JSON scalar."""
    if not isinstance(params, dict):
        return {}
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[str(key)] = value
        else:
            cleaned[str(key)] = str(value)
    return cleaned


@dataclass(frozen=True)
class GraphNode:
    id: str
    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        """Accepts flat {id, type, params} or editor style {id, data: {type, params}}."""
        if not isinstance(data, dict) or "id" not in data:
            raise ValueError(f"Node must be an object with an 'id', got {data!r}")
        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        layer_type = data.get("type") or inner.get("type") or inner.get("layerType")
        if not layer_type:
            raise ValueError(f"Node {data['id']!r} has no layer type")
        params = data.get("params")
        if params is None:
            params = inner.get("params", data.get("properties"))
        return cls(id=str(data["id"]), type=str(layer_type), params=_clean_params(params))


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str

    @classmethod
    def from_dict(cls, data: Union[Dict[str, Any], List[Any]]) -> "GraphEdge":
        """Accepts {source, target} objects or LiteGraph link arrays
        [link_id, origin_id, origin_slot, target_id, target_slot, type]."""
        if isinstance(data, (list, tuple)) and len(data) >= 4:
            return cls(source=str(data[1]), target=str(data[3]))
        if isinstance(data, dict) and "source" in data and "target" in data:
            return cls(source=str(data["source"]), target=str(data["target"]))
        raise ValueError(f"Edge must have 'source' and 'target', got {data!r}")


@dataclass(frozen=True)
class OrderedLayer:
    id: str
    type: str
    params: Dict[str, Any]
    variable_name: str


@dataclass(frozen=True)
class DAGResult:
    ordered_layers: Tuple[OrderedLayer, ...] = ()
    successors: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    is_valid: bool = False
    errors: Tuple[str, ...] = ()

    def layer(self, node_id: str) -> Optional[OrderedLayer]:
        for layer in self.ordered_layers:
            if layer.id == node_id:
                return layer
        return None

    def predecessors(self, node_id: str) -> List[str]:
        """Ids feeding node_id, in topological order."""
        return [
            layer.id for layer in self.ordered_layers
            if node_id in self.successors.get(layer.id, ())
        ]

    def sources(self) -> List[str]:
        has_incoming = {t for targets in self.successors.values() for t in targets}
        return [layer.id for layer in self.ordered_layers if layer.id not in has_incoming]

    def sinks(self) -> List[str]:
        return [layer.id for layer in self.ordered_layers if not self.successors.get(layer.id)]

    def is_linear(self) -> bool:
        """True when the graph is a single chain: no fan-in, no fan-out."""
        if not self.is_valid:
            return False
        for layer in self.ordered_layers:
            if len(self.successors.get(layer.id, ())) > 1 or len(self.predecessors(layer.id)) > 1:
                return False
        return len(self.sources()) == 1


def _invalid(errors: List[str]) -> DAGResult:
    logger.debug("Graph rejected: %s", "; ".join(errors))
    return DAGResult(is_valid=False, errors=tuple(errors))


def _variable_names(layers: List[GraphNode]) -> List[str]:
    counters: Dict[str, int] = {}
    names = []
    for node in layers:
        base = re.sub(r"\W", "_", node.type.lower())
        seen = counters.get(node.type, 0)
        names.append(base if seen == 0 else f"{base}_{seen}")
        counters[node.type] = seen + 1
    return names


def build_dag(nodes: Iterable[Union[GraphNode, Dict[str, Any]]],
              edges: Iterable[Union[GraphEdge, Dict[str, Any], List[Any]]]) -> DAGResult:
    nodes = [n if isinstance(n, GraphNode) else GraphNode.from_dict(n) for n in nodes]
    edges = [e if isinstance(e, GraphEdge) else GraphEdge.from_dict(e) for e in edges]

    if not nodes:
        return _invalid(["Network must have at least one layer"])

    errors: List[str] = []
    by_id: Dict[str, GraphNode] = {}
    for node in nodes:
        if node.id in by_id:
            errors.append(f"Duplicate layer id '{node.id}'")
        else:
            by_id[node.id] = node

    successors: Dict[str, List[str]] = {node_id: [] for node_id in by_id}
    in_degree: Dict[str, int] = {node_id: 0 for node_id in by_id}
    for edge in edges:
        missing = [end for end in (edge.source, edge.target) if end not in by_id]
        if missing:
            errors.append(
                f"Connection {edge.source} -> {edge.target} references unknown layer '{missing[0]}'"
            )
            continue
        if edge.target in successors[edge.source]:
            continue
        successors[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    if not any(d == 0 for d in in_degree.values()):
        errors.append("Network must have at least one input layer (a layer with no incoming connections)")
    if not any(not targets for targets in successors.values()):
        errors.append("Network must have at least one output layer (a layer with no outgoing connections)")

    # Kahn's algorithm, ties broken by node input order
    position = {node_id: i for i, node_id in enumerate(by_id)}
    remaining = dict(in_degree)
    ready = deque(node_id for node_id in by_id if remaining[node_id] == 0)
    order: List[str] = []
    while ready:
        current = ready.popleft()
        order.append(current)
        released = []
        for target in successors[current]:
            remaining[target] -= 1
            if remaining[target] == 0:
                released.append(target)
        ready.extend(sorted(released, key=position.__getitem__))

    if len(order) < len(by_id):
        errors.append("Network contains cycles - DAG structure required")

    if errors:
        return _invalid(errors)

    ordered_nodes = [by_id[node_id] for node_id in order]
    ordered = tuple(
        OrderedLayer(id=node.id, type=node.type, params=dict(node.params), variable_name=name)
        for node, name in zip(ordered_nodes, _variable_names(ordered_nodes))
    )
    frozen = MappingProxyType({k: tuple(v) for k, v in successors.items()})
    logger.debug("Graph ordered: %s", " -> ".join(layer.id for layer in ordered))
    return DAGResult(ordered_layers=ordered, successors=frozen, is_valid=True, errors=())


def validate_network_structure(nodes, edges) -> Tuple[bool, List[str]]:
    result = build_dag(nodes, edges)
    return result.is_valid, list(result.errors)
