"""
Shape inference over an ordered layer graph.

Walks the topological order once. Every node either gets a resolved shape or
an error keyed by its id; a failing node never stops independent branches
from resolving.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from layerforge.catalog import LayerCatalog, LayerSpec
from layerforge.dag import DAGResult, OrderedLayer, build_dag
from layerforge.errors import ShapeParseError
from layerforge.shape_parser import Shape, format_shape, parse_shape
from layerforge.shape_rules import DEFAULT_INPUT_SHAPE, uses_root_fallback, with_root_fallback
from layerforge.templates import repetition_count

logger = logging.getLogger(__name__)

GRAPH_KEY = "graph"
INPUT_KEY = "input"

# Repeats of a layer whose shape keeps changing; fixed points stop sooner.
MAX_SHAPE_STEPS = 1000


@dataclass(frozen=True)
class ShapeIssue:
    node_id: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"node_id": self.node_id, "message": self.message}


@dataclass
class ShapeInferenceResult:
    shapes: Dict[str, Shape] = field(default_factory=dict)
    errors: List[ShapeIssue] = field(default_factory=list)
    warnings: List[ShapeIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def formatted_shapes(self) -> Dict[str, str]:
        return {node_id: format_shape(shape) for node_id, shape in self.shapes.items()}

    def errors_for(self, node_id: str) -> List[str]:
        return [issue.message for issue in self.errors if issue.node_id == node_id]


def _infer_node(layer: OrderedLayer, spec: LayerSpec, input_shapes: List[Shape],
                params: Dict, result: ShapeInferenceResult) -> Optional[Shape]:
    """Apply the layer's rule once per repeat.

    Stops early at a fixed point, where the output equals the input and the
    remaining repeats would all see the same shape.
    """
    count = repetition_count(params) if spec.supports_repetition else 1
    current = input_shapes
    for step in range(count):
        prefix = f"(repeat {step + 1} of {count}) " if step else ""
        if step == MAX_SHAPE_STEPS:
            result.errors.append(ShapeIssue(
                layer.id,
                f"{layer.type} layer repeated {count} times does not settle on a shape "
                f"within {MAX_SHAPE_STEPS} repeats",
            ))
            return None

        check = spec.validate_inputs(current, params)
        if not check.is_valid:
            message = check.error_message or f"Invalid inputs for {layer.type} layer"
            result.errors.append(ShapeIssue(layer.id, prefix + message))
            return None

        outcome = spec.compute_shape(current, params)
        if not outcome.ok:
            message = outcome.error or f"Could not compute output shape for {layer.type} layer"
            result.errors.append(ShapeIssue(layer.id, prefix + message))
            return None
        if outcome.warning and ShapeIssue(layer.id, outcome.warning) not in result.warnings:
            result.warnings.append(ShapeIssue(layer.id, outcome.warning))
        if [outcome.shape] == current:
            break
        current = [outcome.shape]
    return current[0]


def _fallback_error(root_input_shape: str) -> Optional[str]:
    try:
        parse_shape(root_input_shape)
    except ShapeParseError as e:
        return str(e)
    return None


def infer_shapes(dag: DAGResult, catalog: LayerCatalog,
                 root_input_shape: str = DEFAULT_INPUT_SHAPE) -> ShapeInferenceResult:
    result = ShapeInferenceResult()
    if not dag.is_valid:
        reason = "; ".join(dag.errors) or "invalid graph"
        result.errors.append(ShapeIssue(GRAPH_KEY, f"Cannot infer shapes: {reason}"))
        return result

    for layer in dag.ordered_layers:
        spec = catalog.get(layer.type)
        if spec is None:
            result.errors.append(ShapeIssue(layer.id, f"Unknown layer type: {layer.type}"))
            continue

        params = spec.resolve_params(layer.params)
        if spec.is_root:
            if uses_root_fallback(params):
                fallback_error = _fallback_error(root_input_shape)
                if fallback_error is not None:
                    if ShapeIssue(INPUT_KEY, fallback_error) not in result.errors:
                        result.errors.append(ShapeIssue(INPUT_KEY, fallback_error))
                    continue
                params = with_root_fallback(params, root_input_shape)
            input_shapes: List[Shape] = []
        else:
            predecessors = dag.predecessors(layer.id)
            if not predecessors:
                result.errors.append(ShapeIssue(layer.id, f"{layer.type} layer has no input connections"))
                continue
            unresolved = [p for p in predecessors if p not in result.shapes]
            if unresolved:
                result.errors.append(ShapeIssue(
                    layer.id,
                    f"Could not determine input shapes for {layer.type} layer "
                    f"(unresolved: {', '.join(unresolved)})",
                ))
                continue
            input_shapes = [result.shapes[p] for p in predecessors]

        shape = _infer_node(layer, spec, input_shapes, params, result)
        if shape is not None:
            result.shapes[layer.id] = shape
            logger.debug("%s (%s) -> %s", layer.id, layer.type, format_shape(shape))

    return result


def compute_network_shapes(nodes, edges, catalog: LayerCatalog,
                           root_input_shape: str = DEFAULT_INPUT_SHAPE) -> ShapeInferenceResult:
    """Build the DAG and infer shapes in one call; structural errors are keyed "graph"."""
    dag = build_dag(nodes, edges)
    if not dag.is_valid:
        return ShapeInferenceResult(errors=[ShapeIssue(GRAPH_KEY, e) for e in dag.errors])
    return infer_shapes(dag, catalog, root_input_shape)
