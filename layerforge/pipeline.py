"""
One-call compile of an editor graph: order it, infer shapes, render code.

The whole pipeline is pure and cheap, so callers simply rerun it on every
graph edit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from layerforge.catalog import LayerCatalog
from layerforge.code_generator import generate_code, render_stacked, render_wired
from layerforge.dag import DAGResult, build_dag
from layerforge.shape_inference import GRAPH_KEY, ShapeInferenceResult, ShapeIssue, infer_shapes
from layerforge.shape_rules import DEFAULT_INPUT_SHAPE

logger = logging.getLogger(__name__)

STYLES = ("auto", "stacked", "wired")


@dataclass
class CompileResult:
    dag: DAGResult
    code: str
    style: Optional[str] = None
    shapes: Optional[ShapeInferenceResult] = None
    issues: List[ShapeIssue] = field(default_factory=list)
    warnings: List[ShapeIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "valid": self.dag.is_valid,
            "style": self.style,
            "errors": [issue.to_dict() for issue in self.issues],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "shapes": self.shapes.formatted_shapes() if self.shapes else {},
            "variables": {layer.id: layer.variable_name for layer in self.dag.ordered_layers},
            "order": [layer.id for layer in self.dag.ordered_layers],
            "code": self.code,
        }


def compile_graph(nodes, edges, catalog: LayerCatalog,
                  root_input_shape: str = DEFAULT_INPUT_SHAPE,
                  style: str = "auto") -> CompileResult:
    if style not in STYLES:
        raise ValueError(f"Unknown code style '{style}', expected one of {', '.join(STYLES)}")

    dag = build_dag(nodes, edges)
    if dag.is_valid:
        shapes = infer_shapes(dag, catalog, root_input_shape)
        issues = list(shapes.errors)
        warnings = list(shapes.warnings)
    else:
        shapes = None
        issues = [ShapeIssue(GRAPH_KEY, message) for message in dag.errors]
        warnings = []

    if style == "stacked":
        code, chosen = render_stacked(dag.ordered_layers, catalog, root_input_shape), "stacked"
    elif style == "wired":
        code, chosen = render_wired(dag, catalog, root_input_shape), "wired"
    else:
        code, chosen = generate_code(dag, catalog, root_input_shape)

    logger.info("Compiled graph: %d layers, %d errors, %d warnings",
                len(dag.ordered_layers), len(issues), len(warnings))
    return CompileResult(dag=dag, code=code, style=chosen if dag.is_valid else None,
                         shapes=shapes, issues=issues, warnings=warnings)
