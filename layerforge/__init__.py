from layerforge.catalog import LayerCatalog, LayerSpec, load_catalog
from layerforge.code_generator import generate_code, render_stacked, render_wired
from layerforge.dag import DAGResult, GraphEdge, GraphNode, OrderedLayer, build_dag
from layerforge.errors import CatalogError, LayerForgeError, ShapeParseError, TemplateSyntaxError
from layerforge.pipeline import CompileResult, compile_graph
from layerforge.shape_inference import ShapeInferenceResult, ShapeIssue, infer_shapes

__version__ = "0.1.0"
