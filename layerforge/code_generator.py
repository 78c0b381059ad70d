"""
Keras Code Generator
Generates model-construction scripts from an ordered layer graph
"""

from typing import Dict, Iterable, List, Optional, Tuple

from layerforge.catalog import DEFAULT_TARGET, LayerCatalog
from layerforge.dag import DAGResult, OrderedLayer
from layerforge.shape_rules import DEFAULT_INPUT_SHAPE, with_root_fallback
from layerforge.templates import LayerCode, repetition_count

INDENT = "    "

COMPILATION_TRAILER = [
    "",
    "# Compile the model",
    "model.compile(",
    "    optimizer='adam',",
    "    loss='categorical_crossentropy',",
    "    metrics=['accuracy']",
    ")",
    "",
    "# Display model summary",
    "model.summary()",
]

NO_LAYERS = "# No layers to generate code for"
INVALID_DAG = "# Invalid DAG structure - cannot generate code"


def render_layer(layer: OrderedLayer, catalog: LayerCatalog,
                 root_input_shape: str = DEFAULT_INPUT_SHAPE,
                 target: str = DEFAULT_TARGET) -> LayerCode:
    """Instantiate the layer's template. Never raises."""
    spec = catalog.get(layer.type)
    if spec is None:
        return LayerCode(f"# Unknown layer type: {layer.type}")
    template = spec.template(target)
    if template is None:
        return LayerCode(f"# No {target} template for layer type: {layer.type}")

    params = spec.resolve_params(layer.params)
    if spec.is_root:
        params = with_root_fallback(params, root_input_shape)
    count = repetition_count(params) if spec.supports_repetition else 1
    return LayerCode(template.render(params).strip(), count)


def collect_imports(layers: Iterable[OrderedLayer], catalog: LayerCatalog,
                    include_root: bool = True) -> List[str]:
    """Catalog import names of every layer present, deduplicated in first-seen order."""
    names: List[str] = []
    for layer in layers:
        spec = catalog.get(layer.type)
        if spec is None or (spec.is_root and not include_root):
            continue
        for name in spec.imports_for(layer.params):
            if name not in names:
                names.append(name)
    return names


def _stacked_entry(code: LayerCode, is_last: bool) -> List[str]:
    lines = [INDENT + line for line in code.lines()]
    if not is_last and not code.is_comment and not lines[-1].endswith(","):
        lines[-1] += ","
    return lines


def render_stacked(ordered_layers: Iterable[OrderedLayer], catalog: LayerCatalog,
                   root_input_shape: str = DEFAULT_INPUT_SHAPE,
                   target: str = DEFAULT_TARGET) -> str:
    """Sequential([...]) form, for graphs that are a single chain."""
    layers = list(ordered_layers)
    if not layers:
        return NO_LAYERS

    lines = [
        "import tensorflow as tf",
        "from tensorflow.keras.models import Sequential",
    ]
    names = collect_imports(layers, catalog)
    if names:
        lines.append(f"from tensorflow.keras.layers import {', '.join(names)}")
    lines += ["", "# Create the model", "model = Sequential(["]

    codes = [render_layer(layer, catalog, root_input_shape, target) for layer in layers]
    for index, code in enumerate(codes):
        lines.extend(_stacked_entry(code, index == len(codes) - 1))

    lines.append("])")
    lines.extend(COMPILATION_TRAILER)
    return "\n".join(lines)


def _references(variables: List[str]) -> str:
    if len(variables) == 1:
        return variables[0]
    return "[" + ", ".join(variables) + "]"


def _wired_binding(var: str, code: LayerCode, inputs: List[str]) -> List[str]:
    if not inputs:
        return [f"# Warning: {var} has no inputs", f"{var} = {code.expression}"]

    argument = _references(inputs)
    if code.count <= 1:
        return [f"{var} = {code.expression}({argument})"]

    if code.is_looped:
        lines = [f"# Repeated {code.count} times"]
        if len(inputs) == 1:
            lines.append(f"{var} = {argument}")
            lines.append(f"for _ in range({code.count}):")
        else:
            lines.append(f"{var} = {code.expression}({argument})")
            lines.append(f"for _ in range({code.count - 1}):")
        lines.append(f"{INDENT}{var} = {code.expression}({var})")
        return lines

    lines = [f"{var} = {code.expression}({argument})"]
    lines += [f"{var} = {code.expression}({var})" for _ in range(code.count - 1)]
    return lines


def render_wired(dag: DAGResult, catalog: LayerCatalog,
                 root_input_shape: str = DEFAULT_INPUT_SHAPE,
                 target: str = DEFAULT_TARGET) -> str:
    """Functional form with one variable per layer, for arbitrary DAGs."""
    if not dag.is_valid or not dag.ordered_layers:
        return INVALID_DAG

    layers = dag.ordered_layers
    root_layers = [l for l in layers if l.type in catalog and catalog[l.type].is_root]

    lines = [
        "import tensorflow as tf",
        "from tensorflow.keras.models import Model",
    ]
    root_names = collect_imports(root_layers, catalog)
    if root_names:
        lines.append(f"from tensorflow.keras.layers import {', '.join(root_names)}")
    names = [n for n in collect_imports(layers, catalog, include_root=False) if n not in root_names]
    if names:
        lines.append(f"from tensorflow.keras.layers import {', '.join(names)}")
    lines += ["", "# Build the model"]

    variables: Dict[str, str] = {}
    for layer in layers:
        code = render_layer(layer, catalog, root_input_shape, target)
        if code.is_comment:
            lines.append(code.expression)
            continue
        if layer in root_layers:
            lines.append(f"{layer.variable_name} = {code.expression}")
        else:
            inputs = [variables[p] for p in dag.predecessors(layer.id) if p in variables]
            lines.extend(_wired_binding(layer.variable_name, code, inputs))
        variables[layer.id] = layer.variable_name

    model_inputs = [variables[l.id] for l in root_layers if l.id in variables]
    model_outputs = [variables[i] for i in dag.sinks() if i in variables]
    lines.append("")
    lines.append(
        f"model = Model(inputs={_references(model_inputs)}, outputs={_references(model_outputs)})"
    )
    lines.extend(COMPILATION_TRAILER)
    return "\n".join(lines)


def generate_code(dag: DAGResult, catalog: LayerCatalog,
                  root_input_shape: str = DEFAULT_INPUT_SHAPE,
                  target: str = DEFAULT_TARGET) -> Tuple[str, Optional[str]]:
    """Pick the stacked form for single chains and the wired form otherwise.

    Returns (code, style); style is None when the graph is invalid.
    """
    if not dag.is_valid:
        return INVALID_DAG, None
    if dag.is_linear():
        return render_stacked(dag.ordered_layers, catalog, root_input_shape, target), "stacked"
    return render_wired(dag, catalog, root_input_shape, target), "wired"
