"""
Per-layer shape rules.

Each rule maps the input shapes of a node (batch dimension excluded) and its
resolved parameters to a ShapeResult. Rules are registered by name and the
catalog refers to them from layers.yaml.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from layerforge.errors import ShapeParseError
from layerforge.params import is_truthy, number_or_default, positive_int
from layerforge.shape_parser import Shape, format_shape, parse_pairs, parse_shape, parse_tuple_or_number

DEFAULT_INPUT_SHAPE = "(784,)"


@dataclass(frozen=True)
class ShapeResult:
    shape: Optional[Shape] = None
    error: Optional[str] = None
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.shape is not None

    @classmethod
    def success(cls, shape: Shape, warning: Optional[str] = None) -> "ShapeResult":
        return cls(shape=list(shape), warning=warning)

    @classmethod
    def failure(cls, error: str) -> "ShapeResult":
        return cls(error=error)


ShapeRule = Callable[[List[Shape], Dict[str, Any]], ShapeResult]

SHAPE_RULES: Dict[str, ShapeRule] = {}


def register_shape_rule(name: str):
    def decorator(func: ShapeRule) -> ShapeRule:
        SHAPE_RULES[name] = func
        return func
    return decorator


# --- root and output parameter derivation ---------------------------------

def input_shape_spec(params: Dict[str, Any]) -> str:
    """Shape string of a root layer, derived from its inputType discriminator."""
    kind = params.get("inputType")
    if not kind:
        shape = params.get("shape")
        return str(shape) if shape else DEFAULT_INPUT_SHAPE

    if kind == "image_grayscale":
        h = number_or_default(params, "height", 28)
        w = number_or_default(params, "width", 28)
        return f"({h}, {w}, 1)"
    if kind == "image_color":
        h = number_or_default(params, "height", 28)
        w = number_or_default(params, "width", 28)
        return f"({h}, {w}, 3)"
    if kind == "image_custom":
        h = number_or_default(params, "height", 28)
        w = number_or_default(params, "width", 28)
        c = number_or_default(params, "channels", 1)
        return f"({h}, {w}, {c})"
    if kind == "flat_data":
        return f"({number_or_default(params, 'flatSize', 784)},)"
    if kind == "sequence":
        length = number_or_default(params, "seqLength", 100)
        features = number_or_default(params, "features", 128)
        return f"({length}, {features})"
    if kind == "sequence_indices":
        return f"({number_or_default(params, 'seqLength', 100)},)"
    if kind == "custom":
        return str(params.get("customShape") or DEFAULT_INPUT_SHAPE)
    return DEFAULT_INPUT_SHAPE


def uses_root_fallback(params: Dict[str, Any]) -> bool:
    return not (params.get("inputType") or params.get("shape"))


def with_root_fallback(params: Dict[str, Any], root_input_shape: str) -> Dict[str, Any]:
    """Give a root layer without inputType or shape the network-level fallback shape."""
    if not uses_root_fallback(params):
        return params
    merged = dict(params)
    merged["shape"] = root_input_shape
    return merged


def output_units(params: Dict[str, Any]) -> int:
    kind = params.get("outputType", "multiclass")
    if kind == "multiclass":
        return number_or_default(params, "numClasses", 10)
    if kind == "binary":
        return 1
    if kind == "regression":
        return number_or_default(params, "units", 1)
    if kind == "multilabel":
        return number_or_default(params, "units", 10)
    return number_or_default(params, "units", 10)


def output_activation(params: Dict[str, Any]) -> str:
    kind = params.get("outputType", "multiclass")
    if kind == "multiclass":
        return "softmax"
    if kind in ("binary", "multilabel"):
        return "sigmoid"
    if kind == "regression":
        return "linear"
    return str(params.get("activation") or "softmax")


# --- helpers --------------------------------------------------------------

def _spatial(size: int, kernel: int, stride: int, padding: str) -> int:
    if padding == "same":
        return math.ceil(size / stride)
    return (size - kernel) // stride + 1


def _padding(params: Dict[str, Any], default: str) -> str:
    padding = str(params.get("padding") or default).lower()
    if padding not in ("same", "valid"):
        raise ShapeParseError(f"Unsupported padding '{padding}', expected 'same' or 'valid'")
    return padding


def _fully_connected(layer: str, shape: Shape, units: int) -> ShapeResult:
    if len(shape) == 0:
        return ShapeResult.failure(f"{layer} layer cannot take a 0-dimensional input")
    if len(shape) >= 3:
        features = math.prod(shape)
        return ShapeResult.success(
            [units],
            warning=(
                f"{layer} layer receiving {len(shape)}D input {format_shape(shape)} will be "
                f"automatically flattened to {features} features. Consider adding an explicit "
                f"Flatten layer for clarity."
            ),
        )
    return ShapeResult.success([units])


# --- rules ----------------------------------------------------------------

@register_shape_rule("input_layer")
def input_layer(input_shapes: List[Shape], params: Dict[str, Any]) -> ShapeResult:
    spec = input_shape_spec(params)
    try:
        return ShapeResult.success(parse_shape(spec))
    except ShapeParseError:
        return ShapeResult.failure(
            f"Invalid input shape {spec}. Expected format like \"(784,)\" or \"(28, 28, 1)\""
        )


@register_shape_rule("dense_layer")
def dense_layer(input_shapes, params):
    return _fully_connected("Dense", input_shapes[0], positive_int(params, "units"))


@register_shape_rule("output_layer")
def output_layer(input_shapes, params):
    return _fully_connected("Output", input_shapes[0], output_units(params))


@register_shape_rule("conv2d_layer")
def conv2d_layer(input_shapes, params):
    h, w, _ = input_shapes[0]
    filters = positive_int(params, "filters")
    kh, kw = parse_tuple_or_number(params.get("kernel_size", 3))
    sh, sw = parse_tuple_or_number(params.get("strides", 1))
    padding = _padding(params, "same")

    out_h = _spatial(h, kh, sh, padding)
    out_w = _spatial(w, kw, sw, padding)
    if out_h <= 0 or out_w <= 0:
        return ShapeResult.failure(
            f"Convolution output would be {out_h}x{out_w}: kernel ({kh}, {kw}) does not fit "
            f"input {format_shape(input_shapes[0])} with padding '{padding}'"
        )
    return ShapeResult.success([out_h, out_w, filters])


@register_shape_rule("conv2d_transpose_layer")
def conv2d_transpose_layer(input_shapes, params):
    # Simplified model: each spatial axis grows by its stride, no output padding.
    h, w, _ = input_shapes[0]
    filters = positive_int(params, "filters")
    parse_tuple_or_number(params.get("kernel_size", 3))
    sh, sw = parse_tuple_or_number(params.get("strides", 2))
    _padding(params, "same")
    return ShapeResult.success([h * sh, w * sw, filters])


@register_shape_rule("conv1d_layer")
def conv1d_layer(input_shapes, params):
    length, _ = input_shapes[0]
    filters = positive_int(params, "filters")
    (kernel,) = parse_tuple_or_number(params.get("kernel_size", 3), length=1)
    (stride,) = parse_tuple_or_number(params.get("strides", 1), length=1)
    padding = _padding(params, "same")

    out = _spatial(length, kernel, stride, padding)
    if out <= 0:
        return ShapeResult.failure(
            f"Conv1D output length would be {out}: kernel {kernel} does not fit "
            f"input {format_shape(input_shapes[0])} with padding '{padding}'"
        )
    return ShapeResult.success([out, filters])


@register_shape_rule("pooling2d_layer")
def pooling2d_layer(input_shapes, params):
    h, w, c = input_shapes[0]
    ph, pw = parse_tuple_or_number(params.get("pool_size", 2))
    strides = params.get("strides")
    sh, sw = parse_tuple_or_number(strides) if is_truthy(strides) else (ph, pw)
    padding = _padding(params, "valid")

    out_h = _spatial(h, ph, sh, padding)
    out_w = _spatial(w, pw, sw, padding)
    if out_h <= 0 or out_w <= 0:
        return ShapeResult.failure(
            f"Pooling output would be {out_h}x{out_w}: pool ({ph}, {pw}) does not fit "
            f"input {format_shape(input_shapes[0])}"
        )
    return ShapeResult.success([out_h, out_w, c])


@register_shape_rule("flatten_layer")
def flatten_layer(input_shapes, params):
    shape = input_shapes[0]
    flat = [math.prod(shape)]
    if len(shape) == 1:
        return ShapeResult.success(
            flat, warning=f"Input is already 1D {format_shape(shape)}, Flatten layer has no effect"
        )
    return ShapeResult.success(flat)


@register_shape_rule("upsampling2d_layer")
def upsampling2d_layer(input_shapes, params):
    h, w, c = input_shapes[0]
    sh, sw = parse_tuple_or_number(params.get("size", 2))
    return ShapeResult.success([h * sh, w * sw, c])


@register_shape_rule("zero_padding2d_layer")
def zero_padding2d_layer(input_shapes, params):
    h, w, c = input_shapes[0]
    (top, bottom), (left, right) = parse_pairs(params.get("padding", 1))
    return ShapeResult.success([h + top + bottom, w + left + right, c])


@register_shape_rule("cropping2d_layer")
def cropping2d_layer(input_shapes, params):
    h, w, c = input_shapes[0]
    (top, bottom), (left, right) = parse_pairs(params.get("cropping", 1))
    out_h = h - top - bottom
    out_w = w - left - right
    if out_h <= 0 or out_w <= 0:
        return ShapeResult.failure(
            f"Cropping2D output would be {out_h}x{out_w}: cropping removes all of "
            f"input {format_shape(input_shapes[0])}"
        )
    return ShapeResult.success([out_h, out_w, c])


@register_shape_rule("global_avg_pool_layer")
def global_avg_pool_layer(input_shapes, params):
    shape = input_shapes[0]
    if len(shape) == 3:
        return ShapeResult.success([shape[2]])
    return ShapeResult.success(shape)


@register_shape_rule("embedding_layer")
def embedding_layer(input_shapes, params):
    shape = input_shapes[0]
    output_dim = positive_int(params, "output_dim")
    if len(shape) not in (1, 2):
        return ShapeResult.failure(
            f"Embedding layer expects 1D (sequence_length,) or 2D input, got {format_shape(shape)}"
        )
    return ShapeResult.success(shape + [output_dim])


@register_shape_rule("recurrent_layer")
def recurrent_layer(input_shapes, params):
    shape = input_shapes[0]
    if len(shape) != 3:
        return ShapeResult.failure(
            f"Recurrent layer expects 3D input (batch, timesteps, features), got {format_shape(shape)}"
        )
    n, t, _ = shape
    units = positive_int(params, "units")
    if is_truthy(params.get("return_sequences")):
        return ShapeResult.success([n, t, units])
    return ShapeResult.success([n, units])


WRAPPED_RECURRENT = ("LSTM", "GRU")
BIDIRECTIONAL_MERGE_MODES = ("concat", "sum", "mul", "ave", "none")


@register_shape_rule("bidirectional_layer")
def bidirectional_layer(input_shapes, params):
    layer_type = params.get("layer_type")
    if layer_type not in WRAPPED_RECURRENT:
        return ShapeResult.failure(f"Bidirectional wraps LSTM or GRU, got {layer_type!r}")
    merge_mode = params.get("merge_mode") or "concat"
    if merge_mode not in BIDIRECTIONAL_MERGE_MODES:
        return ShapeResult.failure(f"Unsupported bidirectional merge mode '{merge_mode}'")

    result = recurrent_layer(input_shapes, params)
    if not result.ok:
        return result
    if merge_mode == "concat":
        # forward and backward outputs side by side
        out = list(result.shape)
        out[-1] *= 2
        return ShapeResult.success(out)
    return result


@register_shape_rule("time_distributed_layer")
def time_distributed_layer(input_shapes, params):
    """Apply the wrapped layer to every slice along the first axis."""
    shape = input_shapes[0]
    if len(shape) < 2:
        return ShapeResult.failure(
            f"TimeDistributed layer expects at least 2D input (time_steps, features...), "
            f"got {format_shape(shape)}"
        )
    layer_type = params.get("layer_type")
    steps, inner = shape[0], shape[1:]

    if layer_type == "Dense":
        return ShapeResult.success([steps] + inner[:-1] + [positive_int(params, "units")])
    if layer_type == "Conv1D":
        if len(inner) != 2:
            return ShapeResult.failure(
                f"TimeDistributed(Conv1D) expects 3D input (time_steps, length, features), "
                f"got {format_shape(shape)}"
            )
        parse_tuple_or_number(params.get("kernel_size_1d", 3), length=1)
        return ShapeResult.success([steps, inner[0], positive_int(params, "units")])
    if layer_type == "Conv2D":
        if len(inner) != 3:
            return ShapeResult.failure(
                f"TimeDistributed(Conv2D) expects 4D input (time_steps, height, width, channels), "
                f"got {format_shape(shape)}"
            )
        parse_tuple_or_number(params.get("kernel_size", 3))
        return ShapeResult.success([steps, inner[0], inner[1], positive_int(params, "units")])
    if layer_type in ("Activation", "Dropout"):
        return ShapeResult.success(shape)
    return ShapeResult.failure(f"TimeDistributed cannot wrap {layer_type!r}")


MERGE_MODES = ("concatenate", "add", "multiply", "average", "maximum")


@register_shape_rule("merge_layer")
def merge_layer(input_shapes, params):
    mode = params.get("mode") or "concatenate"
    if mode not in MERGE_MODES:
        return ShapeResult.failure(f"Unsupported merge mode '{mode}'")

    first = input_shapes[0]
    if mode != "concatenate":
        for other in input_shapes[1:]:
            if other != first:
                return ShapeResult.failure(
                    f"Merge ({mode}) requires identical input shapes, got "
                    + ", ".join(format_shape(s) for s in input_shapes)
                )
        return ShapeResult.success(first)

    try:
        axis = int(params.get("axis", -1))
    except (TypeError, ValueError, OverflowError):
        return ShapeResult.failure(f"Invalid concatenation axis {params.get('axis')!r}")
    rank = len(first)
    if axis < 0:
        axis += rank
    if not 0 <= axis < rank:
        return ShapeResult.failure(
            f"Concatenation axis {params.get('axis')} is out of range for input {format_shape(first)}"
        )

    total = 0
    for shape in input_shapes:
        if len(shape) != rank:
            return ShapeResult.failure(
                "Merge (concatenate) requires inputs of the same rank, got "
                + ", ".join(format_shape(s) for s in input_shapes)
            )
        for i, (a, b) in enumerate(zip(shape, first)):
            if i != axis and a != b:
                return ShapeResult.failure(
                    f"Merge (concatenate) inputs must match on every axis except {axis}, got "
                    + ", ".join(format_shape(s) for s in input_shapes)
                )
        total += shape[axis]

    out = list(first)
    out[axis] = total
    return ShapeResult.success(out)


@register_shape_rule("preserve_shape")
def preserve_shape(input_shapes, params):
    return ShapeResult.success(input_shapes[0])
