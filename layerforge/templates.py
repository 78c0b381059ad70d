"""
Code template mini-language.

Catalog entries describe their Keras source as small templates:

    Dense({{units}}{% if activation != 'none' %}, activation='{{activation}}'{% endif %})

Templates are tokenized and parsed once, when the catalog is loaded, into a
tree of Text / Var / If nodes. Rendering walks that tree and never raises.

Supported tags:
    {{ name }}                       parameter or computed placeholder
    {% if name is not none %}        parameter present and not None
    {% if name is defined %}         parameter key present
    {% if name == 'literal' %}       string comparison (also !=)
    {% if name %}                    truthiness, see params.is_truthy
    {% elif ... %} {% else %} {% endif %}
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from layerforge.errors import TemplateSyntaxError
from layerforge.params import compare_text, format_value, is_truthy
from layerforge.shape_rules import input_shape_spec, output_activation, output_units

logger = logging.getLogger(__name__)

REPEAT_THRESHOLD = 5

_TOKEN = re.compile(r"(\{\{.*?\}\}|\{%.*?%\})", re.DOTALL)
_NAME = re.compile(r"^\w+$")

_NOT_NONE = re.compile(r"^(\w+)\s+is\s+not\s+none$", re.IGNORECASE)
_DEFINED = re.compile(r"^(\w+)\s+is\s+defined$")
_COMPARE = re.compile(r"^(\w+)\s*(==|!=)\s*(['\"])(.*)\3$")


# Placeholders derived from several parameters of one layer
COMPUTED_PLACEHOLDERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "computed_shape": input_shape_spec,
    "computed_units": output_units,
    "computed_activation": output_activation,
}


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Var:
    name: str


@dataclass(frozen=True)
class Condition:
    kind: str  # not_none | defined | eq | ne | truthy
    name: str
    literal: Optional[str] = None

    def evaluate(self, params: Dict[str, Any]) -> bool:
        if self.kind == "defined":
            return self.name in params
        value = params.get(self.name)
        if self.kind == "not_none":
            return value is not None
        if self.kind == "eq":
            return compare_text(value) == self.literal
        if self.kind == "ne":
            return compare_text(value) != self.literal
        return is_truthy(value)


@dataclass(frozen=True)
class If:
    # (None, body) is the else branch and is always last
    branches: Tuple[Tuple[Optional[Condition], Tuple["Node", ...]], ...]


Node = Union[Text, Var, If]


def _tokenize(source: str) -> List[Tuple[str, str]]:
    tokens = []
    for chunk in _TOKEN.split(source):
        if not chunk:
            continue
        if chunk.startswith("{{") and chunk.endswith("}}"):
            tokens.append(("var", chunk[2:-2].strip()))
        elif chunk.startswith("{%") and chunk.endswith("%}"):
            tokens.append(("tag", chunk[2:-2].strip()))
        else:
            tokens.append(("text", chunk))
    return tokens


def _split_tag(tag: str) -> Tuple[str, str]:
    parts = tag.split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1].strip() if len(parts) > 1 else ""


def parse_condition(text: str, source: str = "") -> Condition:
    """Parse the expression of an if/elif tag. Specific forms win over the bare name."""
    text = text.strip()
    match = _NOT_NONE.match(text)
    if match:
        return Condition("not_none", match.group(1))
    match = _DEFINED.match(text)
    if match:
        return Condition("defined", match.group(1))
    match = _COMPARE.match(text)
    if match:
        kind = "eq" if match.group(2) == "==" else "ne"
        return Condition(kind, match.group(1), match.group(4))
    if _NAME.match(text):
        return Condition("truthy", text)
    raise TemplateSyntaxError(f"Unsupported condition '{text}'", source)


def _parse_block(tokens, pos, source, closing):
    body: List[Node] = []
    while pos < len(tokens):
        kind, value = tokens[pos]
        if kind == "text":
            body.append(Text(value))
        elif kind == "var":
            if not _NAME.match(value):
                raise TemplateSyntaxError(f"Invalid placeholder '{{{{{value}}}}}'", source)
            body.append(Var(value))
        else:
            keyword, _ = _split_tag(value)
            if keyword in closing:
                return body, pos
            if keyword != "if":
                raise TemplateSyntaxError(f"Unexpected tag '{{% {value} %}}'", source)
            node, pos = _parse_if(tokens, pos, source)
            body.append(node)
            continue
        pos += 1
    if closing:
        raise TemplateSyntaxError("Missing '{% endif %}'", source)
    return body, pos


def _parse_if(tokens, pos, source):
    _, rest = _split_tag(tokens[pos][1])
    condition: Optional[Condition] = parse_condition(rest, source)
    branches = []
    pos += 1
    while True:
        body, pos = _parse_block(tokens, pos, source, ("elif", "else", "endif"))
        branches.append((condition, tuple(body)))
        keyword, rest = _split_tag(tokens[pos][1])
        pos += 1
        if keyword == "endif":
            if rest:
                raise TemplateSyntaxError(f"Unexpected text after endif: '{rest}'", source)
            return If(tuple(branches)), pos
        if condition is None:
            raise TemplateSyntaxError(f"'{keyword}' after 'else'", source)
        if keyword == "elif":
            condition = parse_condition(rest, source)
        else:
            if rest:
                raise TemplateSyntaxError(f"Unexpected text after else: '{rest}'", source)
            condition = None


def parse_template(source: str) -> List[Node]:
    nodes, _ = _parse_block(_tokenize(source), 0, source, ())
    return nodes


def resolve_placeholder(name: str, params: Dict[str, Any]) -> str:
    value = params.get(name)
    if value is not None:
        return format_value(value)
    computed = COMPUTED_PLACEHOLDERS.get(name)
    if computed is not None:
        return format_value(computed(params))
    logger.debug("Unresolved template placeholder '%s'", name)
    return "{{" + name + "}}"


def _render_nodes(nodes, params: Dict[str, Any], out: List[str]) -> None:
    for node in nodes:
        if isinstance(node, Text):
            out.append(node.value)
        elif isinstance(node, Var):
            out.append(resolve_placeholder(node.name, params))
        else:
            for condition, body in node.branches:
                if condition is None or condition.evaluate(params):
                    _render_nodes(body, params, out)
                    break


class Template:
    """A parsed code template. Raises TemplateSyntaxError on construction only."""

    def __init__(self, source: str):
        self.source = source
        self.nodes = parse_template(source)

    def render(self, params: Dict[str, Any]) -> str:
        out: List[str] = []
        _render_nodes(self.nodes, params, out)
        return "".join(out)

    def __repr__(self):
        return f"Template({self.source!r})"


def render_template(source: str, params: Dict[str, Any]) -> str:
    return Template(source).render(params)


def repetition_count(params: Dict[str, Any]) -> int:
    """The layer's multiplier, clamped to at least 1."""
    value = params.get("multiplier", 1)
    if isinstance(value, bool):
        return 1
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(count, 1)


@dataclass(frozen=True)
class LayerCode:
    """One rendered layer: a constructor expression and how many times it repeats."""

    expression: str
    count: int = 1

    @property
    def is_comment(self) -> bool:
        return self.expression.lstrip().startswith("#")

    @property
    def is_looped(self) -> bool:
        return self.count > REPEAT_THRESHOLD

    def lines(self) -> List[str]:
        """Physical lines of the stacked form, without the trailing separator."""
        if self.count <= 1 or self.is_comment:
            return [self.expression]
        if self.is_looped:
            return [
                f"# Repeated {self.count} times",
                f"*[{self.expression} for _ in range({self.count})]",
            ]
        return [f"{self.expression}," for _ in range(self.count - 1)] + [self.expression]

    def __str__(self):
        return "\n    ".join(self.lines())
