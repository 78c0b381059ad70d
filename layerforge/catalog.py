"""
Layer catalog.

The catalog is the single description of every supported layer type: its
parameter defaults, input contract, shape rule, code templates and imports.
It is declared in data/layers.yaml and loaded once into an immutable mapping
that callers pass explicitly to the DAG, shape and code stages.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Optional, Tuple

import yaml

from layerforge.errors import CatalogError, TemplateSyntaxError
from layerforge.shape_parser import Shape, format_shape
from layerforge.shape_rules import SHAPE_RULES, ShapeResult
from layerforge.templates import Template

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = os.path.join(os.path.dirname(__file__), "data", "layers.yaml")
DEFAULT_TARGET = "keras"


@dataclass(frozen=True)
class InputValidation:
    is_valid: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class LayerSpec:
    type: str
    shape_rule: str
    defaults: Mapping = field(default_factory=dict)
    templates: Mapping = field(default_factory=dict)
    imports: Tuple[str, ...] = ()
    import_param: Optional[str] = None
    import_cases: Mapping = field(default_factory=dict)
    normalize: Mapping = field(default_factory=dict)
    min_inputs: int = 1
    max_inputs: Optional[int] = 1
    rank: Optional[int] = None
    rank_hint: str = ""
    supports_repetition: bool = False
    is_root: bool = False
    category: str = ""
    description: str = ""

    def resolve_params(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Defaults merged under the user's parameters, as a new dict.

        Parameters listed under `normalize` are lowercased and mapped through
        their alias table, so rules, templates and imports see one spelling.
        """
        merged = dict(self.defaults)
        for key, value in (params or {}).items():
            if value is not None:
                merged[key] = value
        for key, aliases in self.normalize.items():
            value = merged.get(key)
            if isinstance(value, str):
                value = value.strip().lower()
                merged[key] = aliases.get(value, value)
        return merged

    def validate_inputs(self, input_shapes: List[Shape], params: Dict[str, Any]) -> InputValidation:
        if self.is_root:
            return InputValidation(True)

        count = len(input_shapes)
        if self.max_inputs == self.min_inputs and count != self.min_inputs:
            plural = "input" if self.min_inputs == 1 else "inputs"
            return InputValidation(
                False, f"{self.type} layer expects exactly {self.min_inputs} {plural}, got {count}"
            )
        if count < self.min_inputs:
            return InputValidation(
                False, f"{self.type} layer expects at least {self.min_inputs} inputs, got {count}"
            )
        if self.max_inputs is not None and count > self.max_inputs:
            return InputValidation(
                False, f"{self.type} layer expects at most {self.max_inputs} inputs, got {count}"
            )

        if self.rank is not None:
            for shape in input_shapes:
                if len(shape) != self.rank:
                    hint = f" {self.rank_hint}" if self.rank_hint else ""
                    return InputValidation(
                        False,
                        f"{self.type} layer expects {self.rank}D input{hint}, got {format_shape(shape)}",
                    )
        return InputValidation(True)

    def compute_shape(self, input_shapes: List[Shape], params: Dict[str, Any]) -> ShapeResult:
        rule = SHAPE_RULES[self.shape_rule]
        try:
            return rule(input_shapes, params)
        except (ValueError, OverflowError) as e:
            return ShapeResult.failure(f"{self.type}: {e}")

    def template(self, target: str = DEFAULT_TARGET) -> Optional[Template]:
        return self.templates.get(target)

    def imports_for(self, params: Optional[Dict[str, Any]] = None) -> Tuple[str, ...]:
        if self.import_param is None:
            return self.imports
        value = self.resolve_params(params).get(self.import_param)
        return self.import_cases.get(str(value), self.imports)

    def describe(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "parameters": dict(self.defaults),
            "inputs": {"min": self.min_inputs, "max": self.max_inputs},
            "supports_repetition": self.supports_repetition,
            "is_root": self.is_root,
            "targets": sorted(self.templates),
        }


class LayerCatalog(Mapping):
    """Immutable type -> LayerSpec mapping."""

    def __init__(self, specs: Dict[str, LayerSpec], source: str = "<memory>"):
        self._specs = MappingProxyType(dict(specs))
        self.source = source

    def __getitem__(self, layer_type: str) -> LayerSpec:
        return self._specs[layer_type]

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self):
        return f"LayerCatalog({len(self)} layers from {self.source})"

    @property
    def root_types(self) -> List[str]:
        return [name for name, spec in self._specs.items() if spec.is_root]

    def describe(self) -> List[Dict[str, Any]]:
        return [spec.describe() for spec in self._specs.values()]


def _parse_inputs(name: str, value: Any) -> Tuple[int, Optional[int]]:
    if isinstance(value, bool):
        raise CatalogError(f"Layer '{name}': 'inputs' must be an int or a mapping")
    if isinstance(value, int):
        return value, value
    if isinstance(value, dict):
        low = value.get("min", 1)
        high = value.get("max")
        if not isinstance(low, int) or (high is not None and not isinstance(high, int)):
            raise CatalogError(f"Layer '{name}': 'inputs' min/max must be integers")
        return low, high
    raise CatalogError(f"Layer '{name}': 'inputs' must be an int or a mapping")


def _parse_imports(name: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise CatalogError(f"Layer '{name}': 'imports' must be a list of names")
    return tuple(value)


def _parse_spec(name: str, entry: Any) -> LayerSpec:
    if not isinstance(entry, dict):
        raise CatalogError(f"Layer '{name}' must be a mapping")

    rule = entry.get("shape_rule")
    if rule not in SHAPE_RULES:
        raise CatalogError(f"Layer '{name}' references unknown shape rule {rule!r}")

    raw_templates = entry.get("templates") or {}
    if not isinstance(raw_templates, dict) or not raw_templates:
        raise CatalogError(f"Layer '{name}' needs at least one code template")
    templates = {}
    for target, source in raw_templates.items():
        try:
            templates[target] = Template(str(source).strip())
        except TemplateSyntaxError as e:
            raise CatalogError(f"Layer '{name}' has a malformed {target} template: {e}") from e

    defaults = entry.get("parameters") or {}
    if not isinstance(defaults, dict):
        raise CatalogError(f"Layer '{name}': 'parameters' must be a mapping")

    is_root = entry.get("role") == "input"
    min_inputs, max_inputs = _parse_inputs(name, entry.get("inputs", 0 if is_root else 1))

    import_param = None
    import_cases: Dict[str, Tuple[str, ...]] = {}
    switch = entry.get("imports_by")
    if switch is not None:
        if not isinstance(switch, dict) or "param" not in switch or not isinstance(switch.get("cases"), dict):
            raise CatalogError(f"Layer '{name}': 'imports_by' needs 'param' and 'cases'")
        import_param = str(switch["param"])
        import_cases = {str(k): _parse_imports(name, v) for k, v in switch["cases"].items()}

    raw_normalize = entry.get("normalize") or {}
    if not isinstance(raw_normalize, dict):
        raise CatalogError(f"Layer '{name}': 'normalize' must be a mapping")
    normalize = {}
    for key, aliases in raw_normalize.items():
        if aliases is not None and not isinstance(aliases, dict):
            raise CatalogError(f"Layer '{name}': aliases for '{key}' must be a mapping")
        normalize[str(key)] = MappingProxyType(
            {str(k).lower(): str(v) for k, v in (aliases or {}).items()}
        )

    rank = entry.get("rank")
    if rank is not None and (isinstance(rank, bool) or not isinstance(rank, int)):
        raise CatalogError(f"Layer '{name}': 'rank' must be an integer")

    return LayerSpec(
        type=name,
        shape_rule=rule,
        defaults=MappingProxyType(dict(defaults)),
        templates=MappingProxyType(templates),
        imports=_parse_imports(name, entry.get("imports")),
        import_param=import_param,
        import_cases=MappingProxyType(import_cases),
        normalize=MappingProxyType(normalize),
        min_inputs=min_inputs,
        max_inputs=max_inputs,
        rank=rank,
        rank_hint=str(entry.get("rank_hint") or ""),
        supports_repetition=bool(entry.get("repeatable", False)),
        is_root=is_root,
        category=str(entry.get("category") or ""),
        description=str(entry.get("description") or ""),
    )


def catalog_from_dict(data: Any, source: str = "<memory>") -> LayerCatalog:
    if not isinstance(data, dict) or not isinstance(data.get("layers"), dict):
        raise CatalogError(f"{source}: expected a top-level 'layers' mapping")
    specs = {str(name): _parse_spec(str(name), entry) for name, entry in data["layers"].items()}
    if not any(spec.is_root for spec in specs.values()):
        raise CatalogError(f"{source}: no layer declares 'role: input'")
    return LayerCatalog(specs, source)


def load_catalog(path: Optional[str] = None) -> LayerCatalog:
    path = path or DEFAULT_CATALOG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise CatalogError(f"Cannot read layer catalog {path}: {e}") from e
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in layer catalog {path}: {e}") from e

    catalog = catalog_from_dict(data, source=path)
    logger.info("Loaded %d layer definitions from %s", len(catalog), path)
    return catalog
