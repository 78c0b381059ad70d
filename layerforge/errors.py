"""Exception hierarchy for layerforge.

Structural and per-node shape problems are reported as data on the pipeline
results. Exceptions are reserved for malformed inputs to the small parsers and
for a broken layer catalog.
"""


class LayerForgeError(Exception):
    """Base for all layerforge errors."""


class ShapeParseError(LayerForgeError, ValueError):
    """A shape or tuple string could not be parsed."""


class CatalogError(LayerForgeError):
    """The layer catalog is missing, malformed or references unknown rules."""


class TemplateSyntaxError(LayerForgeError):
    """A code template has an unbalanced or unsupported tag."""

    def __init__(self, message: str, template: str = ""):
        self.template = template
        super().__init__(message)
