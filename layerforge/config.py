import os
from dataclasses import dataclass, field

from layerforge.catalog import DEFAULT_CATALOG_PATH
from layerforge.shape_rules import DEFAULT_INPUT_SHAPE


@dataclass(frozen=True)
class Settings:
    """Service settings, read from the environment when instantiated."""

    catalog_path: str = field(default_factory=lambda: os.environ.get("LAYERFORGE_CATALOG", DEFAULT_CATALOG_PATH))
    default_input_shape: str = field(
        default_factory=lambda: os.environ.get("LAYERFORGE_INPUT_SHAPE", DEFAULT_INPUT_SHAPE)
    )
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper())
    host: str = field(default_factory=lambda: os.environ.get("LAYERFORGE_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.environ.get("LAYERFORGE_PORT", 5000)))
    debug: bool = field(default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1")


def get_settings() -> Settings:
    return Settings()
