"""YAML configuration loading."""

from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from statcache.config.models import ClientConfig
from statcache.errors import ConfigError


logger = structlog.get_logger()


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as 'field.path: message' lines."""
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{location}: {item['msg']}")
    return "\n".join(lines)


def load_config(path: Path | None = None) -> ClientConfig:
    """Load configuration from a YAML file.

    Args:
        path: YAML file; None yields the defaults.

    Returns:
        Validated ClientConfig.

    Raises:
        ConfigError: If the file is missing, not YAML, or invalid.
    """
    if path is None:
        return ClientConfig()

    log = logger.bind(component="config", path=str(path))
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e

    try:
        parsed = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise ConfigError(msg) from e

    if not isinstance(parsed, dict):
        msg = f"Config file {path} must contain a mapping at the top level"
        raise ConfigError(msg)

    try:
        config = ClientConfig.model_validate(parsed)
    except ValidationError as e:
        msg = f"Invalid config in {path}:\n{format_validation_error(e)}"
        raise ConfigError(msg) from e

    log.info("config_loaded", sources=sorted(config.fetch.sources))
    return config
