"""Client configuration models and YAML loading."""

from statcache.config.loader import load_config
from statcache.config.models import ClientConfig, EndpointConfig


__all__ = ["ClientConfig", "EndpointConfig", "load_config"]
