"""Configuration models and loading."""

from .loader import ConfigError, load_config, resolve_secret, save_config
from .schema import ProxyConfig

__all__ = ["ConfigError", "ProxyConfig", "load_config", "resolve_secret", "save_config"]
