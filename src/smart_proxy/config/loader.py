"""Configuration loading and validation."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from smart_proxy.config.schema import ProxyConfig

DEFAULT_CONFIG_PATH = Path.home() / ".smart_proxy" / "smart-proxy.yaml"
CONFIG_PATH_ENV = "SMART_PROXY_CONFIG"

# env var -> (section, field, type)
ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "SMART_PROXY_PORT": ("server", "port", int),
    "OLLAMA_URL": ("ollama", "host", str),
    "OLLAMA_MODEL": ("ollama", "model", str),
    "AI_COMPLEX_MODEL": ("remote", "default_model", str),
    "TOKEN_THRESHOLD": ("routing", "token_threshold", int),
    "SMART_PROXY_MAX_LOOPS": ("tool_loop", "max_loops", int),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay recognised environment variables onto raw config data."""
    for env_name, (section, field, cast) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from e
        data.setdefault(section, {})[field] = value

    # OLLAMA_URL historically pointed at /api/chat directly
    host = data.get("ollama", {}).get("host")
    if isinstance(host, str) and host.rstrip("/").endswith("/api/chat"):
        data["ollama"]["host"] = host.rstrip("/")[: -len("/api/chat")]

    return data


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProxyConfig:
    """Load and validate smart-proxy configuration.

    Args:
        path: Path to config file. If None, uses $SMART_PROXY_CONFIG or the
              default location. A missing file means all defaults.
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If the file or an override is invalid
    """
    environ = os.environ if environ is None else environ

    if path is None:
        env_path = environ.get(CONFIG_PATH_ENV)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    config_data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config from {path}: {e}") from e

        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError(f"Config root in {path} must be a mapping")
            config_data = loaded

    config_data = _apply_env_overrides(config_data, environ)

    try:
        return ProxyConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def save_config(config: ProxyConfig, path: str | Path | None = None) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration object to save
        path: Destination path. If None, uses default location.
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)


def resolve_secret(env_name: str, environ: Mapping[str, str] | None = None) -> str | None:
    """Read a secret referenced by env-var name; empty values count as unset."""
    environ = os.environ if environ is None else environ
    value = environ.get(env_name, "")
    return value or None
