"""Pydantic models for smart-proxy.yaml configuration."""

from typing import Literal

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=4567, description="Server port", ge=1, le=65535)


class AuthConfig(BaseModel):
    """Caller authentication configuration."""

    token_env: str = Field(
        default="PROXY_AUTH_TOKEN",
        description="Environment variable holding the shared proxy bearer secret",
    )


class OllamaConfig(BaseModel):
    """Local Ollama backend configuration."""

    host: str = Field(default="http://localhost:11434", description="Ollama server URL")
    model: str = Field(
        default="llama3.1:8b",
        description="Model used when callers ask for the generic 'ollama' alias",
    )
    alias: str = Field(default="ollama", description="Generic local model alias")
    timeout: int = Field(default=120, description="Read timeout in seconds", ge=1)


class RetryConfig(BaseModel):
    """Retry policy for the remote chat backend."""

    max_attempts: int = Field(default=3, description="Total attempts, first call included", ge=1, le=10)
    base_delay: float = Field(default=0.5, description="Initial backoff in seconds", ge=0.0)
    multiplier: float = Field(default=2.0, description="Backoff multiplier", ge=1.0)
    jitter: float = Field(
        default=0.5,
        description="Random extra fraction of each delay (0.5 = up to +50%)",
        ge=0.0,
        le=1.0,
    )
    retry_statuses: list[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="Upstream status codes that trigger a retry",
    )


class RemoteConfig(BaseModel):
    """Remote (xAI) chat and tool-search backend configuration."""

    base_url: str = Field(default="https://api.x.ai/v1", description="Remote API base URL")
    api_key_env: str = Field(default="GROK_API_KEY", description="Env var with the remote API key")
    override_api_key_env: str = Field(
        default="GROK_API_KEY_SAP",
        description="Env var with a secondary key for /proxy/generate callers",
    )
    override_caller: str | None = Field(
        default=None,
        description="If set, the override key only applies when X-Caller-ID matches",
    )
    default_model: str = Field(default="grok-4", description="Remote model for policy decisions")
    models: list[str] = Field(
        default=["grok-4", "grok-beta"],
        description="Remote model ids advertised by /v1/models",
    )
    model_prefixes: list[str] = Field(
        default=["grok"],
        description="Model-name prefixes that resolve to the remote backend",
    )
    timeout: int = Field(default=60, description="Read timeout in seconds", ge=1)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class RoutingConfig(BaseModel):
    """Routing policy tables.

    Model ids come from the ``ollama`` and ``remote`` sections.
    """

    token_threshold: int = Field(
        default=1000,
        description="Estimated prompt tokens at which a prompt counts as heavy",
        ge=1,
    )
    complex_keywords: list[str] = Field(
        default=["prd", "epic", "artifact", "acceptance criteria", "requirements"],
        description="Keywords marking a structured-deliverable prompt",
    )


class ToolLoopConfig(BaseModel):
    """Server-side tool loop limits."""

    max_loops: int = Field(default=3, description="Upper bound on proxy_tools rounds", ge=0)
    tool_name: str = Field(default="proxy_tools", description="Tool name executed by the gateway")
    num_results: int = Field(default=5, description="Default result count per search", ge=1, le=50)


class LoggingConfig(BaseModel):
    """Structured logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_format: bool = Field(default=True, description="Emit one JSON object per line")
    file: str | None = Field(default=None, description="Log file path (stderr if unset)")


class ProxyConfig(BaseModel):
    """Root configuration model for smart-proxy."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    tool_loop: ToolLoopConfig = Field(default_factory=ToolLoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
