"""Construction of backend clients from configuration."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from smart_proxy.config.loader import resolve_secret
from smart_proxy.llm.client import BackendClient
from smart_proxy.llm.ollama import OllamaClient
from smart_proxy.llm.remote import RemoteChatClient, RetryPolicy
from smart_proxy.llm.tools import ToolSearchClient
from smart_proxy.routing.policy import BackendKind

if TYPE_CHECKING:
    from smart_proxy.config.schema import ProxyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendRegistry:
    """The set of backend clients shared by all requests of one app.

    Created once at startup and passed explicitly; requests only read it.
    """

    local: OllamaClient
    remote: RemoteChatClient
    tools: ToolSearchClient
    override_api_key: str | None = None
    override_caller: str | None = None

    def client_for(self, kind: BackendKind) -> BackendClient:
        """Return the chat client for a backend kind."""
        if kind is BackendKind.LOCAL:
            return self.local
        return self.remote

    def api_key_for(self, caller_id: str | None) -> str | None:
        """Pick the override remote key for the configured internal caller.

        Returns None when the default key should be used.
        """
        if not self.override_api_key:
            return None
        if self.override_caller is None or caller_id == self.override_caller:
            return self.override_api_key
        return None

    async def close(self) -> None:
        await self.local.close()
        await self.remote.close()
        await self.tools.close()


def create_backends(
    config: ProxyConfig,
    environ: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BackendRegistry:
    """Create backend clients based on configuration.

    Args:
        config: Proxy configuration
        environ: Environment used to resolve API keys (defaults to os.environ)
        transport: Optional shared httpx transport (tests)

    Returns:
        A registry holding the local, remote and tool-search clients
    """
    remote_cfg = config.remote
    api_key = resolve_secret(remote_cfg.api_key_env, environ)
    if not api_key:
        logger.warning(
            "Remote API key not found in %s; remote calls will be unauthenticated",
            remote_cfg.api_key_env,
        )

    retry_cfg = remote_cfg.retry
    retry = RetryPolicy(
        max_attempts=retry_cfg.max_attempts,
        base_delay=retry_cfg.base_delay,
        multiplier=retry_cfg.multiplier,
        jitter=retry_cfg.jitter,
        retry_statuses=frozenset(retry_cfg.retry_statuses),
    )

    return BackendRegistry(
        local=OllamaClient(
            base_url=config.ollama.host,
            default_model=config.ollama.model,
            alias=config.ollama.alias,
            timeout=config.ollama.timeout,
            transport=transport,
        ),
        remote=RemoteChatClient(
            api_key=api_key,
            base_url=remote_cfg.base_url,
            models=remote_cfg.models,
            timeout=remote_cfg.timeout,
            retry=retry,
            transport=transport,
        ),
        tools=ToolSearchClient(
            api_key=api_key,
            base_url=remote_cfg.base_url,
            timeout=remote_cfg.timeout,
            transport=transport,
        ),
        override_api_key=resolve_secret(remote_cfg.override_api_key_env, environ),
        override_caller=remote_cfg.override_caller,
    )
