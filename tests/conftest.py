"""Pytest configuration and shared fixtures."""

import pytest
import respx
from fastapi.testclient import TestClient

from smart_proxy.config.schema import ProxyConfig
from smart_proxy.server.app import create_app


@pytest.fixture
def proxy_config() -> ProxyConfig:
    """Configuration pointing at stubbed upstreams, with instant retries."""
    config = ProxyConfig()
    config.ollama.host = "http://ollama.test"
    config.remote.base_url = "https://remote.test/v1"
    config.remote.retry.base_delay = 0.0
    return config


@pytest.fixture
def proxy_env() -> dict[str, str]:
    """Environment holding the gateway secret and remote API key."""
    return {"PROXY_AUTH_TOKEN": "test_token", "GROK_API_KEY": "remote_key"}


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer test_token"}


@pytest.fixture
def upstream():
    """Stub every outbound httpx call made by the backend clients."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def client(proxy_config, proxy_env, upstream):
    """Test client for a gateway wired to the stubbed upstreams."""
    app = create_app(proxy_config, environ=proxy_env)
    with TestClient(app) as test_client:
        yield test_client
