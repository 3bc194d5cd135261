"""Tests for the remote tool-search client."""

import json

import httpx
import pytest
import respx
from httpx import Response

from smart_proxy.llm import ToolSearchClient


@pytest.mark.asyncio
@respx.mock
async def test_web_search_sends_query_and_request_id():
    route = respx.post("https://remote.test/v1/search/web").mock(
        return_value=Response(200, json={"results": [{"title": "Result"}]})
    )
    client = ToolSearchClient(api_key="remote_key", base_url="https://remote.test/v1")

    result = await client.web_search("latest news", session_id="abc123", num_results=3)

    assert result.ok
    assert result.body == {"results": [{"title": "Result"}]}
    request = route.calls.last.request
    assert request.headers["X-Request-ID"] == "abc123"
    assert request.headers["Authorization"] == "Bearer remote_key"
    assert json.loads(request.content) == {"query": "latest news", "num_results": 3}

    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_keyword_search_payload():
    route = respx.post("https://remote.test/v1/search/x").mock(
        return_value=Response(200, json={"posts": []})
    )
    client = ToolSearchClient(api_key="remote_key", base_url="https://remote.test/v1")

    result = await client.keyword_search("ai", session_id="abc123", limit=7)

    assert result.ok
    assert json.loads(route.calls.last.request.content) == {"query": "ai", "limit": 7, "mode": "top"}
    assert route.calls.last.request.headers["X-Request-ID"] == "abc123"

    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_search_failure_is_not_retried():
    route = respx.post("https://remote.test/v1/search/web").mock(
        return_value=Response(503, json={"error": "down"})
    )
    client = ToolSearchClient(api_key="remote_key", base_url="https://remote.test/v1")

    result = await client.web_search("q", session_id="s1")

    assert result.status == 503
    assert route.call_count == 1

    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_search_transport_error():
    respx.post("https://remote.test/v1/search/x").mock(side_effect=httpx.ConnectError("refused"))
    client = ToolSearchClient(api_key=None, base_url="https://remote.test/v1")

    result = await client.keyword_search("q", session_id="s1")

    assert not result.ok
    assert result.status == 500

    await client.close()
