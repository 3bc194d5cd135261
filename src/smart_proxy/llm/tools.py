"""Tool-search client for the remote web and keyword search endpoints.

Every call carries the issuing request's session correlation id as
``X-Request-ID`` so the upstream can trace concurrent tool calls back to
separate gateway requests. The id is passed per call; the client itself
holds no per-request state.
"""

import logging
from typing import Any

import httpx

from smart_proxy.llm.client import (
    BackendResult,
    envelope_from_exception,
    envelope_from_response,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class ToolSearchClient:
    """Client for the remote ``/search/web`` and ``/search/x`` tools."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.x.ai/v1",
        timeout: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize tool-search client.

        Args:
            api_key: Bearer key for the remote API
            base_url: API base URL
            timeout: Read timeout in seconds
            transport: Optional httpx transport (tests)
        """
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any], session_id: str) -> BackendResult:
        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={REQUEST_ID_HEADER: session_id},
            )
        except httpx.HTTPError as e:
            return envelope_from_exception(e, "tool-search")

        result = envelope_from_response(response)
        if not result.ok:
            logger.warning(
                "Tool search %s returned %s",
                path,
                result.status,
                extra={
                    "event": "upstream_error",
                    "backend": "tool-search",
                    "status": result.status,
                    "session_id": session_id,
                },
            )
        return result

    async def web_search(
        self,
        query: str,
        *,
        session_id: str,
        num_results: int = 5,
    ) -> BackendResult:
        """Run a web search.

        Args:
            query: Search query (already anonymized)
            session_id: Correlation id of the issuing request
            num_results: Maximum number of results

        Returns:
            Upstream body wrapped in a BackendResponse, or an ErrorEnvelope
        """
        return await self._post(
            "/search/web",
            {"query": query, "num_results": num_results},
            session_id,
        )

    async def keyword_search(
        self,
        query: str,
        *,
        session_id: str,
        limit: int = 5,
        mode: str = "top",
    ) -> BackendResult:
        """Run a keyword search over the remote social index."""
        return await self._post(
            "/search/x",
            {"query": query, "limit": limit, "mode": mode},
            session_id,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
