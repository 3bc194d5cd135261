"""Remote chat client for the xAI OpenAI-compatible API.

Retries transient failures with jittered exponential backoff. Only the
final outcome is returned; intermediate attempts are logged, never surfaced.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from smart_proxy.llm.client import (
    BackendResponse,
    BackendResult,
    ChatEnvelope,
    envelope_from_exception,
    envelope_from_response,
)

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    The delay before attempt ``n + 1`` is
    ``base_delay * multiplier ** (n - 1) * (1 + uniform(0, jitter))``.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    jitter: float = 0.5
    retry_statuses: frozenset[int] = field(default_factory=lambda: RETRY_STATUSES)

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Backoff in seconds after the given 1-based attempt failed."""
        uniform = (rng or random).uniform(0.0, self.jitter) if self.jitter else 0.0
        return self.base_delay * self.multiplier ** (attempt - 1) * (1.0 + uniform)


class RemoteChatClient:
    """Backend client for the remote chat completions API."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.x.ai/v1",
        models: Iterable[str] = (),
        timeout: int = 60,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize remote client.

        Args:
            api_key: Default bearer key for the remote API
            base_url: API base URL
            models: Model ids advertised by list_models()
            timeout: Read timeout in seconds
            retry: Retry policy (defaults to 3 attempts, 0.5s base)
            transport: Optional httpx transport (tests)
            sleep: Coroutine used to wait between attempts
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.models = list(models)
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    def _headers(self, api_key: str | None) -> dict[str, str]:
        key = api_key or self.api_key
        return {"Authorization": f"Bearer {key}"} if key else {}

    async def chat(self, envelope: ChatEnvelope, api_key: str | None = None) -> BackendResult:
        """Post a chat completion, retrying transient failures.

        Retries on the policy's status codes and on transport errors
        (connection failures, timeouts). Other statuses are returned
        immediately.

        Args:
            envelope: Normalized, already-anonymized request
            api_key: Per-call key overriding the default

        Returns:
            BackendResponse on success, ErrorEnvelope after a terminal or
            exhausted failure
        """
        return await self.post("/chat/completions", envelope.to_payload(), api_key=api_key)

    async def post(
        self,
        path: str,
        payload: Any,
        api_key: str | None = None,
    ) -> BackendResult:
        """POST JSON to the remote API with retry."""
        headers = self._headers(api_key)
        attempts = self.retry.max_attempts
        result: BackendResult | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.post(path, json=payload, headers=headers)
            except httpx.HTTPError as e:
                result = envelope_from_exception(e, "remote")
                retryable = isinstance(e, httpx.TransportError)
            else:
                result = envelope_from_response(response)
                retryable = result.status in self.retry.retry_statuses

            if result.ok or not retryable:
                break

            if attempt < attempts:
                wait_time = self.retry.delay(attempt)
                logger.warning(
                    "Remote returned %s, retrying in %.2fs (attempt %d/%d)",
                    result.status,
                    wait_time,
                    attempt,
                    attempts,
                    extra={"event": "upstream_retry", "backend": "remote", "status": result.status},
                )
                await self._sleep(wait_time)

        assert result is not None
        if not result.ok:
            logger.error(
                "Remote request to %s failed with %s",
                path,
                result.status,
                extra={"event": "upstream_error", "backend": "remote", "status": result.status},
            )
        return result

    async def list_models(self) -> BackendResult:
        """Return the configured remote model ids in Ollama-like form."""
        return BackendResponse(status=200, body={"models": [{"name": m} for m in self.models]})

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
