"""Backend client protocol and envelope types.

Backend clients never raise transport or HTTP errors to their callers.
Every call returns either a :class:`BackendResponse` (2xx upstream result)
or an :class:`ErrorEnvelope`, so the front door can render both uniformly.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_ERROR_STATUS = 500
TIMEOUT_STATUS = 504


class ErrorKind(StrEnum):
    """Where a failure originated."""

    AUTH = "auth"
    VALIDATION = "validation"
    TRANSPORT = "transport"
    UPSTREAM = "upstream"
    POLICY = "policy"  # Reserved for privacy-enforcement failures


@dataclass(frozen=True)
class ChatEnvelope:
    """Normalized chat request handed to a backend client.

    Built fresh for each upstream call and never mutated afterwards; the
    tool loop derives new envelopes with :meth:`with_messages`.
    """

    model: str
    messages: tuple[dict[str, Any], ...]
    stream: bool = False
    tools: tuple[dict[str, Any], ...] | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def with_messages(self, messages: list[dict[str, Any]]) -> "ChatEnvelope":
        return ChatEnvelope(
            model=self.model,
            messages=tuple(messages),
            stream=self.stream,
            tools=self.tools,
            options=dict(self.options),
        )

    def to_payload(self) -> dict[str, Any]:
        """Render the OpenAI-style JSON body."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [dict(m) for m in self.messages],
            "stream": self.stream,
        }
        if self.tools:
            payload["tools"] = [dict(t) for t in self.tools]
        payload.update(self.options)
        return payload


@dataclass
class BackendResponse:
    """Successful upstream response."""

    status: int
    body: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass
class ErrorEnvelope:
    """Uniform failure value for network, upstream and validation errors."""

    status: int
    body: Any
    kind: ErrorKind = ErrorKind.UPSTREAM

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "body": self.body}


BackendResult = BackendResponse | ErrorEnvelope


class BackendClient(Protocol):
    """Capabilities shared by the local and remote chat clients."""

    async def chat(self, envelope: ChatEnvelope, api_key: str | None = None) -> BackendResult:
        """Send a chat request.

        Args:
            envelope: Normalized, already-anonymized request
            api_key: Optional per-call credential override

        Returns:
            BackendResponse on 2xx, ErrorEnvelope otherwise
        """
        ...

    async def list_models(self) -> BackendResult:
        """List models served by this backend."""
        ...

    async def close(self) -> None:
        """Release pooled connections."""
        ...


def parse_body(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text


def envelope_from_response(response: httpx.Response) -> BackendResult:
    """Wrap an upstream response as success or error envelope."""
    body = parse_body(response)
    if response.is_success:
        return BackendResponse(status=response.status_code, body=body)
    return ErrorEnvelope(status=response.status_code, body=body, kind=ErrorKind.UPSTREAM)


def envelope_from_exception(exc: httpx.HTTPError, backend: str) -> ErrorEnvelope:
    """Convert an httpx exception into an error envelope.

    Timeouts map to 504, other transport failures to 500. An
    ``HTTPStatusError`` keeps the upstream status and body.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorEnvelope(
            status=exc.response.status_code,
            body=parse_body(exc.response),
            kind=ErrorKind.UPSTREAM,
        )

    status = TIMEOUT_STATUS if isinstance(exc, httpx.TimeoutException) else DEFAULT_ERROR_STATUS
    logger.warning(
        "Transport failure talking to %s: %s",
        backend,
        exc,
        extra={"event": "upstream_error", "backend": backend, "status": status},
    )
    return ErrorEnvelope(
        status=status,
        body={"message": f"{backend} request failed: {exc!s}"},
        kind=ErrorKind.TRANSPORT,
    )
