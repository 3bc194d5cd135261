"""Local Ollama chat client using httpx.

Talks to Ollama's native API (``/api/chat`` and ``/api/tags``) rather than
its OpenAI-compatible endpoint; the protocol shim converts the native
response shape.
"""

import json
import logging
from typing import Any

import httpx

from smart_proxy.llm.client import (
    BackendResult,
    ChatEnvelope,
    envelope_from_exception,
    envelope_from_response,
)

logger = logging.getLogger(__name__)

# Ollama rejects roles it does not know; OpenAI's newer names map onto these.
ROLE_ALIASES = {"developer": "system"}

# Envelope options that Ollama expects inside its "options" object.
SAMPLING_OPTIONS = {"temperature": "temperature", "top_p": "top_p", "max_tokens": "num_predict"}


def _native_tool_call(tool_call: dict[str, Any]) -> dict[str, Any]:
    """Ollama wants tool-call arguments as an object, not a JSON string."""
    function = dict(tool_call.get("function") or {})
    arguments = function.get("arguments")
    if isinstance(arguments, str):
        try:
            function["arguments"] = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError:
            logger.debug("Leaving unparseable tool arguments as a string")
    return {"function": function}


class OllamaClient:
    """Backend client for a self-hosted Ollama server."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        default_model: str = "llama3.1:8b",
        alias: str = "ollama",
        timeout: int = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama server URL
            default_model: Model substituted for the generic alias
            alias: Generic local model name callers may use
            timeout: Read timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.alias = alias
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    def resolve_model(self, model: str | None) -> str:
        """Substitute the configured model for the generic alias."""
        if not model or model == self.alias:
            return self.default_model
        return model

    def _convert_messages(self, messages: tuple[dict[str, Any], ...]) -> list[dict[str, Any]]:
        converted = []
        for msg in messages:
            message = dict(msg)
            role = message.get("role", "user")
            message["role"] = ROLE_ALIASES.get(role, role)
            if message.get("content") is None:
                message["content"] = ""
            if message.get("tool_calls"):
                message["tool_calls"] = [_native_tool_call(tc) for tc in message["tool_calls"]]
            converted.append(message)
        return converted

    def build_payload(self, envelope: ChatEnvelope) -> dict[str, Any]:
        """Translate a normalized envelope into Ollama's /api/chat body."""
        payload: dict[str, Any] = {
            "model": self.resolve_model(envelope.model),
            "messages": self._convert_messages(envelope.messages),
            "stream": False,
        }
        if envelope.tools:
            payload["tools"] = [dict(t) for t in envelope.tools]

        options = {
            ollama_key: envelope.options[key]
            for key, ollama_key in SAMPLING_OPTIONS.items()
            if envelope.options.get(key) is not None
        }
        if options:
            payload["options"] = options

        return payload

    async def chat(self, envelope: ChatEnvelope, api_key: str | None = None) -> BackendResult:
        """Post a chat request to Ollama.

        Args:
            envelope: Normalized chat request
            api_key: Ignored; Ollama is unauthenticated

        Returns:
            Raw Ollama body wrapped in a BackendResponse, or an ErrorEnvelope
        """
        payload = self.build_payload(envelope)
        try:
            response = await self._client.post("/api/chat", json=payload)
        except httpx.HTTPError as e:
            return envelope_from_exception(e, "ollama")

        result = envelope_from_response(response)
        if not result.ok:
            logger.warning(
                "Ollama returned %s",
                result.status,
                extra={"event": "upstream_error", "backend": "ollama", "status": result.status},
            )
        return result

    async def list_models(self) -> BackendResult:
        """Pass through Ollama's installed model tags."""
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError as e:
            return envelope_from_exception(e, "ollama")
        return envelope_from_response(response)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
