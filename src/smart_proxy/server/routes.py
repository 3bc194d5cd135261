"""Front-door routes: health, passthrough generation and tool search."""

import asyncio
import json
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from smart_proxy.llm.client import ChatEnvelope, ErrorEnvelope
from smart_proxy.llm.registry import BackendRegistry
from smart_proxy.privacy import anonymize
from smart_proxy.routing.policy import RoutingPolicy
from smart_proxy.server.auth import require_proxy_token
from smart_proxy.server.errors import ProxyValidationError, envelope_response

logger = logging.getLogger(__name__)

CALLER_ID_HEADER = "x-caller-id"

# Routing hints consumed by the gateway and never forwarded upstream
INTENT_FIELDS = ("privacy_level", "max_cost_tier", "research_requested")

# Envelope fields; everything else in a generate payload is passed as options
ENVELOPE_FIELDS = ("model", "messages", "stream", "tools")


class ToolsRequest(BaseModel):
    """Body of ``POST /proxy/tools``."""

    query: str = Field(min_length=1)
    num_results: int = Field(default=5, ge=1, le=50)
    limit: int = Field(default=5, ge=1, le=50)
    mode: Literal["top", "latest"] = "top"
    tool: Literal["web", "keyword", "both"] = "both"


class GenerateIntent(BaseModel):
    """Routing hints accepted alongside a generate payload."""

    privacy_level: str | None = None
    max_cost_tier: str | None = None
    research_requested: bool = False


async def read_json_object(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Raises:
        ProxyValidationError: If the body is not valid JSON or not an object
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProxyValidationError("Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise ProxyValidationError("JSON payload must be an object")
    return payload


def split_intent(payload: dict[str, Any]) -> tuple[dict[str, Any], GenerateIntent]:
    """Separate gateway routing hints from the upstream payload.

    Raises:
        ProxyValidationError: If a routing hint has the wrong type
    """
    body = {k: v for k, v in payload.items() if k not in INTENT_FIELDS}
    try:
        intent = GenerateIntent.model_validate({k: payload[k] for k in INTENT_FIELDS if k in payload})
    except ValidationError as e:
        raise ProxyValidationError(
            "Invalid routing hints",
            body={
                "message": "Invalid routing hints",
                "details": e.errors(include_url=False, include_context=False),
            },
        ) from e
    return body, intent


def envelope_from_payload(payload: dict[str, Any], model: str) -> ChatEnvelope:
    """Build a chat envelope from a raw passthrough payload."""
    messages = payload.get("messages") or []
    if not isinstance(messages, list) or not all(isinstance(m, dict) for m in messages):
        raise ProxyValidationError("'messages' must be a list of objects")

    tools = payload.get("tools")
    if tools is not None and not isinstance(tools, list):
        raise ProxyValidationError("'tools' must be a list")

    return ChatEnvelope(
        model=model,
        messages=tuple(messages),
        stream=False,
        tools=tuple(tools) if tools else None,
        options={k: v for k, v in payload.items() if k not in ENVELOPE_FIELDS},
    )


def create_router(policy: RoutingPolicy, backends: BackendRegistry) -> APIRouter:
    """Create the front-door router.

    Args:
        policy: Routing policy shared by all requests
        backends: Backend clients shared by all requests

    Returns:
        Router with ``/health``, ``/proxy/generate`` and ``/proxy/tools``
    """
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check. Unauthenticated."""
        return {"status": "ok"}

    protected = APIRouter(prefix="/proxy", dependencies=[Depends(require_proxy_token)])

    @protected.post("/generate")
    async def generate(request: Request) -> JSONResponse:
        """Anonymize and forward a chat payload, returning the backend body as-is."""
        session_id: str = request.state.session_id
        payload, intent = split_intent(await read_json_object(request))
        payload = anonymize(payload)

        logger.info(
            "Generate request",
            extra={"event": "request_received", "session_id": session_id, "payload": payload},
        )

        model = payload.get("model")
        if model is not None and not isinstance(model, str):
            raise ProxyValidationError("'model' must be a string")

        decision = policy.decide_passthrough(
            model,
            privacy_level=intent.privacy_level,
            research_requested=intent.research_requested,
        )
        logger.info(
            "Routing decision: %s",
            decision.reason,
            extra={"event": "routing_decision", "session_id": session_id, "routing": decision.to_dict()},
        )

        envelope = envelope_from_payload(payload, decision.model_id)
        api_key = backends.api_key_for(request.headers.get(CALLER_ID_HEADER))
        result = await backends.client_for(decision.backend).chat(envelope, api_key=api_key)

        if isinstance(result, ErrorEnvelope):
            return envelope_response(result, session_id)

        logger.info(
            "Generate response",
            extra={"event": "response_received", "session_id": session_id, "status": result.status},
        )
        return JSONResponse(status_code=result.status, content=result.body)

    @protected.post("/tools")
    async def tools(request: Request) -> JSONResponse:
        """Run web and/or keyword search for an anonymized query."""
        session_id: str = request.state.session_id
        payload = anonymize(await read_json_object(request))

        try:
            tools_request = ToolsRequest.model_validate(payload)
        except ValidationError as e:
            raise ProxyValidationError(
                "Invalid tools request",
                body={
                    "message": "Invalid tools request",
                    "details": e.errors(include_url=False, include_context=False),
                },
            ) from e

        logger.info(
            "Tools request",
            extra={
                "event": "request_received",
                "session_id": session_id,
                "query": tools_request.query,
                "tool": tools_request.tool,
            },
        )

        search = backends.tools
        calls = {}
        if tools_request.tool in ("web", "both"):
            calls["web_search"] = search.web_search(
                tools_request.query,
                session_id=session_id,
                num_results=tools_request.num_results,
            )
        if tools_request.tool in ("keyword", "both"):
            calls["keyword_search"] = search.keyword_search(
                tools_request.query,
                session_id=session_id,
                limit=tools_request.limit,
                mode=tools_request.mode,
            )

        outcomes = dict(zip(calls, await asyncio.gather(*calls.values()), strict=True))
        failures = [r for r in outcomes.values() if not r.ok]
        if len(failures) == len(outcomes):
            return envelope_response(failures[0], session_id)

        results = {name: r.body if r.ok else r.to_dict() for name, r in outcomes.items()}
        return JSONResponse(content={"session_id": session_id, "results": results})

    router.include_router(protected)
    return router
