"""OpenAI-compatible protocol shim.

Exposes ``GET /v1/models`` and ``POST /v1/chat/completions`` in the OpenAI
chat-completions shape no matter which backend served the call. Tool calls
named after the gateway's own search tool are executed server-side in a
bounded loop; every other tool passes through to the caller untouched.
"""

import asyncio
import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from smart_proxy.config.schema import ToolLoopConfig
from smart_proxy.llm.client import ChatEnvelope, ErrorEnvelope, ErrorKind
from smart_proxy.llm.registry import BackendRegistry
from smart_proxy.privacy import anonymize
from smart_proxy.routing.policy import (
    CHARS_PER_TOKEN,
    BackendKind,
    RoutingDecision,
    RoutingPolicy,
    extract_text,
)
from smart_proxy.server.auth import require_proxy_token
from smart_proxy.server.errors import ProxyValidationError, envelope_response
from smart_proxy.server.routes import read_json_object

logger = logging.getLogger(__name__)

MAX_LOOPS_HEADER = "x-smart-proxy-max-loops"
AUTO_MODELS = frozenset({"auto", "smart-proxy"})

OWNER_BY_BACKEND = {BackendKind.LOCAL: "ollama", BackendKind.REMOTE: "xai"}


class ChatCompletionRequest(BaseModel):
    """Inbound OpenAI chat-completions request plus gateway routing hints."""

    model_config = ConfigDict(extra="allow")

    model: str | None = None
    messages: list[dict[str, Any]] = Field(min_length=1)
    stream: bool = False
    tools: list[dict[str, Any]] | None = None
    privacy_level: str | None = None
    max_cost_tier: str | None = None
    research_requested: bool = False

    def options(self) -> dict[str, Any]:
        """Sampling and other passthrough fields (temperature, tool_choice ...)."""
        return {k: v for k, v in (self.model_extra or {}).items() if v is not None}


@dataclass
class ToolLoopState:
    """Per-request bookkeeping for the server-side tool loop."""

    max_loops: int
    loop_count: int = 0
    stopped: str = "completed"
    tools_used: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "loop_count": self.loop_count,
            "max_loops": self.max_loops,
            "stopped": self.stopped,
        }


def estimate_token_count(text: str) -> int:
    """Character-based token estimate for backends that omit usage."""
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


def _non_negative_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def build_usage(raw: Any, prompt_text: str, completion_text: str) -> dict[str, int]:
    """Return integer usage counts, estimating any the backend left out."""
    raw = raw if isinstance(raw, dict) else {}
    prompt_tokens = _non_negative_int(raw.get("prompt_tokens"))
    completion_tokens = _non_negative_int(raw.get("completion_tokens"))

    if prompt_tokens is None:
        prompt_tokens = estimate_token_count(prompt_text)
    if completion_tokens is None:
        completion_tokens = estimate_token_count(completion_text)

    total_tokens = _non_negative_int(raw.get("total_tokens"))
    if total_tokens is None:
        total_tokens = prompt_tokens + completion_tokens

    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


def _openai_tool_call(tool_call: dict[str, Any]) -> dict[str, Any]:
    """Convert an Ollama tool call (object arguments, no id) to OpenAI shape."""
    function = tool_call.get("function") or {}
    arguments = function.get("arguments", {})
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return {
        "id": tool_call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
        "type": "function",
        "function": {"name": function.get("name", ""), "arguments": arguments},
    }


def normalize_ollama(body: dict[str, Any], model: str, prompt_text: str) -> dict[str, Any]:
    """Map an Ollama ``/api/chat`` response to ``chat.completion``."""
    raw_message = body.get("message") or {}
    content = raw_message.get("content") or ""

    message: dict[str, Any] = {"role": raw_message.get("role") or "assistant", "content": content}
    tool_calls = [_openai_tool_call(tc) for tc in raw_message.get("tool_calls") or []]
    if tool_calls:
        message["tool_calls"] = tool_calls
        finish_reason = "tool_calls"
    elif body.get("done_reason") == "length":
        finish_reason = "length"
    else:
        finish_reason = "stop"

    usage = build_usage(
        {"prompt_tokens": body.get("prompt_eval_count"), "completion_tokens": body.get("eval_count")},
        prompt_text,
        content,
    )

    return {
        "id": f"chatcmpl-{uuid.uuid4().hex}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": body.get("model") or model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage,
    }


def normalize_openai(body: dict[str, Any], model: str, prompt_text: str) -> dict[str, Any]:
    """Fill in any ``chat.completion`` fields an OpenAI-style backend omitted."""
    choices = []
    completion_text = []
    for index, choice in enumerate(body.get("choices") or []):
        choice = dict(choice) if isinstance(choice, dict) else {}
        message = dict(choice.get("message") or {})
        message.setdefault("role", "assistant")
        message.setdefault("content", None if message.get("tool_calls") else "")
        if isinstance(message["content"], str):
            completion_text.append(message["content"])
        choice["message"] = message
        choice.setdefault("index", index)
        choice.setdefault("finish_reason", "tool_calls" if message.get("tool_calls") else "stop")
        choices.append(choice)

    completion = dict(body)
    completion["id"] = body.get("id") or f"chatcmpl-{uuid.uuid4().hex}"
    completion["object"] = "chat.completion"
    completion["created"] = _non_negative_int(body.get("created")) or int(time.time())
    completion["model"] = body.get("model") or model
    completion["choices"] = choices
    completion["usage"] = build_usage(body.get("usage"), prompt_text, "\n".join(completion_text))
    return completion


def _created_from(timestamp: Any) -> int:
    if not isinstance(timestamp, str):
        return 0
    try:
        return int(datetime.fromisoformat(timestamp).timestamp())
    except ValueError:
        return 0


def parse_max_loops_header(raw: str | None) -> int | None:
    """Parse the per-request loop override; None when absent."""
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ProxyValidationError(f"{MAX_LOOPS_HEADER} must be a non-negative integer") from e
    if value < 0:
        raise ProxyValidationError(f"{MAX_LOOPS_HEADER} must be a non-negative integer")
    return value


class ChatCompletionShim:
    """Serves OpenAI-shaped calls through the routing policy and backends."""

    def __init__(
        self,
        policy: RoutingPolicy,
        backends: BackendRegistry,
        tool_loop: ToolLoopConfig,
    ):
        self.policy = policy
        self.backends = backends
        self.tool_loop = tool_loop

    async def list_models(self) -> dict[str, Any]:
        """Build the OpenAI model list: local tags, remote models, ``auto``."""
        data: list[dict[str, Any]] = []

        for kind in (BackendKind.LOCAL, BackendKind.REMOTE):
            result = await self.backends.client_for(kind).list_models()
            if not result.ok:
                logger.warning(
                    "Model listing from %s backend failed with %s",
                    kind.value,
                    result.status,
                    extra={"event": "upstream_error", "backend": kind.value, "status": result.status},
                )
                continue

            body = result.body if isinstance(result.body, dict) else {}
            for entry in body.get("models") or []:
                if not isinstance(entry, dict):
                    continue
                model_id = entry.get("name") or entry.get("model")
                if not model_id:
                    continue
                data.append(
                    {
                        "id": model_id,
                        "object": "model",
                        "created": _created_from(entry.get("modified_at")),
                        "owned_by": OWNER_BY_BACKEND[kind],
                    }
                )

        data.append({"id": "auto", "object": "model", "created": 0, "owned_by": "smart-proxy"})
        return {"object": "list", "data": data}

    def decide(self, request: ChatCompletionRequest, prompt_text: str) -> RoutingDecision:
        if request.model is None or request.model in AUTO_MODELS:
            return self.policy.decide(
                prompt_text,
                research_requested=request.research_requested,
                privacy_level=request.privacy_level,
                max_cost_tier=request.max_cost_tier,
            )
        return self.policy.decide_for_model(
            request.model,
            privacy_level=request.privacy_level,
            max_cost_tier=request.max_cost_tier,
        )

    def loop_budget(self, decision: RoutingDecision, override: int | None) -> int:
        """Tightest of the header override, decision budget and config cap."""
        limits = [self.tool_loop.max_loops]
        if decision.max_loops is not None:
            limits.append(decision.max_loops)
        if override is not None:
            limits.append(override)
        return min(limits)

    def _is_gateway_call(self, tool_call: dict[str, Any]) -> bool:
        return (tool_call.get("function") or {}).get("name") == self.tool_loop.tool_name

    async def run_gateway_tool(self, tool_call: dict[str, Any], session_id: str) -> dict[str, Any]:
        """Execute one ``proxy_tools`` call against both search endpoints."""
        arguments = (tool_call.get("function") or {}).get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments else {}
            except json.JSONDecodeError:
                arguments = {}

        query = arguments.get("query") if isinstance(arguments, dict) else None
        if not isinstance(query, str) or not query.strip():
            return {"status": "error", "output": {"error": "proxy_tools requires a 'query' argument"}}

        query = anonymize(query)
        count = _non_negative_int(arguments.get("num_results")) or self.tool_loop.num_results
        tools = self.backends.tools

        web, keyword = await asyncio.gather(
            tools.web_search(query, session_id=session_id, num_results=count),
            tools.keyword_search(query, session_id=session_id, limit=count),
        )
        output = {
            "web_search": web.body if web.ok else web.to_dict(),
            "keyword_search": keyword.body if keyword.ok else keyword.to_dict(),
        }
        return {"status": "ok" if web.ok or keyword.ok else "error", "output": output}

    async def complete(
        self,
        request: ChatCompletionRequest,
        session_id: str,
        max_loops_override: int | None = None,
    ) -> dict[str, Any] | ErrorEnvelope:
        """Route, call and normalize one chat completion.

        Args:
            request: Validated, anonymized chat request
            session_id: Correlation id of the inbound request
            max_loops_override: Per-request tool-loop cap from the header

        Returns:
            A ``chat.completion`` dict, or the backend's ErrorEnvelope
        """
        prompt_text = extract_text(messages=request.messages)
        decision = self.decide(request, prompt_text)
        logger.info(
            "Routing decision: %s",
            decision.reason,
            extra={"event": "routing_decision", "session_id": session_id, "routing": decision.to_dict()},
        )

        client = self.backends.client_for(decision.backend)
        envelope = ChatEnvelope(
            model=decision.model_id,
            messages=tuple(request.messages),
            stream=False,
            tools=tuple(request.tools) if request.tools else None,
            options=request.options(),
        )
        state = ToolLoopState(max_loops=self.loop_budget(decision, max_loops_override))

        while True:
            result = await client.chat(envelope)
            if not result.ok:
                return result
            if not isinstance(result.body, dict):
                return ErrorEnvelope(
                    status=502,
                    body={"message": "Malformed upstream response"},
                    kind=ErrorKind.UPSTREAM,
                )

            if decision.backend is BackendKind.LOCAL:
                completion = normalize_ollama(result.body, decision.model_id, prompt_text)
            else:
                completion = normalize_openai(result.body, decision.model_id, prompt_text)

            message = completion["choices"][0]["message"] if completion["choices"] else {}
            tool_calls = message.get("tool_calls") or []
            if not (
                decision.use_live_search
                and tool_calls
                and all(self._is_gateway_call(tc) for tc in tool_calls)
            ):
                state.stopped = "completed"
                break

            if state.loop_count >= state.max_loops:
                state.stopped = "max_loops"
                break

            state.loop_count += 1
            logger.info(
                "Running gateway tool loop %d/%d",
                state.loop_count,
                state.max_loops,
                extra={"event": "tool_loop_iteration", "session_id": session_id},
            )

            messages = list(envelope.messages)
            messages.append(
                {"role": "assistant", "content": message.get("content"), "tool_calls": tool_calls}
            )
            for tool_call in tool_calls:
                outcome = await self.run_gateway_tool(tool_call, session_id)
                state.tools_used.append(
                    {
                        "name": self.tool_loop.tool_name,
                        "tool_call_id": tool_call.get("id"),
                        "status": outcome["status"],
                    }
                )
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_call.get("id"),
                        "content": json.dumps(anonymize(outcome["output"])),
                    }
                )
            envelope = envelope.with_messages(messages)

        completion["smart_proxy"] = {
            "session_id": session_id,
            "routing": decision.to_dict(),
            "tool_loop": state.to_dict(),
            "tools_used": state.tools_used,
        }
        return completion


def create_shim_router(shim: ChatCompletionShim) -> APIRouter:
    """Create the ``/v1`` router.

    Args:
        shim: Configured completion shim

    Returns:
        Router with the models and chat-completions endpoints
    """
    router = APIRouter(prefix="/v1", dependencies=[Depends(require_proxy_token)])

    @router.get("/models")
    async def list_models() -> dict[str, Any]:
        """OpenAI-compatible model listing."""
        return await shim.list_models()

    @router.post("/chat/completions")
    async def chat_completions(request: Request) -> JSONResponse:
        """OpenAI-compatible chat completion routed through the policy."""
        session_id: str = request.state.session_id
        max_loops = parse_max_loops_header(request.headers.get(MAX_LOOPS_HEADER))
        payload = await read_json_object(request)

        try:
            chat_request = ChatCompletionRequest.model_validate(anonymize(payload))
        except ValidationError as e:
            raise ProxyValidationError(
                "Invalid chat completion request",
                body={
                    "message": "Invalid chat completion request",
                    "details": e.errors(include_url=False, include_context=False),
                },
            ) from e

        logger.info(
            "Chat completion request",
            extra={
                "event": "request_received",
                "session_id": session_id,
                "model": chat_request.model,
                "message_count": len(chat_request.messages),
            },
        )

        result = await shim.complete(chat_request, session_id, max_loops_override=max_loops)
        if isinstance(result, ErrorEnvelope):
            return envelope_response(result, session_id)

        logger.info(
            "Chat completion served",
            extra={
                "event": "response_received",
                "session_id": session_id,
                "tool_loop": result["smart_proxy"]["tool_loop"],
            },
        )
        return JSONResponse(content=result)

    return router
