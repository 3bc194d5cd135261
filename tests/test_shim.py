"""Tests for the OpenAI-compatible endpoints."""

import json

import httpx
import pytest
from httpx import Response

from smart_proxy.server.errors import ProxyValidationError
from smart_proxy.server.shim import build_usage, normalize_ollama, parse_max_loops_header

REMOTE_CHAT = "https://remote.test/v1/chat/completions"
OLLAMA_CHAT = "http://ollama.test/api/chat"
OLLAMA_TAGS = "http://ollama.test/api/tags"

PROXY_TOOL_CALL = {
    "role": "assistant",
    "content": None,
    "tool_calls": [
        {
            "id": "call_search",
            "type": "function",
            "function": {"name": "proxy_tools", "arguments": '{"query": "grok news"}'},
        }
    ],
}


def _remote_reply(message: dict, finish_reason: str = "stop") -> dict:
    return {
        "id": "chatcmpl-remote",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "grok-4",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }


def _stub_search(upstream):
    web = upstream.post("https://remote.test/v1/search/web").mock(
        return_value=Response(200, json={"results": [{"title": "Grok 4 released"}]})
    )
    keyword = upstream.post("https://remote.test/v1/search/x").mock(
        return_value=Response(200, json={"posts": [{"text": "grok is live"}]})
    )
    return web, keyword


def test_models_lists_local_remote_and_auto(client, upstream, auth_headers):
    upstream.get(OLLAMA_TAGS).mock(
        return_value=Response(
            200,
            json={"models": [{"name": "llama3.1:8b", "modified_at": "2024-05-01T12:00:00Z"}]},
        )
    )

    response = client.get("/v1/models", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["object"] == "list"
    assert [(m["id"], m["owned_by"]) for m in data["data"]] == [
        ("llama3.1:8b", "ollama"),
        ("grok-4", "xai"),
        ("grok-beta", "xai"),
        ("auto", "smart-proxy"),
    ]
    assert all(m["object"] == "model" for m in data["data"])
    assert data["data"][0]["created"] == 1714564800


def test_models_survives_local_outage(client, upstream, auth_headers):
    upstream.get(OLLAMA_TAGS).mock(side_effect=httpx.ConnectError("refused"))

    response = client.get("/v1/models", headers=auth_headers)

    assert response.status_code == 200
    assert [m["id"] for m in response.json()["data"]] == ["grok-4", "grok-beta", "auto"]


def test_models_requires_auth(client):
    assert client.get("/v1/models").status_code == 401


def test_ollama_response_mapped_to_chat_completion(client, upstream, auth_headers):
    route = upstream.post(OLLAMA_CHAT).mock(
        return_value=Response(
            200,
            json={
                "model": "llama3.1:8b",
                "message": {"role": "assistant", "content": "Hello there"},
                "done": True,
                "prompt_eval_count": 9,
                "eval_count": 4,
            },
        )
    )

    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "ollama",
            "messages": [
                {"role": "developer", "content": "Be brief"},
                {"role": "user", "content": "Hi, I'm bob@example.com"},
            ],
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["object"] == "chat.completion"
    assert data["choices"][0]["message"] == {"role": "assistant", "content": "Hello there"}
    assert data["choices"][0]["finish_reason"] == "stop"
    assert data["usage"] == {"prompt_tokens": 9, "completion_tokens": 4, "total_tokens": 13}
    assert data["smart_proxy"]["session_id"] == response.headers["X-Request-ID"]
    assert data["smart_proxy"]["routing"]["backend"] == "local"
    assert data["smart_proxy"]["tool_loop"]["loop_count"] == 0
    assert data["smart_proxy"]["tools_used"] == []

    sent = json.loads(route.calls.last.request.content)
    assert sent["model"] == "llama3.1:8b"
    assert sent["stream"] is False
    assert sent["messages"][0]["role"] == "system"
    assert sent["messages"][1]["content"] == "Hi, I'm [EMAIL]"


def test_auto_model_uses_policy(client, upstream, auth_headers):
    local = upstream.post(OLLAMA_CHAT).mock(
        return_value=Response(200, json={"message": {"role": "assistant", "content": "4"}})
    )

    response = client.post(
        "/v1/chat/completions",
        json={"model": "auto", "messages": [{"role": "user", "content": "What is 2 + 2?"}]},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert local.called
    assert response.json()["smart_proxy"]["routing"]["reason"].startswith("simple prompt")


def test_tool_loop_runs_proxy_tools(client, upstream, auth_headers):
    remote = upstream.post(REMOTE_CHAT).mock(
        side_effect=[
            Response(200, json=_remote_reply(PROXY_TOOL_CALL, "tool_calls")),
            Response(200, json=_remote_reply({"role": "assistant", "content": "Final answer"})),
        ]
    )
    web, keyword = _stub_search(upstream)

    response = client.post(
        "/v1/chat/completions",
        json={"model": "grok-4", "messages": [{"role": "user", "content": "What's new with Grok?"}]},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["choices"][0]["message"]["content"] == "Final answer"
    assert data["smart_proxy"]["tool_loop"] == {
        "loop_count": 1,
        "max_loops": 3,
        "stopped": "completed",
    }
    assert data["smart_proxy"]["tools_used"] == [
        {"name": "proxy_tools", "tool_call_id": "call_search", "status": "ok"}
    ]

    assert remote.call_count == 2
    followup = json.loads(remote.calls.last.request.content)["messages"]
    assert followup[1]["tool_calls"][0]["id"] == "call_search"
    assert followup[2]["role"] == "tool"
    assert followup[2]["tool_call_id"] == "call_search"
    assert json.loads(followup[2]["content"])["web_search"] == {
        "results": [{"title": "Grok 4 released"}]
    }

    session_id = data["smart_proxy"]["session_id"]
    assert web.calls.last.request.headers["X-Request-ID"] == session_id
    assert keyword.calls.last.request.headers["X-Request-ID"] == session_id


def test_max_loops_header_zero_stops_loop(client, upstream, auth_headers):
    remote = upstream.post(REMOTE_CHAT).mock(
        return_value=Response(200, json=_remote_reply(PROXY_TOOL_CALL, "tool_calls"))
    )
    web, _ = _stub_search(upstream)

    response = client.post(
        "/v1/chat/completions",
        json={"model": "grok-4", "messages": [{"role": "user", "content": "news?"}]},
        headers={**auth_headers, "X-Smart-Proxy-Max-Loops": "0"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["smart_proxy"]["tool_loop"] == {
        "loop_count": 0,
        "max_loops": 0,
        "stopped": "max_loops",
    }
    assert data["choices"][0]["message"]["tool_calls"][0]["function"]["name"] == "proxy_tools"
    assert remote.call_count == 1
    assert not web.called


def test_low_cost_caps_loop_budget(client, upstream, auth_headers):
    remote = upstream.post(REMOTE_CHAT).mock(
        return_value=Response(200, json=_remote_reply(PROXY_TOOL_CALL, "tool_calls"))
    )
    _stub_search(upstream)

    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "grok-4",
            "max_cost_tier": "low",
            "messages": [{"role": "user", "content": "news?"}],
        },
        headers=auth_headers,
    )

    tool_loop = response.json()["smart_proxy"]["tool_loop"]
    assert tool_loop == {"loop_count": 1, "max_loops": 1, "stopped": "max_loops"}
    assert remote.call_count == 2
    assert "max_cost_tier" not in json.loads(remote.calls.last.request.content)


def test_caller_tools_pass_through(client, upstream, auth_headers):
    caller_call = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_weather",
                "type": "function",
                "function": {"name": "get_weather", "arguments": '{"city": "Paris"}'},
            }
        ],
    }
    remote = upstream.post(REMOTE_CHAT).mock(
        return_value=Response(200, json=_remote_reply(caller_call, "tool_calls"))
    )

    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "grok-4",
            "messages": [{"role": "user", "content": "Weather in Paris?"}],
            "tools": [{"type": "function", "function": {"name": "get_weather"}}],
            "tool_choice": "auto",
        },
        headers=auth_headers,
    )

    data = response.json()
    assert data["choices"][0]["finish_reason"] == "tool_calls"
    assert data["choices"][0]["message"]["tool_calls"][0]["id"] == "call_weather"
    assert data["smart_proxy"]["tool_loop"]["loop_count"] == 0
    sent = json.loads(remote.calls.last.request.content)
    assert sent["tool_choice"] == "auto"
    assert sent["tools"][0]["function"]["name"] == "get_weather"


def test_stream_requests_answered_non_streamed(client, upstream, auth_headers):
    remote = upstream.post(REMOTE_CHAT).mock(
        return_value=Response(200, json=_remote_reply({"role": "assistant", "content": "ok"}))
    )

    response = client.post(
        "/v1/chat/completions",
        json={"model": "grok-4", "stream": True, "messages": [{"role": "user", "content": "hi"}]},
        headers=auth_headers,
    )

    assert response.headers["content-type"].startswith("application/json")
    assert json.loads(remote.calls.last.request.content)["stream"] is False


def test_missing_usage_is_estimated(client, upstream, auth_headers):
    reply = _remote_reply({"role": "assistant", "content": "A reply of some length"})
    del reply["usage"]
    upstream.post(REMOTE_CHAT).mock(return_value=Response(200, json=reply))

    response = client.post(
        "/v1/chat/completions",
        json={"model": "grok-4", "messages": [{"role": "user", "content": "Say something"}]},
        headers=auth_headers,
    )

    usage = response.json()["usage"]
    assert all(isinstance(usage[k], int) for k in ("prompt_tokens", "completion_tokens", "total_tokens"))
    assert usage["total_tokens"] == usage["prompt_tokens"] + usage["completion_tokens"]
    assert usage["completion_tokens"] > 0


def test_upstream_error_envelope(client, upstream, auth_headers):
    upstream.post(OLLAMA_CHAT).mock(return_value=Response(404, json={"error": "model not found"}))

    response = client.post(
        "/v1/chat/completions",
        json={"model": "missing:1b", "messages": [{"role": "user", "content": "hi"}]},
        headers=auth_headers,
    )

    assert response.status_code == 404
    assert response.json() == {"status": 404, "body": {"error": "model not found"}}


@pytest.mark.parametrize(
    "body",
    [
        {"model": "grok-4", "messages": []},
        {"model": "grok-4"},
        {"model": "grok-4", "messages": "hello"},
    ],
)
def test_invalid_request_rejected(client, upstream, auth_headers, body):
    remote = upstream.post(REMOTE_CHAT).mock(return_value=Response(200, json={}))

    response = client.post("/v1/chat/completions", json=body, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["status"] == 400
    assert not remote.called


def test_invalid_max_loops_header(client, auth_headers):
    response = client.post(
        "/v1/chat/completions",
        json={"model": "grok-4", "messages": [{"role": "user", "content": "hi"}]},
        headers={**auth_headers, "X-Smart-Proxy-Max-Loops": "-1"},
    )

    assert response.status_code == 400


def test_parse_max_loops_header():
    assert parse_max_loops_header(None) is None
    assert parse_max_loops_header(" 2 ") == 2
    with pytest.raises(ProxyValidationError):
        parse_max_loops_header("many")


def test_normalize_ollama_tool_calls():
    body = {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "proxy_tools", "arguments": {"query": "x"}}}],
        }
    }

    completion = normalize_ollama(body, "llama3.1:8b", "prompt")

    call = completion["choices"][0]["message"]["tool_calls"][0]
    assert call["type"] == "function"
    assert call["id"].startswith("call_")
    assert json.loads(call["function"]["arguments"]) == {"query": "x"}
    assert completion["choices"][0]["finish_reason"] == "tool_calls"
    assert completion["model"] == "llama3.1:8b"


def test_build_usage_ignores_non_integer_counts():
    usage = build_usage({"prompt_tokens": "12", "completion_tokens": True}, "abcdefg", "")
    assert usage == {"prompt_tokens": 2, "completion_tokens": 0, "total_tokens": 2}


def test_models_skips_malformed_tags(client, upstream, auth_headers):
    upstream.get(OLLAMA_TAGS).mock(
        return_value=Response(200, json={"models": ["llama3.1:8b", None, {"name": "mistral:7b"}]})
    )

    response = client.get("/v1/models", headers=auth_headers)

    assert response.status_code == 200
    assert [m["id"] for m in response.json()["data"]] == ["mistral:7b", "grok-4", "grok-beta", "auto"]
