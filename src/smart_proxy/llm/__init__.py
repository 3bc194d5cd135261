"""Backend client implementations."""

from .client import (
    BackendClient,
    BackendResponse,
    BackendResult,
    ChatEnvelope,
    ErrorEnvelope,
    ErrorKind,
)
from .ollama import OllamaClient
from .registry import BackendRegistry, create_backends
from .remote import RemoteChatClient, RetryPolicy
from .tools import ToolSearchClient

__all__ = [
    "BackendClient",
    "BackendRegistry",
    "BackendResponse",
    "BackendResult",
    "ChatEnvelope",
    "ErrorEnvelope",
    "ErrorKind",
    "OllamaClient",
    "RemoteChatClient",
    "RetryPolicy",
    "ToolSearchClient",
    "create_backends",
]
