"""Request routing between the local and remote backends."""

from .policy import (
    POLICY_VERSION,
    BackendKind,
    RoutingDecision,
    RoutingPolicy,
    estimate_tokens,
    extract_text,
)

__all__ = [
    "POLICY_VERSION",
    "BackendKind",
    "RoutingDecision",
    "RoutingPolicy",
    "estimate_tokens",
    "extract_text",
]
