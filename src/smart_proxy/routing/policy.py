"""Routing policy: picks a backend, model and tool-loop budget per request.

The policy is a pure function of its inputs and the immutable tables it was
constructed with. It performs no I/O, so it can be exercised without any
backend running, and equal inputs always produce equal decisions.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from smart_proxy.config.schema import ProxyConfig

POLICY_VERSION = "50f-v1"

# Fixed overhead added to every estimate for system prompts and framing.
PROMPT_OVERHEAD_TOKENS = 500
CHARS_PER_TOKEN = 3.5

HEADING_PATTERN = re.compile(r"^\s{0,3}#{1,6}\s+\S", re.MULTILINE)


class BackendKind(StrEnum):
    """Which upstream serves a request."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class RoutingDecision:
    """Immutable result of evaluating the policy for one request."""

    backend: BackendKind
    model_id: str
    use_live_search: bool
    max_loops: int | None  # None means unbounded
    reason: str
    policy_version: str = POLICY_VERSION

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["backend"] = self.backend.value
        return data


def estimate_tokens(text: str) -> int:
    """Rough prompt size in tokens, including fixed overhead."""
    return math.ceil(len(text.strip()) / CHARS_PER_TOKEN) + PROMPT_OVERHEAD_TOKENS


def extract_text(
    prompt: str | None = None,
    messages: Iterable[Mapping[str, Any]] | None = None,
) -> str:
    """Return the prompt, or the joined string contents of messages."""
    if prompt:
        return prompt
    if not messages:
        return ""

    parts = []
    for message in messages:
        if not isinstance(message, Mapping):
            continue
        content = message.get("content")
        if isinstance(content, str):
            parts.append(content)
    return "\n".join(parts)


def _level(value: str | None) -> str:
    return (value or "").strip().lower()


class RoutingPolicy:
    """Maps a request's declared intent to a :class:`RoutingDecision`.

    Rules, first match wins:

    1. ``privacy_level == "high"`` forces the local backend, no live search,
       zero tool loops.
    2. ``research_requested`` selects the remote backend with live search;
       ``max_cost_tier == "low"`` caps it at one tool loop.
    3. ``max_cost_tier == "low"`` forces the local backend, zero tool loops.
    4. Structured-deliverable or heavy prompts go remote without live search;
       anything else stays local.
    """

    def __init__(
        self,
        local_model: str,
        remote_model: str,
        local_alias: str = "ollama",
        remote_models: Sequence[str] = (),
        remote_model_prefixes: Sequence[str] = (),
        token_threshold: int = 1000,
        complex_keywords: Sequence[str] = (),
    ):
        """Initialize the policy tables.

        Args:
            local_model: Model id used for local decisions
            remote_model: Model id used for remote decisions
            local_alias: Generic alias that resolves to local_model
            remote_models: Model ids known to be served remotely
            remote_model_prefixes: Model-name prefixes served remotely
            token_threshold: Estimated tokens at which a prompt is heavy
            complex_keywords: Keywords marking a structured deliverable
        """
        self.local_model = local_model
        self.remote_model = remote_model
        self.local_alias = local_alias
        self.remote_models = frozenset(remote_models)
        self.remote_model_prefixes = tuple(p.lower() for p in remote_model_prefixes)
        self.token_threshold = token_threshold
        self.complex_keywords = tuple(k.lower() for k in complex_keywords)

        self._keyword_pattern: re.Pattern[str] | None = None
        if self.complex_keywords:
            alternation = "|".join(re.escape(k) for k in self.complex_keywords)
            self._keyword_pattern = re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)

    @classmethod
    def from_config(cls, config: ProxyConfig) -> RoutingPolicy:
        """Build the policy from proxy configuration."""
        return cls(
            local_model=config.ollama.model,
            remote_model=config.remote.default_model,
            local_alias=config.ollama.alias,
            remote_models=config.remote.models,
            remote_model_prefixes=config.remote.model_prefixes,
            token_threshold=config.routing.token_threshold,
            complex_keywords=config.routing.complex_keywords,
        )

    def is_structured(self, text: str) -> bool:
        """Whether text looks like a multi-section deliverable request."""
        if HEADING_PATTERN.search(text):
            return True
        return bool(self._keyword_pattern and self._keyword_pattern.search(text))

    def _local(self, reason: str, model_id: str | None = None) -> RoutingDecision:
        return RoutingDecision(
            backend=BackendKind.LOCAL,
            model_id=model_id or self.local_model,
            use_live_search=False,
            max_loops=0,
            reason=reason,
        )

    def decide(
        self,
        prompt: str | None = None,
        *,
        research_requested: bool = False,
        privacy_level: str | None = None,
        max_cost_tier: str | None = None,
        messages: Iterable[Mapping[str, Any]] | None = None,
    ) -> RoutingDecision:
        """Evaluate the routing rules for one request.

        Args:
            prompt: Raw prompt text (takes precedence over messages)
            research_requested: Caller explicitly asked for live research
            privacy_level: ``"high"`` keeps everything local
            max_cost_tier: ``"low"`` limits remote spend
            messages: Chat messages used when no prompt is given

        Returns:
            The routing decision
        """
        privacy = _level(privacy_level)
        cost = _level(max_cost_tier)

        if privacy == "high":
            return self._local("privacy_level=high forces local-only model")

        if research_requested:
            if cost == "low":
                return RoutingDecision(
                    backend=BackendKind.REMOTE,
                    model_id=self.remote_model,
                    use_live_search=True,
                    max_loops=1,
                    reason="research requested; max_cost_tier=low limits tool loops to 1",
                )
            return RoutingDecision(
                backend=BackendKind.REMOTE,
                model_id=self.remote_model,
                use_live_search=True,
                max_loops=None,
                reason="research requested; live search enabled",
            )

        if cost == "low":
            return self._local("max_cost_tier=low prefers local-only model")

        text = extract_text(prompt, messages)
        token_estimate = estimate_tokens(text)

        if self.is_structured(text):
            reason = "structured artifact generation"
        elif token_estimate >= self.token_threshold:
            reason = f"estimate={token_estimate} exceeds threshold={self.token_threshold}"
        else:
            return self._local(f"simple prompt (estimate={token_estimate} tokens)")

        return RoutingDecision(
            backend=BackendKind.REMOTE,
            model_id=self.remote_model,
            use_live_search=False,
            max_loops=None,
            reason=reason,
        )

    def backend_for_model(self, model: str) -> BackendKind:
        """Resolve which backend serves an explicitly named model."""
        if model in self.remote_models:
            return BackendKind.REMOTE
        if model.lower().startswith(self.remote_model_prefixes):
            return BackendKind.REMOTE
        return BackendKind.LOCAL

    def decide_for_model(
        self,
        model: str,
        *,
        privacy_level: str | None = None,
        max_cost_tier: str | None = None,
    ) -> RoutingDecision:
        """Decide for a caller that named a specific model.

        The privacy rule still applies: a remote model requested with
        ``privacy_level="high"`` is served by the local model instead.
        """
        if _level(privacy_level) == "high":
            return self._local(f"privacy_level=high overrides requested model {model}")

        if self.backend_for_model(model) is BackendKind.REMOTE:
            low_cost = _level(max_cost_tier) == "low"
            return RoutingDecision(
                backend=BackendKind.REMOTE,
                model_id=model,
                use_live_search=True,
                max_loops=1 if low_cost else None,
                reason=f"explicit remote model {model}"
                + ("; max_cost_tier=low limits tool loops to 1" if low_cost else ""),
            )

        model_id = self.local_model if model == self.local_alias else model
        return self._local(f"explicit local model {model_id}", model_id=model_id)

    def decide_passthrough(
        self,
        model: str | None = None,
        *,
        privacy_level: str | None = None,
        research_requested: bool = False,
    ) -> RoutingDecision:
        """Decide for the remote-style generate endpoint.

        Requests go to the remote backend unless privacy forces local.
        """
        if _level(privacy_level) == "high":
            return self._local("privacy_level=high forces local-only model")

        return RoutingDecision(
            backend=BackendKind.REMOTE,
            model_id=model or self.remote_model,
            use_live_search=bool(research_requested),
            max_loops=None,
            reason="remote passthrough",
        )
