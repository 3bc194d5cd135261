"""Bearer-token gate for gateway routes."""

import hmac
import logging

from fastapi import Request

from smart_proxy.server.errors import ProxyAuthError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, if any."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


def token_matches(provided: str | None, expected: str | None) -> bool:
    """Constant-time, byte-exact comparison. No configured secret never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_proxy_token(request: Request) -> None:
    """FastAPI dependency rejecting callers without the proxy secret.

    Runs before the request body is read, so a rejected request never
    reaches anonymization, routing or any upstream.

    Raises:
        ProxyAuthError: If the credential is missing or wrong
    """
    expected: str | None = request.app.state.proxy_token
    provided = extract_bearer(request.headers.get("authorization"))

    if token_matches(provided, expected):
        return

    logger.warning(
        "Unauthorized access to %s",
        request.url.path,
        extra={
            "event": "unauthorized_access",
            "has_credential": provided is not None,
            "session_id": getattr(request.state, "session_id", None),
        },
    )
    raise ProxyAuthError("Unauthorized")
