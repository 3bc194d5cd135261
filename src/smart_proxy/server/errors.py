"""Gateway exceptions and their uniform JSON rendering."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smart_proxy.llm.client import ErrorEnvelope, ErrorKind

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Base class for failures raised inside the front door."""

    status: int = 500
    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, body: Any = None):
        super().__init__(message)
        self.message = message
        self.body = body

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            status=self.status,
            body=self.body if self.body is not None else self.message,
            kind=self.kind,
        )


class ProxyAuthError(ProxyError):
    """Missing or invalid bearer credential."""

    status = 401
    kind = ErrorKind.AUTH


class ProxyValidationError(ProxyError):
    """Malformed inbound payload."""

    status = 400
    kind = ErrorKind.VALIDATION


class PolicyViolationError(ProxyError):
    """Request conflicts with privacy enforcement."""

    status = 403
    kind = ErrorKind.POLICY


def envelope_response(envelope: ErrorEnvelope, session_id: str | None = None) -> JSONResponse:
    """Render an error envelope as a JSON response."""
    headers = {"X-Request-ID": session_id} if session_id else None
    return JSONResponse(status_code=envelope.status, content=envelope.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that turn every failure into an error envelope."""

    @app.exception_handler(ProxyError)
    async def handle_proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
        session_id = getattr(request.state, "session_id", None)
        if exc.kind is not ErrorKind.AUTH:
            logger.info(
                "Request rejected: %s",
                exc.message,
                extra={"event": "request_rejected", "status": exc.status, "session_id": session_id},
            )
        return envelope_response(exc.to_envelope(), session_id)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        session_id = getattr(request.state, "session_id", None)
        logger.exception(
            "Unhandled error",
            extra={"event": "internal_error", "session_id": session_id},
        )
        envelope = ErrorEnvelope(status=500, body="Internal gateway error", kind=ErrorKind.UPSTREAM)
        return envelope_response(envelope, session_id)
