"""FastAPI application factory."""

import logging
import uuid
from collections.abc import Mapping
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from smart_proxy import __version__
from smart_proxy.config.loader import resolve_secret
from smart_proxy.config.schema import ProxyConfig
from smart_proxy.llm.registry import create_backends
from smart_proxy.llm.tools import REQUEST_ID_HEADER
from smart_proxy.routing.policy import RoutingPolicy
from smart_proxy.server.errors import register_exception_handlers
from smart_proxy.server.routes import create_router
from smart_proxy.server.shim import ChatCompletionShim, create_shim_router

logger = logging.getLogger(__name__)


def create_app(
    config: ProxyConfig,
    environ: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        config: Proxy configuration
        environ: Environment used to resolve secrets (defaults to os.environ)
        transport: Optional httpx transport shared by all backend clients

    Returns:
        Configured FastAPI app
    """
    backends = create_backends(config, environ=environ, transport=transport)
    policy = RoutingPolicy.from_config(config)

    proxy_token = resolve_secret(config.auth.token_env, environ)
    if not proxy_token:
        logger.warning(
            "%s is not set; every authenticated route will answer 401",
            config.auth.token_env,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await backends.close()

    app = FastAPI(
        title="Smart Proxy",
        description="Privacy-preserving LLM gateway",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.policy = policy
    app.state.backends = backends
    app.state.proxy_token = proxy_token

    @app.middleware("http")
    async def assign_session_id(request: Request, call_next):
        session_id = uuid.uuid4().hex
        request.state.session_id = session_id

        client_request_id = request.headers.get(REQUEST_ID_HEADER)
        if client_request_id:
            logger.debug(
                "Client supplied request id",
                extra={"session_id": session_id, "client_request_id": client_request_id},
            )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = session_id
        return response

    register_exception_handlers(app)

    app.include_router(create_router(policy, backends))
    shim = ChatCompletionShim(policy, backends, config.tool_loop)
    app.include_router(create_shim_router(shim))

    return app
