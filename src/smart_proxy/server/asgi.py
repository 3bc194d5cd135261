"""ASGI entry point for running the gateway via the uvicorn CLI.

    uvicorn smart_proxy.server.asgi:app --host ... --port ...
"""

from smart_proxy.config.loader import load_config
from smart_proxy.logs import configure_logging
from smart_proxy.server.app import create_app

config = load_config()
configure_logging(config.logging)
app = create_app(config)
