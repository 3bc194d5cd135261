"""Smart Proxy - local LLM gateway for internal agent callers.

Smart Proxy sits between agent callers and heterogeneous LLM backends
(a self-hosted Ollama server and the remote xAI API) and presents a single
OpenAI-compatible surface. Every payload is anonymized before it leaves the
process.

Key modules:

- :mod:`smart_proxy.privacy` - PII anonymizer applied to every outbound payload
- :mod:`smart_proxy.routing` - Pure routing policy (privacy, cost, research, prompt shape)
- :mod:`smart_proxy.llm` - Backend clients (Ollama chat, remote chat with retry, tool search)
- :mod:`smart_proxy.server` - FastAPI front door and OpenAI protocol shim
- :mod:`smart_proxy.config` - YAML + environment configuration
"""

__version__ = "0.4.0"
