"""
language-server-mcp - hover, completion and diagnostics tools backed by
external language servers.

Each (language, project) pair gets one long-lived language server process;
tool calls are translated into Language Server Protocol exchanges with it.

Example:
    >>> import asyncio
    >>> from language_server_mcp.server import LanguageServerMcp
    >>>
    >>> asyncio.run(LanguageServerMcp().run())

Language servers are configured through the environment, for instance
``TYPESCRIPT_SERVER='{"command": "typescript-language-server", "args": ["--stdio"]}'``.
"""

__version__ = "0.2.0"

from language_server_mcp.exceptions import (  # noqa: E402
    LanguageServerBridgeError,
    ConfigurationMissingError,
    SpawnFailureError,
    HandshakeFailureError,
    ConnectionClosedError,
    RequestTimeoutError,
    RegistryClosedError,
)

__all__ = [
    "__version__",
    "LanguageServerBridgeError",
    "ConfigurationMissingError",
    "SpawnFailureError",
    "HandshakeFailureError",
    "ConnectionClosedError",
    "RequestTimeoutError",
    "RegistryClosedError",
]
