"""
MCP server exposing the hover, completion and diagnostics tools over stdio.

Only unconfigured languages and unknown tool names surface as protocol
errors; everything a tool can answer in-band is returned as a text result.
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError

from language_server_mcp import __version__
from language_server_mcp.config import BridgeSettings
from language_server_mcp.exceptions import ConfigurationMissingError
from language_server_mcp.lsp.lsp_server_manager import LspServerManager
from language_server_mcp.tools.lsp_tools import (
    COMPLETIONS_TOOL,
    DIAGNOSTICS_TOOL,
    HOVER_TOOL,
    TOOL_DEFINITIONS,
    CompletionToolInput,
    DiagnosticsToolInput,
    HoverToolInput,
    LspToolBridge,
    ToolResult,
)
from language_server_mcp.utils.logger import log_context, setup_logger

logger = setup_logger(__name__)

SERVER_NAME = "language-server-mcp"


class LanguageServerMcp:
    """Owns the MCP server, the session registry and the tool bridge."""

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        manager: Optional[LspServerManager] = None,
    ) -> None:
        self.manager = manager or LspServerManager(settings=settings)
        self.bridge = LspToolBridge(self.manager)
        self.server = Server(SERVER_NAME, version=__version__)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[ToolResult]]] = {
            HOVER_TOOL.name: self._call_hover,
            COMPLETIONS_TOOL.name: self._call_completions,
            DIAGNOSTICS_TOOL.name: self._call_diagnostics,
        }
        self._setup_tools()

    def _setup_tools(self) -> None:
        self.server.list_tools()(self.list_tools)
        # Registered directly: the call_tool decorator would fold protocol
        # errors into in-band results.
        self.server.request_handlers[types.CallToolRequest] = self._handle_call_tool

    async def list_tools(self) -> List[types.Tool]:
        return [
            types.Tool(
                name=definition.name,
                description=definition.description,
                inputSchema=definition.input_schema(),
            )
            for definition in TOOL_DEFINITIONS
        ]

    async def _handle_call_tool(self, request: types.CallToolRequest) -> types.ServerResult:
        result = await self.call_tool(request.params.name, request.params.arguments or {})
        return types.ServerResult(result)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        """
        Dispatch one tool call.

        Raises:
            McpError: METHOD_NOT_FOUND for unknown tools, INVALID_PARAMS for
                unconfigured languages, INTERNAL_ERROR for anything else that
                escapes a tool.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise McpError(
                types.ErrorData(code=types.METHOD_NOT_FOUND, message=f"Unknown tool: {name}")
            )

        with log_context(tool=name):
            logger.info(f"Received request for {name}")
            try:
                result = await handler(arguments)
            except McpError:
                raise
            except ConfigurationMissingError as exc:
                logger.warning(f"Rejected {name}: {exc}")
                raise McpError(
                    types.ErrorData(code=types.INVALID_PARAMS, message=str(exc))
                ) from exc
            except Exception as exc:
                logger.exception(f"Error handling {name}")
                raise McpError(
                    types.ErrorData(
                        code=types.INTERNAL_ERROR,
                        message=f"Tool execution failed: {exc}",
                    )
                ) from exc

            logger.info(f"Result for {name}: {'error' if result.is_error else 'ok'}")
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=result.text)],
            isError=result.is_error,
        )

    async def _call_hover(self, arguments: Dict[str, Any]) -> ToolResult:
        return await self.bridge.get_hover(HoverToolInput.model_validate(arguments))

    async def _call_completions(self, arguments: Dict[str, Any]) -> ToolResult:
        return await self.bridge.get_completions(
            CompletionToolInput.model_validate(arguments)
        )

    async def _call_diagnostics(self, arguments: Dict[str, Any]) -> ToolResult:
        return await self.bridge.get_diagnostics(
            DiagnosticsToolInput.model_validate(arguments)
        )

    async def cleanup(self) -> None:
        logger.info("[cleanup] Disposing language servers...")
        await self.manager.shutdown()

    async def run(self) -> None:
        """Serve over stdio until stdin closes or SIGINT/SIGTERM arrives."""
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

        logger.info(f"Starting {SERVER_NAME} v{__version__}")
        async with stdio_server() as (read_stream, write_stream):
            serve_task = asyncio.create_task(
                self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
            )
            stop_task = asyncio.create_task(stop.wait())
            try:
                await asyncio.wait(
                    {serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                # Sessions go before the transport closes
                await self.cleanup()
                stop_task.cancel()
                serve_task.cancel()
                await asyncio.gather(serve_task, stop_task, return_exceptions=True)

            if serve_task.done() and not serve_task.cancelled():
                error = serve_task.exception()
                if error is not None:
                    raise error
        logger.info("[cleanup] Closed MCP server")
