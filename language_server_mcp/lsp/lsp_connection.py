"""
Protocol connections to language servers.

`BaseProtocolConnection` is the capability sessions are written against;
`PyglsConnection` implements it on top of a pygls language client talking
to a child process over stdio.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from lsprotocol.types import METHOD_TO_TYPES
from pygls.lsp.client import BaseLanguageClient
from pygls.protocol import default_converter

from language_server_mcp import __version__
from language_server_mcp.exceptions import ConnectionClosedError, RequestTimeoutError
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)

NotificationHandler = Callable[[Any], None]
RequestHandler = Callable[[Any], Any]


class BaseProtocolConnection:
    """
    Abstract request/notification channel to one language server.

    Params, results and inbound payloads are plain JSON values using the
    protocol's camelCase keys. Handlers are plain callables; a request
    handler's return value is sent back as the response result. Messages
    must reach the server in the order they were sent.
    """

    async def send_request(
        self, method: str, params: Any = None, timeout: Optional[float] = None
    ) -> Any:
        raise NotImplementedError

    async def send_notification(self, method: str, params: Any = None) -> None:
        raise NotImplementedError

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        raise NotImplementedError

    def on_request(self, method: str, handler: RequestHandler) -> None:
        raise NotImplementedError

    def listen(self) -> None:
        raise NotImplementedError

    async def dispose(self) -> None:
        raise NotImplementedError


class AnalysisClient(BaseLanguageClient):
    """pygls language client that records when its server process exits."""

    def __init__(self, label: str) -> None:
        super().__init__("language-server-mcp", __version__)
        self.label = label
        self.exited = asyncio.Event()

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._server

    async def server_exit(self, server: asyncio.subprocess.Process) -> None:
        self.exited.set()
        logger.info(f"[{self.label}] Language server exited with code {server.returncode}")

    def report_server_error(self, error: Exception, source: Any) -> None:
        logger.error(f"[{self.label}] Protocol error: {error!r}")


def _consume_late_result(future: "asyncio.Future[Any]") -> None:
    # Responses that arrive after we stopped waiting are dropped
    if not future.cancelled():
        future.exception()


class PyglsConnection(BaseProtocolConnection):
    """`BaseProtocolConnection` over a started `AnalysisClient`."""

    def __init__(self, client: AnalysisClient, stop_timeout: float = 2.0) -> None:
        self._client = client
        self._converter = default_converter()
        self._stop_timeout = stop_timeout
        self._listening = False
        self._disposed = False

    @property
    def closed(self) -> bool:
        return self._disposed or self._client.exited.is_set()

    def _ensure_open(self, method: str) -> None:
        if not self._listening:
            raise ConnectionClosedError(
                f"[{self._client.label}] Cannot send {method}: connection is not listening"
            )
        if self.closed:
            raise ConnectionClosedError(
                f"[{self._client.label}] Cannot send {method}: connection is closed"
            )

    def _structure_params(self, method: str, params: Any) -> Any:
        """Convert JSON params into the lsprotocol type registered for ``method``."""
        types_for_method = METHOD_TO_TYPES.get(method)
        if types_for_method is None:
            return params
        params_type = types_for_method[2]
        if params_type is None or params is None:
            return None
        return self._converter.structure(params, params_type)

    async def send_request(
        self, method: str, params: Any = None, timeout: Optional[float] = None
    ) -> Any:
        self._ensure_open(method)
        future = self._client.protocol.send_request_async(
            method, self._structure_params(method, params)
        )
        exited = asyncio.ensure_future(self._client.exited.wait())
        try:
            done, _ = await asyncio.wait(
                {future, exited},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            exited.cancel()

        if future in done:
            return self._converter.unstructure(future.result())

        future.add_done_callback(_consume_late_result)
        if exited in done:
            raise ConnectionClosedError(
                f"[{self._client.label}] Language server exited while waiting for {method}"
            )
        raise RequestTimeoutError(
            f"[{self._client.label}] {method} timed out after {timeout}s"
        )

    async def send_notification(self, method: str, params: Any = None) -> None:
        self._ensure_open(method)
        self._client.protocol.notify(method, self._structure_params(method, params))

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        converter = self._converter

        def forward(params: Any) -> None:
            handler(converter.unstructure(params))

        self._client.feature(method)(forward)

    def on_request(self, method: str, handler: RequestHandler) -> None:
        converter = self._converter

        def forward(params: Any) -> Any:
            return handler(converter.unstructure(params))

        self._client.feature(method)(forward)

    def listen(self) -> None:
        # pygls starts reading stdout as soon as the process is spawned;
        # this only opens the connection for outbound traffic.
        self._listening = True

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        try:
            await asyncio.wait_for(self._client.stop(), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self._client.label}] Client did not stop within {self._stop_timeout}s"
            )
