"""
Minimal conftest for unit tests.

Language server processes are replaced by `FakeConnection`/`FakeProcess`
pairs handed out by `FakeSpawner`, so sessions, the registry and the tools
run their real code against scripted servers.
"""

import asyncio
import inspect
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# Add project root to path for imports (idempotent)
project_root = Path(__file__).parent.parent.parent.resolve()
project_root_str = str(project_root)
if project_root_str not in sys.path:
    sys.path.insert(0, project_root_str)

from language_server_mcp.config import BridgeSettings, LanguageServerConfig  # noqa: E402
from language_server_mcp.lsp.lsp_connection import BaseProtocolConnection  # noqa: E402
from language_server_mcp.lsp.lsp_server_manager import LspServerManager  # noqa: E402

INITIALIZE_RESULT = {"capabilities": {"hoverProvider": True, "completionProvider": {}}}


class FakeConnection(BaseProtocolConnection):
    """Scripted connection that records every outbound message."""

    def __init__(self) -> None:
        self.requests: List[Tuple[str, Any]] = []
        self.notifications: List[Tuple[str, Any]] = []
        self.notification_handlers: Dict[str, Callable[[Any], None]] = {}
        self.request_handlers: Dict[str, Callable[[Any], Any]] = {}
        # method -> result, exception instance, or callable(params)
        self.responses: Dict[str, Any] = {"initialize": INITIALIZE_RESULT}
        self.notification_errors: Dict[str, Exception] = {}
        # method -> callable(params) run after the notification is recorded
        self.notification_hooks: Dict[str, Callable[[Any], None]] = {}
        self.listening = False
        self.dispose_calls = 0
        self.dispose_error: Optional[Exception] = None
        self.events: List[str] = []

    async def send_request(self, method, params=None, timeout=None):
        self.requests.append((method, params))
        self.events.append(f"request:{method}")
        response = self.responses.get(method)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
        return response

    async def send_notification(self, method, params=None):
        self.notifications.append((method, params))
        self.events.append(f"notify:{method}")
        error = self.notification_errors.get(method)
        if error is not None:
            raise error
        hook = self.notification_hooks.get(method)
        if hook is not None:
            hook(params)

    def on_notification(self, method, handler):
        self.notification_handlers[method] = handler

    def on_request(self, method, handler):
        self.request_handlers[method] = handler

    def listen(self):
        self.listening = True
        self.events.append("listen")

    async def dispose(self):
        self.dispose_calls += 1
        self.events.append("dispose")
        if self.dispose_error is not None:
            raise self.dispose_error

    def emit(self, method: str, params: Any) -> None:
        """Deliver an inbound notification as the server would."""
        self.notification_handlers[method](params)

    def request_methods(self) -> List[str]:
        return [method for method, _ in self.requests]

    def notification_methods(self) -> List[str]:
        return [method for method, _ in self.notifications]


class FakeProcess:
    """Stands in for `AnalysisProcess`."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.terminate_calls = 0
        self.terminate_error: Optional[Exception] = None

    async def terminate(self, timeout: float = 2.0) -> None:
        self.terminate_calls += 1
        if self.terminate_error is not None:
            raise self.terminate_error
        self.returncode = -15


class FakeSpawner:
    """Spawner handing out fake connection/process pairs and counting spawns."""

    def __init__(self) -> None:
        self.spawned: List[Tuple[FakeConnection, FakeProcess]] = []
        self.calls: List[Tuple[LanguageServerConfig, str, str]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        # Called with each new connection before it is returned
        self.configure: Optional[Callable[[FakeConnection], None]] = None

    async def __call__(self, config, workspace_root, label):
        self.calls.append((config, workspace_root, label))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        connection = FakeConnection()
        if self.configure is not None:
            self.configure(connection)
        process = FakeProcess(pid=1000 + len(self.spawned))
        self.spawned.append((connection, process))
        return connection, process

    @property
    def spawn_count(self) -> int:
        return len(self.calls)

    @property
    def connections(self) -> List[FakeConnection]:
        return [connection for connection, _ in self.spawned]

    @property
    def processes(self) -> List[FakeProcess]:
        return [process for _, process in self.spawned]


@pytest.fixture
def server_configs():
    return {
        "typescript": LanguageServerConfig(
            command="typescript-language-server", args=["--stdio"]
        ),
        "javascript": LanguageServerConfig(
            command="typescript-language-server", args=["--stdio"]
        ),
    }


@pytest.fixture
def settings():
    return BridgeSettings(
        request_timeout_seconds=5.0,
        diagnostics_timeout_seconds=0.2,
        shutdown_timeout_seconds=0.5,
    )


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def manager(settings, server_configs, spawner):
    return LspServerManager(
        settings=settings,
        config_loader=server_configs.get,
        spawner=spawner,
    )


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def process():
    return FakeProcess(pid=42)
