"""
One language server session: a (language, project) key, its process, its
protocol connection and its resolved workspace root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from language_server_mcp import __version__
from language_server_mcp.config import BridgeSettings
from language_server_mcp.exceptions import ConnectionClosedError, HandshakeFailureError
from language_server_mcp.lsp.diagnostics import DiagnosticsCorrelator
from language_server_mcp.lsp.lsp_connection import BaseProtocolConnection
from language_server_mcp.lsp.lsp_types import (
    LspMethod,
    LspNotification,
    PublishDiagnosticsParams,
    ServerRequest,
    SessionStatus,
    TextDocumentItem,
)
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_PROJECT_ROOT = "default"

CLIENT_CAPABILITIES: Dict[str, Any] = {
    "workspace": {
        "configuration": True,
        "didChangeConfiguration": {"dynamicRegistration": True},
        "workspaceFolders": True,
    },
    "textDocument": {
        "synchronization": {
            "dynamicRegistration": True,
            "willSave": False,
            "willSaveWaitUntil": False,
            "didSave": False,
        },
        "completion": {
            "dynamicRegistration": True,
            "completionItem": {
                "snippetSupport": True,
                "commitCharactersSupport": True,
                "documentationFormat": ["markdown", "plaintext"],
                "deprecatedSupport": True,
                "preselectSupport": True,
            },
            "contextSupport": True,
        },
        "hover": {
            "dynamicRegistration": True,
            "contentFormat": ["markdown", "plaintext"],
        },
        "publishDiagnostics": {
            "relatedInformation": True,
            "tagSupport": {"valueSet": [1, 2]},
            "versionSupport": True,
        },
    },
}


def _editor_defaults(section: str) -> Dict[str, Any]:
    return {
        section: {
            "format": {"enable": True},
            "suggest": {
                "enabled": True,
                "includeCompletionsForModuleExports": True,
            },
            "validate": {"enable": True},
        }
    }


DEFAULT_WORKSPACE_SETTINGS: Dict[str, Dict[str, Any]] = {
    "typescript": _editor_defaults("typescript"),
    "javascript": _editor_defaults("javascript"),
}


@dataclass(frozen=True)
class SessionKey:
    """Composite key identifying a language server session."""

    language_id: str
    project_root: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.language_id}:{self.project_root or DEFAULT_PROJECT_ROOT}"


def resolve_workspace_root(project_root: Optional[str]) -> str:
    """The project root when it exists on disk, otherwise our working directory."""
    if project_root and os.path.exists(project_root):
        return os.path.abspath(project_root)
    return os.getcwd()


def build_initialize_params(language_id: str, workspace_root: str) -> Dict[str, Any]:
    workspace_uri = Path(workspace_root).as_uri()
    return {
        "processId": os.getpid(),
        "clientInfo": {"name": "language-server-mcp", "version": __version__},
        "rootUri": workspace_uri,
        "rootPath": workspace_root,
        "workspaceFolders": [
            {"uri": workspace_uri, "name": f"{language_id}-workspace"}
        ],
        "capabilities": CLIENT_CAPABILITIES,
        "initializationOptions": None,
    }


class LanguageServerSession:
    """
    A language server process paired with its protocol connection.

    Sessions are created and torn down by `LspServerManager`; tool code only
    announces documents and issues requests through a ready session.
    """

    def __init__(
        self,
        key: SessionKey,
        workspace_root: str,
        connection: BaseProtocolConnection,
        process: Any,
        settings: BridgeSettings,
    ) -> None:
        self.key = key
        self.workspace_root = workspace_root
        self.connection = connection
        self.process = process
        self.status = SessionStatus.INITIALIZING
        self.diagnostics = DiagnosticsCorrelator()
        self.server_capabilities: Dict[str, Any] = {}
        self._settings = settings

    @property
    def label(self) -> str:
        return str(self.key)

    @property
    def alive(self) -> bool:
        """False once the language server process has exited."""
        return getattr(self.process, "returncode", None) is None

    def _install_handlers(self) -> None:
        self.connection.on_notification(
            LspNotification.PUBLISH_DIAGNOSTICS.value, self._handle_publish_diagnostics
        )
        self.connection.on_notification(
            LspNotification.LOG_MESSAGE.value, self._handle_log_message
        )
        self.connection.on_notification(
            LspNotification.SHOW_MESSAGE.value, self._handle_log_message
        )
        self.connection.on_request(
            ServerRequest.WORKSPACE_CONFIGURATION.value,
            self._handle_workspace_configuration,
        )
        for method in (
            ServerRequest.REGISTER_CAPABILITY,
            ServerRequest.UNREGISTER_CAPABILITY,
            ServerRequest.WORK_DONE_PROGRESS_CREATE,
        ):
            self.connection.on_request(method.value, self._acknowledge)

    def _handle_publish_diagnostics(self, params: Any) -> None:
        try:
            payload = PublishDiagnosticsParams.model_validate(params)
        except ValidationError as exc:
            logger.warning(f"[{self.label}] Ignoring malformed diagnostics push: {exc}")
            return
        matched = self.diagnostics.publish(payload.uri, payload.diagnostics)
        logger.debug(
            f"[{self.label}] Received {len(payload.diagnostics)} diagnostics for "
            f"{payload.uri}{'' if matched else ' (no pending waiter)'}"
        )

    def _handle_log_message(self, params: Any) -> None:
        message = params.get("message", "") if isinstance(params, dict) else params
        logger.debug(f"[{self.label}] {message}")

    def _handle_workspace_configuration(self, params: Any) -> List[None]:
        items = params.get("items", []) if isinstance(params, dict) else []
        return [None] * len(items)

    def _acknowledge(self, params: Any) -> None:
        return None

    async def initialize(self) -> None:
        """
        Run the initialize/initialized handshake and push default settings.

        Raises:
            HandshakeFailureError: initialize was rejected, timed out or the
                connection broke. The caller owns terminating the process.
        """
        # Handlers go in first so nothing pushed right after the handshake is lost
        self._install_handlers()
        self.connection.listen()

        logger.info(f"[{self.label}] Initializing language server in {self.workspace_root}")
        try:
            result = await self.connection.send_request(
                LspMethod.INITIALIZE.value,
                build_initialize_params(self.key.language_id, self.workspace_root),
                timeout=self._settings.request_timeout_seconds,
            )
            await self.connection.send_notification(
                LspNotification.INITIALIZED.value, {}
            )
        except Exception as exc:
            self.status = SessionStatus.FAILED
            raise HandshakeFailureError(
                f"Failed to initialize {self.label} server: {exc}"
            ) from exc

        if isinstance(result, dict):
            self.server_capabilities = result.get("capabilities") or {}

        await self._push_default_settings()
        self.status = SessionStatus.READY
        logger.info(f"[{self.label}] Language server ready")

    async def _push_default_settings(self) -> None:
        settings = DEFAULT_WORKSPACE_SETTINGS.get(self.key.language_id)
        if not settings:
            return
        try:
            await self.connection.send_notification(
                LspNotification.DID_CHANGE_CONFIGURATION.value, {"settings": settings}
            )
        except Exception as exc:
            logger.warning(f"[{self.label}] Failed to push default settings: {exc}")

    def _ensure_ready(self) -> None:
        if self.status is not SessionStatus.READY:
            raise ConnectionClosedError(
                f"Session {self.label} is {self.status.value}, not ready"
            )

    async def open_document(self, document: TextDocumentItem) -> None:
        self._ensure_ready()
        await self.connection.send_notification(
            LspNotification.DID_OPEN.value, {"textDocument": document.to_lsp()}
        )

    async def request(self, method: LspMethod, params: Dict[str, Any]) -> Any:
        self._ensure_ready()
        return await self.connection.send_request(
            method.value, params, timeout=self._settings.request_timeout_seconds
        )

    async def close(self) -> None:
        """
        Shut the server down and release the connection and the process.

        The process is terminated even when disposing the connection raises;
        the error is re-raised afterwards.
        """
        if self.status is SessionStatus.DISPOSED:
            return
        was_ready = self.status is SessionStatus.READY
        self.status = SessionStatus.DISPOSED
        self.diagnostics.fail_all(ConnectionClosedError(f"Session {self.label} closed"))

        try:
            if was_ready:
                await self._graceful_shutdown()
            await self.connection.dispose()
        finally:
            await self.process.terminate(timeout=self._settings.shutdown_timeout_seconds)
        logger.info(f"[{self.label}] Session disposed")

    async def _graceful_shutdown(self) -> None:
        try:
            await self.connection.send_request(
                LspMethod.SHUTDOWN.value,
                None,
                timeout=self._settings.shutdown_timeout_seconds,
            )
            await self.connection.send_notification(LspNotification.EXIT.value, None)
        except Exception as exc:
            logger.debug(f"[{self.label}] Graceful shutdown failed: {exc}")
