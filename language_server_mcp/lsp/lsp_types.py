"""
Shared types and enumerations for the language server bridge.

Only the protocol subset needed for hover, completion and diagnostics is
modelled here; payloads travel as plain JSON values with protocol
(camelCase) keys.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LspMethod(str, Enum):
    """Requests sent to a language server."""

    INITIALIZE = "initialize"
    SHUTDOWN = "shutdown"
    HOVER = "textDocument/hover"
    COMPLETION = "textDocument/completion"


class LspNotification(str, Enum):
    """Notifications exchanged with a language server."""

    INITIALIZED = "initialized"
    EXIT = "exit"
    DID_CHANGE_CONFIGURATION = "workspace/didChangeConfiguration"
    DID_OPEN = "textDocument/didOpen"
    PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"
    LOG_MESSAGE = "window/logMessage"
    SHOW_MESSAGE = "window/showMessage"


class ServerRequest(str, Enum):
    """Requests a language server may send back to us."""

    WORKSPACE_CONFIGURATION = "workspace/configuration"
    REGISTER_CAPABILITY = "client/registerCapability"
    UNREGISTER_CAPABILITY = "client/unregisterCapability"
    WORK_DONE_PROGRESS_CREATE = "window/workDoneProgress/create"


class SessionStatus(str, Enum):
    """Lifecycle of a language server session."""

    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    DISPOSED = "disposed"


class Position(BaseModel):
    """Represents a zero-based line/character location in a text document."""

    line: int = Field(..., ge=0, description="Zero-based line index.")
    character: int = Field(..., ge=0, description="Zero-based character offset.")

    def to_lsp(self) -> Dict[str, int]:
        return {"line": self.line, "character": self.character}


class TextDocumentItem(BaseModel):
    """A document announced to the server with its full content."""

    uri: str = Field(..., description="file:// URI of the document.")
    language_id: str = Field(..., description="Language identifier.")
    version: int = Field(1, description="Document version.")
    text: str = Field(..., description="Full document content.")

    def to_lsp(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "languageId": self.language_id,
            "version": self.version,
            "text": self.text,
        }


class PublishDiagnosticsParams(BaseModel):
    """Inbound diagnostics push for one document."""

    uri: str
    diagnostics: List[Dict[str, Any]] = Field(default_factory=list)
    version: Optional[int] = None
