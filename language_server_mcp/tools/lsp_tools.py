"""
Hover, completion and diagnostics tools.

Each tool announces the supplied document content to the session for its
(language, project) pair and turns the language server's answer into a
text result. Request failures are reported in the result, not raised;
configuration, spawn and handshake failures propagate to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Type

from pydantic import BaseModel, ConfigDict, Field

from language_server_mcp.lsp.documents import (
    document_identity,
    ensure_parent_directory,
    resolve_document_path,
)
from language_server_mcp.lsp.lsp_server_manager import LspServerManager
from language_server_mcp.lsp.lsp_session import LanguageServerSession
from language_server_mcp.lsp.lsp_types import LspMethod, Position, TextDocumentItem
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)

NO_HOVER_TEXT = "No hover information available"
NO_COMPLETIONS_TEXT = "No completions available"
NO_DIAGNOSTICS_TEXT = "No diagnostics received within timeout"

LANGUAGE_ID_DESCRIPTION = 'The language identifier (e.g., "typescript", "javascript")'
PROJECT_ROOT_DESCRIPTION = (
    "Important: Root directory of the project for resolving imports and "
    "node_modules where the tsconfig.json or jsconfig.json is located"
)


class DocumentToolInput(BaseModel):
    """Arguments shared by every tool."""

    model_config = ConfigDict(populate_by_name=True)

    language_id: str = Field(
        ..., alias="languageId", description=LANGUAGE_ID_DESCRIPTION
    )
    file_path: str = Field(
        ...,
        alias="filePath",
        description="Absolute or relative path to the source file",
    )
    content: str = Field(..., description="The current content of the file")
    project_root: str = Field(
        ..., alias="projectRoot", description=PROJECT_ROOT_DESCRIPTION
    )


class HoverToolInput(DocumentToolInput):
    line: int = Field(
        ..., ge=0, description="Zero-based line number for hover position"
    )
    character: int = Field(
        ..., ge=0, description="Zero-based character offset for hover position"
    )


class CompletionToolInput(DocumentToolInput):
    line: int = Field(
        ..., ge=0, description="Zero-based line number for completion position"
    )
    character: int = Field(
        ..., ge=0, description="Zero-based character offset for completion position"
    )


class DiagnosticsToolInput(DocumentToolInput):
    pass


class ToolResult(BaseModel):
    """Text payload returned by every tool."""

    text: str
    is_error: bool = False


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: Type[BaseModel]

    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)


HOVER_TOOL = ToolDefinition(
    name="get_hover",
    description="Get hover information for a position in a document",
    input_model=HoverToolInput,
)
COMPLETIONS_TOOL = ToolDefinition(
    name="get_completions",
    description="Get completion suggestions for a position in a document",
    input_model=CompletionToolInput,
)
DIAGNOSTICS_TOOL = ToolDefinition(
    name="get_diagnostics",
    description="Get diagnostic information for a document",
    input_model=DiagnosticsToolInput,
)

TOOL_DEFINITIONS: List[ToolDefinition] = [HOVER_TOOL, COMPLETIONS_TOOL, DIAGNOSTICS_TOOL]


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _has_completions(result: Any) -> bool:
    if not result:
        return False
    if isinstance(result, dict):
        return bool(result.get("items"))
    return True


class LspToolBridge:
    """Runs tool calls against sessions obtained from an `LspServerManager`."""

    def __init__(self, manager: LspServerManager) -> None:
        self.manager = manager

    @staticmethod
    def _prepare_document(
        session: LanguageServerSession, args: DocumentToolInput
    ) -> TextDocumentItem:
        # Some servers want the directory on disk even though content is inline
        ensure_parent_directory(resolve_document_path(session.workspace_root, args.file_path))
        return TextDocumentItem(
            uri=document_identity(session.workspace_root, args.file_path),
            language_id=args.language_id,
            version=1,
            text=args.content,
        )

    async def _position_request(
        self,
        session: LanguageServerSession,
        document: TextDocumentItem,
        method: LspMethod,
        line: int,
        character: int,
    ) -> Any:
        await session.open_document(document)
        return await session.request(
            method,
            {
                "textDocument": {"uri": document.uri},
                "position": Position(line=line, character=character).to_lsp(),
            },
        )

    async def get_hover(self, args: HoverToolInput) -> ToolResult:
        logger.info(f"[get_hover] Processing request for {args.language_id}")
        session = await self.manager.acquire(args.language_id, args.project_root)
        document = self._prepare_document(session, args)

        try:
            hover = await self._position_request(
                session, document, LspMethod.HOVER, args.line, args.character
            )
        except Exception as exc:
            logger.warning(f"[get_hover] Request failed for {document.uri}: {exc}")
            return ToolResult(
                text=f"Failed to get hover information: {exc}", is_error=True
            )

        contents = hover.get("contents") if isinstance(hover, dict) else None
        if not contents:
            return ToolResult(text=NO_HOVER_TEXT)
        return ToolResult(text=_to_json(contents))

    async def get_completions(self, args: CompletionToolInput) -> ToolResult:
        logger.info(f"[get_completions] Processing request for {args.language_id}")
        session = await self.manager.acquire(args.language_id, args.project_root)
        document = self._prepare_document(session, args)

        try:
            completions = await self._position_request(
                session, document, LspMethod.COMPLETION, args.line, args.character
            )
        except Exception as exc:
            logger.warning(f"[get_completions] Request failed for {document.uri}: {exc}")
            return ToolResult(text=f"Failed to get completions: {exc}", is_error=True)

        if not _has_completions(completions):
            return ToolResult(text=NO_COMPLETIONS_TEXT)
        return ToolResult(text=_to_json(completions))

    async def get_diagnostics(self, args: DiagnosticsToolInput) -> ToolResult:
        logger.info(f"[get_diagnostics] Processing request for {args.language_id}")
        session = await self.manager.acquire(args.language_id, args.project_root)
        document = self._prepare_document(session, args)

        # The push may race the didOpen, so the waiter must exist first
        waiter = session.diagnostics.register(document.uri)
        try:
            await session.open_document(document)
            diagnostics = await session.diagnostics.wait(
                waiter, self.manager.settings.diagnostics_timeout_seconds
            )
        except Exception as exc:
            session.diagnostics.discard(waiter)
            logger.warning(f"[get_diagnostics] Failed for {document.uri}: {exc}")
            return ToolResult(text=f"Failed to get diagnostics: {exc}", is_error=True)

        if diagnostics is None:
            logger.info(f"[get_diagnostics] Timeout reached for {document.uri}")
            return ToolResult(text=NO_DIAGNOSTICS_TEXT)
        return ToolResult(text=_to_json(diagnostics))
