"""
Registry of live language server sessions.

The manager is the only owner of language server processes and their
connections. Sessions are keyed by (language, project root) and live until
they are evicted or the manager shuts down.
"""

from __future__ import annotations

import asyncio
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from language_server_mcp.config import (
    BridgeSettings,
    LanguageServerConfig,
    get_language_server_config,
)
from language_server_mcp.exceptions import (
    ConfigurationMissingError,
    HandshakeFailureError,
    RegistryClosedError,
    SpawnFailureError,
)
from language_server_mcp.lsp.lsp_connection import BaseProtocolConnection
from language_server_mcp.lsp.lsp_session import (
    LanguageServerSession,
    SessionKey,
    resolve_workspace_root,
)
from language_server_mcp.lsp.lsp_types import SessionStatus
from language_server_mcp.lsp.process_launcher import launch_language_server
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)

ConfigLoader = Callable[[str], Optional[LanguageServerConfig]]
Spawner = Callable[
    [LanguageServerConfig, str, str],
    Awaitable[Tuple[BaseProtocolConnection, Any]],
]


class LspServerManager:
    """
    Get-or-create store of `LanguageServerSession` objects.

    Concurrent first requests for the same key wait on one creation instead
    of spawning a process each. Failed creations are not cached: the next
    request for that key starts over.
    """

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        config_loader: ConfigLoader = get_language_server_config,
        spawner: Optional[Spawner] = None,
    ) -> None:
        self._settings = settings or BridgeSettings()
        self._config_loader = config_loader
        self._spawner = spawner or self._spawn_with_pygls
        self._sessions: Dict[SessionKey, LanguageServerSession] = {}
        self._creation_locks: Dict[SessionKey, asyncio.Lock] = {}
        self._closed = False

    @property
    def settings(self) -> BridgeSettings:
        return self._settings

    async def _spawn_with_pygls(
        self, config: LanguageServerConfig, workspace_root: str, label: str
    ) -> Tuple[BaseProtocolConnection, Any]:
        return await launch_language_server(
            config,
            workspace_root,
            label,
            stop_timeout=self._settings.shutdown_timeout_seconds,
        )

    @staticmethod
    def _is_usable(session: Optional[LanguageServerSession]) -> bool:
        return (
            session is not None
            and session.status is SessionStatus.READY
            and session.alive
        )

    def active_sessions(self) -> List[SessionKey]:
        return [
            key
            for key, session in self._sessions.items()
            if session.status is SessionStatus.READY
        ]

    def get_session(
        self, language_id: str, project_root: Optional[str] = None
    ) -> Optional[LanguageServerSession]:
        return self._sessions.get(SessionKey(language_id, project_root or None))

    async def acquire(
        self, language_id: str, project_root: Optional[str] = None
    ) -> LanguageServerSession:
        """
        Return the ready session for (language_id, project_root), creating it if needed.

        Raises:
            ConfigurationMissingError: no invocation is configured for the language.
            SpawnFailureError: the process could not be started.
            HandshakeFailureError: the initialize exchange failed.
            RegistryClosedError: the manager has been shut down.
        """
        key = SessionKey(language_id, project_root or None)
        if self._closed:
            raise RegistryClosedError("Language server registry is shut down")

        session = self._sessions.get(key)
        if self._is_usable(session):
            logger.debug(f"Returning existing {key} server")
            return session

        lock = self._creation_locks.setdefault(key, asyncio.Lock())
        async with lock:
            session = self._sessions.get(key)
            if self._is_usable(session):
                return session
            if session is not None:
                logger.warning(f"{key} server is no longer running, restarting it")
                del self._sessions[key]
                await self._close_session(session)

            session = await self._create_session(key)

            if self._closed:
                # Shutdown ran while we were spawning; do not leak the process
                await self._close_session(session)
                raise RegistryClosedError("Language server registry is shut down")

            self._sessions[key] = session
            return session

    async def _create_session(self, key: SessionKey) -> LanguageServerSession:
        config = self._config_loader(key.language_id)
        if config is None:
            raise ConfigurationMissingError(key.language_id)

        workspace_root = resolve_workspace_root(key.project_root)
        start_time = perf_counter()
        try:
            connection, process = await self._spawner(config, workspace_root, str(key))
        except SpawnFailureError:
            logger.error(f"Failed to spawn {key} server ({config.display()})")
            raise
        except OSError as exc:
            raise SpawnFailureError(f"Failed to start {config.display()} for {key}: {exc}") from exc

        session = LanguageServerSession(
            key=key,
            workspace_root=workspace_root,
            connection=connection,
            process=process,
            settings=self._settings,
        )
        try:
            await session.initialize()
        except HandshakeFailureError as exc:
            logger.error(str(exc))
            await self._close_session(session)
            raise
        except BaseException:
            # Cancelled or broken before the handshake finished: no orphans
            await self._close_session(session)
            raise

        logger.info(f"Created {key} server in {perf_counter() - start_time:.2f}s")
        return session

    async def _close_session(self, session: LanguageServerSession) -> None:
        try:
            await session.close()
        except Exception:
            logger.exception(f"Error disposing {session.label} server")

    async def evict(self, language_id: str, project_root: Optional[str] = None) -> bool:
        """Close and forget one session. Returns False when there was none."""
        key = SessionKey(language_id, project_root or None)
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        logger.info(f"Evicting {key} server")
        await self._close_session(session)
        return True

    async def shutdown(self) -> None:
        """Dispose every session; a failure in one does not stop the others."""
        if self._closed:
            return
        self._closed = True
        sessions = list(self._sessions.items())
        self._sessions.clear()
        logger.info(f"Disposing {len(sessions)} language server session(s)")
        for key, session in sessions:
            logger.info(f"Disposing {key} server")
            await self._close_session(session)
