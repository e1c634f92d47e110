"""
Starts language server processes and wires their standard streams.

stdin/stdout belong to the pygls client; stderr is drained into the log so
the pipe never fills up.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from contextlib import suppress
from typing import Optional, Tuple

from language_server_mcp.config import LanguageServerConfig
from language_server_mcp.exceptions import SpawnFailureError
from language_server_mcp.lsp.lsp_connection import AnalysisClient, PyglsConnection
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)


class AnalysisProcess:
    """Handle on a running language server process."""

    def __init__(self, process: asyncio.subprocess.Process, label: str) -> None:
        self._process = process
        self.label = label
        self._stderr_task: Optional[asyncio.Task] = None
        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr(process.stderr))

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.info(f"[{self.label} stderr] {text}")

    async def terminate(self, timeout: float = 2.0) -> None:
        """SIGTERM, then SIGKILL if the process is still alive after ``timeout``."""
        if self._process.returncode is None:
            with suppress(ProcessLookupError):
                self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{self.label}] Process {self.pid} ignored SIGTERM for {timeout}s, killing"
                )
                with suppress(ProcessLookupError):
                    self._process.kill()
                await self._process.wait()

        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._stderr_task


async def launch_language_server(
    config: LanguageServerConfig,
    workspace_root: str,
    label: str,
    stop_timeout: float = 2.0,
) -> Tuple[PyglsConnection, AnalysisProcess]:
    """
    Spawn ``config`` in ``workspace_root`` and return its connection and process.

    Raises:
        SpawnFailureError: the executable is missing or could not be started.
    """
    if shutil.which(config.command) is None:
        raise SpawnFailureError(
            f"Language server executable '{config.command}' is not available in PATH."
        )

    client = AnalysisClient(label)
    logger.info(f"Spawning {label} server: {config.display()} (cwd={workspace_root})")
    try:
        # start_io pipes stdin, stdout and stderr itself
        await client.start_io(
            config.command,
            *config.args,
            cwd=workspace_root,
            env=os.environ.copy(),
        )
    except Exception as exc:
        raise SpawnFailureError(
            f"Failed to start {config.display()} for {label}: {exc}"
        ) from exc

    process = client.process
    if process is None:
        raise SpawnFailureError(f"Language server for {label} did not start")

    logger.info(f"[{label}] Language server started with pid {process.pid}")
    return PyglsConnection(client, stop_timeout=stop_timeout), AnalysisProcess(
        process, label
    )
