"""
Correlates pushed ``textDocument/publishDiagnostics`` notifications with the
tool calls waiting for them.

Waiters are kept in FIFO order per document identity. A push resolves the
oldest waiter that is still pending; a waiter is resolved exactly once,
either by a push or by its timeout, whichever fires first.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from language_server_mcp.lsp.documents import normalize_document_uri
from language_server_mcp.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(eq=False)
class PendingDiagnosticsWaiter:
    """A diagnostics call waiting for one matching push."""

    document_uri: str
    future: "asyncio.Future[List[Dict[str, Any]]]"
    registered_at: float = field(default_factory=time.monotonic)

    @property
    def pending(self) -> bool:
        return not self.future.done()


class DiagnosticsCorrelator:
    """Per-document queues of diagnostics waiters."""

    def __init__(self) -> None:
        self._waiters: Dict[str, Deque[PendingDiagnosticsWaiter]] = {}

    def register(self, document_uri: str) -> PendingDiagnosticsWaiter:
        """Queue a waiter; must happen before the document is announced."""
        key = normalize_document_uri(document_uri)
        loop = asyncio.get_running_loop()
        waiter = PendingDiagnosticsWaiter(document_uri=key, future=loop.create_future())
        self._waiters.setdefault(key, deque()).append(waiter)
        return waiter

    def publish(self, document_uri: str, diagnostics: List[Dict[str, Any]]) -> bool:
        """
        Resolve the oldest pending waiter for ``document_uri``.

        Returns False when nobody was waiting; the push is then dropped.
        """
        key = normalize_document_uri(document_uri)
        queue = self._waiters.get(key)
        while queue:
            waiter = queue.popleft()
            if waiter.pending:
                waiter.future.set_result(diagnostics)
                if not queue:
                    del self._waiters[key]
                return True
        self._waiters.pop(key, None)
        return False

    def discard(self, waiter: PendingDiagnosticsWaiter) -> None:
        """Forget ``waiter``; a no-op when a push already removed it."""
        if waiter.pending:
            waiter.future.cancel()
        queue = self._waiters.get(waiter.document_uri)
        if queue is None:
            return
        try:
            queue.remove(waiter)
        except ValueError:
            pass
        if not queue:
            del self._waiters[waiter.document_uri]

    async def wait(
        self, waiter: PendingDiagnosticsWaiter, timeout: float
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Wait up to ``timeout`` seconds for ``waiter`` to be resolved.

        Returns the pushed diagnostics, or None on timeout.
        """
        try:
            return await asyncio.wait_for(asyncio.shield(waiter.future), timeout)
        except asyncio.TimeoutError:
            # A push that landed while the timer fired still counts
            if waiter.future.done() and not waiter.future.cancelled():
                return waiter.future.result()
            logger.debug(
                f"No diagnostics for {waiter.document_uri} after "
                f"{time.monotonic() - waiter.registered_at:.2f}s"
            )
            return None
        finally:
            self.discard(waiter)

    def pending_count(self, document_uri: str) -> int:
        queue = self._waiters.get(normalize_document_uri(document_uri))
        if not queue:
            return 0
        return sum(1 for waiter in queue if waiter.pending)

    def fail_all(self, error: Exception) -> None:
        """Fail every pending waiter with ``error``, used when the session goes away."""
        for queue in self._waiters.values():
            for waiter in queue:
                if waiter.pending:
                    waiter.future.set_exception(error)
        self._waiters.clear()
