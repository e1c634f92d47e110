"""
Unit tests for LspServerManager.

Tests session reuse and isolation per (language, project root), single-flight
creation, failure handling and shutdown.
"""
import asyncio
import os

import pytest

from language_server_mcp.exceptions import (
    ConfigurationMissingError,
    HandshakeFailureError,
    RegistryClosedError,
    SpawnFailureError,
)
from language_server_mcp.lsp.lsp_session import SessionKey
from language_server_mcp.lsp.lsp_types import SessionStatus


class TestAcquire:
    @pytest.mark.asyncio
    async def test_creates_ready_session(self, manager, spawner, tmp_path):
        session = await manager.acquire("typescript", str(tmp_path))

        assert session.status is SessionStatus.READY
        assert session.workspace_root == str(tmp_path)
        assert spawner.spawn_count == 1
        config, workspace_root, label = spawner.calls[0]
        assert config.command == "typescript-language-server"
        assert workspace_root == str(tmp_path)
        assert label == f"typescript:{tmp_path}"

    @pytest.mark.asyncio
    async def test_reuses_session_for_same_key(self, manager, spawner, tmp_path):
        first = await manager.acquire("typescript", str(tmp_path))
        second = await manager.acquire("typescript", str(tmp_path))

        assert first is second
        assert spawner.spawn_count == 1
        assert spawner.connections[0].request_methods().count("initialize") == 1

    @pytest.mark.asyncio
    async def test_project_roots_are_isolated(self, manager, spawner, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()

        session_a = await manager.acquire("typescript", str(a))
        session_b = await manager.acquire("typescript", str(b))

        assert session_a is not session_b
        assert spawner.spawn_count == 2
        assert session_a.workspace_root == str(a)
        assert session_b.workspace_root == str(b)

    @pytest.mark.asyncio
    async def test_languages_are_isolated(self, manager, spawner, tmp_path):
        ts = await manager.acquire("typescript", str(tmp_path))
        js = await manager.acquire("javascript", str(tmp_path))

        assert ts is not js
        assert spawner.spawn_count == 2

    @pytest.mark.asyncio
    async def test_missing_project_root_runs_in_cwd(self, manager, spawner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        session = await manager.acquire("typescript", str(tmp_path / "does-not-exist"))

        assert session.workspace_root == os.getcwd()
        assert spawner.calls[0][1] == os.getcwd()

    @pytest.mark.asyncio
    async def test_unconfigured_language_fails_before_spawning(self, manager, spawner):
        with pytest.raises(ConfigurationMissingError, match="No language server configured for rust"):
            await manager.acquire("rust", "/repo")

        assert spawner.spawn_count == 0
        assert manager.get_session("rust", "/repo") is None

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_spawn_once(self, manager, spawner, tmp_path):
        spawner.gate = asyncio.Event()

        tasks = [
            asyncio.create_task(manager.acquire("typescript", str(tmp_path)))
            for _ in range(5)
        ]
        await asyncio.sleep(0.01)
        spawner.gate.set()
        sessions = await asyncio.gather(*tasks)

        assert spawner.spawn_count == 1
        assert all(session is sessions[0] for session in sessions)

    @pytest.mark.asyncio
    async def test_spawn_failure_is_not_cached(self, manager, spawner, tmp_path):
        spawner.error = SpawnFailureError("typescript-language-server not found")

        with pytest.raises(SpawnFailureError):
            await manager.acquire("typescript", str(tmp_path))
        assert manager.get_session("typescript", str(tmp_path)) is None

        spawner.error = None
        session = await manager.acquire("typescript", str(tmp_path))

        assert session.status is SessionStatus.READY
        assert spawner.spawn_count == 2

    @pytest.mark.asyncio
    async def test_os_error_is_reported_as_spawn_failure(self, manager, spawner, tmp_path):
        spawner.error = PermissionError("permission denied")

        with pytest.raises(SpawnFailureError, match="permission denied"):
            await manager.acquire("typescript", str(tmp_path))

    @pytest.mark.asyncio
    async def test_handshake_failure_terminates_process(self, manager, spawner, tmp_path):
        spawner.configure = lambda connection: connection.responses.update(
            initialize=RuntimeError("initialize rejected")
        )

        with pytest.raises(HandshakeFailureError):
            await manager.acquire("typescript", str(tmp_path))

        assert spawner.processes[0].terminate_calls == 1
        assert manager.get_session("typescript", str(tmp_path)) is None

        spawner.configure = None
        session = await manager.acquire("typescript", str(tmp_path))
        assert session.status is SessionStatus.READY

    @pytest.mark.asyncio
    async def test_exited_session_is_restarted(self, manager, spawner, tmp_path):
        first = await manager.acquire("typescript", str(tmp_path))
        spawner.processes[0].returncode = 1

        second = await manager.acquire("typescript", str(tmp_path))

        assert second is not first
        assert first.status is SessionStatus.DISPOSED
        assert spawner.spawn_count == 2

    @pytest.mark.asyncio
    async def test_active_sessions_lists_ready_keys(self, manager, tmp_path):
        await manager.acquire("typescript", str(tmp_path))

        assert manager.active_sessions() == [SessionKey("typescript", str(tmp_path))]


class TestEvict:
    @pytest.mark.asyncio
    async def test_evict_closes_session(self, manager, spawner, tmp_path):
        session = await manager.acquire("typescript", str(tmp_path))

        assert await manager.evict("typescript", str(tmp_path)) is True

        assert session.status is SessionStatus.DISPOSED
        assert spawner.processes[0].terminate_calls == 1
        assert await manager.evict("typescript", str(tmp_path)) is False

    @pytest.mark.asyncio
    async def test_acquire_after_evict_spawns_again(self, manager, spawner, tmp_path):
        await manager.acquire("typescript", str(tmp_path))
        await manager.evict("typescript", str(tmp_path))

        await manager.acquire("typescript", str(tmp_path))

        assert spawner.spawn_count == 2


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_disposes_every_session(self, manager, spawner, tmp_path):
        await manager.acquire("typescript", str(tmp_path))
        await manager.acquire("javascript", str(tmp_path))

        await manager.shutdown()

        for connection, process in spawner.spawned:
            assert "shutdown" in connection.request_methods()
            assert connection.dispose_calls == 1
            assert process.terminate_calls == 1
        assert manager.active_sessions() == []

    @pytest.mark.asyncio
    async def test_one_failing_session_does_not_stop_the_rest(
        self, manager, spawner, tmp_path
    ):
        await manager.acquire("typescript", str(tmp_path))
        await manager.acquire("javascript", str(tmp_path))
        spawner.connections[0].dispose_error = RuntimeError("broken pipe")

        await manager.shutdown()

        assert [process.terminate_calls for process in spawner.processes] == [1, 1]
        assert spawner.connections[1].dispose_calls == 1

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, manager, spawner, tmp_path):
        await manager.acquire("typescript", str(tmp_path))

        await manager.shutdown()
        await manager.shutdown()

        assert spawner.connections[0].dispose_calls == 1

    @pytest.mark.asyncio
    async def test_acquire_after_shutdown_is_refused(self, manager, spawner, tmp_path):
        await manager.shutdown()

        with pytest.raises(RegistryClosedError):
            await manager.acquire("typescript", str(tmp_path))
        assert spawner.spawn_count == 0

    @pytest.mark.asyncio
    async def test_session_created_during_shutdown_is_released(
        self, manager, spawner, tmp_path
    ):
        spawner.gate = asyncio.Event()
        task = asyncio.create_task(manager.acquire("typescript", str(tmp_path)))
        await asyncio.sleep(0.01)

        await manager.shutdown()
        spawner.gate.set()

        with pytest.raises(RegistryClosedError):
            await task
        assert spawner.processes[0].terminate_calls == 1
