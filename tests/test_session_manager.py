"""Tests for SessionManager: registry, lifecycle API and boot recovery.

Engines run against FakeTransport (see conftest); Config points every
folder into tmp_path.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from wagate.engines import WebJSSession
from wagate.errors import DuplicateSession, EngineNotFound, SessionNotFound, TransportFailure
from wagate.sessions import SessionManager
from wagate.structures import (
    ProxyConfig,
    SessionConfig,
    SessionLogoutRequest,
    SessionStartRequest,
    SessionStatus,
    SessionStopRequest,
    WebhookConfig,
)
from wagate.webhooks import WebhookConductor


@pytest_asyncio.fixture
async def manager(config, transports):
    m = SessionManager(config)
    yield m
    await m.shutdown()


def _start(name: str, **config) -> SessionStartRequest:
    return SessionStartRequest(name=name, config=SessionConfig(**config) if config else None)


# ── start / stop ───────────────────────────────────────────


class TestStart:
    @pytest.mark.asyncio
    async def test_start_registers_session(self, manager):
        dto = await manager.start(_start("alice", metadata={"k": "v"}))

        assert dto.name == "alice"
        assert dto.status == SessionStatus.STARTING
        assert dto.config.metadata == {"k": "v"}
        assert isinstance(manager.get_session("alice"), WebJSSession)

    @pytest.mark.asyncio
    async def test_start_persists_config(self, manager):
        await manager.start(_start("alice", metadata={"k": "v"}))

        repo = manager.session_storage.config_repository
        assert (await repo.get("alice")).metadata == {"k": "v"}

    @pytest.mark.asyncio
    async def test_duplicate_start_is_rejected(self, manager):
        await manager.start(_start("alice"))
        first = manager.get_session("alice")

        with pytest.raises(DuplicateSession):
            await manager.start(_start("alice"))

        assert manager.get_session("alice") is first

    @pytest.mark.asyncio
    async def test_unknown_engine(self, config, transports):
        config.engine = "TELEGRAM"
        manager = SessionManager(config)

        with pytest.raises(EngineNotFound):
            await manager.start(_start("alice"))

        assert manager.get_session("alice", error_if_missing=False) is None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_webhooks_configured_on_engine_start(self, config, transports, until):
        config.webhook = WebhookConfig(url="http://global", events=["*"])
        manager = SessionManager(config)
        manager.conductor.configure = MagicMock()

        await manager.start(_start("alice", webhooks=[WebhookConfig(url="http://session")]))
        await until(lambda: manager.conductor.configure.called)

        session, webhooks = manager.conductor.configure.call_args.args
        assert session is manager.get_session("alice")
        assert [w.url for w in webhooks] == ["http://session", "http://global"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_engine_start_webhook_is_posted(self, config, transports, until):
        posted: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(json.loads(request.content))
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = SessionManager(config, conductor=WebhookConductor(http_client=client))

        await manager.start(_start("alice", webhooks=[WebhookConfig(url="http://hook", events=["engine.start"])]))
        await until(lambda: posted)
        await manager.shutdown()

        assert posted == [{"event": "engine.start", "session": "alice", "payload": {"engine": "WEBJS"}}]

    @pytest.mark.asyncio
    async def test_explicit_proxy_wins(self, config, transports):
        config.proxy.server = "global:1"
        manager = SessionManager(config)

        await manager.start(_start("alice", proxy=ProxyConfig(server="own:2")))
        await manager.start(_start("bob"))

        assert manager.get_session("alice").proxy_config.server == "own:2"
        assert manager.get_session("bob").proxy_config.server == "global:1"
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_bridge_comes_from_engine_config(self, manager, transports):
        await manager.start(_start("alice"))

        assert transports["alice"].url == "ws://localhost:3001"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.stop(SessionStopRequest(name="ghost"))

    @pytest.mark.asyncio
    async def test_stop_removes_and_marks_stopped(self, manager):
        await manager.start(_start("alice"))

        await manager.stop(SessionStopRequest(name="alice"))

        assert manager.get_session("alice", error_if_missing=False) is None
        repo = manager.session_storage.config_repository
        assert await repo.get_status("alice") == SessionStatus.STOPPED
        assert manager.session_storage.get_folder_path("alice").exists()

    @pytest.mark.asyncio
    async def test_stop_removes_even_when_session_stop_fails(self, manager):
        await manager.start(_start("alice"))
        session = manager.get_session("alice")
        real_stop = session.stop
        session.stop = AsyncMock(side_effect=RuntimeError("stuck"))

        with pytest.raises(RuntimeError):
            await manager.stop(SessionStopRequest(name="alice"))

        assert manager.get_session("alice", error_if_missing=False) is None
        await real_stop()

    @pytest.mark.asyncio
    async def test_stop_with_logout_cleans_storage(self, manager):
        await manager.start(_start("alice"))

        await manager.stop(SessionStopRequest(name="alice", logout=True))

        assert not manager.session_storage.get_folder_path("alice").exists()

    @pytest.mark.asyncio
    async def test_logout_without_running_session(self, manager):
        await manager.session_storage.config_repository.save("alice", None)

        await manager.logout(SessionLogoutRequest(name="alice"))

        assert await manager.session_storage.get_all() == []

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, manager):
        await manager.start(_start("alice"))
        await manager.stop(SessionStopRequest(name="alice"))

        dto = await manager.start(_start("alice"))

        assert dto.status == SessionStatus.STARTING


# ── queries ────────────────────────────────────────────────


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_session_missing(self, manager):
        with pytest.raises(SessionNotFound):
            manager.get_session("ghost")
        assert manager.get_session("ghost", error_if_missing=False) is None

    @pytest.mark.asyncio
    async def test_get_sessions_union(self, manager, transports, until):
        repo = manager.session_storage.config_repository
        await repo.save("carol", SessionConfig(metadata={"who": "carol"}), status=SessionStatus.STOPPED)
        await manager.start(_start("alice"))
        transports["alice"].push({"type": "status", "status": "ready"})
        await until(lambda: manager.get_session("alice").status == SessionStatus.WORKING)

        live = await manager.get_sessions()
        everything = {dto.name: dto for dto in await manager.get_sessions(all=True)}

        assert [dto.name for dto in live] == ["alice"]
        assert set(everything) == {"alice", "carol"}
        assert everything["alice"].status == SessionStatus.WORKING
        assert everything["carol"].status == SessionStatus.STOPPED
        assert everything["carol"].config.metadata == {"who": "carol"}


# ── boot / shutdown ────────────────────────────────────────


class TestBoot:
    @pytest.mark.asyncio
    async def test_boot_purges_media(self, manager, tmp_path):
        stale = tmp_path / "files" / "old.png"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"x")

        await manager.boot()

        assert not stale.exists()
        assert stale.parent.is_dir()

    @pytest.mark.asyncio
    async def test_recovery_isolates_failures(self, config, transports, monkeypatch, until):
        config.sessions.restart_all = True
        manager = SessionManager(config)
        repo = manager.session_storage.config_repository
        await repo.save("alice", None, status=SessionStatus.WORKING)
        await repo.save("bob", None, status=SessionStatus.WORKING)
        await repo.save("dave", None, status=SessionStatus.STOPPED)

        original = WebJSSession.build_transport

        def build(self):
            transport = original(self)
            if self.name == "alice":
                transport.connect_error = TransportFailure("bridge refused")
            return transport

        monkeypatch.setattr(WebJSSession, "build_transport", build)

        await manager.boot()
        await until(lambda: "bob" in transports and transports["bob"].connected)
        transports["bob"].push({"type": "status", "status": "ready"})

        await until(lambda: manager.get_session("alice").status == SessionStatus.FAILED)
        await until(lambda: manager.get_session("bob").status == SessionStatus.WORKING)
        assert manager.get_session("dave", error_if_missing=False) is None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_recovery_continues_when_one_start_raises(self, config, transports):
        config.sessions.restart_all = True
        manager = SessionManager(config)
        repo = manager.session_storage.config_repository
        await repo.save("alice", None, status=SessionStatus.WORKING)
        await repo.save("bob", None, status=SessionStatus.WORKING)

        real_get = repo.get

        async def get(name):
            if name == "alice":
                raise OSError("disk error")
            return await real_get(name)

        repo.get = get

        await manager.boot()

        assert manager.get_session("alice", error_if_missing=False) is None
        assert manager.get_session("bob") is not None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_recovery_disabled(self, manager):
        await manager.session_storage.config_repository.save("alice", None, status=SessionStatus.WORKING)

        await manager.boot()

        assert manager.sessions == {}

    @pytest.mark.asyncio
    async def test_predefined_sessions_start_once(self, config, transports):
        config.sessions.restart_all = True
        config.sessions.start = ["alice", "bob"]
        manager = SessionManager(config)
        await manager.session_storage.config_repository.save(
            "alice", SessionConfig(metadata={"k": "v"}), status=SessionStatus.WORKING
        )

        await manager.boot()

        assert set(manager.sessions) == {"alice", "bob"}
        assert manager.get_session("alice").session_config.metadata == {"k": "v"}
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_stop_vs_shutdown_persistence(self, config, transports):
        config.sessions.restart_all = True
        manager = SessionManager(config)
        await manager.start(_start("alice"))
        await manager.start(_start("bob"))
        await manager.stop(SessionStopRequest(name="alice"))
        await manager.shutdown()

        rebooted = SessionManager(config)
        await rebooted.boot()

        # alice 被显式停止，不恢复；bob 只是随进程退出，重启后恢复
        assert set(rebooted.sessions) == {"bob"}
        await rebooted.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, manager, transports):
        await manager.start(_start("alice"))
        await manager.start(_start("bob"))

        await manager.shutdown()

        assert manager.sessions == {}
        assert transports["alice"].closed and transports["bob"].closed
