"""
Shared fixtures for wagate tests.

Engine bridges are replaced by an in-memory FakeTransport so sessions can be
driven frame by frame without a bridge process. Sessions and media live under
pytest's tmp_path.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio

from wagate.config.schema import BridgeConfig, Config
from wagate.engines.base import WhatsappSession
from wagate.media import EvictionScheduler, MediaStore
from wagate.sessions.storage import SessionStorage


# ── Fake engine bridge ─────────────────────────────────────


class FakeTransport:
    """
    In-memory stand-in for BridgeTransport.

    Frames pushed with push() are yielded by frames(); hangup() ends the
    stream as if the bridge closed the socket. Requests are recorded and
    answered from `responses` (an Exception value is raised instead).
    """

    def __init__(self, url: str, session: str, engine: str, options: dict | None = None):
        self.url = url
        self.session = session
        self.engine = engine
        self.options = options or {}
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, Any] = {}
        self.connect_error: Exception | None = None
        self.connected = False
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def frames(self):
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            yield frame

    def push(self, frame: dict[str, Any]) -> None:
        self._frames.put_nowait(frame)

    def hangup(self) -> None:
        self._frames.put_nowait(None)

    async def request(self, action: str, payload: dict[str, Any] | None = None) -> Any:
        self.requests.append((action, payload or {}))
        response = self.responses.get(action)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True

    @property
    def is_connected(self) -> bool:
        return self.connected and not self.closed


@pytest.fixture
def transports(monkeypatch) -> dict[str, FakeTransport]:
    """Route every session's transport through FakeTransport, keyed by session name."""
    created: dict[str, FakeTransport] = {}

    def _make_transport(self, options):
        transport = FakeTransport(self.bridge.url, self.name, self.engine.value, options)
        created[self.name] = transport
        return transport

    monkeypatch.setattr(WhatsappSession, "_make_transport", _make_transport)
    return created


# ── Storage fixtures ───────────────────────────────────────


@pytest_asyncio.fixture
async def scheduler():
    """An EvictionScheduler stopped at teardown so no timer outlives the test."""
    s = EvictionScheduler()
    yield s
    s.stop()


@pytest.fixture
def media_store(tmp_path, scheduler) -> MediaStore:
    return MediaStore(
        folder=tmp_path / "files",
        base_url="http://localhost:3000/api/files/",
        lifetime=180,
        scheduler=scheduler,
    )


@pytest.fixture
def session_storage(tmp_path) -> SessionStorage:
    return SessionStorage(tmp_path / "sessions", "WEBJS")


@pytest.fixture
def make_session(media_store, session_storage) -> Callable[..., WhatsappSession]:
    """Build a session of the given engine class with test storage attached."""

    def _make(engine_class, name: str = "default", **kwargs) -> WhatsappSession:
        return engine_class(
            name=name,
            storage=media_store,
            session_storage=session_storage,
            bridge=BridgeConfig(url="ws://bridge.test"),
            **kwargs,
        )

    return _make


@pytest.fixture
def config(tmp_path) -> Config:
    """A Config pointing every folder into tmp_path."""
    return Config.model_validate({
        "engine": "WEBJS",
        "sessions": {"folder": str(tmp_path / "sessions")},
        "files": {"folder": str(tmp_path / "files"), "url": "http://localhost:3000/api/files/"},
    })


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() is true; fail the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def until():
    return wait_until
