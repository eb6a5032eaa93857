"""Tests for per-session proxy resolution."""

from __future__ import annotations

import zlib
from types import SimpleNamespace

from wagate.config.schema import ProxySettings
from wagate.sessions.proxy import resolve_proxy
from wagate.structures import ProxyConfig

POOL = ["p1:3128", "p2:3128", "p3:3128"]


def test_no_global_proxy():
    assert resolve_proxy(ProxySettings(), {}, "alice") is None


def test_single_server_is_shared_with_credentials():
    settings = ProxySettings(server="p1:3128", username="u", password="pw")

    proxy = resolve_proxy(settings, {}, "alice")

    assert proxy == ProxyConfig(server="p1:3128", username="u", password="pw")


def test_pool_assignment_is_deterministic():
    settings = ProxySettings(server=POOL)

    first = resolve_proxy(settings, {}, "alice")
    second = resolve_proxy(settings, {}, "alice")

    assert first == second
    assert first.server == POOL[zlib.crc32(b"alice") % len(POOL)]


def test_pool_is_sticky_for_live_session():
    settings = ProxySettings(server=POOL)
    hashed = POOL[zlib.crc32(b"alice") % len(POOL)]
    other = next(s for s in POOL if s != hashed)
    live = {"alice": SimpleNamespace(proxy_config=ProxyConfig(server=other))}

    assert resolve_proxy(settings, live, "alice").server == other


def test_pool_ignores_live_proxy_outside_pool():
    settings = ProxySettings(server=POOL)
    live = {"alice": SimpleNamespace(proxy_config=ProxyConfig(server="elsewhere:1"))}

    assert resolve_proxy(settings, live, "alice").server in POOL


def test_empty_pool_entries_are_ignored():
    settings = ProxySettings(server=["", "p1:3128"])

    assert resolve_proxy(settings, {}, "anyone").server == "p1:3128"
