"""Tests for configuration loading, saving and legacy migration."""

from __future__ import annotations

import json

from wagate.config.loader import (
    camel_to_snake,
    convert_keys,
    load_config,
    save_config,
    snake_to_camel,
)
from wagate.config.schema import Config


def _write(path, data):
    path.write_text(json.dumps(data))
    return path


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.json")

    assert config.engine == "WEBJS"
    assert config.files.lifetime == 180
    assert config.sessions.start == []


def test_camel_case_file_is_loaded(tmp_path):
    path = _write(tmp_path / "config.json", {
        "engine": "NOWEB",
        "sessions": {"folder": "/data/sessions", "restartAll": True, "start": ["alice", "bob"]},
        "files": {"lifetime": 60, "mimetypes": "image,audio/ogg"},
        "webhook": {"url": "http://hook", "events": ["*"], "customHeaders": {"X-Api-Key": "k"}},
        "proxy": {"server": ["p1:1", "p2:2"], "username": "u"},
    })

    config = load_config(path)

    assert config.engine == "NOWEB"
    assert config.sessions.restart_all is True
    assert config.sessions.start == ["alice", "bob"]
    assert config.files.mimetypes == ["image", "audio/ogg"]
    assert config.webhook.custom_headers == {"X-Api-Key": "k"}
    assert config.proxy.servers == ["p1:1", "p2:2"]
    assert config.get_bridge("NOWEB").url == "ws://localhost:3002"


def test_legacy_top_level_keys_are_migrated(tmp_path):
    path = _write(tmp_path / "config.json", {
        "startSessions": "alice, bob",
        "restartAllSessions": True,
        "filesLifetime": 30,
        "filesMimetypes": ["image"],
    })

    config = load_config(path)

    assert config.sessions.start == ["alice", "bob"]
    assert config.sessions.restart_all is True
    assert config.files.lifetime == 30
    assert config.files.mimetypes == ["image"]


def test_new_location_wins_over_legacy_key(tmp_path):
    path = _write(tmp_path / "config.json", {
        "startSessions": ["legacy"],
        "sessions": {"start": ["current"]},
    })

    assert load_config(path).sessions.start == ["current"]


def test_invalid_file_falls_back_to_defaults(tmp_path, capsys):
    path = tmp_path / "config.json"
    path.write_text("{broken")

    config = load_config(path)

    assert config.engine == "WEBJS"
    assert "Failed to load config" in capsys.readouterr().out


def test_save_writes_camel_case_and_reloads(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.sessions.restart_all = True
    config.webhook.custom_headers = {"X_Raw_Header": "v"}

    save_config(config, path)
    data = json.loads(path.read_text())

    assert data["sessions"]["restartAll"] is True
    assert data["webhook"]["customHeaders"] == {"X_Raw_Header": "v"}
    assert load_config(path).sessions.restart_all is True


def test_key_conversions():
    assert camel_to_snake("restartAll") == "restart_all"
    assert snake_to_camel("connect_timeout") == "connectTimeout"
    assert convert_keys({"customHeaders": {"X-Api-Key": "k"}}) == {"custom_headers": {"X-Api-Key": "k"}}
