"""
Tests for config loading.
"""

import pytest

from weatherchat import config


@pytest.fixture(autouse=True)
def fresh_config():
    config.reset_config()
    yield
    config.reset_config()


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


def test_load_and_cache(tmp_path):
    path = write(tmp_path, "server:\n  port: 5001\n")
    cfg = config.load_config(path)
    assert cfg["server"]["port"] == 5001
    assert config.get_config() is cfg


def test_env_vars_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("AGENT_HOST", "agent.example")
    path = write(tmp_path, "agent:\n  url: https://${AGENT_HOST}/stream\n  headers:\n    - ${MISSING_VAR}\n")
    cfg = config.load_config(path)
    assert cfg["agent"]["url"] == "https://agent.example/stream"
    assert cfg["agent"]["headers"] == [""]


def test_override_path_from_env(tmp_path, monkeypatch):
    path = write(tmp_path, "demo_user: someone\n")
    monkeypatch.setenv("WEATHERCHAT_CONFIG", str(path))
    assert config.get_config()["demo_user"] == "someone"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(tmp_path / "absent.yaml")


def test_empty_file(tmp_path):
    assert config.load_config(write(tmp_path, "")) == {}


def test_shipped_config_loads(monkeypatch):
    monkeypatch.delenv("WEATHERCHAT_CONFIG", raising=False)
    cfg = config.get_config()
    assert cfg["agent"]["url"].endswith("/api/agents/weatherAgent/stream")
    assert cfg["agent"]["default_thread_id"] == "demo-thread"
    assert cfg["storage"]["backend"] in ("memory", "sqlite")
