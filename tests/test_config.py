"""Tests for environment-driven settings."""

from pathlib import Path

from hostagent.config import AgentSettings


def test_defaults(monkeypatch):
    for var in ("HOSTAGENT_PORT", "HOSTAGENT_SERVER_URL", "HOSTAGENT_HISTORY_LIMIT"):
        monkeypatch.delenv(var, raising=False)
    s = AgentSettings()
    assert s.port == 3001
    assert s.server_url == "http://localhost:3000"
    assert s.report_interval_seconds == 60.0
    assert s.history_limit == 1000
    assert s.launcher == "shell"
    assert s.instance_id_file == Path(".instance-id")


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("HOSTAGENT_PORT", "4100")
    monkeypatch.setenv("HOSTAGENT_SERVER_URL", "http://controller:9000")
    monkeypatch.setenv("HOSTAGENT_REPORT_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("HOSTAGENT_LAUNCHER", "python")

    s = AgentSettings()
    assert s.port == 4100
    assert s.server_url == "http://controller:9000"
    assert s.report_interval_seconds == 5.0
    assert s.launcher == "python"
