from __future__ import annotations

import allure
import pytest

from borg_coordinator.config import DEFAULT_STORE_URL, LoopSettings, Settings
from borg_coordinator.coordinator.errors import ConfigurationError

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]

_ENV_NAMES = (
    "BORG_STORE_URL",
    "BORG_NAMESPACE",
    "BORG_AGENT_PATH",
    "BORG_LOG_LEVEL",
    "BORG_BOOTSTRAP_TEAM",
    "BORG_POLL_INTERVAL_SECONDS",
    "BORG_ERROR_BACKOFF_SECONDS",
    "BORG_HEARTBEAT_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment() -> None:
    settings = Settings.from_env()

    assert settings.store_url == DEFAULT_STORE_URL
    assert settings.namespace == "borg"
    assert settings.agent_path == "claude"
    assert settings.log_level == "INFO"
    assert settings.bootstrap_team is True
    assert settings.loops == LoopSettings()
    settings.validate()


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BORG_STORE_URL", "sqlite:///custom.db")
    monkeypatch.setenv("BORG_NAMESPACE", "team-a")
    monkeypatch.setenv("BORG_AGENT_PATH", "my-agent --fast")
    monkeypatch.setenv("BORG_LOG_LEVEL", " debug ")
    monkeypatch.setenv("BORG_BOOTSTRAP_TEAM", "off")
    monkeypatch.setenv("BORG_POLL_INTERVAL_SECONDS", "0.25")
    monkeypatch.setenv("BORG_HEARTBEAT_INTERVAL_SECONDS", "60")

    settings = Settings.from_env()

    assert settings.store_url == "sqlite:///custom.db"
    assert settings.namespace == "team-a"
    assert settings.agent_path == "my-agent --fast"
    assert settings.log_level == "DEBUG"
    assert settings.bootstrap_team is False
    assert settings.loops.poll_interval_seconds == 0.25
    assert settings.loops.error_backoff_seconds == 10.0
    assert settings.loops.heartbeat_interval_seconds == 60.0


def test_explicit_arguments_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BORG_STORE_URL", "sqlite:///env.db")
    monkeypatch.setenv("BORG_AGENT_PATH", "env-agent")

    settings = Settings.from_env(store_url="sqlite:///cli.db", agent_path="cli-agent")

    assert settings.store_url == "sqlite:///cli.db"
    assert settings.agent_path == "cli-agent"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("BORG_BOOTSTRAP_TEAM", "maybe", "Invalid boolean value for BORG_BOOTSTRAP_TEAM"),
        ("BORG_POLL_INTERVAL_SECONDS", "soon", "Invalid number value"),
    ],
)
def test_malformed_environment_values_raise(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError, match=message):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(store_url=" "), "BORG_STORE_URL"),
        (Settings(namespace=""), "BORG_NAMESPACE"),
        (Settings(agent_path=""), "BORG_AGENT_PATH"),
        (Settings(log_level="CHATTY"), "BORG_LOG_LEVEL"),
        (Settings(loops=LoopSettings(poll_interval_seconds=0)), "BORG_POLL_INTERVAL_SECONDS"),
        (Settings(loops=LoopSettings(error_backoff_seconds=-1)), "BORG_ERROR_BACKOFF_SECONDS"),
        (
            Settings(loops=LoopSettings(heartbeat_interval_seconds=0)),
            "BORG_HEARTBEAT_INTERVAL_SECONDS",
        ),
    ],
)
def test_validate_rejects_unusable_settings(settings: Settings, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        settings.validate()
