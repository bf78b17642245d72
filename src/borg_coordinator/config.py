"""Runtime configuration for the coordinator."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from borg_coordinator.coordinator.errors import ConfigurationError

DEFAULT_STORE_URL = "sqlite:///.borg_coordinator.db"


@dataclass(slots=True)
class LoopSettings:
    """Background loop cadence."""

    poll_interval_seconds: float = 5.0
    error_backoff_seconds: float = 10.0
    heartbeat_interval_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings."""

    store_url: str = DEFAULT_STORE_URL
    namespace: str = "borg"
    agent_path: str = "claude"
    log_level: str = "INFO"
    bootstrap_team: bool = True
    loops: LoopSettings = field(default_factory=LoopSettings)

    @classmethod
    def from_env(
        cls,
        store_url: str | None = None,
        agent_path: str | None = None,
    ) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            store_url=store_url or os.getenv("BORG_STORE_URL", DEFAULT_STORE_URL),
            namespace=os.getenv("BORG_NAMESPACE", "borg"),
            agent_path=agent_path or os.getenv("BORG_AGENT_PATH", "claude"),
            log_level=os.getenv("BORG_LOG_LEVEL", "INFO").strip().upper(),
            bootstrap_team=_env_bool("BORG_BOOTSTRAP_TEAM", default=True),
            loops=LoopSettings(
                poll_interval_seconds=_env_float("BORG_POLL_INTERVAL_SECONDS", 5.0),
                error_backoff_seconds=_env_float("BORG_ERROR_BACKOFF_SECONDS", 10.0),
                heartbeat_interval_seconds=_env_float("BORG_HEARTBEAT_INTERVAL_SECONDS", 30.0),
            ),
        )

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is unusable."""

        if not self.store_url.strip():
            raise ConfigurationError("BORG_STORE_URL must not be empty.")
        if not self.namespace.strip():
            raise ConfigurationError("BORG_NAMESPACE must not be empty.")
        if not self.agent_path.strip():
            raise ConfigurationError("BORG_AGENT_PATH must not be empty.")
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigurationError(f"Unknown BORG_LOG_LEVEL: {self.log_level!r}")
        if self.loops.poll_interval_seconds <= 0:
            raise ConfigurationError("BORG_POLL_INTERVAL_SECONDS must be > 0.")
        if self.loops.error_backoff_seconds <= 0:
            raise ConfigurationError("BORG_ERROR_BACKOFF_SECONDS must be > 0.")
        if self.loops.heartbeat_interval_seconds <= 0:
            raise ConfigurationError("BORG_HEARTBEAT_INTERVAL_SECONDS must be > 0.")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ConfigurationError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {value!r}")
