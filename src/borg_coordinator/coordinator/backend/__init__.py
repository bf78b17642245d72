"""External agent backend implementations."""

from borg_coordinator.coordinator.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from borg_coordinator.coordinator.backend.cli_backend import (
    AgentErrorKind,
    AgentRunError,
    CliAgentBackend,
)

__all__ = [
    "AgentBackend",
    "AgentErrorKind",
    "AgentRunError",
    "AgentRunRequest",
    "AgentRunResult",
    "CliAgentBackend",
]
