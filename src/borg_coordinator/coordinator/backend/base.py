"""Backend interface for external agent execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to run the agent once."""

    executable: str
    prompt: str
    timeout_seconds: int
    workdir: str = "."
    environment: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class AgentRunResult:
    """Captured outcome of a finished agent process."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        """Run the agent to completion or raise AgentRunError."""
