"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from enum import Enum

from borg_coordinator.coordinator.backend.base import AgentRunRequest, AgentRunResult

logger = logging.getLogger(__name__)


class AgentErrorKind(str, Enum):
    SPAWN = "spawn"
    IO = "io"
    TIMEOUT = "timeout"


class AgentRunError(RuntimeError):
    """Agent could not be started, talked to, or finished in time."""

    def __init__(self, message: str, *, kind: AgentErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


class CliAgentBackend:
    """Spawn the agent executable, feed the prompt on stdin, capture output."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        run_args = _build_run_args(request.executable)
        env = os.environ.copy()
        env.update(request.environment)

        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                cwd=request.workdir or None,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as error:
            raise AgentRunError(
                f"Agent command not found: {run_args[0]} ({error})",
                kind=AgentErrorKind.SPAWN,
            ) from error
        except OSError as error:
            raise AgentRunError(
                f"Agent failed to start: {error}",
                kind=AgentErrorKind.SPAWN,
            ) from error

        try:
            stdout, stderr = process.communicate(
                input=request.prompt,
                timeout=request.timeout_seconds,
            )
        except subprocess.TimeoutExpired as error:
            _terminate_process(process)
            raise AgentRunError(
                f"Agent timed out after {request.timeout_seconds} seconds",
                kind=AgentErrorKind.TIMEOUT,
            ) from error
        except OSError as error:
            _terminate_process(process)
            raise AgentRunError(
                f"Agent I/O failed: {error}",
                kind=AgentErrorKind.IO,
            ) from error

        exit_code = process.returncode
        if exit_code != 0:
            logger.debug("Agent %s exited with code %s", run_args[0], exit_code)
        return AgentRunResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout or "",
            stderr=stderr or "",
        )


def _build_run_args(executable: str) -> list[str]:
    argv = shlex.split(executable.strip())
    if not argv:
        raise AgentRunError("Agent executable is empty.", kind=AgentErrorKind.SPAWN)
    return argv


def _terminate_process(process: subprocess.Popen[str]) -> None:
    """Stop the agent and every process it spawned, then close the pipes.

    The agent runs in its own session, so its process group also covers
    helpers that inherited the output pipes.
    """

    _signal_process_group(process, force=False)
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        _signal_process_group(process, force=True)
        try:
            process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("Agent process %s did not exit after kill", process.pid)
    for stream in (process.stdin, process.stdout, process.stderr):
        if stream is None:
            continue
        try:
            stream.close()
        except OSError as error:
            logger.debug("Closing pipe of agent process %s failed: %s", process.pid, error)


def _signal_process_group(process: subprocess.Popen[str], *, force: bool) -> None:
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
        elif force:
            process.kill()
        else:
            process.terminate()
    except OSError:
        return
