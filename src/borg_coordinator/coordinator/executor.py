"""Background execution of assigned tasks through the agent backend."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from borg_coordinator.coordinator.backend import (
    AgentBackend,
    AgentRunError,
    AgentRunRequest,
)
from borg_coordinator.coordinator.errors import InstanceNotFoundError
from borg_coordinator.coordinator.events import EventChannel, TaskCompleted
from borg_coordinator.coordinator.models import Instance, Task, TaskResult, TaskStatus
from borg_coordinator.coordinator.registry import Registry
from borg_coordinator.coordinator.roles import build_prompt
from borg_coordinator.storage.common import utc_now

logger = logging.getLogger(__name__)

INTERNAL_ERROR_KIND = "internal"


class TaskExecutor:
    """Runs one agent invocation per assigned task on a daemon thread.

    Whatever happens inside the thread, the task ends completed or failed,
    the instance reverts to idle, and a ``TaskCompleted`` event is published.
    """

    def __init__(
        self,
        *,
        registry: Registry,
        events: EventChannel,
        backend: AgentBackend,
        default_agent_path: str = "claude",
    ) -> None:
        self.registry = registry
        self.events = events
        self.backend = backend
        self.default_agent_path = default_agent_path

    def run(self, task: Task, instance: Instance) -> threading.Thread:
        """Start execution in the background and return immediately."""

        thread = threading.Thread(
            target=self.execute,
            args=(task, instance),
            name=f"borg-task-{task.id[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    def execute(self, task: Task, instance: Instance) -> Task:
        """Run the agent for ``task`` on the calling thread and commit the outcome."""

        logger.info(
            "Instance %s (%s) executing task %s",
            instance.id,
            instance.config.name,
            task.id,
        )
        try:
            result = self._invoke_agent(task, self._live_instance(instance))
            status = TaskStatus.COMPLETED
        except AgentRunError as error:
            logger.warning("Task %s failed: %s", task.id, error)
            result = _failure_result(error.kind.value, str(error))
            status = TaskStatus.FAILED
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error while executing task %s", task.id)
            result = _failure_result(INTERNAL_ERROR_KIND, str(error))
            status = TaskStatus.FAILED

        finished = replace(task, status=status, result=result, updated_at=utc_now())
        final_task, released = self.registry.release_instance(finished, instance)
        self.events.publish(TaskCompleted(task=final_task, instance=released, result=result))
        logger.info(
            "Task %s finished with status %s (success=%s)",
            final_task.id,
            final_task.status.value,
            result.success,
        )
        return final_task

    def _live_instance(self, instance: Instance) -> Instance:
        try:
            return self.registry.get_instance(instance.id)
        except InstanceNotFoundError:
            return instance

    def _invoke_agent(self, task: Task, instance: Instance) -> TaskResult:
        config = instance.config
        request = AgentRunRequest(
            executable=config.agent_path.strip() or self.default_agent_path,
            prompt=build_prompt(instance, task),
            timeout_seconds=config.timeout_seconds,
            workdir=config.workspace_dir,
            environment=dict(config.environment_vars),
        )
        outcome = self.backend.run(request)
        return TaskResult(
            success=outcome.success,
            output=outcome.stdout or None,
            error=outcome.stderr or None,
        )


def _failure_result(kind: str, message: str) -> TaskResult:
    return TaskResult(
        success=False,
        error=f"Agent execution failed ({kind}): {message}",
    )
