"""Controllers for coordinator CLI commands."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from borg_coordinator.config import Settings
from borg_coordinator.coordinator.events import (
    CoordinatorEvent,
    InstanceCreated,
    TaskAssigned,
    TaskCompleted,
)
from borg_coordinator.coordinator.models import (
    PRIORITY_DEQUEUE_ORDER,
    InstanceRole,
    TaskParams,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from borg_coordinator.coordinator.queue import DurableTaskQueue, open_task_queue
from borg_coordinator.coordinator.roles import ROLE_PROFILES, preferred_roles
from borg_coordinator.coordinator.scheduler import new_task
from borg_coordinator.coordinator.service import Coordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for the long-running coordinator."""

    store_url: str | None
    agent_path: str | None
    log_level: str | None
    bootstrap_team: bool
    duration_seconds: float | None = None


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for queueing one task."""

    store_url: str | None
    task_type: TaskType
    description: str
    priority: TaskPriority
    dependencies: tuple[str, ...]
    target_instance_id: str | None


@dataclass(slots=True)
class QueueStatsCommand:
    store_url: str | None


@dataclass(slots=True)
class QueueClearCommand:
    store_url: str | None
    priority: TaskPriority | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task snapshot listing."""

    store_url: str | None
    status: TaskStatus | None
    limit: int


@dataclass(slots=True)
class ListInstancesCommand:
    store_url: str | None


class CoordinatorCliController:
    """Business logic behind coordinator CLI commands."""

    def __init__(self, *, stop_event: threading.Event | None = None) -> None:
        self._stop_event = stop_event or threading.Event()

    def run(self, command: RunCommand) -> list[str]:
        """Run the coordinator until interrupted or for a bounded duration."""

        settings = Settings.from_env(store_url=command.store_url, agent_path=command.agent_path)
        if command.log_level is not None:
            settings.log_level = command.log_level.strip().upper()
        settings.bootstrap_team = settings.bootstrap_team and command.bootstrap_team
        settings.validate()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        completed: list[TaskCompleted] = []
        with Coordinator(settings) as coordinator:
            coordinator.events.subscribe(_log_event)
            coordinator.events.subscribe(
                lambda event: _collect_completed(event, completed),
            )
            team = coordinator.initialize(bootstrap_team=settings.bootstrap_team)
            coordinator.start()
            try:
                self._stop_event.wait(command.duration_seconds)
            except KeyboardInterrupt:
                logger.info("Interrupted, shutting down")
            finally:
                coordinator.stop()
            instances = coordinator.list_instances()

        succeeded = sum(1 for event in completed if event.result.success)
        return [
            f"Coordinator stopped: instances={len(instances)} team={len(team)} "
            f"completed={len(completed)} succeeded={succeeded} "
            f"failed={len(completed) - succeeded}",
        ]

    def submit(self, command: SubmitCommand) -> list[str]:
        """Queue a task for a running coordinator to pick up."""

        task = new_task(
            TaskParams(
                task_type=command.task_type,
                description=command.description,
                priority=command.priority,
                dependencies=list(command.dependencies),
                target_instance_id=command.target_instance_id,
            ),
        )
        with _queue(command.store_url) as queue:
            queue.push(task)
            queue.put_task_snapshot(task)
        return [
            f"Task queued: task_id={task.id} type={task.task_type.value} "
            f"priority={task.priority.value}",
        ]

    def queue_stats(self, command: QueueStatsCommand) -> list[str]:
        with _queue(command.store_url) as queue:
            depths = queue.queue_depth_by_priority()
        lines = ["Queue depth by priority:"]
        lines.extend(
            f"  {priority.value}: {depths[priority]}" for priority in PRIORITY_DEQUEUE_ORDER
        )
        lines.append(f"  total: {sum(depths.values())}")
        return lines

    def queue_clear(self, command: QueueClearCommand) -> list[str]:
        with _queue(command.store_url) as queue:
            queue.clear(command.priority)
        scope = "all priorities" if command.priority is None else command.priority.value
        return [f"Queue cleared: {scope}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        with _queue(command.store_url) as queue:
            tasks = queue.list_task_snapshots()
        if command.status is not None:
            tasks = [task for task in tasks if task.status == command.status]
        tasks.sort(key=lambda task: task.created_at, reverse=True)
        tasks = tasks[: command.limit]
        if not tasks:
            return ["No tasks found."]
        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"- {task.id} status={task.status.value} type={task.task_type.value} "
                f"priority={task.priority.value} assigned_to={task.assigned_to or '-'} "
                f"created_at={task.created_at.isoformat()}",
            )
            if task.result is not None and task.result.error:
                lines.append(f"  error: {_preview(task.result.error)}")
        return lines

    def list_instances(self, command: ListInstancesCommand) -> list[str]:
        with _queue(command.store_url) as queue:
            instances = queue.list_instance_snapshots()
        if not instances:
            return ["No instances found."]
        instances.sort(key=lambda instance: instance.created_at)
        lines = [f"Instances: {len(instances)}"]
        lines.extend(
            f"- {instance.id} name={instance.config.name!r} role={instance.role.value} "
            f"status={instance.status.value} "
            f"task={instance.current_task.id if instance.current_task else '-'}"
            for instance in instances
        )
        return lines

    def roles(self) -> list[str]:
        lines: list[str] = []
        for role in InstanceRole:
            profile = ROLE_PROFILES[role]
            config = profile.config
            lines.append(
                f"{role.value}: name={config.name!r} limit={config.max_concurrent_tasks} "
                f"timeout={config.timeout_seconds}s",
            )
            lines.append(f"  capabilities: {', '.join(profile.capabilities)}")
            lines.append(f"  languages: {', '.join(config.preferred_languages)}")
        lines.append("Routing:")
        lines.extend(
            f"  {task_type.value} -> {', '.join(role.value for role in preferred_roles(task_type))}"
            for task_type in TaskType
        )
        return lines


@contextmanager
def _queue(store_url: str | None) -> Iterator[DurableTaskQueue]:
    settings = Settings.from_env(store_url=store_url)
    settings.validate()
    with open_task_queue(settings.store_url, namespace=settings.namespace) as queue:
        yield queue


def _log_event(event: CoordinatorEvent) -> None:
    if isinstance(event, InstanceCreated):
        logger.debug("Event %s: %s", event.kind.value, event.instance.id)
    elif isinstance(event, TaskAssigned):
        logger.debug("Event %s: %s -> %s", event.kind.value, event.task.id, event.task.assigned_to)
    elif isinstance(event, TaskCompleted):
        logger.debug("Event %s: %s", event.kind.value, event.task.id)
    else:
        logger.debug("Event %s", event.kind.value)


def _collect_completed(event: CoordinatorEvent, sink: list[TaskCompleted]) -> None:
    if isinstance(event, TaskCompleted):
        sink.append(event)


def _preview(text: str, *, limit: int = 160) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
